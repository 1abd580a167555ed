import datetime

import pytest
from Cryptodome.PublicKey import RSA

from efikeygen.bundle import bundle_signature
from efikeygen.profile import CertificateProfile
from efikeygen.provider import private_key_pem, public_key_der, sign_data
from efikeygen.request import generate_signing_certificate

NOT_BEFORE = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)


@pytest.fixture(scope='session')
def subject_key():
    return RSA.generate(1024)


@pytest.fixture(scope='session')
def issuer_key():
    return RSA.generate(1024)


@pytest.fixture
def subject_spki(subject_key):
    return public_key_der(subject_key)


@pytest.fixture
def issuer_spki(issuer_key):
    return public_key_der(issuer_key)


@pytest.fixture
def ca_profile(subject_spki):
    return CertificateProfile(common_name="Test CA", subject_public_key=subject_spki,
                              serial=1, is_ca=True, is_self_signed=True)


@pytest.fixture
def keystore(tmp_path, issuer_key, issuer_spki):
    """Key store directory holding a self-signed CA under the nickname 'signer'."""
    profile = CertificateProfile(common_name="Signer CA", subject_public_key=issuer_spki,
                                 serial=42, is_ca=True, is_self_signed=True)
    tbs = generate_signing_certificate(profile, not_before=NOT_BEFORE)
    signature, oid = sign_data(issuer_key, tbs)
    (tmp_path / 'signer.cer').write_bytes(bundle_signature(tbs, oid, signature))
    (tmp_path / 'signer.key').write_bytes(private_key_pem(issuer_key))
    return tmp_path
