import datetime

import pytest
from Cryptodome.Hash import SHA256
from Cryptodome.Signature import pkcs1_15
from pyasn1.codec.der import decoder, encoder
from pyasn1_modules import rfc5280

from efikeygen import request as req
from efikeygen.bundle import bundle_signature
from efikeygen.errors import EncodingError, InputValidationError
from efikeygen.extensions import build_extensions
from efikeygen.profile import CertificateProfile
from efikeygen.provider import sign_data

NOT_BEFORE = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)


def decode_tbs(der):
    tbs, rest = decoder.decode(der, asn1Spec=rfc5280.TBSCertificate())
    assert not rest
    return tbs


def common_name(name):
    ava = name["rdnSequence"][0][0]
    value, _ = decoder.decode(ava['value'].asOctets())
    return str(value)


def test_request_carries_extensions(ca_profile):
    extensions = build_extensions(ca_profile)
    request_der = req.build_request(ca_profile, extensions)
    decoded = req.request_extensions(request_der)
    assert [e['extnValue'].asOctets() for e in decoded] == [e.value for e in extensions]
    assert [str(e['extnID']) for e in decoded] == [e.oid for e in extensions]


def test_request_without_extension_request(ca_profile, monkeypatch):
    request_der = req.build_request(ca_profile, build_extensions(ca_profile))
    monkeypatch.setattr(req, 'ID_EXTENSION_REQUEST', rfc5280.id_at_commonName)
    with pytest.raises(EncodingError) as excinfo:
        req.request_extensions(request_der)
    assert "could not find extension request" in str(excinfo.value)


def test_bad_subject_key_is_encoding_error():
    profile = CertificateProfile(common_name="Test CA", subject_public_key=b'\x01\x02\x03',
                                 serial=1, is_self_signed=True)
    with pytest.raises(EncodingError):
        req.build_request(profile, build_extensions(profile))


def test_self_signed_ca_certificate(ca_profile, subject_spki):
    tbs = decode_tbs(req.generate_signing_certificate(ca_profile, not_before=NOT_BEFORE))
    assert int(tbs['version']) == 2
    assert int(tbs['serialNumber']) == 1
    assert str(tbs['signature']['algorithm']) == '1.2.840.113549.1.1.11'
    assert encoder.encode(tbs['issuer']) == encoder.encode(tbs['subject'])
    assert common_name(tbs['subject']) == "Test CA"
    assert encoder.encode(tbs['subjectPublicKeyInfo']) == subject_spki

    extensions = tbs['extensions']
    assert len(extensions) == 5
    constraints = extensions[1]
    assert constraints['extnID'] == rfc5280.id_ce_basicConstraints
    assert bool(constraints['critical'])
    value, _ = decoder.decode(constraints['extnValue'].asOctets(),
                              asn1Spec=rfc5280.BasicConstraints())
    assert bool(value['cA'])


def test_issued_certificate_names_signer(subject_spki, issuer_spki):
    profile = CertificateProfile(common_name="Leaf", subject_public_key=subject_spki,
                                 serial=0xFFFFFFFFFFFFFFFF, issuer_public_key=issuer_spki,
                                 signer="signer")
    issuer_name = encoder.encode(req.make_name("Signer CA"))
    tbs = decode_tbs(req.generate_signing_certificate(profile, issuer_name,
                                                      not_before=NOT_BEFORE))
    assert int(tbs['serialNumber']) == 0xFFFFFFFFFFFFFFFF
    assert common_name(tbs['issuer']) == "Signer CA"
    assert common_name(tbs['subject']) == "Leaf"
    oids = [e['extnID'] for e in tbs['extensions']]
    assert rfc5280.id_ce_keyUsage not in oids
    assert rfc5280.id_ce_basicConstraints not in oids
    assert len(oids) == 3


def test_issued_certificate_requires_issuer_name(subject_spki, issuer_spki):
    profile = CertificateProfile(common_name="Leaf", subject_public_key=subject_spki,
                                 serial=2, issuer_public_key=issuer_spki, signer="signer")
    with pytest.raises(InputValidationError):
        req.generate_signing_certificate(profile)


def test_validity_period(ca_profile):
    tbs = decode_tbs(req.generate_signing_certificate(ca_profile, validity_days=10,
                                                      not_before=NOT_BEFORE))
    assert str(tbs['validity']['notBefore']['utcTime']) == '240101000000Z'
    assert str(tbs['validity']['notAfter']['utcTime']) == '240111000000Z'


def test_make_time_switches_to_generalized_time():
    assert req.make_time(datetime.datetime(2049, 12, 31)).getName() == 'utcTime'
    late = req.make_time(datetime.datetime(2050, 1, 1))
    assert late.getName() == 'generalTime'
    assert str(late['generalTime']) == '20500101000000Z'


def test_signed_certificate_verifies(ca_profile, subject_key):
    tbs = req.generate_signing_certificate(ca_profile, not_before=NOT_BEFORE)
    signature, oid = sign_data(subject_key, tbs)
    der = bundle_signature(tbs, oid, signature)

    certificate, rest = decoder.decode(der, asn1Spec=rfc5280.Certificate())
    assert not rest
    assert encoder.encode(certificate['tbsCertificate']) == tbs
    assert certificate['signature'].asOctets() == signature
    pkcs1_15.new(subject_key.publickey()).verify(SHA256.new(tbs), signature)


def test_validity_out_of_range(ca_profile):
    with pytest.raises(InputValidationError) as excinfo:
        req.generate_signing_certificate(ca_profile, validity_days=9999999,
                                         not_before=NOT_BEFORE)
    assert 'invalid days "9999999"' in str(excinfo.value)
