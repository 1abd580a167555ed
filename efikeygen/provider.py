"""Cryptographic provider: key store lookup, key generation, hashing, signing.

The provider is a scoped handle. Open it with ``with Provider(dbdir) as
provider:``; anything it loaded is dropped when the block exits, whatever
the exit path.
"""

import logging
import os

from Cryptodome.Hash import SHA1, SHA256
from Cryptodome.PublicKey import RSA
from Cryptodome.Signature import pkcs1_15
from pyasn1.codec.der import decoder, encoder
from pyasn1.error import PyAsn1Error
from pyasn1_modules import rfc5280

from efikeygen.der import pem_to_der
from efikeygen.errors import InputValidationError, ProviderLookupError

logger = logging.getLogger(__name__)

INTERNAL_TOKEN = "NSS Certificate DB"
DEFAULT_DBDIR = "/etc/pki/pesign"
DEFAULT_KEY_SIZE = 2048

SHA256_WITH_RSA = '1.2.840.113549.1.1.11'


def key_id(public_key_der):
    # SHA-1 over the DER SubjectPublicKeyInfo, bare digest without any wrapper
    return SHA1.new(public_key_der).digest()


def public_key_der(key):
    # DER SubjectPublicKeyInfo of an RSA key (public or private)
    return key.publickey().export_key(format='DER')


def private_key_pem(key):
    # PKCS#8 PEM export of a private key
    if not key.has_private():
        raise InputValidationError("no private key available to export")
    return key.export_key(format='PEM', pkcs=8)


def sign_data(key, data):
    """Sign data with sha256WithRSAEncryption.

    Returns (signature, algorithm_oid); the signature is the bare
    modulus-sized octets, without a BIT STRING prefix.
    """
    if not key.has_private():
        raise ProviderLookupError("could not find private key")
    signature = pkcs1_15.new(key).sign(SHA256.new(data))
    return signature, SHA256_WITH_RSA


class SignerIdentity:
    """A signing certificate found in the key store."""

    def __init__(self, nickname, certificate_der):
        self.nickname = nickname
        self.certificate_der = certificate_der
        cert, _ = decoder.decode(certificate_der, asn1Spec=rfc5280.Certificate())
        tbs = cert['tbsCertificate']
        self.subject_name_der = encoder.encode(tbs['subject'])
        self.public_key_der = encoder.encode(tbs['subjectPublicKeyInfo'])

    def __repr__(self):
        return "SignerIdentity(%r)" % self.nickname


class Provider:
    """Key store rooted at dbdir, selecting one token.

    The internal token is the store root; any other token name is a
    subdirectory of it.
    """

    def __init__(self, dbdir=DEFAULT_DBDIR, token=INTERNAL_TOKEN):
        self.dbdir = dbdir
        self.token = token or INTERNAL_TOKEN
        self._keys = {}
        self.closed = False
        logger.debug("opened key store %s (token \"%s\")", dbdir, self.token)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    def close(self):
        if not self.closed:
            self._keys.clear()
            self.closed = True
            logger.debug("closed key store %s", self.dbdir)

    def _check_open(self):
        if self.closed:
            raise ValueError("operation on closed provider")

    @property
    def token_dir(self):
        if self.token == INTERNAL_TOKEN:
            return self.dbdir
        return os.path.join(self.dbdir, self.token)

    def _lookup_error(self, nickname, what="signing certificate"):
        return ProviderLookupError("could not find %s \"%s:%s\"" % (what, self.token, nickname))

    def _read(self, nickname, suffix, what):
        path = os.path.join(self.token_dir, nickname + suffix)
        try:
            with open(path, 'rb') as f:
                return pem_to_der(f.read())
        except (OSError, ValueError) as exc:
            raise self._lookup_error(nickname, what) from exc

    def find_certificate(self, nickname):
        self._check_open()
        data = self._read(nickname, '.cer', "signing certificate")
        try:
            identity = SignerIdentity(nickname, data)
        except PyAsn1Error as exc:
            raise self._lookup_error(nickname) from exc
        logger.debug("found signing certificate \"%s:%s\"", self.token, nickname)
        return identity

    def find_private_key(self, identity):
        """Load the private key belonging to a signing certificate."""
        self._check_open()
        nickname = identity.nickname
        if nickname in self._keys:
            return self._keys[nickname]
        data = self._read(nickname, '.key', "private key")
        try:
            key = RSA.import_key(data)
            cert_key = RSA.import_key(identity.public_key_der)
        except (ValueError, IndexError, TypeError) as exc:
            raise self._lookup_error(nickname, "private key") from exc
        if not key.has_private():
            raise self._lookup_error(nickname, "private key")
        if (key.n, key.e) != (cert_key.n, cert_key.e):
            raise ProviderLookupError(
                "private key \"%s:%s\" does not match its certificate" % (self.token, nickname))
        self._keys[nickname] = key
        return key

    def generate_key_pair(self, bits=DEFAULT_KEY_SIZE):
        self._check_open()
        logger.debug("generating %d-bit RSA key pair", bits)
        try:
            return RSA.generate(bits)
        except ValueError as exc:
            raise InputValidationError("invalid key size %d: %s" % (bits, exc)) from exc

    def load_public_key(self, filename):
        # reads an RSA public key (SPKI, PKCS#1 or certificate; PEM or DER)
        self._check_open()
        with open(filename, 'rb') as f:
            data = f.read()
        try:
            key = RSA.import_key(data)
        except (ValueError, IndexError, TypeError) as exc:
            raise InputValidationError("could not read public key from %s" % filename) from exc
        return public_key_der(key)

    def signer(self, key):
        # signing callback handed to the certificate pipeline
        self._check_open()

        def sign(data):
            self._check_open()
            return sign_data(key, data)
        return sign
