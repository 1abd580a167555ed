"""X.509v3 extensions for EFI signing certificates.

Each builder returns one Extension whose value is the DER encoding that goes
into extnValue. build_extensions() puts them together in a fixed order so
that two runs over the same profile give identical bytes:

    subject key id, [basic constraints, key usage], extended key usage,
    authority key id, [authority info access]

The bracketed CA pair only appears for CA profiles and the access info only
when an issuer URL is known.
"""

import logging
from collections import namedtuple

from pyasn1.codec.der import encoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import univ
from pyasn1_modules import rfc5280

from efikeygen.der import asn1_octetstring, asn1_sequence, asn1_tag_explicit
from efikeygen.errors import ExtensionBuildError
from efikeygen.provider import key_id

logger = logging.getLogger(__name__)

SUBJECT_KEY_ID = "subject key id"
AUTHORITY_KEY_ID = "authority key id"
KEY_USAGE = "key usage"
BASIC_CONSTRAINTS = "basic constraints"
EXTENDED_KEY_USAGE = "extended key usage"
AUTHORITY_INFO_ACCESS = "authority information access"

# digitalSignature, keyCertSign, cRLSign with one unused bit
KEY_USAGE_VALUE = b'\x03\x02\x01\x86'

Extension = namedtuple('Extension', ['name', 'oid', 'critical', 'value'])


class ExtensionSet(tuple):
    """Ordered, immutable collection of Extension entries."""

    def __new__(cls, extensions=()):
        return super().__new__(cls, extensions)

    def names(self):
        return [extension.name for extension in self]

    def find(self, name):
        for extension in self:
            if extension.name == name:
                return extension
        return None

    def to_asn1(self):
        # rfc5280 Extensions; critical is only written when set
        extensions = rfc5280.Extensions()
        for position, ext in enumerate(self):
            try:
                extension = rfc5280.Extension()
                extension['extnID'] = univ.ObjectIdentifier(ext.oid)
                if ext.critical:
                    extension['critical'] = True
                extension['extnValue'] = univ.OctetString(ext.value)
                extensions.setComponentByPosition(position, extension)
            except PyAsn1Error as exc:
                raise ExtensionBuildError(ext.name, exc) from exc
        return extensions


def _make(name, oid, critical, encode, *args):
    try:
        value = encode(*args)
    except (PyAsn1Error, ValueError, TypeError) as exc:
        raise ExtensionBuildError(name, exc) from exc
    logger.debug("encoded %s extension (%d bytes)", name, len(value))
    return Extension(name, str(oid), critical, value)


def _key_hash(public_key, make_key_id):
    if not public_key:
        raise ValueError("no public key")
    # the provider returns a bare digest; the callers add the outer wrapping
    return make_key_id(public_key)


def subject_key_id(public_key, make_key_id=key_id):
    def encode():
        return asn1_octetstring(_key_hash(public_key, make_key_id))
    return _make(SUBJECT_KEY_ID, rfc5280.id_ce_subjectKeyIdentifier, False, encode)


def authority_key_id(issuer_public_key, make_key_id=key_id):
    # keyIdentifier goes in a constructed [0], not the implicit primitive tag
    def encode():
        return asn1_sequence(asn1_tag_explicit(_key_hash(issuer_public_key, make_key_id), 0))
    return _make(AUTHORITY_KEY_ID, rfc5280.id_ce_authorityKeyIdentifier, False, encode)


def key_usage():
    return _make(KEY_USAGE, rfc5280.id_ce_keyUsage, True, lambda: KEY_USAGE_VALUE)


def basic_constraints():
    def encode():
        constraints = rfc5280.BasicConstraints()
        constraints['cA'] = True
        return encoder.encode(constraints)
    return _make(BASIC_CONSTRAINTS, rfc5280.id_ce_basicConstraints, True, encode)


def extended_key_usage():
    def encode():
        usage = rfc5280.ExtKeyUsageSyntax()
        usage.setComponentByPosition(0, rfc5280.id_kp_codeSigning)
        return encoder.encode(usage)
    return _make(EXTENDED_KEY_USAGE, rfc5280.id_ce_extKeyUsage, False, encode)


def authority_info_access(url):
    def encode():
        if not url:
            raise ValueError("no issuer URL")
        location = rfc5280.GeneralName()
        location['uniformResourceIdentifier'] = url
        access = rfc5280.AccessDescription()
        access['accessMethod'] = rfc5280.id_ad_caIssuers
        access['accessLocation'] = location
        syntax = rfc5280.AuthorityInfoAccessSyntax()
        syntax.setComponentByPosition(0, access)
        return encoder.encode(syntax)
    return _make(AUTHORITY_INFO_ACCESS, rfc5280.id_pe_authorityInfoAccess, False, encode)


def build_extensions(profile, make_key_id=key_id):
    """Build the ExtensionSet for a CertificateProfile.

    The authority key id hashes the subject's own key for a self-signed
    profile and the signer's key otherwise. Raises ExtensionBuildError
    naming the first extension that fails; nothing partial is returned.
    """
    extensions = [subject_key_id(profile.subject_public_key, make_key_id)]
    if profile.is_ca:
        extensions.append(basic_constraints())
        extensions.append(key_usage())
    extensions.append(extended_key_usage())
    if profile.is_self_signed:
        issuer_key = profile.subject_public_key
    else:
        issuer_key = profile.issuer_public_key
    extensions.append(authority_key_id(issuer_key, make_key_id))
    if profile.issuer_url:
        extensions.append(authority_info_access(profile.issuer_url))
    logger.debug("built extensions: %s", ", ".join(ext.name for ext in extensions))
    return ExtensionSet(extensions)
