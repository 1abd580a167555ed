"""Certificate request assembly.

The extensions travel through a PKCS#10 CertificationRequestInfo as a PKCS#9
extensionRequest attribute; the to-be-signed certificate body picks them up
from there.
"""

import datetime
import logging

from pyasn1.codec.der import decoder, encoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import char, tag, univ, useful
from pyasn1_modules import rfc2986, rfc5280

from efikeygen.bundle import algorithm_identifier
from efikeygen.errors import EncodingError, InputValidationError
from efikeygen.extensions import build_extensions
from efikeygen.provider import SHA256_WITH_RSA, key_id

logger = logging.getLogger(__name__)

ID_EXTENSION_REQUEST = univ.ObjectIdentifier('1.2.840.113549.1.9.14')
DEFAULT_VALIDITY_DAYS = 3650


def make_name(common_name):
    # Name with a single CN attribute (UTF8String)
    ava = rfc5280.AttributeTypeAndValue()
    ava['type'] = rfc5280.id_at_commonName
    ava['value'] = encoder.encode(char.UTF8String(common_name))
    rdn = rfc5280.RelativeDistinguishedName()
    rdn.setComponentByPosition(0, ava)
    rdns = rfc5280.RDNSequence()
    rdns.setComponentByPosition(0, rdn)
    name = rfc5280.Name()
    name.setComponentByPosition(0, rdns)
    return name


def make_time(dt):
    # UTCTime through 2049, GeneralizedTime afterwards
    time = rfc5280.Time()
    if dt.year < 2050:
        time['utcTime'] = useful.UTCTime(dt.strftime('%y%m%d%H%M%SZ'))
    else:
        time['generalTime'] = useful.GeneralizedTime(dt.strftime('%Y%m%d%H%M%SZ'))
    return time


def build_request(profile, extensions):
    """Encode the certificate request for a profile.

    Returns the DER CertificationRequestInfo with the extensions embedded
    as an extensionRequest attribute.
    """
    try:
        spki, _ = decoder.decode(profile.subject_public_key,
                                 asn1Spec=rfc5280.SubjectPublicKeyInfo())
    except PyAsn1Error as exc:
        raise EncodingError("could not decode subject public key: %s" % exc) from exc

    try:
        extensions_der = encoder.encode(extensions.to_asn1())
        request = rfc2986.CertificationRequestInfo()
        request['version'] = 0
        request['subject'] = make_name(profile.common_name)
        request['subjectPKInfo'] = spki
        attribute = rfc2986.Attribute()
        attribute['type'] = ID_EXTENSION_REQUEST
        attribute['values'].setComponentByPosition(0, extensions_der)
        request['attributes'].setComponentByPosition(0, attribute)
        der = encoder.encode(request)
    except PyAsn1Error as exc:
        raise EncodingError("could not encode certificate request: %s" % exc) from exc
    logger.debug("encoded certificate request (%d bytes)", len(der))
    return der


def request_extensions(request_der):
    # finds the extensionRequest attribute and decodes its extensions
    try:
        request, _ = decoder.decode(request_der, asn1Spec=rfc2986.CertificationRequestInfo())
    except PyAsn1Error as exc:
        raise EncodingError("could not decode certificate request: %s" % exc) from exc
    for attribute in request['attributes']:
        if attribute['type'] != ID_EXTENSION_REQUEST:
            continue
        try:
            extensions, _ = decoder.decode(attribute['values'][0].asOctets(),
                                           asn1Spec=rfc5280.Extensions())
        except (PyAsn1Error, IndexError) as exc:
            raise EncodingError("could not decode certificate extensions: %s" % exc) from exc
        return extensions
    raise EncodingError("could not find extension request")


def build_tbs_certificate(profile, request_der, issuer_name=None,
                          not_before=None, not_after=None):
    """Encode the v3 TBSCertificate for a request.

    issuer_name is the DER Name of the signer; None means the certificate
    is issued by its own subject.
    """
    if not_before is None:
        not_before = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
    if not_after is None:
        not_after = not_before + datetime.timedelta(days=DEFAULT_VALIDITY_DAYS)

    extensions = request_extensions(request_der)
    try:
        request, _ = decoder.decode(request_der, asn1Spec=rfc2986.CertificationRequestInfo())
        if issuer_name is None:
            issuer = request['subject']
        else:
            issuer, _ = decoder.decode(issuer_name, asn1Spec=rfc5280.Name())

        tbs = rfc5280.TBSCertificate()
        tbs['version'] = rfc5280.Version('v3').subtype(
            explicitTag=tag.Tag(tag.tagClassContext, tag.tagFormatSimple, 0))
        tbs['serialNumber'] = profile.serial
        tbs['signature'] = algorithm_identifier(SHA256_WITH_RSA)
        tbs['issuer'] = issuer
        validity = rfc5280.Validity()
        validity['notBefore'] = make_time(not_before)
        validity['notAfter'] = make_time(not_after)
        tbs['validity'] = validity
        tbs['subject'] = request['subject']
        tbs['subjectPublicKeyInfo'] = request['subjectPKInfo']
        if len(extensions):
            certificate_extensions = rfc5280.Extensions().subtype(
                explicitTag=tag.Tag(tag.tagClassContext, tag.tagFormatSimple, 3))
            for position, extension in enumerate(extensions):
                certificate_extensions.setComponentByPosition(position, extension)
            tbs['extensions'] = certificate_extensions
        der = encoder.encode(tbs)
    except PyAsn1Error as exc:
        raise EncodingError("could not encode certificate: %s" % exc) from exc
    logger.debug("encoded certificate body (%d bytes)", len(der))
    return der


def generate_signing_certificate(profile, issuer_name=None,
                                 validity_days=DEFAULT_VALIDITY_DAYS,
                                 not_before=None, make_key_id=key_id):
    """Build the unsigned certificate body for a profile.

    A profile that is not self-signed needs the signer's subject as
    issuer_name.
    """
    if issuer_name is None and not profile.is_self_signed:
        raise InputValidationError("issuer name is required unless self-signed")
    if not_before is None:
        not_before = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
    try:
        not_after = not_before + datetime.timedelta(days=validity_days)
    except OverflowError as exc:
        raise InputValidationError("invalid days \"%s\": %s" % (validity_days, exc)) from exc

    extensions = build_extensions(profile, make_key_id)
    request_der = build_request(profile, extensions)
    return build_tbs_certificate(profile, request_der, issuer_name, not_before, not_after)
