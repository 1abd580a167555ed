"""Signature bundling.

Wraps a to-be-signed blob, its algorithm identifier and the raw signature
into

    SEQUENCE {
        tbsCertificate      ANY,
        signatureAlgorithm  AlgorithmIdentifier,
        signature           BIT STRING
    }

The blob is carried verbatim as an opaque element. The signature is encoded
through a generic string slot with the unused-bits octet prepended by hand;
once the whole SEQUENCE is encoded the slot is found from its own length
octets at the end of the buffer and its tag is rewritten to BIT STRING.
"""

import logging

from pyasn1.codec.der import decoder, encoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import namedtype, univ
from pyasn1_modules import rfc5280

from efikeygen.der import (TAG_BIT_STRING, TAG_OCTET_STRING, TAG_SEQUENCE, asn1_len, element_end,
                           read_header)
from efikeygen.errors import EncodingError, SignatureEncodingError

logger = logging.getLogger(__name__)

# RSA PKCS#1 v1.5 signature algorithms; all take NULL parameters
RSA_SIGNATURE_ALGORITHMS = {
    '1.2.840.113549.1.1.11': 'sha256WithRSAEncryption',
    '1.2.840.113549.1.1.12': 'sha384WithRSAEncryption',
    '1.2.840.113549.1.1.13': 'sha512WithRSAEncryption',
}

DER_NULL = b'\x05\x00'


class _UnsignedSlot(univ.Sequence):
    componentType = namedtype.NamedTypes(
        namedtype.NamedType('tbsData', univ.Any()),
        namedtype.NamedType('signatureAlgorithm', rfc5280.AlgorithmIdentifier()),
        namedtype.NamedType('signature', univ.OctetString())
    )


class SignedCertificate(univ.Sequence):
    componentType = namedtype.NamedTypes(
        namedtype.NamedType('tbsData', univ.Any()),
        namedtype.NamedType('signatureAlgorithm', rfc5280.AlgorithmIdentifier()),
        namedtype.NamedType('signature', univ.BitString())
    )


def algorithm_identifier(oid):
    # AlgorithmIdentifier with NULL parameters for a supported RSA scheme
    oid = str(oid)
    if oid not in RSA_SIGNATURE_ALGORITHMS:
        raise SignatureEncodingError("unsupported signature algorithm %s" % oid)
    algorithm = rfc5280.AlgorithmIdentifier()
    algorithm['algorithm'] = univ.ObjectIdentifier(oid)
    algorithm['parameters'] = univ.Any(DER_NULL)
    return algorithm


def locate_signature(der, content_length):
    """Return the offset of the signature element's tag octet.

    The signature is the last element of the outer SEQUENCE and its content
    length is known, so its header is found from the end of the buffer and
    checked against the length octets there. The tbs element before it is
    never parsed and may hold any bytes.
    """
    tag, header_length, _ = read_header(der, 0)
    if tag != TAG_SEQUENCE:
        raise EncodingError("expected SEQUENCE, found tag 0x%02x" % tag)
    if element_end(der, 0) != len(der):
        raise EncodingError("SEQUENCE length does not match buffer")
    offset = len(der) - content_length - len(asn1_len(content_length)) - 1
    if offset < header_length:
        raise EncodingError("signature element does not fit in SEQUENCE")
    _, slot_header, slot_length = read_header(der, offset)
    if slot_length != content_length or offset + slot_header + slot_length != len(der):
        raise EncodingError("signature element not found at offset %d" % offset)
    return offset


def bundle_signature(data, oid, signature):
    """Encode the signed certificate envelope.

    data is the encoded certificate body, oid the signature algorithm and
    signature the bare output of the signing primitive. Returns new DER
    bytes; the inputs are not touched.
    """
    if not signature:
        raise SignatureEncodingError("could not encode certificate: empty signature")

    # byte 0 is the BIT STRING unused-bits count
    sig = bytearray(len(signature) + 1)
    sig[1:] = signature

    envelope = _UnsignedSlot()
    try:
        envelope['tbsData'] = univ.Any(bytes(data))
        envelope['signatureAlgorithm'] = algorithm_identifier(oid)
        envelope['signature'] = univ.OctetString(bytes(sig))
        der = bytearray(encoder.encode(envelope))
    except PyAsn1Error as exc:
        raise SignatureEncodingError("could not encode certificate: %s" % exc) from exc

    try:
        offset = locate_signature(der, len(sig))
    except EncodingError as exc:
        raise SignatureEncodingError("could not locate signature: %s" % exc) from exc
    if der[offset] != TAG_OCTET_STRING:
        raise SignatureEncodingError(
            "unexpected tag 0x%02x at signature offset %d" % (der[offset], offset))
    der[offset] = TAG_BIT_STRING
    logger.debug("bundled %d-byte signature, BIT STRING at offset %d", len(signature), offset)
    return bytes(der)


def decode_signed_certificate(der):
    # returns (tbs_data, algorithm_oid, signature) from a bundled certificate
    try:
        envelope, rest = decoder.decode(der, asn1Spec=SignedCertificate())
    except PyAsn1Error as exc:
        raise SignatureEncodingError("could not decode certificate: %s" % exc) from exc
    if rest:
        raise SignatureEncodingError("trailing data after certificate")
    return (envelope['tbsData'].asOctets(),
            str(envelope['signatureAlgorithm']['algorithm']),
            envelope['signature'].asOctets())
