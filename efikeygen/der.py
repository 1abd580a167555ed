"""Small DER helpers shared by the extension builder and the bundler.

Structures are encoded with pyasn1; the functions here cover the few
wrappers that have to be built byte by byte and the header walking used to
find elements inside an already encoded buffer.
"""

import codecs

from efikeygen.errors import EncodingError

TAG_BIT_STRING = 0x03
TAG_OCTET_STRING = 0x04
TAG_SEQUENCE = 0x30


def int_to_bytestring(i):
    # converts a non-negative integer to big-endian bytes
    if i == 0:
        return b'\x00'
    byte_list = []
    while i > 0:
        byte_list.append(i & 0xFF)
        i >>= 8
    byte_list.reverse()
    return bytes(byte_list)


def asn1_len(content):
    # DER length octets for bytes content or an integer length
    if isinstance(content, bytes):
        length = len(content)
    else:
        length = content
    if length <= 127:
        return bytes([length])
    length_bytes = int_to_bytestring(length)
    return bytes([0x80 | len(length_bytes)]) + length_bytes


def asn1_octetstring(octets):
    return bytes([TAG_OCTET_STRING]) + asn1_len(octets) + octets


def asn1_sequence(der):
    return bytes([TAG_SEQUENCE]) + asn1_len(der) + der


def asn1_tag_explicit(der, tag):
    # constructed context-specific tag around der, taken verbatim
    if not der:
        raise ValueError("Empty object")
    return bytes([0xA0 | tag]) + asn1_len(der) + der


def read_header(data, offset=0):
    """Parse the tag and length octets of the element starting at offset.

    Returns a tuple (tag, header_length, content_length). Only the
    single-octet tags and definite lengths DER allows are accepted.
    """
    if offset + 2 > len(data):
        raise EncodingError("truncated DER element at offset %d" % offset)
    tag = data[offset]
    if tag & 0x1F == 0x1F:
        raise EncodingError("multi-octet tag at offset %d" % offset)
    first = data[offset + 1]
    if first < 0x80:
        return tag, 2, first
    count = first & 0x7F
    if count == 0:
        raise EncodingError("indefinite length at offset %d" % offset)
    if offset + 2 + count > len(data):
        raise EncodingError("truncated length at offset %d" % offset)
    length = 0
    for byte in data[offset + 2:offset + 2 + count]:
        length = (length << 8) | byte
    return tag, 2 + count, length


def element_end(data, offset=0):
    # offset just past the element starting at offset
    _, header_length, content_length = read_header(data, offset)
    end = offset + header_length + content_length
    if end > len(data):
        raise EncodingError("element at offset %d overruns buffer" % offset)
    return end


def pem_to_der(content):
    # converts PEM content (if it is PEM) to DER, any label
    if content.lstrip()[:5] != b'-----':
        return content
    lines = [line.strip() for line in content.splitlines()
             if line.strip() and not line.strip().startswith(b'-----')]
    return codecs.decode(b''.join(lines), 'base64')
