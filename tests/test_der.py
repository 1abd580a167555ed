import base64

import pytest

from efikeygen.der import (asn1_len, asn1_octetstring, asn1_sequence, asn1_tag_explicit,
                           element_end, pem_to_der, read_header)
from efikeygen.errors import EncodingError


def test_asn1_len_short_and_long_form():
    assert asn1_len(0) == b'\x00'
    assert asn1_len(127) == b'\x7f'
    assert asn1_len(128) == b'\x81\x80'
    assert asn1_len(300) == b'\x82\x01\x2c'
    assert asn1_len(b'abc') == b'\x03'


def test_wrappers():
    assert asn1_octetstring(b'\x01\x02') == b'\x04\x02\x01\x02'
    assert asn1_sequence(b'\x05\x00') == b'\x30\x02\x05\x00'
    assert asn1_tag_explicit(b'\xaa\xbb', 0) == b'\xa0\x02\xaa\xbb'
    assert asn1_tag_explicit(b'\xaa', 3) == b'\xa3\x01\xaa'


def test_tag_explicit_rejects_empty():
    with pytest.raises(ValueError):
        asn1_tag_explicit(b'', 0)


def test_read_header():
    assert read_header(b'\x30\x03\x02\x01\x01') == (0x30, 2, 3)
    data = b'\x04\x82\x01\x2c' + b'\x00' * 300
    assert read_header(data) == (0x04, 4, 300)
    assert element_end(data) == len(data)


def test_read_header_at_offset():
    data = b'\x30\x06\x02\x01\x01\x04\x01\xff'
    assert read_header(data, 2) == (0x02, 2, 1)
    assert element_end(data, 2) == 5
    assert element_end(data, 5) == 8


@pytest.mark.parametrize('data', [
    b'\x30',
    b'\x30\x80\x00\x00',
    b'\x30\x82\x01',
    b'\x1f\x01\x00',
])
def test_read_header_rejects_malformed(data):
    with pytest.raises(EncodingError):
        read_header(data)


def test_element_end_rejects_overrun():
    with pytest.raises(EncodingError):
        element_end(b'\x04\x05\x00')


def test_pem_to_der():
    der = b'\x30\x03\x02\x01\x01'
    pem = (b'-----BEGIN CERTIFICATE-----\n' + base64.encodebytes(der)
           + b'-----END CERTIFICATE-----\n')
    assert pem_to_der(pem) == der
    assert pem_to_der(der) == der
