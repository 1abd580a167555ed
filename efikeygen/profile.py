"""Certificate profile: the validated inputs of one certificate run."""

import re
from dataclasses import dataclass
from typing import Optional

from efikeygen.errors import InputValidationError

SERIAL_MAX = 2 ** 64 - 1

HEX_SERIAL = re.compile(r'0x[0-9a-f]+\Z')
OCTAL_SERIAL = re.compile(r'0[0-7]+\Z')
DECIMAL_SERIAL = re.compile(r'(0|[1-9][0-9]*)\Z')


def resolve_self_signed(is_ca, self_sign, signer):
    # an explicit --self-sign wins; otherwise only a CA without a signer signs itself
    if self_sign is not None:
        return bool(self_sign)
    return bool(is_ca and not signer)


def check_signing_options(is_self_signed, signer, common_name):
    """Reject conflicting or missing signing options.

    Runs before any key lookup or encoding work.
    """
    if is_self_signed and signer:
        raise InputValidationError(
            "--self-sign and --signer cannot be used at the same time.")
    if not common_name:
        raise InputValidationError("--common-name must be specified")
    if not is_self_signed and not signer:
        raise InputValidationError("signing certificate is required")


def parse_serial(text):
    # accepts decimal, 0x-prefixed hex and 0-prefixed octal
    if text is None:
        raise InputValidationError("--serial must be specified")
    value = text.strip().lower()
    if HEX_SERIAL.match(value):
        serial = int(value[2:], 16)
    elif OCTAL_SERIAL.match(value):
        serial = int(value[1:], 8)
    elif DECIMAL_SERIAL.match(value):
        serial = int(value, 10)
    else:
        raise InputValidationError("invalid serial number \"%s\"" % text)
    if serial > SERIAL_MAX:
        raise InputValidationError("invalid serial number \"%s\"" % text)
    return serial


@dataclass(frozen=True)
class CertificateProfile:
    """What goes into one certificate.

    Public keys are DER SubjectPublicKeyInfo bytes. A self-signed profile
    uses the subject key as issuer key when none is given.
    """

    common_name: str
    subject_public_key: bytes
    serial: int
    is_ca: bool = False
    is_self_signed: bool = False
    issuer_public_key: Optional[bytes] = None
    issuer_url: Optional[str] = None
    signer: Optional[str] = None

    def __post_init__(self):
        if self.is_self_signed and self.signer:
            raise InputValidationError(
                "--self-sign and --signer cannot be used at the same time.")
        if not self.common_name:
            raise InputValidationError("common name must not be empty")
        if not self.subject_public_key:
            raise InputValidationError("subject public key must not be empty")
        if not isinstance(self.serial, int) or not 0 <= self.serial <= SERIAL_MAX:
            raise InputValidationError("serial number must be a 64-bit unsigned integer")
        if self.is_self_signed:
            if self.issuer_public_key is None:
                object.__setattr__(self, 'issuer_public_key', self.subject_public_key)
        elif not self.issuer_public_key:
            raise InputValidationError("issuer public key is required unless self-signed")
