"""Exceptions raised by efikeygen.

Every error is fatal to the run; the command line front end reports the
message and exits.
"""


class Error(Exception):
    """Base class for exceptions in this package."""

    pass


class InputValidationError(Error):
    """Missing or conflicting certificate options."""

    pass


class ProviderLookupError(Error):
    """Signing certificate or key could not be found in the key store."""

    pass


class ExtensionBuildError(Error):
    """A named certificate extension could not be encoded."""

    def __init__(self, extension, reason=None):
        super().__init__()
        self.extension = extension
        self.reason = reason

    def __str__(self):
        msg = "could not encode %s extension" % self.extension
        if self.reason:
            msg += ": %s" % self.reason
        return msg


class EncodingError(Error):
    """DER serialization of a certificate structure failed."""

    pass


class SignatureEncodingError(EncodingError):
    """The signed certificate envelope could not be encoded."""

    pass
