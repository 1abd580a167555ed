"""Generate X.509 certificates for EFI binary signing."""

__version__ = '0.1.0'
