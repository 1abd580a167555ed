"""efikeygen command line: generate a certificate for EFI binary signing."""

import argparse
import configparser
import logging
import os
import sys

from efikeygen import __version__
from efikeygen.bundle import bundle_signature
from efikeygen.errors import Error, InputValidationError
from efikeygen.profile import (CertificateProfile, check_signing_options,
                               parse_serial, resolve_self_signed)
from efikeygen.provider import (DEFAULT_DBDIR, DEFAULT_KEY_SIZE, INTERNAL_TOKEN,
                                Provider, private_key_pem, public_key_der)
from efikeygen.request import DEFAULT_VALIDITY_DAYS, generate_signing_certificate

logger = logging.getLogger('efikeygen')

CONFIG_SECTION = 'efikeygen'
DEFAULT_CONFIG_FILES = ['/etc/efikeygen.conf', os.path.expanduser('~/.efikeygen.conf')]
DEFAULT_OUTPUT = 'signed.cer'

BUILTIN_DEFAULTS = {
    'dbdir': DEFAULT_DBDIR,
    'token': INTERNAL_TOKEN,
    'output': DEFAULT_OUTPUT,
    'key_size': DEFAULT_KEY_SIZE,
    'days': DEFAULT_VALIDITY_DAYS,
    'url': None,
}


class MarkerFormatter(logging.Formatter):
    # console markers: [+] progress, [!] warning, [-] failure
    def format(self, record):
        if record.levelno >= logging.ERROR:
            marker = '[-]'
        elif record.levelno >= logging.WARNING:
            marker = '[!]'
        else:
            marker = '[+]'
        return '%s %s' % (marker, super().format(record))


def setup_logging(verbosity=0):
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(MarkerFormatter('%(message)s'))
    root = logging.getLogger('efikeygen')
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbosity else logging.INFO)
    root.propagate = False


def read_config(config_files):
    """Reads option defaults from the [efikeygen] section of INI files.

    Missing files are skipped; later files override earlier ones.
    """
    # values are taken literally; URLs may carry percent escapes
    config = configparser.ConfigParser(interpolation=None)
    try:
        config.read(config_files)
        if not config.has_section(CONFIG_SECTION):
            return {}
        return dict(config[CONFIG_SECTION])
    except configparser.Error as exc:
        raise InputValidationError("could not parse configuration: %s" % exc) from exc


def build_parser():
    parser = argparse.ArgumentParser(
        prog='efikeygen',
        description='Generate a certificate for EFI binary signing')
    parser.add_argument('-C', '--ca', action='store_true', default=False,
                        help='Generate a CA certificate')
    parser.add_argument('-S', '--self-sign', action='store_true', default=None,
                        help='Generate a self-signed certificate')
    parser.add_argument('-c', '--signer', metavar='<signer>',
                        help='Nickname for signing certificate')
    parser.add_argument('-t', '--token', metavar='<token>',
                        help='Token holding signing key (default: "%s")' % INTERNAL_TOKEN)
    parser.add_argument('-d', '--dbdir', metavar='<dbdir>',
                        help='Key store directory (default: %s)' % DEFAULT_DBDIR)
    parser.add_argument('-p', '--pubkey', metavar='<pubkey>',
                        help='Use public key from file')
    parser.add_argument('-o', '--output', metavar='<outfile>',
                        help='Certificate output file name (default: %s)' % DEFAULT_OUTPUT)
    parser.add_argument('-P', '--privkey', metavar='<privkey>',
                        help='Private key output file name')
    parser.add_argument('-n', '--common-name', metavar='<cn>',
                        help='Common Name for generated certificate')
    parser.add_argument('-u', '--url', metavar='<url>',
                        help='Issuer URL')
    parser.add_argument('-s', '--serial', metavar='<serial>',
                        help='Serial number')
    parser.add_argument('--key-size', type=int, metavar='<bits>',
                        help='Size of the generated RSA key (default: %d)' % DEFAULT_KEY_SIZE)
    parser.add_argument('--days', type=int, metavar='<days>',
                        help='Validity period in days (default: %d)' % DEFAULT_VALIDITY_DAYS)
    parser.add_argument('--config', action='append', metavar='<file>',
                        help='Configuration file (may be repeated)')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='Show debug output')
    parser.add_argument('--version', action='version', version='%(prog)s ' + __version__)
    return parser


def resolve_options(args, config):
    # command line, then configuration file, then built-in default
    options = {}
    for name, default in BUILTIN_DEFAULTS.items():
        value = getattr(args, name)
        if value is None:
            value = config.get(name, default)
        options[name] = value
    for name in ('key_size', 'days'):
        try:
            options[name] = int(options[name])
        except (TypeError, ValueError):
            raise InputValidationError("invalid %s \"%s\"" % (name.replace('_', '-'), options[name]))
        if options[name] <= 0:
            raise InputValidationError("invalid %s \"%s\"" % (name.replace('_', '-'), options[name]))
    return options


def write_file(filename, data):
    """Write data to a new 0600 file, removing it again if the write fails."""
    fd = os.open(filename, os.O_WRONLY | os.O_CREAT | os.O_TRUNC | os.O_CLOEXEC, 0o600)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
    except OSError:
        os.unlink(filename)
        raise


def remove_files(filenames):
    for filename in filenames:
        try:
            os.unlink(filename)
        except FileNotFoundError:
            pass


def run(args):
    config_files = args.config or DEFAULT_CONFIG_FILES
    options = resolve_options(args, read_config(config_files))

    is_self_signed = resolve_self_signed(args.ca, args.self_sign, args.signer)
    check_signing_options(is_self_signed, args.signer, args.common_name)
    if args.pubkey and is_self_signed:
        raise InputValidationError("--pubkey cannot be used for a self-signed certificate")
    if args.pubkey and args.privkey:
        raise InputValidationError("--privkey cannot be used with --pubkey")
    serial = parse_serial(args.serial)

    with Provider(options['dbdir'], options['token']) as provider:
        issuer_name = None
        issuer_key = None
        signing_key = None
        if not is_self_signed:
            identity = provider.find_certificate(args.signer)
            signing_key = provider.find_private_key(identity)
            issuer_name = identity.subject_name_der
            issuer_key = identity.public_key_der

        subject_private_key = None
        if args.pubkey:
            subject_key = provider.load_public_key(args.pubkey)
        else:
            subject_private_key = provider.generate_key_pair(options['key_size'])
            subject_key = public_key_der(subject_private_key)
        if is_self_signed:
            signing_key = subject_private_key

        profile = CertificateProfile(
            common_name=args.common_name,
            subject_public_key=subject_key,
            serial=serial,
            is_ca=args.ca,
            is_self_signed=is_self_signed,
            issuer_public_key=issuer_key,
            issuer_url=options['url'],
            signer=args.signer,
        )
        logger.info("Issuing certificate for \"%s\" (serial %d)", profile.common_name, serial)

        certder = generate_signing_certificate(profile, issuer_name, options['days'])
        signature, oid = provider.signer(signing_key)(certder)
        sigder = bundle_signature(certder, oid, signature)

        written = []
        try:
            write_file(options['output'], sigder)
            written.append(options['output'])
            logger.info("Certificate written to %s", options['output'])
            if args.privkey:
                write_file(args.privkey, private_key_pem(subject_private_key))
                written.append(args.privkey)
                logger.info("Private key written to %s", args.privkey)
        except (Error, OSError):
            remove_files(written)
            raise


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        run(args)
    except (Error, OSError) as exc:
        logger.error("efikeygen: %s", exc)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
