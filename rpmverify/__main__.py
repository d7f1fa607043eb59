#!/usr/bin/env python
"""Command-line interface: verify the OpenPGP signature of an RPM package."""
import argparse
import logging
import sys
from importlib import metadata

from . import main, util
from .config import Configuration

log = logging.getLogger(__name__)

URL = 'https://github.com/pschou/rpm-verify'


class ArgumentParser(argparse.ArgumentParser):
    """Report usage errors with the same exit status as failed checks."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, '{}: error: {}\n'.format(self.prog, message))


def _version():
    try:
        return metadata.version('rpmverify')
    except metadata.PackageNotFoundError:
        return 'unknown'


def create_parser():
    description = 'rpm-verify, Version: {} ({})'.format(_version(), URL)
    p = ArgumentParser(prog='rpm-verify', description=description)
    p.add_argument(
        'package', metavar='PACKAGE',
        help='package to verify (use "-" for stdin)')
    p.add_argument(
        '-k', '--keyring', default=Configuration.keyring,
        help='Use keyring for verifying, keyring.gpg or keys/ directory '
             '(default: %(default)s)')
    p.add_argument(
        '--key-suffix', default=Configuration.key_suffix,
        help='suffix of the key files to load from a keyring directory '
             '(default: %(default)s)')
    p.add_argument(
        '--no-build-time', dest='apply_build_time', action='store_false',
        default=True,
        help='do not set the package modification time to its build time')
    p.add_argument('-v', '--verbose', default=0, action='count')
    p.add_argument('--version', action='version',
                   version='%(prog)s {}'.format(_version()))
    return p


def _main(argv=None):
    args = create_parser().parse_args(argv)
    config = Configuration(package=args.package, keyring=args.keyring,
                           key_suffix=args.key_suffix,
                           apply_build_time=args.apply_build_time,
                           verbosity=args.verbose)
    util.setup_logging(verbosity=config.verbosity, prefix=config.log_prefix)
    log.debug('%r', config)
    return main.run(config)


if __name__ == '__main__':
    sys.exit(_main())
