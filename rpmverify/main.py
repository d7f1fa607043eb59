"""Verify the signature of a single package."""
import contextlib
import datetime
import io
import logging
import os
import sys

from . import keyring as _keyring
from . import rpm, stream, verify
from .errors import FormatError, UnsupportedSignatureTypeError, VerifyError

log = logging.getLogger(__name__)

INIT = 'Init'
KEYRING_LOADED = 'KeyringLoaded'
LEAD_READ = 'LeadRead'
METADATA_SCANNED = 'MetadataScanned'
ALIGNED = 'Aligned'
VERIFIED = 'Verified'
DONE = 'Done'
FAILED = 'Failed'


class Orchestrator:
    """Run the verification steps in order, stopping at the first failure."""

    def __init__(self, config, output=None):
        self.config = config
        self.output = output if output is not None else sys.stdout
        self.state = INIT
        self.keyring = None
        self.metadata = None
        self.decision = None

    def _enter(self, state):
        log.debug('%s -> %s', self.state, state)
        self.state = state

    def load_keyring(self):
        self.keyring = _keyring.load_keyring(self.config.keyring,
                                             suffix=self.config.key_suffix)
        self._enter(KEYRING_LOADED)

    def read_lead(self, container):
        lead = container.lead()
        if lead.signature_type != self.config.supported_signature_type:
            raise UnsupportedSignatureTypeError(lead.signature_type)
        self._enter(LEAD_READ)
        return lead

    def scan_metadata(self, container):
        self.metadata = rpm.walk_headers(
            container, sections=self.config.header_sections)
        self._enter(METADATA_SCANNED)

    def align(self, source):
        boundary = rpm.align(self.metadata.anchor)
        log.debug('signed region starts at %d (anchor %d)',
                  boundary, self.metadata.anchor)
        try:
            source.seek(boundary)
        except io.UnsupportedOperation as e:
            raise FormatError('cannot move to offset {}: {}'.format(
                boundary, e)) from e
        self._enter(ALIGNED)

    def check(self, source):
        self.decision = verify.check_signature(
            keyring=self.keyring, payload=source.payload(),
            signature=self.metadata.signature)
        self._enter(VERIFIED)

    def verify_stream(self, fd):
        """Verify an already opened package stream (after loading the keys)."""
        source = stream.open_source(fd)
        container = rpm.ContainerReader(source)
        self.read_lead(container)
        self.scan_metadata(container)
        self.align(source)
        self.check(source)
        return self.decision

    @contextlib.contextmanager
    def _open_package(self):
        if self.config.use_stdin:
            log.info('opening: <stdin>')
            yield sys.stdin.buffer
        else:
            log.info('opening: %s', self.config.package)
            with open(self.config.package, 'rb') as fd:
                yield fd

    def apply_build_time(self):
        """Set the package's modification time to its build time."""
        build_time = self.metadata.build_time
        if build_time is None:
            return
        log.info('Build time: %s', datetime.datetime.fromtimestamp(
            build_time, tz=datetime.timezone.utc))
        if self.config.use_stdin or not self.config.apply_build_time:
            return
        try:
            os.utime(self.config.package, (build_time, build_time))
        except OSError as e:
            log.warning('cannot set modification time of %s: %s',
                        self.config.package, e)

    def run(self):
        """Verify the configured package, returning the exit status."""
        try:
            self.load_keyring()
            with self._open_package() as fd:
                self.verify_stream(fd)
        except (VerifyError, OSError) as e:
            self._enter(FAILED)
            log.error('%s', e)
            return 1

        self.apply_build_time()
        self._enter(DONE)

        if self.decision.trusted:
            print(self.decision, file=self.output)
            return 0
        log.info('%s', self.decision)
        return 1


def run(config, output=None):
    return Orchestrator(config, output=output).run()
