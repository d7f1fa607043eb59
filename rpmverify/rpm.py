"""
Decoder for the RPM package container (lead and header sections).

See https://rpm-software-management.github.io/rpm/manual/format.html
for details.
"""
import collections
import contextlib
import logging
import struct

from . import util
from .errors import FormatError

log = logging.getLogger(__name__)

LEAD_MAGIC = b'\xED\xAB\xEE\xDB'
LEAD_FORMAT = '>4sBBhh66shh16s'
LEAD_SIZE = struct.calcsize(LEAD_FORMAT)  # 96 bytes

HEADER_MAGIC = b'\x8E\xAD\xE8'
HEADER_VERSION = 1
HEADER_FORMAT = '>3sB4sLL'
INDEX_ENTRY_FORMAT = '>LLLL'
INDEX_ENTRY_SIZE = struct.calcsize(INDEX_ENTRY_FORMAT)

# Sanity limits (taken from rpm's own header reader)
MAX_INDEX_ENTRIES = 0xFFFF
MAX_DATA_SIZE = 256 << 20

ALIGNMENT = 8

# Tag value types
NULL_TYPE = 0
CHAR_TYPE = 1
INT8_TYPE = 2
INT16_TYPE = 3
INT32_TYPE = 4
INT64_TYPE = 5
STRING_TYPE = 6
BIN_TYPE = 7
STRING_ARRAY_TYPE = 8
I18NSTRING_TYPE = 9

INT_FORMATS = {
    CHAR_TYPE: 'B',
    INT8_TYPE: 'B',
    INT16_TYPE: 'H',
    INT32_TYPE: 'L',
    INT64_TYPE: 'Q',
}
STRING_TYPES = {STRING_TYPE, STRING_ARRAY_TYPE, I18NSTRING_TYPE}

# Signature header tags
RPMSIGTAG_SIZE = 1000
RPMSIGTAG_PGP = 1002  # RSA/EdDSA/ECDSA signature of header + payload
RPMSIGTAG_MD5 = 1004
RPMSIGTAG_GPG = 1005

# Main header tags
RPMTAG_NAME = 1000
RPMTAG_VERSION = 1001
RPMTAG_RELEASE = 1002
RPMTAG_BUILDTIME = 1006

# A signature tag whose count is at most this value is a placeholder (the
# same tag number is RPMTAG_RELEASE in the main header, a single string).
PGP_MIN_COUNT = 2

Lead = collections.namedtuple('Lead', [
    'magic', 'major', 'minor', 'type', 'archnum', 'name', 'osnum',
    'signature_type', 'reserved'])

Metadata = collections.namedtuple('Metadata', [
    'signature', 'build_time', 'anchor', 'sections'])


def align(offset, alignment=ALIGNMENT):
    """Round `offset` up to the next multiple of `alignment`."""
    return (offset + alignment - 1) & ~(alignment - 1)


class Tag:
    """A single (tag, type, count, value) entry of a header section."""

    def __init__(self, tag, type, count, data):  # pylint: disable=redefined-builtin
        self.tag = tag
        self.type = type
        self.count = count
        self.data = data

    def bytes(self):
        """Raw value of a BIN tag (None for other types)."""
        if self.type != BIN_TYPE:
            return None
        return self.data

    def ints(self):
        """Decoded values of an integer tag (None for other types)."""
        fmt = INT_FORMATS.get(self.type)
        if fmt is None:
            return None
        return list(struct.unpack('>{}{}'.format(self.count, fmt), self.data))

    def strings(self):
        """Decoded values of a string tag (None for other types)."""
        if self.type not in STRING_TYPES:
            return None
        return [s.decode('utf-8', 'replace')
                for s in self.data.split(b'\x00')[:self.count]]

    def __repr__(self):
        return '<Tag {} type={} count={}>'.format(
            self.tag, self.type, self.count)


def _value_size(type, count, store, offset):  # pylint: disable=redefined-builtin
    if type in INT_FORMATS:
        return struct.calcsize('>{}{}'.format(count, INT_FORMATS[type]))
    if type == BIN_TYPE:
        return count
    if type in STRING_TYPES:
        end = offset
        for _ in range(count):
            end = store.find(b'\x00', end)
            if end < 0:
                raise FormatError('unterminated string at offset {}'.format(
                    offset))
            end += 1
        return end - offset
    if type == NULL_TYPE:
        return 0
    raise FormatError('unknown tag type {}'.format(type))


def parse_tags(entries, store):
    """Resolve index entries against the header's data store."""
    tags = []
    for tag, type_, offset, count in entries:
        if offset > len(store):
            raise FormatError('tag {} offset {} is out of bounds'.format(
                tag, offset))
        size = _value_size(type_, count, store, offset)
        if offset + size > len(store):
            raise FormatError('tag {} value is out of bounds'.format(tag))
        t = Tag(tag=tag, type=type_, count=count,
                data=store[offset:offset + size])
        log.debug('tag: %s', t)
        tags.append(t)
    return tags


@contextlib.contextmanager
def _decoding(what):
    try:
        yield
    except EOFError:
        raise FormatError('truncated {}'.format(what)) from None
    except struct.error as e:
        raise FormatError('malformed {}: {}'.format(what, e)) from e


class ContainerReader:
    """Read the lead and header sections of a package, in order."""

    def __init__(self, source):
        self.source = source
        self.reader = util.Reader(source)
        self.sections_read = 0

    def lead(self):
        """Read and check the fixed-size lead."""
        with _decoding('lead'):
            lead = Lead(*util.readfmt(self.reader, LEAD_FORMAT))
        if lead.magic != LEAD_MAGIC:
            raise FormatError('bad lead magic: {}'.format(
                util.hexlify(lead.magic)))
        log.debug('lead: v%d.%d %r (signature type %d)',
                  lead.major, lead.minor, lead.name.rstrip(b'\x00'),
                  lead.signature_type)
        return lead

    def next_header(self):
        """Read the next header section, returning its tags."""
        if self.sections_read:
            # the signature section is padded to 8 bytes
            padding = align(self.source.tell()) - self.source.tell()
            log.debug('skipping %d padding bytes', padding)
            with _decoding('header padding'):
                self.reader.skip(padding)

        with _decoding('header'):
            magic, version, _, count, size = util.readfmt(
                self.reader, HEADER_FORMAT)
            if magic != HEADER_MAGIC or version != HEADER_VERSION:
                raise FormatError('bad header magic: {}'.format(
                    util.hexlify(magic + bytes([version]))))
            if count > MAX_INDEX_ENTRIES or size > MAX_DATA_SIZE:
                raise FormatError('header too large: {} entries, {} bytes'
                                  .format(count, size))
            entries = [util.readfmt(self.reader, INDEX_ENTRY_FORMAT)
                       for _ in range(count)]
            store = self.reader.read(size)

        self.sections_read += 1
        log.debug('header #%d: %d tags, %d bytes of data',
                  self.sections_read, count, size)
        return parse_tags(entries, store)


def walk_headers(container, sections=2):
    """
    Extract the signature and build time out of the header sections.

    The signature payload tag is only taken into account when its count is
    larger than PGP_MIN_COUNT; the last such tag wins. The build time is taken
    from the first section that has one.

    The returned anchor is the offset right after the first (signature)
    section, where the signed region begins (after alignment).
    """
    signature = None
    build_time = None
    anchor = None

    for _ in range(sections):
        for tag in container.next_header():
            if tag.tag == RPMSIGTAG_PGP and tag.count > PGP_MIN_COUNT:
                data = tag.bytes()
                if data is not None:
                    signature = data
            elif tag.tag == RPMTAG_BUILDTIME and build_time is None:
                values = tag.ints()
                if values:
                    build_time = values[0]

        if anchor is None:
            anchor = container.source.tell()

    log.debug('signature: %s bytes, build time: %s, anchor: %d',
              len(signature) if signature else None, build_time, anchor)
    return Metadata(signature=signature, build_time=build_time,
                    anchor=anchor, sections=sections)
