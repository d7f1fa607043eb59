"""Various I/O and serialization utilities."""
import base64
import binascii
import contextlib
import logging
import struct

log = logging.getLogger(__name__)


def bytes2num(s):
    """Convert MSB-first bytes to an unsigned integer."""
    res = 0
    for i, c in enumerate(reversed(bytearray(s))):
        res += c << (i * 8)
    return res


def num2bytes(value, size):
    """Convert an unsigned integer to MSB-first bytes with specified size."""
    res = []
    for _ in range(size):
        res.append(value & 0xFF)
        value = value >> 8
    if value:
        raise ValueError('value does not fit in {} bytes'.format(size))
    return bytes(bytearray(list(reversed(res))))


def crc24(blob):
    """See https://tools.ietf.org/html/rfc4880#section-6.1 for details."""
    CRC24_INIT = 0x0B704CE
    CRC24_POLY = 0x1864CFB

    crc = CRC24_INIT
    for octet in bytearray(blob):
        crc ^= (octet << 16)
        for _ in range(8):
            crc <<= 1
            if crc & 0x1000000:
                crc ^= CRC24_POLY
    assert 0 <= crc < 0x1000000
    crc_bytes = struct.pack('>L', crc)
    return crc_bytes[1:]


def bit(value, i):
    """Extract the i-th bit out of value."""
    return 1 if value & (1 << i) else 0


def low_bits(value, n):
    """Extract the lowest n bits out of value."""
    return value & ((1 << n) - 1)


def split_bits(value, *bits):
    """
    Split integer value into list of ints, according to `bits` list.

    For example, split_bits(0x1234, 4, 8, 4) == [0x1, 0x23, 0x4]
    """
    result = []
    for b in reversed(bits):
        mask = (1 << b) - 1
        result.append(value & mask)
        value = value >> b
    if value:
        raise ValueError('leftover bits after split')

    result.reverse()
    return result


def readfmt(stream, fmt):
    """Read and unpack an object from stream, using a struct format string."""
    size = struct.calcsize(fmt)
    blob = stream.read(size)
    return struct.unpack(fmt, blob)


def prefix_len(fmt, blob):
    """Prefix `blob` with its size, serialized using `fmt` format."""
    return struct.pack(fmt, len(blob)) + blob


def hexlify(blob):
    """Utility for consistent hexadecimal formatting."""
    return binascii.hexlify(blob).decode('ascii').upper()


def is_armored(blob):
    """Check whether `blob` looks like ASCII-armored OpenPGP data."""
    return blob.lstrip().startswith(b'-----BEGIN PGP ')


def _decode_armor_block(lines):
    body = []
    checksum = None
    in_headers = True
    for line in lines:
        if in_headers:
            if not line:
                in_headers = False
            elif b':' not in line:
                in_headers = False
                body.append(line)
            continue
        if line.startswith(b'='):
            checksum = base64.b64decode(line[1:])
        elif line:
            body.append(line)

    payload = base64.b64decode(b''.join(body))
    if checksum is not None and crc24(payload) != checksum:
        raise ValueError('armor checksum mismatch')
    return payload


def remove_armor(armored_data):
    """
    Decode armored data into its binary form (verifying its CRC24).

    Every BEGIN/END block is decoded, and the results are concatenated.
    Text outside of the blocks is ignored.
    """
    blocks = []
    lines = None
    for line in armored_data.splitlines():
        line = line.strip()
        if line.startswith(b'-----BEGIN PGP '):
            lines = []
        elif line.startswith(b'-----END PGP '):
            if lines is None:
                raise ValueError('armor END line without BEGIN line')
            blocks.append(_decode_armor_block(lines))
            lines = None
        elif lines is not None:
            lines.append(line)
    if lines is not None:
        raise ValueError('missing armor END line')
    return b''.join(blocks)


class Reader:
    """Read basic type objects out of given stream."""

    def __init__(self, stream):
        """Create a non-capturing reader."""
        self.s = stream
        self._captured = None

    def readfmt(self, fmt):
        """Read a specified object, using a struct format string."""
        size = struct.calcsize(fmt)
        blob = self.read(size)
        obj, = struct.unpack(fmt, blob)
        return obj

    def read(self, size=None):
        """Read `size` bytes from stream."""
        blob = self.s.read(size)
        if size is not None and len(blob) < size:
            raise EOFError
        if self._captured:
            self._captured.write(blob)
        return blob

    def skip(self, size):
        """Discard `size` bytes, without being able to move backwards."""
        self.read(size)

    def tell(self):
        """Current offset of the underlying stream."""
        return self.s.tell()

    @contextlib.contextmanager
    def capture(self, stream):
        """Capture all data read during this context."""
        self._captured = stream
        try:
            yield
        finally:
            self._captured = None


def setup_logging(verbosity, prefix=''):
    """Configure logging for this tool."""
    levels = [logging.INFO, logging.DEBUG]
    level = levels[min(verbosity, len(levels) - 1)]
    logging.root.setLevel(level)

    if verbosity > 0:
        fmt = logging.Formatter(prefix + '%(levelname)-8s %(message)-80s '
                                '[%(filename)s:%(lineno)d]')
    else:
        fmt = logging.Formatter(prefix + '%(message)s')
    hdlr = logging.StreamHandler()  # stderr
    hdlr.setFormatter(fmt)
    logging.root.addHandler(hdlr)
