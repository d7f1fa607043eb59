"""
Package input sources.

The signed region of a package starts *before* the end of the headers that
have to be parsed in order to find the signature, so the parser has to move
backwards once it is done. Regular files simply seek back; one-pass streams
(pipes, stdin) keep every byte they read until the signed region is handed
over to the verifier, and replay it from there.
"""
import io
import logging

log = logging.getLogger(__name__)

BUFSIZE = 64 << 10


def open_source(fd):
    """Pick the source backend matching the capabilities of `fd`."""
    seekable = getattr(fd, 'seekable', None)
    if seekable is not None and seekable():
        log.debug('using seekable source for %s', getattr(fd, 'name', fd))
        return SeekableSource(fd)
    log.debug('using sequential source for %s', getattr(fd, 'name', fd))
    return TeeSource(fd)


class SeekableSource:
    """Random-access medium: all positioning is delegated to the file."""

    def __init__(self, fd):
        self.fd = fd

    def read(self, size=-1):
        return self.fd.read(size)

    def tell(self):
        return self.fd.tell()

    def seek(self, offset):
        """Move to an absolute offset."""
        return self.fd.seek(offset, io.SEEK_SET)

    def payload(self):
        """Reader of the remaining bytes, starting at the current offset."""
        return self.fd


class TeeSource:
    """One-pass medium: retain what was read, so it can be replayed."""

    def __init__(self, fd):
        self.fd = fd
        self.buf = bytearray()
        self.base = 0  # offset of buf[0]
        self.pos = 0
        self.eof = False

    def _fill(self, end):
        """Read from the underlying stream until `end` is buffered (or EOF)."""
        while not self.eof and self.base + len(self.buf) < end:
            data = self.fd.read(max(end - self.base - len(self.buf), BUFSIZE))
            if not data:
                self.eof = True
                break
            self.buf.extend(data)

    def read(self, size=-1):
        if size is None or size < 0:
            while not self.eof:
                self._fill(self.base + len(self.buf) + BUFSIZE)
            end = self.base + len(self.buf)
        else:
            end = self.pos + size
            self._fill(end)
        start = self.pos - self.base
        data = bytes(self.buf[start:end - self.base])
        self.pos += len(data)
        return data

    def tell(self):
        return self.pos

    def seek(self, offset):
        """
        Move to an absolute offset.

        Moving backwards is possible only within the retained bytes, moving
        forwards reads (and retains) the skipped bytes.
        """
        if offset < self.base:
            raise io.UnsupportedOperation(
                'cannot seek to {} (replay buffer starts at {})'.format(
                    offset, self.base))
        self._fill(offset)
        self.pos = offset
        return self.pos

    def payload(self):
        """
        Reader of the remaining bytes, starting at the current offset.

        Retained bytes after the current offset are replayed first, then the
        underlying stream is read directly (without retaining anything).
        """
        head = bytes(self.buf[self.pos - self.base:])
        log.debug('replaying %d buffered bytes from offset %d',
                  len(head), self.pos)
        self.base = self.pos = self.pos + len(head)
        self.buf = bytearray()
        return Replay(head, self.fd)


class Replay:
    """Read `head` first, then continue reading from `fd`."""

    def __init__(self, head, fd):
        self.head = io.BytesIO(head)
        self.fd = fd

    def read(self, size=-1):
        if size is None or size < 0:
            return self.head.read() + self.fd.read()
        data = self.head.read(size)
        if len(data) < size:
            data += self.fd.read(size - len(data))
        return data
