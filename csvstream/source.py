"""
Byte sources for the streaming parser.

A byte source is a pull interface: the parser asks for one byte at a time,
may look at the next byte without consuming it, and sees ``None`` at end of
stream. I/O errors are raised by the source itself, never signalled with
``None``.
"""

import re
from abc import ABC, abstractmethod
from typing import BinaryIO, Optional, Union

# Default number of bytes pulled from the underlying stream per read
DEFAULT_CHUNK_SIZE = 64 * 1024


class ByteSource(ABC):
    """Abstract pull/peek byte source."""

    @abstractmethod
    def read_byte(self) -> Optional[int]:
        """Consume and return the next byte, or None at end of stream."""

    @abstractmethod
    def peek_byte(self) -> Optional[int]:
        """Return the next byte without consuming it, or None at end of stream."""

    def read_run(self, stops: bytes) -> bytes:
        """
        Consume the longest run of bytes that contains none of ``stops``.

        The byte that stopped the run is left unconsumed. Subclasses with
        direct buffer access should override this with a bulk scan.
        """
        run = bytearray()
        while True:
            b = self.peek_byte()
            if b is None or b in stops:
                return bytes(run)
            run.append(self.read_byte())

    def close(self) -> None:
        pass

    def __enter__(self) -> "ByteSource":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


class BufferedByteSource(ByteSource):
    """
    Byte source over any object with a ``read(n)`` method.

    Bytes are pulled from the stream in chunks of ``chunk_size`` and served
    from an internal buffer. Only the unread tail of the previous chunk is
    kept when a new chunk is fetched.

    Args:
        stream: Binary stream (file opened in 'rb' mode, BytesIO, socket file)
        chunk_size: Number of bytes requested per read
        close_stream: Close the stream when this source is closed
    """

    def __init__(
        self,
        stream: BinaryIO,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        close_stream: bool = False,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._stream = stream
        self._chunk_size = chunk_size
        self._close_stream = close_stream
        self._buf = b''
        self._pos = 0
        self._eof = False
        self._closed = False
        self._run_patterns = {}

    def _fill(self) -> bool:
        """Make sure at least one unread byte is buffered. False at EOF."""
        if self._pos < len(self._buf):
            return True
        if self._eof:
            return False
        chunk = self._stream.read(self._chunk_size)
        if not chunk:
            self._eof = True
            self._buf = b''
            self._pos = 0
            return False
        if isinstance(chunk, str):
            raise ValueError("stream must be opened in binary mode")
        self._buf = bytes(chunk)
        self._pos = 0
        return True

    def read_byte(self) -> Optional[int]:
        if not self._fill():
            return None
        b = self._buf[self._pos]
        self._pos += 1
        return b

    def peek_byte(self) -> Optional[int]:
        if not self._fill():
            return None
        return self._buf[self._pos]

    def read_run(self, stops: bytes) -> bytes:
        pattern = self._run_patterns.get(stops)
        if pattern is None:
            pattern = re.compile(b'[^' + re.escape(stops) + b']*')
            self._run_patterns[stops] = pattern

        parts = []
        while self._fill():
            m = pattern.match(self._buf, self._pos)
            end = m.end()
            if end > self._pos:
                parts.append(self._buf[self._pos:end])
                self._pos = end
            if end < len(self._buf):
                break
        if len(parts) == 1:
            return parts[0]
        return b''.join(parts)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._close_stream:
            self._stream.close()


class BytesSource(BufferedByteSource):
    """Byte source over an in-memory bytes-like object."""

    def __init__(self, data: Union[bytes, bytearray, memoryview]):
        super().__init__(_NullStream())
        self._buf = bytes(data)
        self._eof = True


class _NullStream:
    """Stream that is always at end of file."""

    def read(self, n: int = -1) -> bytes:
        return b''

    def close(self) -> None:
        pass
