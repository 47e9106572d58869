from __future__ import annotations

import io
from typing import BinaryIO, Callable, Iterable, Iterator, Optional, Tuple

from core.errors import IOFailureError, MediaError, QuotaExceededError, ValidationError


def clean_ref(ref: str) -> str:
    """Normalize a logical name into an object ref (no leading slash, no '..' segments)."""
    parts = [p for p in (ref or "").replace("\\", "/").split("/") if p and p not in (".", "..")]
    if not parts:
        raise ValidationError([f"empty or traversal-only name {ref!r}"], message="invalid object name")
    return "/".join(parts)


def _read(stream: BinaryIO, n: int) -> bytes:
    try:
        return stream.read(n) or b""
    except MediaError:
        raise
    except Exception as exc:
        raise IOFailureError(f"failed to read upload stream: {exc}") from exc


def read_up_to(stream: BinaryIO, n: int) -> bytes:
    """Read until n bytes or EOF (a single read() may return short)."""
    buf = bytearray()
    while len(buf) < n:
        chunk = _read(stream, n - len(buf))
        if not chunk:
            break
        buf += chunk
    return bytes(buf)


def read_head(stream: BinaryIO, threshold: int) -> Tuple[bytes, bool]:
    """
    Buffer at most threshold + 1 bytes.

    Returns (head, is_large). When is_large is False, head is the entire payload.
    """
    head = read_up_to(stream, threshold + 1)
    return head, len(head) > threshold


def iter_chunks(head: bytes, stream: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    """Yield fixed-size chunks (the last one may be short) from head followed by stream."""
    buf = bytearray(head)
    eof = False
    while True:
        if not eof and len(buf) < chunk_size:
            more = read_up_to(stream, chunk_size - len(buf))
            if len(more) < chunk_size - len(buf):
                eof = True
            buf += more
        if not buf:
            return
        chunk = bytes(buf[:chunk_size])
        del buf[:chunk_size]
        yield chunk
        if eof and not buf:
            return


class IteratorStream(io.RawIOBase):
    """Readable file object over an iterator of byte chunks."""

    def __init__(self, chunks: Iterable[bytes], on_close: Optional[Callable[[], None]] = None):
        self._chunks = iter(chunks)
        self._pending = b""
        self._on_close = on_close

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
        n = min(len(b), len(self._pending))
        b[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n

    def close(self) -> None:
        if not self.closed and self._on_close is not None:
            try:
                self._on_close()
            finally:
                self._on_close = None
        super().close()


def prepend(
    head: bytes,
    stream: BinaryIO,
    chunk_size: int = 64 * 1024,
    on_close: Optional[Callable[[], None]] = None,
) -> IteratorStream:
    """Re-attach bytes already consumed from the front of stream."""

    def _chunks() -> Iterator[bytes]:
        if head:
            yield head
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                return
            yield chunk

    return IteratorStream(_chunks(), on_close=on_close)


class LimitedReader(io.RawIOBase):
    """
    Pass-through reader that counts bytes and refuses to go past max_bytes.

    The first bytes are kept in `head` for content sniffing.
    """

    def __init__(self, raw: BinaryIO, max_bytes: int, head_size: int = 512):
        self._raw = raw
        self.max_bytes = max_bytes
        self.bytes_read = 0
        self.exceeded = False
        self._head_size = head_size
        self.head = b""

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        data = self._raw.read(len(b)) or b""
        n = len(data)
        if not n:
            return 0
        self.bytes_read += n
        if self.bytes_read > self.max_bytes:
            self.exceeded = True
            raise QuotaExceededError(f"payload exceeds maximum size of {self.max_bytes} bytes")
        if len(self.head) < self._head_size:
            self.head += data[: self._head_size - len(self.head)]
        b[:n] = data
        return n
