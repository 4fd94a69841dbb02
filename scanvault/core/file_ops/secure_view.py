"""
Transient Plaintext Module
==========================

Holds decrypted file content for the duration of one download or preview.

Security Properties:
- Content stays in memory up to a threshold, then spills to an
  anonymous temporary file
- Buffer overwritten with zeros and closed on close() or context exit
- Read-only once filled
"""

from __future__ import annotations

import logging
import tempfile
from typing import BinaryIO, Final, Iterator, Optional

from scanvault.security.constants import STREAM_CHUNK_BYTES


logger = logging.getLogger(__name__)

# Plaintext larger than this spills to an unnamed temp file
MEMORY_THRESHOLD_BYTES: Final[int] = 8 * 1024 * 1024


class PlaintextStream:
    """
    Read-only, purge-on-close plaintext buffer.

    Usage:
        with PlaintextStream("report.pdf", "application/pdf") as stream:
            envelope.open(ciphertext, stream.sink)
            stream.seal()
            for chunk in stream.iter_chunks():
                send(chunk)
        # Buffer is now wiped

    The producer writes through `sink` and then calls seal(); readers
    see content only after seal().
    """

    __slots__ = ("_buffer", "_filename", "_content_type", "_size", "_sealed", "_closed")

    def __init__(
        self,
        filename: str,
        content_type: str = "application/octet-stream",
        spool_dir: Optional[str] = None,
    ) -> None:
        self._buffer = tempfile.SpooledTemporaryFile(
            max_size=MEMORY_THRESHOLD_BYTES, mode="w+b", dir=spool_dir
        )
        self._filename = filename
        self._content_type = content_type
        self._size = 0
        self._sealed = False
        self._closed = False

    @property
    def filename(self) -> str:
        return self._filename

    @property
    def content_type(self) -> str:
        return self._content_type

    @property
    def size(self) -> int:
        return self._size

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def sink(self) -> BinaryIO:
        if self._sealed or self._closed:
            raise ValueError("Plaintext stream is no longer writable")
        return self._buffer

    def seal(self) -> None:
        """Finish writing and rewind for reading."""
        self._buffer.flush()
        self._size = self._buffer.tell()
        self._buffer.seek(0)
        self._sealed = True

    def read(self, size: int = -1) -> bytes:
        if self._closed:
            raise ValueError("I/O operation on closed stream")
        if not self._sealed:
            raise ValueError("Plaintext stream has not been sealed")
        return self._buffer.read(size)

    def iter_chunks(self, chunk_size: int = STREAM_CHUNK_BYTES) -> Iterator[bytes]:
        """Yield the content in chunks, closing the stream when exhausted."""
        try:
            while True:
                chunk = self.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()

    def wipe(self) -> None:
        """Overwrite the buffered bytes with zeros."""
        if self._closed:
            return
        try:
            self._buffer.seek(0, 2)
            length = self._buffer.tell()
            self._buffer.seek(0)
            zeros = b"\x00" * min(length, STREAM_CHUNK_BYTES)
            remaining = length
            while remaining > 0:
                step = min(remaining, len(zeros))
                self._buffer.write(zeros[:step])
                remaining -= step
            self._buffer.flush()
            self._buffer.seek(0)
            self._buffer.truncate()
        except (OSError, ValueError) as e:
            logger.warning("Could not wipe plaintext buffer for %s: %s", self._filename, e)

    def close(self) -> None:
        if self._closed:
            return
        self.wipe()
        self._buffer.close()
        self._closed = True

    def __enter__(self) -> PlaintextStream:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        if self._closed:
            return "PlaintextStream(CLOSED)"
        return f"PlaintextStream(filename={self._filename!r}, size={self._size})"
