"""
AES-256-GCM Streaming Envelope
==============================

Encrypts and decrypts byte streams of any size in fixed-size chunks.

Envelope Format:
    NONCE (12 bytes, random per seal) || CIPHERTEXT || TAG (16 bytes)

No other container metadata is written; the catalog owns all metadata.

Security Properties:
    - 256-bit key derived once from the operator secret (SHA-256)
    - Fresh 96-bit nonce for every seal
    - Authentication tag verified before any output is kept
    - Partial outputs removed on every failure path

WARNING:
    - The derived key must never be logged or written to disk
    - Streamed plaintext is unverified until open() returns; callers
      writing to their own sink must discard it if open() raises
"""

from __future__ import annotations

import hashlib
import logging
import os
import secrets
import time
from pathlib import Path
from typing import BinaryIO, Final, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from scanvault.core.errors import (
    ConfigurationError,
    DecryptionFailed,
    OperationTimeout,
    StorageUnavailable,
)
from scanvault.security.constants import (
    KEY_LENGTH_BYTES,
    NONCE_LENGTH_BYTES,
    STREAM_CHUNK_BYTES,
    TAG_LENGTH_BYTES,
)


logger = logging.getLogger(__name__)

PARTIAL_SUFFIX: Final[str] = ".partial"


def derive_key(secret: str) -> bytes:
    """
    Derive the 32-byte envelope key from the operator-supplied secret.

    Raises:
        ConfigurationError: If the secret is empty
    """
    if not secret:
        raise ConfigurationError("File encryption secret is missing")
    return hashlib.sha256(secret.encode("utf-8")).digest()


class _Deadline:
    """Monotonic deadline checked between chunks."""

    __slots__ = ("_expires_at",)

    def __init__(self, timeout_seconds: Optional[float]) -> None:
        self._expires_at = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )

    def check(self) -> None:
        if self._expires_at is not None and time.monotonic() > self._expires_at:
            raise OperationTimeout("Envelope operation exceeded its deadline")


def _read_exact(source: BinaryIO, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = source.read(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def _discard(sink: BinaryIO) -> None:
    """Drop whatever was written to a seekable sink."""
    try:
        if sink.seekable():
            sink.seek(0)
            sink.truncate()
    except (OSError, ValueError) as e:
        logger.warning("Could not discard partial envelope output: %s", e)


class CryptoEnvelope:
    """
    Streaming AES-256-GCM with the nonce prefixed to the ciphertext.

    Usage:
        envelope = CryptoEnvelope.from_secret(secrets.file_secret)

        envelope.seal_file(staging_path, vault_path)

        with open(vault_path, "rb") as src:
            envelope.open(src, plaintext_sink)

    Security Notes:
        - One instance holds one key; construct it once at startup
        - A wrong key, truncation or tampering all surface as DecryptionFailed
    """

    __slots__ = ("_key", "_chunk_size", "_timeout_seconds")

    def __init__(
        self,
        key: bytes,
        chunk_size: int = STREAM_CHUNK_BYTES,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        """
        Args:
            key: 32-byte AES key
            chunk_size: Bytes processed per step
            timeout_seconds: Per-operation deadline (None disables it)
        """
        if len(key) != KEY_LENGTH_BYTES:
            raise ValueError(f"Key must be exactly {KEY_LENGTH_BYTES} bytes")
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self._key = key
        self._chunk_size = chunk_size
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_secret(cls, secret: str, **kwargs) -> CryptoEnvelope:
        return cls(derive_key(secret), **kwargs)

    def __repr__(self) -> str:
        """Safe representation without key material."""
        return f"CryptoEnvelope(chunk_size={self._chunk_size})"

    @property
    def overhead(self) -> int:
        """Bytes an envelope adds to its plaintext."""
        return NONCE_LENGTH_BYTES + TAG_LENGTH_BYTES

    def seal(self, source: BinaryIO, sink: BinaryIO) -> int:
        """
        Encrypt source into sink.

        Returns:
            Number of plaintext bytes consumed

        Raises:
            OperationTimeout: If the deadline passes mid-stream
        """
        deadline = _Deadline(self._timeout_seconds)
        nonce = secrets.token_bytes(NONCE_LENGTH_BYTES)
        encryptor = Cipher(algorithms.AES(self._key), modes.GCM(nonce)).encryptor()

        sink.write(nonce)
        consumed = 0
        while True:
            deadline.check()
            chunk = source.read(self._chunk_size)
            if not chunk:
                break
            consumed += len(chunk)
            sink.write(encryptor.update(chunk))

        sink.write(encryptor.finalize())
        sink.write(encryptor.tag)
        return consumed

    def open(self, source: BinaryIO, sink: BinaryIO) -> int:
        """
        Decrypt an envelope from source into sink.

        The final TAG_LENGTH_BYTES of the stream are held back and
        verified after the body. On failure a seekable sink is truncated.

        Returns:
            Number of plaintext bytes written

        Raises:
            DecryptionFailed: Truncated input, tampering or wrong key
            OperationTimeout: If the deadline passes mid-stream
        """
        deadline = _Deadline(self._timeout_seconds)
        try:
            nonce = _read_exact(source, NONCE_LENGTH_BYTES)
            if len(nonce) < NONCE_LENGTH_BYTES:
                raise DecryptionFailed("Envelope shorter than its nonce")

            decryptor = Cipher(algorithms.AES(self._key), modes.GCM(nonce)).decryptor()
            held = b""
            written = 0
            while True:
                deadline.check()
                chunk = source.read(self._chunk_size)
                if not chunk:
                    break
                held += chunk
                if len(held) > TAG_LENGTH_BYTES:
                    body = held[:-TAG_LENGTH_BYTES]
                    held = held[-TAG_LENGTH_BYTES:]
                    plaintext = decryptor.update(body)
                    sink.write(plaintext)
                    written += len(plaintext)

            if len(held) < TAG_LENGTH_BYTES:
                raise DecryptionFailed("Envelope truncated (missing authentication tag)")

            try:
                tail = decryptor.finalize_with_tag(held)
            except InvalidTag as e:
                raise DecryptionFailed("Authentication tag mismatch") from e
            sink.write(tail)
            return written + len(tail)
        except (DecryptionFailed, OperationTimeout):
            _discard(sink)
            raise

    def seal_file(self, source_path: Path, dest_path: Path) -> int:
        """
        Encrypt a file into dest_path via a fsynced partial file and rename.

        Raises:
            StorageUnavailable: On filesystem errors (partial output removed)
        """
        return self._transform_file(self.seal, source_path, dest_path)

    def open_file(self, source_path: Path, dest_path: Path) -> int:
        """Decrypt a file; dest_path only appears if the tag verified."""
        return self._transform_file(self.open, source_path, dest_path)

    @staticmethod
    def _transform_file(operation, source_path: Path, dest_path: Path) -> int:
        source_path = Path(source_path)
        dest_path = Path(dest_path)
        partial = dest_path.with_name(dest_path.name + PARTIAL_SUFFIX)

        try:
            with open(source_path, "rb") as src, open(partial, "wb") as out:
                count = operation(src, out)
                out.flush()
                os.fsync(out.fileno())
            os.replace(partial, dest_path)
            return count
        except OSError as e:
            partial.unlink(missing_ok=True)
            logger.error("Envelope file operation failed for %s: %s", dest_path.name, e)
            raise StorageUnavailable(str(e)) from e
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
