"""
Argon2id Password Hashing
=========================

Implements password hashing using Argon2id (argon2-cffi).

Security Properties:
- Memory-hard (resistant to GPU/ASIC attacks)
- Salt automatically managed
- Constant-time verification

Parameters (OWASP 2023 recommendations):
- memory_cost: 102400 KiB (100 MB)
- time_cost: 2 iterations
- parallelism: 4 threads
"""

from __future__ import annotations

from typing import Final

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError


ARGON2_MEMORY_COST: Final[int] = 102400  # KiB
ARGON2_TIME_COST: Final[int] = 2
ARGON2_PARALLELISM: Final[int] = 4
ARGON2_HASH_LENGTH: Final[int] = 32
ARGON2_SALT_LENGTH: Final[int] = 16


class Argon2Hasher:
    """
    Argon2id password hasher with secure defaults.

    Usage:
        hasher = Argon2Hasher()
        digest = hasher.hash("user_password")
        hasher.verify("user_password", digest)  # True

    The dummy digest lets callers spend the same time on an unknown
    account as on a real one.
    """

    __slots__ = ("_hasher", "_dummy_digest")

    def __init__(
        self,
        memory_cost: int = ARGON2_MEMORY_COST,
        time_cost: int = ARGON2_TIME_COST,
        parallelism: int = ARGON2_PARALLELISM,
        hash_length: int = ARGON2_HASH_LENGTH,
        salt_length: int = ARGON2_SALT_LENGTH,
    ) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_length,
            salt_len=salt_length,
        )
        self._dummy_digest: str | None = None

    def hash(self, password: str) -> str:
        """Hash a password; returns the encoded digest for storage."""
        if not password:
            raise ValueError("Password cannot be empty")
        return self._hasher.hash(password)

    def verify(self, password: str, digest: str) -> bool:
        """Verify a password against a stored digest. Never raises on mismatch."""
        if not password or not digest:
            return False
        try:
            return self._hasher.verify(digest, password)
        except (VerifyMismatchError, VerificationError, InvalidHash):
            return False

    def verify_dummy(self, password: str) -> None:
        """Burn one verification against a throwaway digest."""
        if self._dummy_digest is None:
            self._dummy_digest = self._hasher.hash("dummy-password-for-timing")
        self.verify(password or "x", self._dummy_digest)

    def needs_rehash(self, digest: str) -> bool:
        """True if the digest was produced with weaker parameters."""
        try:
            return self._hasher.check_needs_rehash(digest)
        except InvalidHash:
            return True
