"""
Account Directory
=================

Account records with role-based access control.

Security Features:
- Passwords hashed with Argon2id, never stored or logged in clear
- Emails stored lower-cased; the schema's unique index decides races
- Lock state is an explicit enumeration, distinct from the lock timestamp
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from scanvault.core.auth.argon2_auth import Argon2Hasher
from scanvault.core.errors import AccountNotFound, EmailAlreadyRegistered, ValidationError
from scanvault.db.store import StoreIntegrityError, VaultStore
from scanvault.security.audit import AuditAction, AuditBus, AuditOutcome
from scanvault.security.constants import MAX_EMAIL_LENGTH
from scanvault.utils.clock import Clock, from_iso, to_iso, utc_now
from scanvault.utils.validators import normalize_email, validate_password


logger = logging.getLogger(__name__)


class Role(Enum):
    """Account roles for access control."""
    USER = "user"
    ADMIN = "admin"


class LockState(Enum):
    ACTIVE = "active"
    BRUTE_FORCE_LOCKED = "brute_force_locked"
    ADMIN_LOCKED = "admin_locked"


@dataclass
class Account:
    """
    Account representation.

    Note: password_hash is never exposed in repr or to_public_dict().
    """
    id: str
    email: str
    password_hash: str
    role: Role
    lock_state: LockState
    failed_attempts: int
    locked_at: Optional[datetime]
    token_version: int
    created_at: datetime

    def __repr__(self) -> str:
        return (
            f"Account(id={self.id!r}, email={self.email!r}, "
            f"role={self.role.value}, lock_state={self.lock_state.value})"
        )

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_locked(self) -> bool:
        return self.lock_state is not LockState.ACTIVE

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "lock_state": self.lock_state.value,
            "is_locked": self.is_locked,
            "failed_attempts": self.failed_attempts,
            "locked_at": to_iso(self.locked_at) if self.locked_at else None,
            "created_at": to_iso(self.created_at),
        }


def row_to_account(row: sqlite3.Row) -> Account:
    """Convert a database row to an Account object."""
    return Account(
        id=row["id"],
        email=row["email"],
        password_hash=row["password_hash"],
        role=Role(row["role"]),
        lock_state=LockState(row["lock_state"]),
        failed_attempts=row["failed_attempts"],
        locked_at=from_iso(row["locked_at"]),
        token_version=row["token_version"],
        created_at=from_iso(row["created_at"]),
    )


def fetch_account(conn: sqlite3.Connection, account_id: str) -> Optional[Account]:
    row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
    return row_to_account(row) if row else None


def audit_actor(value: object) -> Optional[str]:
    """Best-effort actor for an audit event about unvalidated input."""
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip().lower()[:MAX_EMAIL_LENGTH]


class AccountDirectory:
    """
    Account registration and lookup over the shared store.

    Usage:
        directory = AccountDirectory(store, hasher, audit)
        account = directory.create_account("alice@example.com", "Str0ng!pw")
        same = directory.get_by_email("ALICE@example.com")

    Security Notes:
        - Signup validates email and password strength before hashing
        - Duplicate emails surface as EmailAlreadyRegistered, decided by the
          UNIQUE constraint so two racing signups cannot both succeed
        - All operations use parameterized queries
    """

    __slots__ = ("_store", "_hasher", "_audit", "_clock")

    def __init__(
        self,
        store: VaultStore,
        hasher: Argon2Hasher,
        audit: AuditBus,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._audit = audit
        self._clock = clock

    def create_account(
        self,
        email: str,
        password: str,
        role: Role = Role.USER,
        origin: Optional[str] = None,
    ) -> Account:
        """
        Create a new account.

        Raises:
            ValidationError: If the email or password is unacceptable
            EmailAlreadyRegistered: If the email is taken
        """
        try:
            email = normalize_email(email)
            password = validate_password(password)
        except ValidationError as e:
            self._audit.record(audit_actor(email), AuditAction.SIGNUP, AuditOutcome.FAILED, origin, e.public_message)
            raise

        account = Account(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=self._hasher.hash(password),
            role=role,
            lock_state=LockState.ACTIVE,
            failed_attempts=0,
            locked_at=None,
            token_version=0,
            created_at=self._clock(),
        )

        try:
            with self._store.transaction() as conn:
                conn.execute("""
                    INSERT INTO accounts (id, email, password_hash, role, lock_state, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    account.id,
                    account.email,
                    account.password_hash,
                    account.role.value,
                    account.lock_state.value,
                    to_iso(account.created_at),
                ))
        except StoreIntegrityError as e:
            self._audit.record(email, AuditAction.SIGNUP, AuditOutcome.FAILED, origin, "email already registered")
            raise EmailAlreadyRegistered(f"Signup for existing email {email}") from e

        logger.info("Account created: %s (%s)", account.id, role.value)
        self._audit.record(email, AuditAction.SIGNUP, AuditOutcome.SUCCESS, origin, f"role={role.value}")
        return account

    def get(self, account_id: str) -> Optional[Account]:
        """Get an account by ID."""
        with self._store.read() as conn:
            return fetch_account(conn, account_id)

    def require(self, account_id: str) -> Account:
        """
        Get an account by ID.

        Raises:
            AccountNotFound: If no such account exists
        """
        account = self.get(account_id)
        if account is None:
            raise AccountNotFound(f"No account {account_id}")
        return account

    def get_by_email(self, email: str) -> Optional[Account]:
        """Get an account by email (case-insensitive)."""
        with self._store.read() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE email = ? COLLATE NOCASE",
                (email.strip().lower(),),
            ).fetchone()
        return row_to_account(row) if row else None

    def list(self) -> List[Account]:
        """All accounts, oldest first."""
        with self._store.read() as conn:
            rows = conn.execute("SELECT * FROM accounts ORDER BY created_at, email").fetchall()
        return [row_to_account(row) for row in rows]

    def set_role(self, account_id: str, role: Role) -> None:
        """Change a role and invalidate outstanding tokens in one transaction."""
        with self._store.transaction() as conn:
            result = conn.execute("""
                UPDATE accounts
                SET role = ?, token_version = token_version + 1
                WHERE id = ?
            """, (role.value, account_id))
            if result.rowcount == 0:
                raise AccountNotFound(f"No account {account_id}")

    def delete(self, account_id: str) -> None:
        """
        Permanently delete an account row.

        Files must be purged first (foreign key). Audit rows keep the
        actor email by value and survive.
        """
        with self._store.transaction() as conn:
            result = conn.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
            if result.rowcount == 0:
                raise AccountNotFound(f"No account {account_id}")
