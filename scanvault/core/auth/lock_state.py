"""
Authentication Lock State
=========================

Login state machine with brute-force and administrator locks.

States:
    ACTIVE --(N consecutive failures)--> BRUTE_FORCE_LOCKED
    BRUTE_FORCE_LOCKED --(cooldown elapsed, next attempt)--> ACTIVE
    ACTIVE | BRUTE_FORCE_LOCKED --(administrator)--> ADMIN_LOCKED
    any locked --(administrator)--> ACTIVE

An administrator lock never expires on its own. Expected rejections are
returned as AuthResult values; only infrastructure failures raise.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum, auto
from typing import Optional

from scanvault.core.auth.accounts import Account, LockState, fetch_account, row_to_account
from scanvault.core.auth.argon2_auth import Argon2Hasher
from scanvault.core.errors import AccountNotFound, StorageUnavailable
from scanvault.db.store import VaultStore
from scanvault.security.audit import AuditAction, AuditBus, AuditOutcome
from scanvault.security.constants import LOCKOUT_COOLDOWN_SECONDS, MAX_FAILED_ATTEMPTS
from scanvault.utils.clock import Clock, to_iso, utc_now


logger = logging.getLogger(__name__)


class AuthOutcome(Enum):
    AUTHENTICATED = auto()
    INVALID_CREDENTIALS = auto()
    LOCKED_ADMIN = auto()
    LOCKED_BRUTE_FORCE = auto()


@dataclass(frozen=True)
class AuthResult:
    outcome: AuthOutcome
    account: Optional[Account] = None

    @property
    def authenticated(self) -> bool:
        return self.outcome is AuthOutcome.AUTHENTICATED


class AuthLockState:
    """
    Credential check plus lock bookkeeping.

    Every read-modify-write on an account's counters runs inside one
    BEGIN IMMEDIATE transaction, so concurrent failed attempts are
    counted exactly once each.

    Usage:
        auth = AuthLockState(store, hasher, audit)
        result = auth.authenticate("alice@example.com", "Str0ng!pw", "10.0.0.1")
        if result.outcome is AuthOutcome.LOCKED_BRUTE_FORCE:
            ...
    """

    __slots__ = ("_store", "_hasher", "_audit", "_max_attempts", "_cooldown", "_clock")

    def __init__(
        self,
        store: VaultStore,
        hasher: Argon2Hasher,
        audit: AuditBus,
        max_attempts: int = MAX_FAILED_ATTEMPTS,
        cooldown_seconds: int = LOCKOUT_COOLDOWN_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._audit = audit
        self._max_attempts = max_attempts
        self._cooldown = timedelta(seconds=cooldown_seconds)
        self._clock = clock

    def authenticate(self, email: str, password: str, origin: Optional[str] = None) -> AuthResult:
        """
        Check credentials, honouring and updating the lock state.

        Raises:
            StorageUnavailable: If the store cannot be read or written
        """
        email = email.strip().lower() if isinstance(email, str) else ""
        password = password if isinstance(password, str) else ""
        try:
            return self._authenticate(email, password, origin)
        except StorageUnavailable:
            logger.error("Login for %s aborted: store unavailable", email)
            try:
                self._audit.record(email, AuditAction.LOGIN, AuditOutcome.ERROR, origin, "store unavailable")
            except StorageUnavailable:
                logger.error("Could not audit failed login attempt for %s", email)
            raise

    def _authenticate(self, email: str, password: str, origin: Optional[str]) -> AuthResult:
        now = self._clock()

        # Phase 1: lock pre-check, auto-unlocking an expired brute-force lock
        auto_unlocked = False
        with self._store.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE email = ? COLLATE NOCASE", (email,)
            ).fetchone()
            account = row_to_account(row) if row else None
            if account is not None and self._cooldown_elapsed(account, now):
                self._reset(conn, account.id)
                account.lock_state = LockState.ACTIVE
                account.failed_attempts = 0
                account.locked_at = None
                auto_unlocked = True

        if auto_unlocked:
            logger.info("Brute-force lock expired for account %s", account.id)
            self._audit.record(email, AuditAction.ACCOUNT_AUTO_UNLOCK, AuditOutcome.SUCCESS, origin)

        if account is None:
            self._hasher.verify_dummy(password)
            return self._reject(email, origin, AuthOutcome.INVALID_CREDENTIALS, "unknown account")

        if account.lock_state is LockState.ADMIN_LOCKED:
            return self._reject(email, origin, AuthOutcome.LOCKED_ADMIN, "admin lock", account)
        if account.lock_state is LockState.BRUTE_FORCE_LOCKED:
            return self._reject(email, origin, AuthOutcome.LOCKED_BRUTE_FORCE, "brute-force lock", account)

        # Phase 2: slow hash outside any transaction
        password_ok = self._hasher.verify(password, account.password_hash)

        # Phase 3: apply against the current row
        tripped = False
        with self._store.transaction() as conn:
            current = fetch_account(conn, account.id)
            if current is None:
                outcome = AuthOutcome.INVALID_CREDENTIALS
            elif current.lock_state is LockState.ADMIN_LOCKED:
                outcome = AuthOutcome.LOCKED_ADMIN
            elif current.lock_state is LockState.BRUTE_FORCE_LOCKED:
                outcome = AuthOutcome.LOCKED_BRUTE_FORCE
            elif password_ok:
                conn.execute("UPDATE accounts SET failed_attempts = 0 WHERE id = ?", (current.id,))
                current.failed_attempts = 0
                outcome = AuthOutcome.AUTHENTICATED
            else:
                attempts = current.failed_attempts + 1
                if attempts >= self._max_attempts:
                    conn.execute("""
                        UPDATE accounts
                        SET failed_attempts = ?, lock_state = ?, locked_at = ?
                        WHERE id = ?
                    """, (attempts, LockState.BRUTE_FORCE_LOCKED.value, to_iso(now), current.id))
                    current.lock_state = LockState.BRUTE_FORCE_LOCKED
                    current.locked_at = now
                    tripped = True
                    outcome = AuthOutcome.LOCKED_BRUTE_FORCE
                else:
                    conn.execute(
                        "UPDATE accounts SET failed_attempts = ? WHERE id = ?",
                        (attempts, current.id),
                    )
                    outcome = AuthOutcome.INVALID_CREDENTIALS
                current.failed_attempts = attempts

        if outcome is AuthOutcome.AUTHENTICATED:
            self._audit.record(email, AuditAction.LOGIN, AuditOutcome.SUCCESS, origin)
            return AuthResult(outcome, current)

        if tripped:
            logger.warning("Account %s locked after %d failed attempts", current.id, current.failed_attempts)
            self._audit.record(
                email, AuditAction.ACCOUNT_LOCK, AuditOutcome.LOCKED, origin,
                f"{current.failed_attempts} consecutive failed attempts",
            )
            return AuthResult(outcome, current)

        if outcome is AuthOutcome.LOCKED_ADMIN:
            return self._reject(email, origin, outcome, "admin lock", current)
        if outcome is AuthOutcome.LOCKED_BRUTE_FORCE:
            return self._reject(email, origin, outcome, "brute-force lock", current)
        return self._reject(email, origin, outcome, "bad password", current)

    def _reject(
        self,
        email: str,
        origin: Optional[str],
        outcome: AuthOutcome,
        detail: str,
        account: Optional[Account] = None,
    ) -> AuthResult:
        status = AuditOutcome.FAILED if outcome is AuthOutcome.INVALID_CREDENTIALS else AuditOutcome.LOCKED
        self._audit.record(email, AuditAction.LOGIN, status, origin, detail)
        return AuthResult(outcome, account)

    def _cooldown_elapsed(self, account: Account, now: datetime) -> bool:
        if account.lock_state is not LockState.BRUTE_FORCE_LOCKED:
            return False
        if account.locked_at is None:
            return True
        return now - account.locked_at >= self._cooldown

    @staticmethod
    def _reset(conn: sqlite3.Connection, account_id: str) -> None:
        conn.execute("""
            UPDATE accounts
            SET lock_state = ?, failed_attempts = 0, locked_at = NULL
            WHERE id = ?
        """, (LockState.ACTIVE.value, account_id))

    def lock(self, account_id: str) -> Account:
        """
        Administrator lock. Also invalidates every outstanding token.

        Raises:
            AccountNotFound: If no such account exists
        """
        now = self._clock()
        with self._store.transaction() as conn:
            account = fetch_account(conn, account_id)
            if account is None:
                raise AccountNotFound(f"No account {account_id}")
            conn.execute("""
                UPDATE accounts
                SET lock_state = ?, locked_at = ?, token_version = token_version + 1
                WHERE id = ?
            """, (LockState.ADMIN_LOCKED.value, to_iso(now), account_id))
            account.lock_state = LockState.ADMIN_LOCKED
            account.locked_at = now
            account.token_version += 1
        return account

    def unlock(self, account_id: str) -> Account:
        """
        Administrator unlock from either lock state.

        Raises:
            AccountNotFound: If no such account exists
        """
        with self._store.transaction() as conn:
            account = fetch_account(conn, account_id)
            if account is None:
                raise AccountNotFound(f"No account {account_id}")
            self._reset(conn, account_id)
            account.lock_state = LockState.ACTIVE
            account.failed_attempts = 0
            account.locked_at = None
        return account
