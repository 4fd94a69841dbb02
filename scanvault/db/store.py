"""
Authoritative Record Store
==========================

SQLite-backed store for accounts, stored files and audit events.

One VaultStore is constructed at process startup and passed to every
component that needs it. Each scope opens its own connection, so
concurrent requests never share a cursor.

Security Considerations:
- All statements use parameterized queries
- Write scopes use BEGIN IMMEDIATE: a read-modify-write inside one
  transaction cannot interleave with another writer
- Email uniqueness is enforced by the schema, not by pre-checks
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Final, Iterator

from scanvault.core.errors import StorageUnavailable


logger = logging.getLogger(__name__)


class StoreIntegrityError(Exception):
    """A schema constraint (uniqueness, foreign key) rejected a write."""


class VaultStore:
    """
    Connection factory and transaction scopes over one SQLite database.

    Usage:
        store = VaultStore(config.paths.database_path)
        store.initialize()

        with store.read() as conn:
            row = conn.execute("SELECT ...", (...,)).fetchone()

        with store.transaction() as conn:
            conn.execute("UPDATE ...", (...,))
    """

    __slots__ = ("_db_path", "_busy_timeout")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        email TEXT UNIQUE NOT NULL COLLATE NOCASE,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'user',
        lock_state TEXT NOT NULL DEFAULT 'active',
        failed_attempts INTEGER NOT NULL DEFAULT 0,
        locked_at TEXT,
        token_version INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS stored_files (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        original_name TEXT NOT NULL,
        stored_name TEXT UNIQUE NOT NULL,
        content_type TEXT NOT NULL,
        size INTEGER NOT NULL,
        status TEXT NOT NULL,
        engine_hits INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        pending_delete INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY (owner_id) REFERENCES accounts(id)
    );

    CREATE INDEX IF NOT EXISTS idx_files_owner ON stored_files(owner_id, created_at);
    CREATE INDEX IF NOT EXISTS idx_files_status ON stored_files(status);

    CREATE TABLE IF NOT EXISTS audit_events (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT UNIQUE NOT NULL,
        actor_email TEXT,
        action TEXT NOT NULL,
        outcome TEXT NOT NULL,
        origin TEXT,
        detail TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        previous_hash TEXT NOT NULL,
        event_hash TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_events(action, outcome, created_at);
    CREATE INDEX IF NOT EXISTS idx_audit_created ON audit_events(created_at);
    """

    def __init__(self, db_path: Path | str, busy_timeout: float = 10.0) -> None:
        """
        Args:
            db_path: Path to the SQLite database file
            busy_timeout: Seconds a writer waits for the database lock
        """
        self._db_path = Path(db_path)
        self._busy_timeout = busy_timeout

    @property
    def path(self) -> Path:
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        """Open a connection in autocommit mode; scopes manage transactions."""
        try:
            conn = sqlite3.connect(
                self._db_path,
                timeout=self._busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            logger.error("Cannot open store at %s: %s", self._db_path, e)
            raise StorageUnavailable(str(e)) from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the schema if it does not exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._get_connection()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(self._SCHEMA)
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Schema initialization failed: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Connection scope for queries."""
        conn = self._get_connection()
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error("Store read failed: %s", e)
            raise StorageUnavailable(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Write scope: BEGIN IMMEDIATE, commit on success, rollback on error.

        Raises:
            StoreIntegrityError: If a constraint rejected a statement
            StorageUnavailable: On any other database error
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            conn.close()
            logger.error("Cannot begin transaction: %s", e)
            raise StorageUnavailable(str(e)) from e

        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.IntegrityError as e:
            self._rollback_quietly(conn)
            raise StoreIntegrityError(str(e)) from e
        except sqlite3.Error as e:
            self._rollback_quietly(conn)
            logger.error("Store transaction failed: %s", e)
            raise StorageUnavailable(str(e)) from e
        except BaseException:
            self._rollback_quietly(conn)
            raise
        finally:
            conn.close()

    @staticmethod
    def _rollback_quietly(conn: sqlite3.Connection) -> None:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            # Nothing to roll back once SQLite has aborted the transaction itself
            logger.debug("Rollback skipped: %s", e)
