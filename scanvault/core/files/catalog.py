"""
Vault Catalog
=============

Tracks stored files and their metadata, and mediates every read and
removal of their bytes.

Access Rules:
- A file is visible only to its owner
- An unknown id and another owner's id produce the same AccessDenied
- Only SAFE files can be decrypted; MALICIOUS and PENDING are blocked
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from scanvault.core.auth.accounts import Account
from scanvault.core.crypto.envelope import CryptoEnvelope
from scanvault.core.errors import (
    AccessDenied,
    DecryptionFailed,
    FileBlocked,
    OperationTimeout,
    StorageUnavailable,
)
from scanvault.core.file_ops.secure_delete import secure_delete
from scanvault.core.file_ops.secure_view import PlaintextStream
from scanvault.db.store import StoreIntegrityError, VaultStore
from scanvault.security.audit import AuditAction, AuditBus, AuditOutcome
from scanvault.utils.clock import from_iso, to_iso
from scanvault.utils.paths import resolve_within


logger = logging.getLogger(__name__)


class MalwareStatus(Enum):
    PENDING = "pending"
    SAFE = "safe"
    MALICIOUS = "malicious"


@dataclass
class StoredFile:
    id: str
    owner_id: str
    original_name: str
    stored_name: str
    content_type: str
    size: int
    status: MalwareStatus
    engine_hits: int
    created_at: datetime

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "content_type": self.content_type,
            "size": self.size,
            "status": self.status.value,
            "engine_hits": self.engine_hits,
            "created_at": to_iso(self.created_at),
        }


def _row_to_file(row: sqlite3.Row) -> StoredFile:
    return StoredFile(
        id=row["id"],
        owner_id=row["owner_id"],
        original_name=row["original_name"],
        stored_name=row["stored_name"],
        content_type=row["content_type"],
        size=row["size"],
        status=MalwareStatus(row["status"]),
        engine_hits=row["engine_hits"],
        created_at=from_iso(row["created_at"]),
    )


class VaultCatalog:
    """
    Stored-file records plus their on-disk bytes.

    Usage:
        catalog = VaultCatalog(store, envelope, audit, vault_dir, quarantine_dir)
        for stored in catalog.list(account):
            ...
        with catalog.retrieve_for_read(account, file_id, AuditAction.FILE_DOWNLOAD) as plaintext:
            data = plaintext.read()

    Removal is two-phase: the row is marked pending_delete, the bytes are
    removed, then the row is deleted. A crash between the phases leaves a
    marked row that recover_interrupted_deletions() completes.
    """

    __slots__ = ("_store", "_envelope", "_audit", "_vault_dir", "_quarantine_dir")

    def __init__(
        self,
        store: VaultStore,
        envelope: CryptoEnvelope,
        audit: AuditBus,
        vault_dir: Path,
        quarantine_dir: Path,
    ) -> None:
        self._store = store
        self._envelope = envelope
        self._audit = audit
        self._vault_dir = Path(vault_dir)
        self._quarantine_dir = Path(quarantine_dir)

    def insert(self, stored: StoredFile) -> None:
        """
        Persist a new record. Called only once the bytes are in place.

        Raises:
            StorageUnavailable: If the row could not be written
        """
        try:
            with self._store.transaction() as conn:
                conn.execute("""
                    INSERT INTO stored_files (
                        id, owner_id, original_name, stored_name, content_type,
                        size, status, engine_hits, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    stored.id, stored.owner_id, stored.original_name, stored.stored_name,
                    stored.content_type, stored.size, stored.status.value,
                    stored.engine_hits, to_iso(stored.created_at),
                ))
        except StoreIntegrityError as e:
            raise StorageUnavailable(f"File record rejected: {e}") from e

    def list(self, account: Account) -> List[StoredFile]:
        """All of an account's files, newest first."""
        with self._store.read() as conn:
            rows = conn.execute("""
                SELECT * FROM stored_files
                WHERE owner_id = ? AND pending_delete = 0
                ORDER BY created_at DESC, rowid DESC
            """, (account.id,)).fetchall()
        return [_row_to_file(row) for row in rows]

    def resolve(self, account: Account, file_id: str) -> StoredFile:
        """
        Raises:
            AccessDenied: Unknown id, or the file belongs to someone else
        """
        with self._store.read() as conn:
            row = conn.execute(
                "SELECT * FROM stored_files WHERE id = ? AND pending_delete = 0",
                (file_id,),
            ).fetchone()
        if row is None or row["owner_id"] != account.id:
            raise AccessDenied(f"File {file_id} not accessible to {account.id}")
        return _row_to_file(row)

    def path_for(self, stored: StoredFile) -> Path:
        """Where a file's bytes live: the vault for SAFE, quarantine otherwise."""
        if stored.status is MalwareStatus.SAFE:
            return resolve_within(self._vault_dir, stored.stored_name)
        return resolve_within(self._quarantine_dir, stored.stored_name)

    def retrieve_for_read(
        self,
        account: Account,
        file_id: str,
        action: AuditAction = AuditAction.FILE_DOWNLOAD,
        origin: Optional[str] = None,
    ) -> PlaintextStream:
        """
        Decrypt a SAFE file into a purge-on-close buffer.

        The caller owns the returned stream and must close it.

        Raises:
            AccessDenied: Not the owner, or unknown id
            FileBlocked: The file is MALICIOUS or PENDING
            DecryptionFailed: Ciphertext corrupt or keyed differently
            StorageUnavailable: Ciphertext missing or unreadable
            OperationTimeout: Decryption exceeded its deadline
        """
        if action not in (AuditAction.FILE_DOWNLOAD, AuditAction.FILE_PREVIEW):
            raise ValueError(f"Not a read action: {action}")

        try:
            stored = self.resolve(account, file_id)
        except AccessDenied:
            self._audit.record(account.email, action, AuditOutcome.FAILED, origin, "access denied")
            raise

        if stored.status is MalwareStatus.MALICIOUS:
            self._audit.record(account.email, action, AuditOutcome.BLOCKED, origin, f"file={stored.id} malicious")
            raise FileBlocked(f"File {stored.id} is quarantined")
        if stored.status is MalwareStatus.PENDING:
            self._audit.record(account.email, action, AuditOutcome.BLOCKED, origin, f"file={stored.id} pending")
            raise FileBlocked(f"File {stored.id} has no verdict")

        stream = PlaintextStream(stored.original_name, stored.content_type)
        try:
            with open(self.path_for(stored), "rb") as src:
                self._envelope.open(src, stream.sink)
            stream.seal()
        except (DecryptionFailed, OperationTimeout) as e:
            stream.close()
            logger.error("Decryption of file %s failed: %s", stored.id, e.detail)
            self._audit.record(account.email, action, AuditOutcome.ERROR, origin, f"file={stored.id}")
            raise
        except OSError as e:
            stream.close()
            logger.error("Ciphertext for file %s unreadable: %s", stored.id, e)
            self._audit.record(account.email, action, AuditOutcome.ERROR, origin, f"file={stored.id}")
            raise StorageUnavailable(f"Ciphertext for {stored.id} unreadable") from e

        self._audit.record(account.email, action, AuditOutcome.SUCCESS, origin, f"file={stored.id}")
        return stream

    def remove(self, account: Account, file_id: str, origin: Optional[str] = None) -> None:
        """
        Delete one of the account's files.

        Raises:
            AccessDenied: Not the owner, or unknown id
        """
        try:
            stored = self.resolve(account, file_id)
        except AccessDenied:
            self._audit.record(account.email, AuditAction.FILE_DELETE, AuditOutcome.FAILED, origin, "access denied")
            raise
        self._mark_pending(stored.id)
        self._finish_removal(stored)
        self._audit.record(account.email, AuditAction.FILE_DELETE, AuditOutcome.SUCCESS, origin, f"file={stored.id}")

    def purge_owner(self, owner_id: str) -> int:
        """Remove every file an account owns. Returns the number removed."""
        with self._store.transaction() as conn:
            conn.execute("UPDATE stored_files SET pending_delete = 1 WHERE owner_id = ?", (owner_id,))
            rows = conn.execute(
                "SELECT * FROM stored_files WHERE owner_id = ?", (owner_id,)
            ).fetchall()
        for row in rows:
            self._finish_removal(_row_to_file(row))
        return len(rows)

    def recover_interrupted_deletions(self) -> int:
        """Complete removals a crash left half done. Run at startup."""
        with self._store.read() as conn:
            rows = conn.execute("SELECT * FROM stored_files WHERE pending_delete = 1").fetchall()
        for row in rows:
            logger.warning("Completing interrupted deletion of file %s", row["id"])
            self._finish_removal(_row_to_file(row))
        return len(rows)

    def list_malicious(self) -> List[Dict[str, Any]]:
        """Quarantined files with their owner's email, newest first."""
        with self._store.read() as conn:
            rows = conn.execute("""
                SELECT f.*, a.email AS owner_email
                FROM stored_files f
                JOIN accounts a ON a.id = f.owner_id
                WHERE f.status = ? AND f.pending_delete = 0
                ORDER BY f.created_at DESC, f.rowid DESC
            """, (MalwareStatus.MALICIOUS.value,)).fetchall()
        return [
            {**_row_to_file(row).to_public_dict(), "owner_email": row["owner_email"]}
            for row in rows
        ]

    def _mark_pending(self, file_id: str) -> None:
        with self._store.transaction() as conn:
            conn.execute("UPDATE stored_files SET pending_delete = 1 WHERE id = ?", (file_id,))

    def _finish_removal(self, stored: StoredFile) -> None:
        removed = False
        # Ciphertext and quarantined bytes are not plaintext; no overwrite pass
        for directory in (self._vault_dir, self._quarantine_dir):
            if secure_delete(resolve_within(directory, stored.stored_name), passes=0):
                removed = True
        if not removed:
            logger.warning("Anomaly: no bytes found for file %s during removal", stored.id)

        with self._store.transaction() as conn:
            conn.execute("DELETE FROM stored_files WHERE id = ?", (stored.id,))
