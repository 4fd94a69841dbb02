"""
Upload Ingest Pipeline
======================

Every upload passes through the same stages:

    0. spool      client stream -> private staging file (size-capped)
    1. scan       staging file -> external scanner, under a timeout
    2. malicious  staging file sealed into quarantine, row MALICIOUS
    3. safe       staging file sealed into the vault, row SAFE

A row is written only after its bytes are durably in place, and the
staging file is removed on every exit path. A scan that fails or times
out refuses the upload; it is never treated as clean.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import BinaryIO, Optional

from scanvault.core.auth.accounts import Account
from scanvault.core.crypto.envelope import CryptoEnvelope
from scanvault.core.errors import (
    AccessDenied,
    OperationTimeout,
    ScanFailed,
    StorageUnavailable,
    ValidationError,
)
from scanvault.core.file_ops.scanner import ScanRunner
from scanvault.core.file_ops.secure_delete import remove_quietly, secure_delete
from scanvault.core.files.catalog import MalwareStatus, StoredFile, VaultCatalog
from scanvault.security.audit import AuditAction, AuditBus, AuditOutcome
from scanvault.security.constants import MAX_UPLOAD_BYTES, STREAM_CHUNK_BYTES
from scanvault.utils.clock import Clock, utc_now
from scanvault.utils.paths import generate_storage_name, resolve_within


logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class IngestOutcome(Enum):
    ACCEPTED = auto()
    BLOCKED = auto()


@dataclass(frozen=True)
class IngestResult:
    """ACCEPTED carries the stored file; BLOCKED carries only the hit count."""
    outcome: IngestOutcome
    file: Optional[StoredFile] = None
    engine_hits: int = 0

    @classmethod
    def accepted(cls, stored: StoredFile) -> IngestResult:
        return cls(IngestOutcome.ACCEPTED, stored, 0)

    @classmethod
    def blocked(cls, engine_hits: int) -> IngestResult:
        return cls(IngestOutcome.BLOCKED, None, engine_hits)


class IngestPipeline:
    """
    Scan-then-store for uploads.

    Usage:
        pipeline = IngestPipeline(catalog, envelope, runner, audit, paths)
        result = pipeline.ingest(account, upload.stream, upload.filename,
                                 upload.mimetype, origin=request.remote_addr)
        if result.outcome is IngestOutcome.BLOCKED:
            ...
    """

    __slots__ = (
        "_catalog", "_envelope", "_scanner", "_audit",
        "_staging_dir", "_vault_dir", "_quarantine_dir",
        "_max_upload_bytes", "_clock",
    )

    def __init__(
        self,
        catalog: VaultCatalog,
        envelope: CryptoEnvelope,
        scanner: ScanRunner,
        audit: AuditBus,
        staging_dir: Path,
        vault_dir: Path,
        quarantine_dir: Path,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        clock: Clock = utc_now,
    ) -> None:
        self._catalog = catalog
        self._envelope = envelope
        self._scanner = scanner
        self._audit = audit
        self._staging_dir = Path(staging_dir)
        self._vault_dir = Path(vault_dir)
        self._quarantine_dir = Path(quarantine_dir)
        self._max_upload_bytes = max_upload_bytes
        self._clock = clock

    def ingest(
        self,
        owner: Account,
        stream: BinaryIO,
        filename: Optional[str],
        content_type: Optional[str] = None,
        declared_size: Optional[int] = None,
        origin: Optional[str] = None,
    ) -> IngestResult:
        """
        Run an upload through the pipeline.

        Raises:
            AccessDenied: The owner is an administrator
            ValidationError: Missing name or oversized upload
            ScanFailed: The scanner raised or is not configured
            OperationTimeout: Scan or encryption ran out of time
            StorageUnavailable: Bytes or row could not be written
        """
        if owner.is_admin:
            self._audit.record(owner.email, AuditAction.FILE_UPLOAD, AuditOutcome.BLOCKED, origin, "administrator upload")
            raise AccessDenied("Admins are not allowed to upload files.")

        if not filename or not filename.strip():
            self._audit.record(owner.email, AuditAction.FILE_UPLOAD, AuditOutcome.FAILED, origin, "no file name")
            raise ValidationError("No file uploaded")
        if declared_size is not None and declared_size > self._max_upload_bytes:
            self._audit.record(owner.email, AuditAction.FILE_UPLOAD, AuditOutcome.FAILED, origin, "over size limit")
            raise ValidationError(f"File exceeds the {self._max_upload_bytes} byte limit")
        content_type = content_type or DEFAULT_CONTENT_TYPE

        staged = self._staging_dir / f"{uuid.uuid4().hex}.upload"
        try:
            try:
                size = self._spool(stream, staged)
            except ValidationError:
                self._audit.record(owner.email, AuditAction.FILE_UPLOAD, AuditOutcome.FAILED, origin, "over size limit")
                raise
            except StorageUnavailable:
                self._audit.record(owner.email, AuditAction.FILE_UPLOAD, AuditOutcome.ERROR, origin, "staging failed")
                raise

            try:
                verdict = self._scanner.scan(staged, filename)
            except (ScanFailed, OperationTimeout) as e:
                self._audit.record(owner.email, AuditAction.FILE_UPLOAD, AuditOutcome.ERROR, origin, f"scan: {e.detail}")
                raise

            stored = StoredFile(
                id=str(uuid.uuid4()),
                owner_id=owner.id,
                original_name=filename,
                stored_name=generate_storage_name(filename, self._clock()),
                content_type=content_type,
                size=size,
                status=MalwareStatus.SAFE if verdict.safe else MalwareStatus.MALICIOUS,
                engine_hits=verdict.engine_hits,
                created_at=self._clock(),
            )

            if verdict.safe:
                self._place(owner, staged, stored, self._vault_dir, origin)
                logger.info("Upload %s stored (%d bytes)", stored.id, stored.size)
                self._audit.record(owner.email, AuditAction.FILE_UPLOAD, AuditOutcome.SUCCESS, origin, f"file={stored.id}")
                return IngestResult.accepted(stored)

            self._place(owner, staged, stored, self._quarantine_dir, origin)
            logger.warning("Upload %s quarantined: %d engine hit(s)", stored.id, stored.engine_hits)
            self._audit.record(
                owner.email, AuditAction.MALWARE_DETECTED, AuditOutcome.BLOCKED, origin,
                f"file={stored.id} engine_hits={stored.engine_hits}",
            )
            return IngestResult.blocked(stored.engine_hits)
        finally:
            self._discard_staged(staged)

    def _spool(self, stream: BinaryIO, staged: Path) -> int:
        total = 0
        try:
            with open(staged, "xb") as out:
                while True:
                    chunk = stream.read(STREAM_CHUNK_BYTES)
                    if not chunk:
                        break
                    total += len(chunk)
                    if total > self._max_upload_bytes:
                        raise ValidationError(f"File exceeds the {self._max_upload_bytes} byte limit")
                    out.write(chunk)
        except OSError as e:
            logger.error("Cannot stage upload: %s", e)
            raise StorageUnavailable(f"Staging failed: {e}") from e
        return total

    def _place(self, owner: Account, staged: Path, stored: StoredFile, directory: Path, origin: Optional[str]) -> None:
        """Seal the staged bytes into directory, then write the row."""
        dest = resolve_within(directory, stored.stored_name)
        try:
            self._envelope.seal_file(staged, dest)
        except OperationTimeout as e:
            self._audit.record(owner.email, AuditAction.FILE_UPLOAD, AuditOutcome.ERROR, origin, f"encrypt: {e.detail}")
            raise
        except StorageUnavailable:
            self._audit.record(owner.email, AuditAction.FILE_UPLOAD, AuditOutcome.ERROR, origin, "encrypt: write failed")
            raise

        try:
            self._catalog.insert(stored)
        except StorageUnavailable:
            remove_quietly(dest)
            logger.error("File record for upload %s not written", stored.id)
            self._audit.record(owner.email, AuditAction.FILE_UPLOAD, AuditOutcome.ERROR, origin, "record failed")
            raise

    @staticmethod
    def _discard_staged(staged: Path) -> None:
        try:
            secure_delete(staged)
        except StorageUnavailable as e:
            logger.error("Staged upload %s left behind: %s", staged.name, e.detail)
