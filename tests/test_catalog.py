"""Tests for stored-file listing, retrieval and removal."""

from __future__ import annotations

import io
import uuid

import pytest

from scanvault.core.errors import AccessDenied, DecryptionFailed, FileBlocked, StorageUnavailable
from scanvault.core.file_ops.scanner import ScanVerdict
from scanvault.core.files.catalog import MalwareStatus, StoredFile
from scanvault.security.audit import AuditAction, AuditOutcome

from conftest import find_events


def _upload(vault, owner, data=b"hello vault", name="notes.txt"):
    return vault.ingest.ingest(owner, io.BytesIO(data), name, "text/plain").file


def _pending_row(vault, owner, clock):
    stored = StoredFile(
        id=str(uuid.uuid4()),
        owner_id=owner.id,
        original_name="limbo.bin",
        stored_name=f"{uuid.uuid4().hex}-limbo.bin",
        content_type="application/octet-stream",
        size=3,
        status=MalwareStatus.PENDING,
        engine_hits=0,
        created_at=clock(),
    )
    vault.catalog.insert(stored)
    return stored


class TestListing:
    def test_newest_first(self, vault, alice, clock):
        first = _upload(vault, alice, name="first.txt")
        clock.advance(minutes=1)
        second = _upload(vault, alice, name="second.txt")
        assert [f.id for f in vault.catalog.list(alice)] == [second.id, first.id]

    def test_same_timestamp_newest_inserted_first(self, vault, alice):
        # The frozen clock gives every upload the same created_at
        first = _upload(vault, alice, name="first.txt")
        second = _upload(vault, alice, name="second.txt")
        third = _upload(vault, alice, name="third.txt")
        assert first.created_at == third.created_at
        assert [f.id for f in vault.catalog.list(alice)] == [third.id, second.id, first.id]

    def test_only_own_files(self, vault, alice, bob):
        _upload(vault, alice)
        assert vault.catalog.list(bob) == []

    def test_public_dict_hides_storage_name(self, vault, alice):
        public = _upload(vault, alice).to_public_dict()
        assert "stored_name" not in public
        assert public["status"] == "safe"
        assert public["original_name"] == "notes.txt"


class TestRetrieval:
    def test_owner_reads_plaintext(self, vault, alice):
        stored = _upload(vault, alice, data=b"the original bytes")
        with vault.catalog.retrieve_for_read(alice, stored.id, origin="10.0.0.1") as plaintext:
            assert plaintext.read() == b"the original bytes"
            assert plaintext.filename == "notes.txt"
            assert plaintext.content_type == "text/plain"

        events = find_events(vault.audit.recent(), AuditAction.FILE_DOWNLOAD, AuditOutcome.SUCCESS)
        assert len(events) == 1

    def test_preview_is_audited_as_preview(self, vault, alice):
        stored = _upload(vault, alice)
        vault.catalog.retrieve_for_read(alice, stored.id, AuditAction.FILE_PREVIEW).close()
        assert find_events(vault.audit.recent(), AuditAction.FILE_PREVIEW, AuditOutcome.SUCCESS)

    def test_non_read_action_rejected(self, vault, alice):
        stored = _upload(vault, alice)
        with pytest.raises(ValueError):
            vault.catalog.retrieve_for_read(alice, stored.id, AuditAction.FILE_DELETE)

    def test_foreign_and_unknown_ids_look_the_same(self, vault, alice, bob):
        stored = _upload(vault, alice)

        with pytest.raises(AccessDenied) as foreign:
            vault.catalog.retrieve_for_read(bob, stored.id)
        with pytest.raises(AccessDenied) as unknown:
            vault.catalog.retrieve_for_read(bob, "no-such-file")

        assert foreign.value.public_message == unknown.value.public_message
        assert foreign.value.http_status == unknown.value.http_status
        assert len(find_events(vault.audit.recent(), AuditAction.FILE_DOWNLOAD, AuditOutcome.FAILED)) == 2

    def test_malicious_file_blocked(self, vault, alice, scanner):
        scanner.verdict = ScanVerdict(safe=False, engine_hits=3)
        vault.ingest.ingest(alice, io.BytesIO(b"EICAR"), "eicar.com")
        (stored,) = vault.catalog.list(alice)

        with pytest.raises(FileBlocked):
            vault.catalog.retrieve_for_read(alice, stored.id)
        assert find_events(vault.audit.recent(), AuditAction.FILE_DOWNLOAD, AuditOutcome.BLOCKED)

    def test_pending_file_blocked(self, vault, alice, clock):
        stored = _pending_row(vault, alice, clock)
        with pytest.raises(FileBlocked):
            vault.catalog.retrieve_for_read(alice, stored.id)

    def test_corrupt_ciphertext(self, vault, alice):
        stored = _upload(vault, alice)
        path = vault.catalog.path_for(stored)
        blob = bytearray(path.read_bytes())
        blob[15] ^= 0x01
        path.write_bytes(bytes(blob))

        with pytest.raises(DecryptionFailed):
            vault.catalog.retrieve_for_read(alice, stored.id)
        assert find_events(vault.audit.recent(), AuditAction.FILE_DOWNLOAD, AuditOutcome.ERROR)

    def test_missing_ciphertext(self, vault, alice):
        stored = _upload(vault, alice)
        vault.catalog.path_for(stored).unlink()
        with pytest.raises(StorageUnavailable):
            vault.catalog.retrieve_for_read(alice, stored.id)


class TestRemoval:
    def test_remove_deletes_row_and_bytes(self, vault, alice):
        stored = _upload(vault, alice)
        path = vault.catalog.path_for(stored)

        vault.catalog.remove(alice, stored.id)

        assert not path.exists()
        assert vault.catalog.list(alice) == []
        assert find_events(vault.audit.recent(), AuditAction.FILE_DELETE, AuditOutcome.SUCCESS)

    def test_remove_foreign_file_denied(self, vault, alice, bob):
        stored = _upload(vault, alice)
        before = len(vault.audit.recent())
        with pytest.raises(AccessDenied):
            vault.catalog.remove(bob, stored.id, origin="10.0.0.2")
        assert vault.catalog.path_for(stored).exists()

        events = vault.audit.recent()
        assert len(events) == before + 1
        (failed,) = find_events(events, AuditAction.FILE_DELETE, AuditOutcome.FAILED)
        assert failed.actor_email == "bob@example.com"
        assert failed.origin == "10.0.0.2"

    def test_remove_unknown_id_audited(self, vault, alice):
        with pytest.raises(AccessDenied):
            vault.catalog.remove(alice, str(uuid.uuid4()))
        assert len(find_events(vault.audit.recent(), AuditAction.FILE_DELETE, AuditOutcome.FAILED)) == 1

    def test_remove_quarantined_file(self, vault, alice, scanner):
        scanner.verdict = ScanVerdict(safe=False, engine_hits=1)
        vault.ingest.ingest(alice, io.BytesIO(b"bad"), "bad.exe")
        (stored,) = vault.catalog.list(alice)
        path = vault.catalog.path_for(stored)
        assert path.exists()

        vault.catalog.remove(alice, stored.id)
        assert not path.exists()

    def test_recover_interrupted_deletion(self, vault, alice):
        stored = _upload(vault, alice)
        with vault.store.transaction() as conn:
            conn.execute("UPDATE stored_files SET pending_delete = 1 WHERE id = ?", (stored.id,))

        # Marked rows are already invisible
        assert vault.catalog.list(alice) == []
        with pytest.raises(AccessDenied):
            vault.catalog.resolve(alice, stored.id)

        assert vault.catalog.recover_interrupted_deletions() == 1
        assert not vault.catalog.path_for(stored).exists()
        assert vault.catalog.recover_interrupted_deletions() == 0

    def test_recover_when_bytes_already_gone(self, vault, alice):
        stored = _upload(vault, alice)
        vault.catalog.path_for(stored).unlink()
        with vault.store.transaction() as conn:
            conn.execute("UPDATE stored_files SET pending_delete = 1 WHERE id = ?", (stored.id,))
        assert vault.catalog.recover_interrupted_deletions() == 1

    def test_purge_owner(self, vault, alice, bob):
        mine = [_upload(vault, alice, name=f"{i}.txt") for i in range(3)]
        theirs = _upload(vault, bob)

        assert vault.catalog.purge_owner(alice.id) == 3
        assert vault.catalog.list(alice) == []
        assert all(not vault.catalog.path_for(f).exists() for f in mine)
        assert [f.id for f in vault.catalog.list(bob)] == [theirs.id]


class TestMaliciousListing:
    def test_includes_owner_email(self, vault, alice, bob, scanner):
        _upload(vault, bob)
        scanner.verdict = ScanVerdict(safe=False, engine_hits=9)
        vault.ingest.ingest(alice, io.BytesIO(b"bad"), "trojan.exe")

        (entry,) = vault.catalog.list_malicious()
        assert entry["owner_email"] == "alice@example.com"
        assert entry["engine_hits"] == 9
        assert entry["status"] == "malicious"
        assert "stored_name" not in entry

    def test_same_timestamp_newest_inserted_first(self, vault, alice, scanner):
        scanner.verdict = ScanVerdict(safe=False, engine_hits=1)
        vault.ingest.ingest(alice, io.BytesIO(b"bad"), "one.exe")
        vault.ingest.ingest(alice, io.BytesIO(b"worse"), "two.exe")

        names = [entry["original_name"] for entry in vault.catalog.list_malicious()]
        assert names == ["two.exe", "one.exe"]
