"""Tests for administrator actions over accounts."""

from __future__ import annotations

import io

import pytest

from scanvault.core.auth.accounts import LockState, Role
from scanvault.core.auth.lock_state import AuthOutcome
from scanvault.core.errors import (
    AccessDenied,
    AccountNotFound,
    SelfActionForbidden,
    SessionInvalidated,
)
from scanvault.security.audit import AuditAction, AuditOutcome

from conftest import STRONG_PASSWORD, find_events


class TestGuards:
    def test_non_admin_refused(self, vault, alice, bob):
        with pytest.raises(AccessDenied):
            vault.admin.lock(alice, bob.id)
        with pytest.raises(AccessDenied):
            vault.admin.list_accounts(alice)

    @pytest.mark.parametrize("action", ["lock", "unlock", "promote", "demote", "force_logout", "delete"])
    def test_self_target_forbidden(self, vault, admin, action):
        with pytest.raises(SelfActionForbidden):
            getattr(vault.admin, action)(admin, admin.id)
        assert vault.accounts.require(admin.id).role is Role.ADMIN

    def test_unknown_target(self, vault, admin):
        with pytest.raises(AccountNotFound):
            vault.admin.lock(admin, "missing")


class TestActions:
    def test_list_accounts(self, vault, admin, alice, bob):
        emails = {a.email for a in vault.admin.list_accounts(admin)}
        assert emails == {"admin@example.com", "alice@example.com", "bob@example.com"}

    def test_lock_and_unlock(self, vault, admin, alice):
        token = vault.tokens.issue(alice)

        locked = vault.admin.lock(admin, alice.id, origin="10.0.0.9")
        assert locked.lock_state is LockState.ADMIN_LOCKED
        with pytest.raises(SessionInvalidated):
            vault.tokens.verify(token)
        assert vault.auth.authenticate("alice@example.com", STRONG_PASSWORD).outcome is AuthOutcome.LOCKED_ADMIN

        unlocked = vault.admin.unlock(admin, alice.id)
        assert unlocked.lock_state is LockState.ACTIVE
        assert vault.auth.authenticate("alice@example.com", STRONG_PASSWORD).authenticated

        events = vault.audit.recent()
        (lock_event,) = find_events(events, AuditAction.ADMIN_LOCK, AuditOutcome.SUCCESS)
        assert lock_event.actor_email == "admin@example.com"
        assert lock_event.detail == "target=alice@example.com"
        assert lock_event.origin == "10.0.0.9"
        assert find_events(events, AuditAction.ADMIN_UNLOCK, AuditOutcome.SUCCESS)

    def test_promote_and_demote(self, vault, admin, alice):
        token = vault.tokens.issue(alice)

        promoted = vault.admin.promote(admin, alice.id)
        assert promoted.role is Role.ADMIN
        with pytest.raises(SessionInvalidated):
            vault.tokens.verify(token)

        # The promoted account can now administer others but not itself
        with pytest.raises(SelfActionForbidden):
            vault.admin.demote(promoted, promoted.id)

        demoted = vault.admin.demote(admin, alice.id)
        assert demoted.role is Role.USER
        assert len(find_events(vault.audit.recent(), AuditAction.ROLE_CHANGE)) == 2

    def test_force_logout(self, vault, admin, alice):
        token = vault.tokens.issue(alice)
        version = vault.admin.force_logout(admin, alice.id)
        assert version == alice.token_version + 1
        with pytest.raises(SessionInvalidated):
            vault.tokens.verify(token)
        assert find_events(vault.audit.recent(), AuditAction.FORCE_LOGOUT, AuditOutcome.SUCCESS)

    def test_delete_removes_account_and_files_keeps_history(self, vault, admin, alice, bob):
        vault.ingest.ingest(alice, io.BytesIO(b"one"), "one.txt")
        kept = vault.ingest.ingest(bob, io.BytesIO(b"two"), "two.txt").file
        (stored,) = vault.catalog.list(alice)
        path = vault.catalog.path_for(stored)

        vault.admin.delete(admin, alice.id)

        assert vault.accounts.get(alice.id) is None
        assert not path.exists()
        assert [f.id for f in vault.catalog.list(bob)] == [kept.id]

        events = vault.audit.recent()
        (deletion,) = find_events(events, AuditAction.ACCOUNT_DELETE, AuditOutcome.SUCCESS)
        assert deletion.detail == "target=alice@example.com files=1"
        assert find_events(events, AuditAction.SIGNUP)
        assert any(e.actor_email == "alice@example.com" for e in events)

    def test_deleted_email_can_register_again(self, vault, admin, alice):
        vault.admin.delete(admin, alice.id)
        again = vault.accounts.create_account("alice@example.com", STRONG_PASSWORD)
        assert again.id != alice.id
