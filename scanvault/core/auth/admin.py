"""
Account Administration
======================

Role-gated operations an administrator performs on other accounts.

Rules:
- The caller must hold the ADMIN role
- An administrator can never target their own account
- Unknown targets raise AccountNotFound
- Every action is audited under the administrator's email
"""

from __future__ import annotations

import logging
from typing import List, Optional

from scanvault.core.auth.accounts import Account, AccountDirectory, Role
from scanvault.core.auth.lock_state import AuthLockState
from scanvault.core.auth.tokens import TokenService
from scanvault.core.errors import AccessDenied, SelfActionForbidden
from scanvault.core.files.catalog import VaultCatalog
from scanvault.security.audit import AuditAction, AuditBus, AuditOutcome


logger = logging.getLogger(__name__)


class AccountAdministration:
    """
    Administrator actions over the account directory.

    Usage:
        admin = AccountAdministration(directory, auth, tokens, catalog, audit)
        admin.lock(admin_account, target_id, origin="10.0.0.1")
    """

    __slots__ = ("_directory", "_auth", "_tokens", "_catalog", "_audit")

    def __init__(
        self,
        directory: AccountDirectory,
        auth: AuthLockState,
        tokens: TokenService,
        catalog: VaultCatalog,
        audit: AuditBus,
    ) -> None:
        self._directory = directory
        self._auth = auth
        self._tokens = tokens
        self._catalog = catalog
        self._audit = audit

    @staticmethod
    def _require_admin(actor: Account) -> None:
        if not actor.is_admin:
            raise AccessDenied(f"{actor.id} is not an administrator")

    def _target(self, actor: Account, target_id: str) -> Account:
        self._require_admin(actor)
        if target_id == actor.id:
            logger.warning("Administrator %s attempted an action on own account", actor.id)
            raise SelfActionForbidden(f"Self-targeted action by {actor.id}")
        return self._directory.require(target_id)

    def list_accounts(self, actor: Account) -> List[Account]:
        self._require_admin(actor)
        return self._directory.list()

    def lock(self, actor: Account, target_id: str, origin: Optional[str] = None) -> Account:
        target = self._target(actor, target_id)
        account = self._auth.lock(target.id)
        self._audit.record(actor.email, AuditAction.ADMIN_LOCK, AuditOutcome.SUCCESS, origin, f"target={target.email}")
        return account

    def unlock(self, actor: Account, target_id: str, origin: Optional[str] = None) -> Account:
        target = self._target(actor, target_id)
        account = self._auth.unlock(target.id)
        self._audit.record(actor.email, AuditAction.ADMIN_UNLOCK, AuditOutcome.SUCCESS, origin, f"target={target.email}")
        return account

    def promote(self, actor: Account, target_id: str, origin: Optional[str] = None) -> Account:
        return self._change_role(actor, target_id, Role.ADMIN, origin)

    def demote(self, actor: Account, target_id: str, origin: Optional[str] = None) -> Account:
        return self._change_role(actor, target_id, Role.USER, origin)

    def _change_role(self, actor: Account, target_id: str, role: Role, origin: Optional[str]) -> Account:
        target = self._target(actor, target_id)
        self._directory.set_role(target.id, role)
        self._audit.record(
            actor.email, AuditAction.ROLE_CHANGE, AuditOutcome.SUCCESS, origin,
            f"target={target.email} role={role.value}",
        )
        return self._directory.require(target.id)

    def force_logout(self, actor: Account, target_id: str, origin: Optional[str] = None) -> int:
        """Invalidate all of the target's tokens. Returns the new token version."""
        target = self._target(actor, target_id)
        version = self._tokens.revoke_all(target.id)
        self._audit.record(actor.email, AuditAction.FORCE_LOGOUT, AuditOutcome.SUCCESS, origin, f"target={target.email}")
        return version

    def delete(self, actor: Account, target_id: str, origin: Optional[str] = None) -> None:
        """
        Delete an account and every file it owns.

        Audit history naming the account is retained.
        """
        target = self._target(actor, target_id)
        removed = self._catalog.purge_owner(target.id)
        self._directory.delete(target.id)
        logger.info("Account %s deleted with %d file(s)", target.id, removed)
        self._audit.record(
            actor.email, AuditAction.ACCOUNT_DELETE, AuditOutcome.SUCCESS, origin,
            f"target={target.email} files={removed}",
        )
