"""Tests for bearer token issuance and version-based invalidation."""

from __future__ import annotations

import jwt
import pytest

from scanvault.core.auth.accounts import Role
from scanvault.core.auth.tokens import TokenService
from scanvault.core.errors import (
    ConfigurationError,
    InvalidToken,
    SessionInvalidated,
    Unauthenticated,
)


class TestIssueAndVerify:
    def test_round_trip(self, vault, alice):
        token = vault.tokens.issue(alice)
        account = vault.tokens.verify(token)
        assert account.id == alice.id

    def test_claims(self, vault, alice, secrets):
        token = vault.tokens.issue(alice)
        claims = jwt.decode(
            token, secrets.token_secret, algorithms=["HS256"],
            options={"verify_exp": False, "verify_iat": False},
        )
        assert claims["sub"] == alice.id
        assert claims["email"] == "alice@example.com"
        assert claims["role"] == "user"
        assert claims["tv"] == 0
        assert claims["exp"] - claims["iat"] == 3600

    def test_expired_token(self, vault, alice, clock):
        token = vault.tokens.issue(alice)
        clock.advance(hours=1)
        with pytest.raises(InvalidToken):
            vault.tokens.verify(token)

    def test_foreign_signature(self, vault, alice, store_clock_service):
        forged = store_clock_service("another-secret").issue(alice)
        with pytest.raises(InvalidToken):
            vault.tokens.verify(forged)

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_malformed(self, vault, token):
        with pytest.raises(InvalidToken):
            vault.tokens.verify(token)

    def test_empty_secret_refused(self, vault):
        with pytest.raises(ConfigurationError):
            TokenService(vault.store, "")

    def test_repr_hides_secret(self, vault, secrets):
        assert secrets.token_secret not in repr(vault.tokens)


@pytest.fixture
def store_clock_service(vault, clock):
    def _service(secret: str) -> TokenService:
        return TokenService(vault.store, secret, clock=clock)
    return _service


class TestInvalidation:
    def test_revoke_all_invalidates_outstanding_tokens(self, vault, alice):
        old = vault.tokens.issue(alice)
        assert vault.tokens.revoke_all(alice.id) == 1

        with pytest.raises(SessionInvalidated):
            vault.tokens.verify(old)

        fresh = vault.tokens.issue(vault.accounts.require(alice.id))
        assert vault.tokens.verify(fresh).id == alice.id

    def test_role_change_invalidates(self, vault, alice):
        token = vault.tokens.issue(alice)
        vault.accounts.set_role(alice.id, Role.ADMIN)
        with pytest.raises(SessionInvalidated):
            vault.tokens.verify(token)

    def test_deleted_account(self, vault, alice):
        token = vault.tokens.issue(alice)
        vault.accounts.delete(alice.id)
        with pytest.raises(Unauthenticated):
            vault.tokens.verify(token)

    def test_token_version_never_decreases(self, vault, alice):
        versions = [vault.tokens.revoke_all(alice.id) for _ in range(3)]
        assert versions == [1, 2, 3]
