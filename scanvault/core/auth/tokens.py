"""
Bearer Tokens
=============

Signed, expiring access tokens with version-based invalidation.

Each token embeds the account's token version at issue time. Bumping
the stored version (force-logout, role change, admin lock, logout-all)
invalidates every token issued before the bump, without a token
blacklist.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict

import jwt

from scanvault.core.auth.accounts import Account, fetch_account
from scanvault.core.errors import (
    AccountNotFound,
    ConfigurationError,
    InvalidToken,
    SessionInvalidated,
    Unauthenticated,
)
from scanvault.db.store import VaultStore
from scanvault.security.constants import TOKEN_ALGORITHM, TOKEN_TTL_SECONDS
from scanvault.utils.clock import Clock, utc_now


logger = logging.getLogger(__name__)


class TokenService:
    """
    JWT issuance and verification.

    Usage:
        tokens = TokenService(store, secrets.token_secret)
        token = tokens.issue(account)
        account = tokens.verify(token)
    """

    __slots__ = ("_store", "_secret", "_ttl", "_clock")

    def __init__(
        self,
        store: VaultStore,
        secret: str,
        ttl_seconds: int = TOKEN_TTL_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        if not secret:
            raise ConfigurationError("Token secret is empty")
        self._store = store
        self._secret = secret
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def __repr__(self) -> str:
        return f"TokenService(ttl={int(self._ttl.total_seconds())}s, secret=[REDACTED])"

    def issue(self, account: Account) -> str:
        now = self._clock()
        claims: Dict[str, Any] = {
            "sub": account.id,
            "email": account.email,
            "role": account.role.value,
            "tv": account.token_version,
            "iat": now,
            "exp": now + self._ttl,
        }
        return jwt.encode(claims, self._secret, algorithm=TOKEN_ALGORITHM)

    def verify(self, token: str) -> Account:
        """
        Decode a token and return the current account it names.

        Raises:
            InvalidToken: Bad signature, malformed or expired
            Unauthenticated: The account no longer exists
            SessionInvalidated: The token predates a version bump
        """
        if not token:
            raise InvalidToken("Empty token")
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[TOKEN_ALGORITHM],
                # Time claims are checked below against the injected clock
                options={"require": ["sub", "exp", "iat"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.PyJWTError as e:
            logger.debug("Token rejected: %s", type(e).__name__)
            raise InvalidToken(type(e).__name__) from e

        expires = claims["exp"]
        if not isinstance(expires, (int, float)) or self._clock().timestamp() >= expires:
            raise InvalidToken("Token expired")

        version = claims.get("tv")
        if not isinstance(version, int):
            raise InvalidToken("Missing token version")

        with self._store.read() as conn:
            account = fetch_account(conn, str(claims["sub"]))

        if account is None:
            raise Unauthenticated("Token for a deleted account")
        if account.token_version != version:
            raise SessionInvalidated(
                f"Token version {version} != current {account.token_version}"
            )
        return account

    def revoke_all(self, account_id: str) -> int:
        """
        Invalidate every outstanding token for an account.

        Returns:
            The new token version

        Raises:
            AccountNotFound: If no such account exists
        """
        with self._store.transaction() as conn:
            result = conn.execute(
                "UPDATE accounts SET token_version = token_version + 1 WHERE id = ?",
                (account_id,),
            )
            if result.rowcount == 0:
                raise AccountNotFound(f"No account {account_id}")
            row = conn.execute(
                "SELECT token_version FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
        logger.info("Tokens revoked for account %s", account_id)
        return row["token_version"]
