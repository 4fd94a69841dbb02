"""Pytest configuration and fixtures."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional

import pytest
from flask import Flask
from flask.testing import FlaskClient

from scanvault.core.auth.accounts import Account, Role
from scanvault.core.auth.argon2_auth import Argon2Hasher
from scanvault.core.config import (
    LoggingConfig,
    PathConfig,
    PolicyConfig,
    VaultConfig,
    VaultSecrets,
)
from scanvault.core.file_ops.scanner import ScanVerdict
from scanvault.core.vault import Vault, build_vault
from scanvault.security.audit import AuditAction, AuditEvent, AuditOutcome
from scanvault.web.app import create_app


STRONG_PASSWORD = "Str0ng!pw"


class FrozenClock:
    """Controllable UTC clock."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class StubScanner:
    """Scanner with a scripted verdict, failure or delay."""

    def __init__(
        self,
        verdict: Optional[ScanVerdict] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        self.verdict = verdict or ScanVerdict(safe=True)
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, bytes]] = []

    def scan(self, path: Path, filename: str) -> ScanVerdict:
        self.calls.append((filename, path.read_bytes()))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.verdict


def find_events(
    events: list[AuditEvent],
    action: AuditAction,
    outcome: Optional[AuditOutcome] = None,
) -> list[AuditEvent]:
    return [
        event for event in events
        if event.action is action and (outcome is None or event.outcome is outcome)
    ]


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def scanner() -> StubScanner:
    return StubScanner()


@pytest.fixture
def hasher() -> Argon2Hasher:
    """Minimum-cost Argon2 parameters keep the suite fast."""
    return Argon2Hasher(memory_cost=8, time_cost=1, parallelism=1)


@pytest.fixture
def config(tmp_path: Path) -> VaultConfig:
    return VaultConfig(
        paths=PathConfig(data_dir=tmp_path / "data", log_dir=tmp_path / "logs"),
        policy=PolicyConfig(max_upload_bytes=1024 * 1024, scan_timeout_seconds=5.0),
        logging=LoggingConfig(enable_console=False, enable_file=False),
    )


@pytest.fixture
def secrets() -> VaultSecrets:
    return VaultSecrets(file_secret="test-file-secret", token_secret="test-token-secret")


@pytest.fixture
def vault(
    config: VaultConfig,
    secrets: VaultSecrets,
    scanner: StubScanner,
    hasher: Argon2Hasher,
    clock: FrozenClock,
) -> Iterator[Vault]:
    v = build_vault(config=config, secrets=secrets, scanner=scanner, hasher=hasher, clock=clock, environ={})
    yield v
    v.close()


@pytest.fixture
def make_account(vault: Vault) -> Callable[..., Account]:
    def _make(email: str, password: str = STRONG_PASSWORD, role: Role = Role.USER) -> Account:
        return vault.accounts.create_account(email, password, role=role)
    return _make


@pytest.fixture
def alice(make_account) -> Account:
    return make_account("alice@example.com")


@pytest.fixture
def bob(make_account) -> Account:
    return make_account("bob@example.com")


@pytest.fixture
def admin(make_account) -> Account:
    return make_account("admin@example.com", role=Role.ADMIN)


@pytest.fixture
def app(vault: Vault) -> Flask:
    application = create_app(vault)
    application.config["TESTING"] = True
    application.config["SSE_KEEPALIVE_SECONDS"] = 0.05
    return application


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    return app.test_client()


@pytest.fixture
def token_for(vault: Vault) -> Callable[[Account], dict[str, str]]:
    """Authorization header for an account, minted without a login round trip."""
    def _headers(account: Account) -> dict[str, str]:
        current = vault.accounts.require(account.id)
        return {"Authorization": f"Bearer {vault.tokens.issue(current)}"}
    return _headers
