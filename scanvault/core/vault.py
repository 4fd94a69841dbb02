"""
Vault Facade
============

Builds every component from configuration and owns process-level
startup and shutdown.

Startup:
    1. Load configuration and secrets (missing secret -> ConfigurationError)
    2. Create data directories with owner-only permissions
    3. Initialize the store schema
    4. Clear leftover staging files
    5. Complete deletions interrupted by a crash
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from scanvault.core.auth.accounts import AccountDirectory
from scanvault.core.auth.admin import AccountAdministration
from scanvault.core.auth.argon2_auth import Argon2Hasher
from scanvault.core.auth.lock_state import AuthLockState
from scanvault.core.auth.tokens import TokenService
from scanvault.core.config import VaultConfig, VaultSecrets
from scanvault.core.crypto.envelope import CryptoEnvelope
from scanvault.core.file_ops.ingest import IngestPipeline
from scanvault.core.file_ops.scanner import Scanner, ScanRunner, UnavailableScanner, load_scanner
from scanvault.core.file_ops.secure_delete import clear_directory
from scanvault.core.files.catalog import VaultCatalog
from scanvault.db.store import VaultStore
from scanvault.security.analytics import SecurityAnalytics
from scanvault.security.audit import AuditBus, EventBroker
from scanvault.utils.clock import Clock, utc_now


logger = logging.getLogger(__name__)

SCANNER_ENV = "SCANVAULT_SCANNER"


class Vault:
    """
    One process's set of wired components.

    Usage:
        with build_vault() as vault:
            result = vault.auth.authenticate(email, password, origin)
    """

    __slots__ = (
        "config", "store", "audit", "hasher", "envelope", "accounts", "auth",
        "tokens", "catalog", "ingest", "admin", "analytics", "scan_runner",
    )

    def __init__(
        self,
        config: VaultConfig,
        secrets: VaultSecrets,
        scanner: Scanner,
        hasher: Optional[Argon2Hasher] = None,
        clock: Clock = utc_now,
    ) -> None:
        paths, policy = config.paths, config.policy

        self.config = config
        self.store = VaultStore(paths.database_path, busy_timeout=policy.db_busy_timeout_seconds)
        self.audit = AuditBus(self.store, EventBroker(), clock=clock)
        self.hasher = hasher or Argon2Hasher()
        self.envelope = CryptoEnvelope.from_secret(
            secrets.file_secret, timeout_seconds=policy.crypto_timeout_seconds
        )
        self.accounts = AccountDirectory(self.store, self.hasher, self.audit, clock=clock)
        self.auth = AuthLockState(
            self.store,
            self.hasher,
            self.audit,
            max_attempts=policy.max_failed_attempts,
            cooldown_seconds=policy.lockout_cooldown_seconds,
            clock=clock,
        )
        self.tokens = TokenService(
            self.store, secrets.token_secret, ttl_seconds=policy.token_ttl_seconds, clock=clock
        )
        self.catalog = VaultCatalog(
            self.store, self.envelope, self.audit, paths.vault_dir, paths.quarantine_dir
        )
        self.scan_runner = ScanRunner(scanner, timeout_seconds=policy.scan_timeout_seconds)
        self.ingest = IngestPipeline(
            self.catalog,
            self.envelope,
            self.scan_runner,
            self.audit,
            staging_dir=paths.staging_dir,
            vault_dir=paths.vault_dir,
            quarantine_dir=paths.quarantine_dir,
            max_upload_bytes=policy.max_upload_bytes,
            clock=clock,
        )
        self.admin = AccountAdministration(
            self.accounts, self.auth, self.tokens, self.catalog, self.audit
        )
        self.analytics = SecurityAnalytics(self.store, clock=clock)

    def start(self) -> None:
        """Prepare storage and finish work a previous process left behind."""
        self.config.ensure_directories()
        self.store.initialize()

        stale = clear_directory(self.config.paths.staging_dir)
        if stale:
            logger.warning("Removed %d stale staging file(s)", stale)

        recovered = self.catalog.recover_interrupted_deletions()
        if recovered:
            logger.warning("Completed %d interrupted deletion(s)", recovered)

        logger.info("Vault started (config %s)", self.config.config_hash)

    def close(self) -> None:
        self.scan_runner.shutdown()
        logger.info("Vault stopped")

    def __enter__(self) -> Vault:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Vault(data_dir={self.config.paths.data_dir})"


def build_vault(
    config: Optional[VaultConfig] = None,
    secrets: Optional[VaultSecrets] = None,
    scanner: Optional[Scanner] = None,
    hasher: Optional[Argon2Hasher] = None,
    clock: Clock = utc_now,
    environ: Optional[Mapping[str, str]] = None,
) -> Vault:
    """
    Construct and start a vault, reading anything not supplied from the environment.

    Raises:
        ConfigurationError: Missing secret or unloadable scanner
    """
    env = os.environ if environ is None else environ
    config = config or VaultConfig.load(environ=env)
    secrets = secrets or VaultSecrets.from_env(env)

    if scanner is None:
        reference = env.get(SCANNER_ENV)
        if reference:
            scanner = load_scanner(reference)
        else:
            logger.warning("%s not set: uploads will be refused until a scanner is configured", SCANNER_ENV)
            scanner = UnavailableScanner()

    vault = Vault(config, secrets, scanner, hasher=hasher, clock=clock)
    vault.start()
    return vault
