"""
Secure Configuration Module
===========================

Provides immutable, environment-aware configuration with security-first defaults.

Security Features:
- Immutable configuration after initialization
- Environment variable override support (SCANVAULT_ prefix)
- Secrets are never read through the generic override path
- Missing encryption or token secret aborts startup
- OS-aware path handling
"""

from __future__ import annotations

import hashlib
import os
import platform
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, Mapping, Any, Optional

from scanvault.core.errors import ConfigurationError
from scanvault.security import constants


ENV_PREFIX: Final[str] = "SCANVAULT"
FILE_SECRET_ENV: Final[str] = "SCANVAULT_FILE_SECRET"
TOKEN_SECRET_ENV: Final[str] = "SCANVAULT_TOKEN_SECRET"

_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "password", "secret", "key", "token", "api_key",
    "private", "credential", "auth", "salt"
})


def _is_sensitive_key(key: str) -> bool:
    """Check if a configuration key might contain sensitive data."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def _get_default_data_dir() -> Path:
    """Get OS-appropriate default data directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif system == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    return base / "ScanVault"


def _get_default_log_dir() -> Path:
    """Get OS-appropriate default log directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / "ScanVault" / "Logs"
    elif system == "darwin":
        return Path.home() / "Library" / "Logs" / "ScanVault"
    else:
        return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / "ScanVault" / "logs"


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Immutable path configuration with OS-aware defaults."""

    data_dir: Path = field(default_factory=_get_default_data_dir)
    log_dir: Path = field(default_factory=_get_default_log_dir)

    def __post_init__(self) -> None:
        for field_name in ("data_dir", "log_dir"):
            path = getattr(self, field_name)
            if not path.is_absolute():
                raise ValueError(f"{field_name} must be an absolute path: {path}")

    @property
    def database_path(self) -> Path:
        return self.data_dir / "scanvault.db"

    @property
    def vault_dir(self) -> Path:
        return self.data_dir / "vault"

    @property
    def quarantine_dir(self) -> Path:
        return self.data_dir / "quarantine"

    @property
    def staging_dir(self) -> Path:
        return self.data_dir / "staging"


@dataclass(frozen=True, slots=True)
class PolicyConfig:
    """Immutable security policy."""

    max_failed_attempts: int = constants.MAX_FAILED_ATTEMPTS
    lockout_cooldown_seconds: int = constants.LOCKOUT_COOLDOWN_SECONDS
    token_ttl_seconds: int = constants.TOKEN_TTL_SECONDS
    max_upload_bytes: int = constants.MAX_UPLOAD_BYTES
    scan_timeout_seconds: float = constants.SCAN_TIMEOUT_SECONDS
    crypto_timeout_seconds: float = constants.CRYPTO_TIMEOUT_SECONDS
    db_busy_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.max_failed_attempts < 1:
            raise ValueError("max_failed_attempts must be at least 1")
        if self.lockout_cooldown_seconds < 0:
            raise ValueError("lockout_cooldown_seconds cannot be negative")
        if self.token_ttl_seconds < 60:
            raise ValueError("token_ttl_seconds must be at least 60")
        if self.max_upload_bytes < 1:
            raise ValueError("max_upload_bytes must be positive")
        if self.scan_timeout_seconds <= 0 or self.crypto_timeout_seconds <= 0:
            raise ValueError("Timeouts must be positive")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Immutable logging configuration."""

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = True
    enable_json: bool = False

    def __post_init__(self) -> None:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.level}")


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Immutable application configuration."""

    app_name: str = "ScanVault"
    version: str = "0.1.0"
    allowed_origins: tuple[str, ...] = ("http://localhost:5173",)


@dataclass(frozen=True)
class VaultSecrets:
    """
    Operator-supplied secrets.

    Read explicitly from the environment, never through the generic
    override path, and never shown by repr.
    """

    file_secret: str = field(repr=False)
    token_secret: str = field(repr=False)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> VaultSecrets:
        """
        Load secrets from the environment.

        Raises:
            ConfigurationError: If either secret is missing or empty
        """
        env = os.environ if environ is None else environ
        file_secret = env.get(FILE_SECRET_ENV, "")
        token_secret = env.get(TOKEN_SECRET_ENV, "")

        if not file_secret:
            raise ConfigurationError(
                f"{FILE_SECRET_ENV} is missing. Set it and restart the server."
            )
        if not token_secret:
            raise ConfigurationError(
                f"{TOKEN_SECRET_ENV} is missing. Set it and restart the server."
            )
        return cls(file_secret=file_secret, token_secret=token_secret)

    def __repr__(self) -> str:
        return "VaultSecrets(file_secret=[REDACTED], token_secret=[REDACTED])"


class VaultConfig:
    """
    Centralized, immutable configuration with environment override support.

    Usage:
        config = VaultConfig.load()
        vault_dir = config.paths.vault_dir
        ceiling = config.policy.max_upload_bytes

    Environment variables use the SCANVAULT_ prefix and double underscores
    for nesting:
        SCANVAULT_LOGGING__LEVEL=DEBUG
        SCANVAULT_POLICY__MAX_UPLOAD_BYTES=1048576
        SCANVAULT_PATHS__DATA_DIR=/srv/scanvault
    """

    __slots__ = ("_paths", "_policy", "_logging", "_app", "_frozen", "_config_hash")

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        policy: Optional[PolicyConfig] = None,
        logging: Optional[LoggingConfig] = None,
        app: Optional[AppConfig] = None,
    ) -> None:
        object.__setattr__(self, "_frozen", False)
        object.__setattr__(self, "_paths", paths or PathConfig())
        object.__setattr__(self, "_policy", policy or PolicyConfig())
        object.__setattr__(self, "_logging", logging or LoggingConfig())
        object.__setattr__(self, "_app", app or AppConfig())
        object.__setattr__(self, "_config_hash", self._compute_hash())
        object.__setattr__(self, "_frozen", True)

    def _compute_hash(self) -> str:
        config_str = f"{self._paths}|{self._policy}|{self._logging}|{self._app}"
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @property
    def paths(self) -> PathConfig:
        return self._paths

    @property
    def policy(self) -> PolicyConfig:
        return self._policy

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @property
    def app(self) -> AppConfig:
        return self._app

    @property
    def config_hash(self) -> str:
        return self._config_hash

    @classmethod
    def load(
        cls,
        env_prefix: str = ENV_PREFIX,
        environ: Optional[Mapping[str, str]] = None,
    ) -> VaultConfig:
        """
        Load configuration with environment variable overrides.

        Args:
            env_prefix: Prefix for environment variables
            environ: Mapping to read instead of os.environ

        Returns:
            Configured VaultConfig instance
        """
        overrides = cls._parse_env_overrides(env_prefix, environ)

        paths_kwargs: dict[str, Any] = {}
        for name in ("data_dir", "log_dir"):
            if f"paths.{name}" in overrides:
                paths_kwargs[name] = Path(overrides[f"paths.{name}"])

        policy_kwargs: dict[str, Any] = {}
        for name, caster in (
            ("max_failed_attempts", int),
            ("lockout_cooldown_seconds", int),
            ("max_upload_bytes", int),
            ("scan_timeout_seconds", float),
            ("crypto_timeout_seconds", float),
            ("db_busy_timeout_seconds", float),
        ):
            if f"policy.{name}" in overrides:
                policy_kwargs[name] = caster(overrides[f"policy.{name}"])

        logging_kwargs: dict[str, Any] = {}
        if "logging.level" in overrides:
            logging_kwargs["level"] = overrides["logging.level"]
        for name in ("enable_console", "enable_file", "enable_json"):
            if f"logging.{name}" in overrides:
                logging_kwargs[name] = overrides[f"logging.{name}"].lower() == "true"

        app_kwargs: dict[str, Any] = {}
        if "app.allowed_origins" in overrides:
            app_kwargs["allowed_origins"] = tuple(
                origin.strip()
                for origin in overrides["app.allowed_origins"].split(",")
                if origin.strip()
            )

        return cls(
            paths=PathConfig(**paths_kwargs) if paths_kwargs else None,
            policy=PolicyConfig(**policy_kwargs) if policy_kwargs else None,
            logging=LoggingConfig(**logging_kwargs) if logging_kwargs else None,
            app=AppConfig(**app_kwargs) if app_kwargs else None,
        )

    @staticmethod
    def _parse_env_overrides(
        prefix: str,
        environ: Optional[Mapping[str, str]] = None,
    ) -> dict[str, str]:
        """Parse environment variables with the given prefix."""
        env = os.environ if environ is None else environ
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"

        for key, value in env.items():
            if key.startswith(prefix_upper):
                config_key = key[len(prefix_upper):].lower().replace("__", ".")

                # SECURITY: secrets have their own loader
                if _is_sensitive_key(config_key):
                    continue

                overrides[config_key] = value

        return overrides

    def ensure_directories(self) -> None:
        """Create all required directories with owner-only permissions."""
        directories = [
            self._paths.data_dir,
            self._paths.vault_dir,
            self._paths.quarantine_dir,
            self._paths.staging_dir,
        ]
        if self._logging.enable_file:
            directories.append(self._paths.log_dir)

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

            if platform.system().lower() != "windows":
                directory.chmod(stat.S_IRWXU)

    def __repr__(self) -> str:
        return f"VaultConfig(hash={self._config_hash}, app={self._app.app_name})"

    def __setattr__(self, name: str, value: Any) -> None:
        if hasattr(self, "_frozen") and self._frozen:
            raise AttributeError("VaultConfig is immutable after initialization")
        super().__setattr__(name, value)
