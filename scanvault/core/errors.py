"""
Error Taxonomy
==============

Every failure a caller can observe derives from VaultError.

Security Notes:
- public_message is the only text that may leave the process
- Internal detail goes to the log, never to the caller
- Credential and lock errors never reveal whether an email exists
"""

from __future__ import annotations

from typing import Optional


class VaultError(Exception):
    """Base class for all ScanVault errors."""

    http_status: int = 500
    public_message: str = "Internal server error"
    retryable: bool = False

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail or self.public_message)
        self.detail = detail


class ConfigurationError(VaultError):
    """Raised at startup when required configuration is missing. Fatal."""
    public_message = "Server misconfigured"


class ValidationError(VaultError):
    """Missing fields, malformed input or an oversized upload."""
    http_status = 400
    public_message = "Invalid input"

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail)
        # Validation messages describe the caller's own input, safe to return
        if detail:
            self.public_message = detail


class InvalidCredentials(VaultError):
    http_status = 401
    public_message = "Invalid credentials"


class InvalidToken(VaultError):
    http_status = 401
    public_message = "Invalid or expired token."


class Unauthenticated(VaultError):
    http_status = 401
    public_message = "Access denied. No valid session."


class SessionInvalidated(VaultError):
    http_status = 401
    public_message = "Session invalidated. Please login again."


class AccessDenied(VaultError):
    """Ownership or role check failed. Identical for missing and foreign ids."""
    http_status = 403
    public_message = "Access denied"


class FileBlocked(VaultError):
    """Retrieval refused because the file is not in the SAFE state."""
    http_status = 403
    public_message = "File is blocked"


class SelfActionForbidden(VaultError):
    http_status = 400
    public_message = "Administrators cannot perform this action on their own account"


class AccountNotFound(VaultError):
    http_status = 404
    public_message = "User not found"


class EmailAlreadyRegistered(VaultError):
    http_status = 409
    public_message = "User already exists"


class AccountLockedAdmin(VaultError):
    http_status = 423
    public_message = "Account is locked by administrator."


class AccountLockedBruteForce(VaultError):
    http_status = 423
    public_message = "Account temporarily locked"


class MalwareDetected(VaultError):
    """Raised only where a blocked ingest outcome has to cross an exception boundary."""
    http_status = 422
    public_message = "File rejected: malware detected"

    def __init__(self, engine_hits: int) -> None:
        super().__init__(f"{engine_hits} engine(s) flagged the upload")
        self.engine_hits = engine_hits


class DecryptionFailed(VaultError):
    """Truncated, corrupt or wrongly keyed envelope."""
    public_message = "Unable to read file"


class ScanFailed(VaultError):
    """The scanning oracle raised or was unavailable."""
    http_status = 503
    public_message = "File scanning unavailable, please retry"
    retryable = True


class OperationTimeout(VaultError):
    http_status = 503
    public_message = "Operation timed out, please retry"
    retryable = True


class StorageUnavailable(VaultError):
    """Authoritative store or filesystem unreachable."""
    http_status = 503
    public_message = "Storage unavailable"
