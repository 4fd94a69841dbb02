"""
Security module - Audit trail, analytics and security constants.

Security Considerations:
- The audit log is append-only and hash-chained
- Live observers never slow down or fail the action being audited
"""

from scanvault.security.constants import (
    MAX_FAILED_ATTEMPTS,
    LOCKOUT_COOLDOWN_SECONDS,
    ENCRYPTION_ALGORITHM,
)

__all__ = [
    "MAX_FAILED_ATTEMPTS",
    "LOCKOUT_COOLDOWN_SECONDS",
    "ENCRYPTION_ALGORITHM",
]
