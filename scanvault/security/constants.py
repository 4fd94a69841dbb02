"""
Security Constants
==================

Reference policy values used throughout the application.
PolicyConfig may override the tunable ones per deployment.
"""

from typing import Final

# Password Requirements
MIN_PASSWORD_LENGTH: Final[int] = 8
MAX_PASSWORD_LENGTH: Final[int] = 128
MIN_PASSWORD_STRENGTH: Final[int] = 3  # out of 4 character classes/length checks
MAX_EMAIL_LENGTH: Final[int] = 254

# Brute-force lockout
MAX_FAILED_ATTEMPTS: Final[int] = 3
LOCKOUT_COOLDOWN_SECONDS: Final[int] = 30 * 60

# Session tokens
TOKEN_ALGORITHM: Final[str] = "HS256"
TOKEN_TTL_SECONDS: Final[int] = 60 * 60

# Encryption envelope
ENCRYPTION_ALGORITHM: Final[str] = "AES-256-GCM"
KEY_LENGTH_BYTES: Final[int] = 32
NONCE_LENGTH_BYTES: Final[int] = 12
TAG_LENGTH_BYTES: Final[int] = 16
STREAM_CHUNK_BYTES: Final[int] = 64 * 1024

# Uploads
MAX_UPLOAD_BYTES: Final[int] = 16 * 1024 * 1024
SCAN_TIMEOUT_SECONDS: Final[float] = 30.0
CRYPTO_TIMEOUT_SECONDS: Final[float] = 120.0

# Suspicious activity thresholds
SUSPICIOUS_ACTOR_FAILURES: Final[int] = 5
SUSPICIOUS_ORIGIN_FAILURES: Final[int] = 10
RECENT_LOCKS_LIMIT: Final[int] = 20
ANALYTICS_WINDOW_SECONDS: Final[int] = 24 * 60 * 60

# Audit log reads
AUDIT_DEFAULT_LIMIT: Final[int] = 500
AUDIT_MAX_LIMIT: Final[int] = 1000
