"""
Path Utilities
==============

Storage-name generation and path confinement for the vault,
quarantine and staging areas.
"""

from __future__ import annotations

import re
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Final, Optional

from scanvault.core.errors import StorageUnavailable

# Characters not allowed in filenames across all platforms
_UNSAFE_CHARS: Final[re.Pattern[str]] = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_MAX_NAME_LENGTH: Final[int] = 120


def sanitize_filename(filename: str, replacement: str = "_") -> str:
    """
    Sanitize a filename by removing potentially dangerous characters.

    Raises:
        ValueError: If nothing usable remains
    """
    if not filename:
        raise ValueError("Filename cannot be empty")

    # Browsers may send a full client path
    filename = filename.replace("\\", "/").rsplit("/", 1)[-1]

    sanitized = _UNSAFE_CHARS.sub(replacement, filename)
    sanitized = sanitized.strip(". ")

    if not sanitized:
        raise ValueError("Filename becomes empty after sanitization")

    if len(sanitized) > _MAX_NAME_LENGTH:
        sanitized = sanitized[-_MAX_NAME_LENGTH:]

    return sanitized


def generate_storage_name(original_name: str, now: Optional[datetime] = None) -> str:
    """
    Collision-resistant on-disk name: UTC timestamp, random hex, sanitized name.

    Example: 20261019T101500123456Z-9f2c41ab-report.pdf
    """
    now = now or datetime.now(timezone.utc)
    try:
        safe_name = sanitize_filename(original_name)
    except ValueError:
        safe_name = "upload"
    stamp = now.strftime("%Y%m%dT%H%M%S%fZ")
    return f"{stamp}-{secrets.token_hex(4)}-{safe_name}"


def is_path_within_directory(path: Path, directory: Path) -> bool:
    """Check if a path is safely within a directory (prevents path traversal)."""
    try:
        return path.resolve().is_relative_to(directory.resolve())
    except (ValueError, RuntimeError):
        return False


def resolve_within(directory: Path, name: str) -> Path:
    """
    Join a stored name onto its area directory.

    Raises:
        StorageUnavailable: If the name escapes the directory
    """
    candidate = directory / name
    if not is_path_within_directory(candidate, directory):
        raise StorageUnavailable(f"Stored name escapes its area: {name!r}")
    return candidate
