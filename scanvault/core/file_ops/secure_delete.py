"""
Secure Deletion Module
======================

Removal of staged, vaulted and quarantined bytes.

Security Properties:
- Optional overwrite passes before unlinking
- Missing files are reported, not raised, so two-phase deletion can resume
- OS errors surface as StorageUnavailable

Overwriting is best effort on SSDs and copy-on-write filesystems.
"""

from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path
from typing import Final

from scanvault.core.errors import StorageUnavailable


logger = logging.getLogger(__name__)

DEFAULT_OVERWRITE_PASSES: Final[int] = 1
BLOCK_SIZE: Final[int] = 64 * 1024


def _overwrite(path: Path, passes: int) -> None:
    """
    Overwrite Pattern:
        Pass 1: All zeros
        Pass 2+: Random data
    """
    file_size = path.stat().st_size
    with open(path, "r+b") as f:
        for pass_num in range(passes):
            f.seek(0)
            written = 0
            while written < file_size:
                size = min(BLOCK_SIZE, file_size - written)
                f.write(b"\x00" * size if pass_num == 0 else secrets.token_bytes(size))
                written += size
            f.flush()
            os.fsync(f.fileno())


def secure_delete(path: Path | str, passes: int = DEFAULT_OVERWRITE_PASSES) -> bool:
    """
    Overwrite and unlink a file.

    Returns:
        True if the file existed and was removed, False if it was already gone

    Raises:
        StorageUnavailable: If the file exists but cannot be removed
    """
    path = Path(path)
    try:
        if passes > 0:
            _overwrite(path, passes)
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.error("Secure deletion failed for %s: %s", path.name, e)
        raise StorageUnavailable(f"Cannot delete {path.name}: {e}") from e


def remove_quietly(path: Path | str) -> None:
    """Cleanup on an error path: unlink if present, log anything else."""
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.error("Cleanup of %s failed: %s", Path(path).name, e)


def clear_directory(path: Path | str) -> int:
    """
    Remove leftover regular files from a scratch directory (staging).

    Returns:
        Number of files removed
    """
    path = Path(path)
    if not path.is_dir():
        return 0

    count = 0
    for item in path.iterdir():
        if item.is_file() and secure_delete(item, passes=0):
            count += 1
    return count
