"""
Utils module - Utility functions and helpers.
"""

from scanvault.utils.paths import (
    generate_storage_name,
    is_path_within_directory,
    resolve_within,
    sanitize_filename,
)
from scanvault.utils.validators import (
    normalize_email,
    password_strength,
    validate_password,
    validate_string_safe,
)

__all__ = [
    "generate_storage_name",
    "is_path_within_directory",
    "resolve_within",
    "sanitize_filename",
    "normalize_email",
    "password_strength",
    "validate_password",
    "validate_string_safe",
]
