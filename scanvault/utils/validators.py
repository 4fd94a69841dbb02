"""
Validation Utilities
====================

Input validation functions with security focus.
"""

from __future__ import annotations

import re
from typing import Final

from scanvault.core.errors import ValidationError
from scanvault.security.constants import (
    MAX_EMAIL_LENGTH,
    MAX_PASSWORD_LENGTH,
    MIN_PASSWORD_LENGTH,
    MIN_PASSWORD_STRENGTH,
)


_EMAIL_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_string_safe(
    value: object,
    min_length: int = 0,
    max_length: int = 1000,
    allow_empty: bool = False,
    field_name: str = "value",
) -> str:
    """
    Validate a string value for safety.

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")

    if not allow_empty and not value:
        raise ValidationError(f"{field_name} cannot be empty")

    if len(value) < min_length:
        raise ValidationError(f"{field_name} must be at least {min_length} characters")

    if len(value) > max_length:
        raise ValidationError(f"{field_name} must be at most {max_length} characters")

    if "\x00" in value:
        raise ValidationError(f"{field_name} contains invalid characters")

    return value


def normalize_email(value: object) -> str:
    """Validate an email address and return it trimmed and lower-cased."""
    email = validate_string_safe(value, max_length=MAX_EMAIL_LENGTH, field_name="email").strip().lower()
    if not _EMAIL_PATTERN.match(email):
        raise ValidationError("email is not a valid address")
    return email


def password_strength(password: str) -> int:
    """
    Score a password 0-4: length, uppercase, digit, symbol.

    Mirrors the strength meter shown at signup.
    """
    score = 0
    if len(password) >= MIN_PASSWORD_LENGTH:
        score += 1
    if re.search(r"[A-Z]", password):
        score += 1
    if re.search(r"[0-9]", password):
        score += 1
    if re.search(r"[^A-Za-z0-9]", password):
        score += 1
    return score


def validate_password(value: object) -> str:
    """
    Validate a new password against the signup policy.

    Raises:
        ValidationError: If the password is too short, too long or too weak
    """
    password = validate_string_safe(
        value,
        min_length=MIN_PASSWORD_LENGTH,
        max_length=MAX_PASSWORD_LENGTH,
        field_name="password",
    )
    if password_strength(password) < MIN_PASSWORD_STRENGTH:
        raise ValidationError(
            "password must mix upper-case letters, digits and symbols"
        )
    return password
