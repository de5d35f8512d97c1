"""Shared utility functions."""

from .sanitization import sanitize_filename
from .validation import (
    ResendCooldown,
    normalize_phone,
    validate_national_id,
    validate_otp,
)

__all__ = [
    "ResendCooldown",
    "normalize_phone",
    "sanitize_filename",
    "validate_national_id",
    "validate_otp",
]
