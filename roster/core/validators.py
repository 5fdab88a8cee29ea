"""Input validation helpers for staff account data."""
from __future__ import annotations
import re
from typing import Optional

from .badges import is_location_exempt
from .exceptions import ValidationError

EMAIL_MAX_LENGTH = 254
DISPLAY_NAME_MAX_LENGTH = 128
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_email(email: str) -> str:
    """Validate and normalize an email address.

    Returns:
        Trimmed, lower-cased email

    Raises:
        ValidationError: If the email is missing or malformed
    """
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("email is required")
    if len(email) > EMAIL_MAX_LENGTH:
        raise ValidationError(f"email must not exceed {EMAIL_MAX_LENGTH} characters")
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("email format is invalid")
    return email


def validate_display_name(name: str) -> str:
    """Validate the display name (trimmed, bounded, no markup characters)."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("display_name is required")
    if len(name) > DISPLAY_NAME_MAX_LENGTH:
        raise ValidationError(f"display_name must not exceed {DISPLAY_NAME_MAX_LENGTH} characters")
    if any(char in name for char in "<>"):
        raise ValidationError("display_name contains invalid characters")
    return name


def validate_location(role: str, location_id: Optional[str]) -> Optional[str]:
    """Require a location unless the role is location-exempt.

    Exempt roles keep whatever location was supplied (usually none).
    """
    location_id = (location_id or "").strip() or None
    if location_id is None and not is_location_exempt(role):
        raise ValidationError("location_id is required for this role")
    return location_id


def require_fields(payload: dict, *names: str) -> None:
    """Raise a single ValidationError listing every missing field."""
    missing = [name for name in names if not payload.get(name)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
