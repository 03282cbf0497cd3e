"""Phone number validation functions."""

import re

E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")


def validate_phone_number(value: str) -> str:
    """Validate and normalize a phone number to E.164.

    Spaces, dashes, dots and parentheses are removed before checking.

    Examples:
        >>> validate_phone_number("+1 (555) 123-4567")
        '+15551234567'

    Raises:
        ValueError: If the number is not in international E.164 form

    """
    normalized = re.sub(r"[\s\-().]", "", value)
    if not E164_PATTERN.match(normalized):
        raise ValueError("Phone number must be in E.164 format, e.g. +15551234567")
    return normalized
