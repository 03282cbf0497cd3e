"""Person name validation functions."""

import re

NAME_PATTERN = re.compile(r"^[^\W\d_]+(?:[ '\-][^\W\d_]+)*$")


def validate_person_name(value: str) -> str:
    """Validate a first or last name.

    Names are 2-50 characters of letters, with single spaces, hyphens or
    apostrophes between letter runs. Surrounding whitespace is stripped.

    Raises:
        ValueError: If the name is too short, too long or contains other characters

    """
    value = value.strip()
    if not 2 <= len(value) <= 50:
        raise ValueError("Name must be between 2 and 50 characters")
    if not NAME_PATTERN.match(value):
        raise ValueError("Name can only contain letters, spaces, hyphens, and apostrophes")
    return value
