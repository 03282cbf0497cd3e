"""Password strength rules shared by registration, reset and password change."""

MIN_PASSWORD_LENGTH = 8

_CHARACTER_RULES = (
    (str.isupper, "uppercase letter"),
    (str.islower, "lowercase letter"),
    (str.isdigit, "digit"),
)


def validate_password_strength(password: str) -> str:
    """Return the password unchanged or raise ``ValueError`` naming the first unmet rule.

    A password needs at least 8 characters and at least one uppercase letter,
    one lowercase letter and one digit.

        >>> validate_password_strength("Abc123de")
        'Abc123de'
        >>> validate_password_strength("abc123de")
        Traceback (most recent call last):
        ...
        ValueError: Password must contain at least one uppercase letter
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    for check, description in _CHARACTER_RULES:
        if not any(check(c) for c in password):
            raise ValueError(f"Password must contain at least one {description}")
    return password
