"""One-time code validation functions."""


def validate_numeric_code(value: str, length: int = 6) -> str:
    """Validate a numeric one-time code (phone OTP or TOTP)."""
    value = value.strip()
    if len(value) != length or not value.isdigit():
        raise ValueError(f"Code must be exactly {length} digits")
    return value


def validate_two_factor_code(value: str) -> str:
    """Accept either a 6-digit TOTP code or an 8-character hex backup code."""
    value = value.strip()
    if len(value) == 6 and value.isdigit():
        return value
    if len(value) == 8 and all(c in "0123456789abcdefABCDEF" for c in value):
        return value.upper()
    raise ValueError("Code must be a 6-digit authenticator code or an 8-character backup code")
