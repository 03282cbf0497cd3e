"""Time-step one-time password primitive (RFC 6238) backed by pyotp."""

import pyotp


def generate_secret() -> str:
    """Random base32 shared secret."""
    return pyotp.random_base32()


def provisioning_uri(secret: str, label: str, issuer: str) -> str:
    """``otpauth://`` URI for authenticator apps; QR rendering is left to the client."""
    return pyotp.TOTP(secret).provisioning_uri(name=label, issuer_name=issuer)


def verify(secret: str, code: str, window: int = 1) -> bool:
    """Check a 6-digit code against the secret, tolerating ``window`` steps of clock drift.

    A code stays valid for the whole window; replay within it is accepted.
    """
    code = code.strip()
    if len(code) != 6 or not code.isdigit():
        return False
    return pyotp.TOTP(secret).verify(code, valid_window=window)
