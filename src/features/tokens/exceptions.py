"""Ephemeral token exceptions."""

from src.shared.errors import AuthError, AuthErrorKind


class InvalidOrExpiredToken(AuthError):
    """Raised when a token is unknown, expired, spent or over its attempt budget.

    All of these collapse into one outward error so token existence is never disclosed.
    """

    kind = AuthErrorKind.INVALID_OR_EXPIRED_TOKEN
    default_message = "Invalid or expired token"


class TokenAlreadyUsed(InvalidOrExpiredToken):
    """Raised when a token is marked used a second time.

    Logged as a replay but reported with the same outward message as any other
    unusable token.
    """
