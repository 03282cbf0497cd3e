"""Domain error base shared by the credential, token, session and auth features."""

from enum import StrEnum


class AuthErrorKind(StrEnum):
    """Machine-readable outcome of a failed credential operation.

    Kinds are transport-agnostic; the application layer maps them to status codes.
    """

    DUPLICATE_IDENTITY = "duplicate_identity"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_INACTIVE = "account_inactive"
    INVALID_OR_EXPIRED_TOKEN = "invalid_or_expired_token"
    INVALID_TWO_FACTOR_CODE = "invalid_two_factor_code"
    TWO_FACTOR_NOT_CONFIGURED = "two_factor_not_configured"
    TWO_FACTOR_ALREADY_ENABLED = "two_factor_already_enabled"
    TWO_FACTOR_NOT_ENABLED = "two_factor_not_enabled"
    ALREADY_VERIFIED = "already_verified"
    EMAIL_NOT_VERIFIED = "email_not_verified"
    INTERNAL_FAILURE = "internal_failure"


class AuthError(Exception):
    """Base error for every deterministic failure of the credential lifecycle."""

    kind: AuthErrorKind = AuthErrorKind.INTERNAL_FAILURE
    default_message: str = "Authentication failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"
