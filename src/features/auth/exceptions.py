"""Authentication exceptions."""

from src.shared.errors import AuthError, AuthErrorKind


class AuthenticationException(AuthError):
    """Base authentication exception."""

    kind = AuthErrorKind.INVALID_CREDENTIALS
    default_message = "Authentication failed"


class InvalidCredentials(AuthenticationException):
    """Raised for an unknown email or a wrong password; the two are never distinguished."""

    default_message = "Invalid email or password"


class AccountLocked(AuthenticationException):
    """Raised when the account is inside a lock window."""

    kind = AuthErrorKind.ACCOUNT_LOCKED
    default_message = "Account is temporarily locked due to too many failed login attempts"


class AccountInactive(AuthenticationException):
    """Raised when the account has been deactivated."""

    kind = AuthErrorKind.ACCOUNT_INACTIVE
    default_message = "User account is inactive"


class InvalidTwoFactorCode(AuthenticationException):
    kind = AuthErrorKind.INVALID_TWO_FACTOR_CODE
    default_message = "Invalid two-factor authentication code"


class TwoFactorNotConfigured(AuthenticationException):
    """Raised when verifying 2FA before a secret has been set up."""

    kind = AuthErrorKind.TWO_FACTOR_NOT_CONFIGURED
    default_message = "Two-factor authentication has not been set up"


class TwoFactorAlreadyEnabled(AuthenticationException):
    kind = AuthErrorKind.TWO_FACTOR_ALREADY_ENABLED
    default_message = "Two-factor authentication is already enabled"


class TwoFactorNotEnabled(AuthenticationException):
    kind = AuthErrorKind.TWO_FACTOR_NOT_ENABLED
    default_message = "Two-factor authentication is not enabled"


class AlreadyVerified(AuthenticationException):
    kind = AuthErrorKind.ALREADY_VERIFIED
    default_message = "Email address is already verified"
