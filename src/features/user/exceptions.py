"""User-related exceptions."""

from src.shared.errors import AuthError, AuthErrorKind


class UserException(AuthError):
    """Base user exception."""

    default_message = "User operation failed"


class UserAlreadyExists(UserException):
    """Raised when trying to create a user that already exists."""

    kind = AuthErrorKind.DUPLICATE_IDENTITY

    def __init__(self, field: str = "user"):
        super().__init__(f"{field.capitalize()} already registered")


class EmailAlreadyExists(UserAlreadyExists):
    """Raised when email already exists."""

    def __init__(self):
        super().__init__(field="email")


class PhoneNumberAlreadyExists(UserAlreadyExists):
    """Raised when a phone number is already committed to another user."""

    def __init__(self):
        super().__init__(field="phone number")


class IncorrectPassword(UserException):
    """Raised when the current password does not match on a password change."""

    kind = AuthErrorKind.INVALID_CREDENTIALS
    default_message = "Current password is incorrect"


class EmailNotVerified(UserException):
    """Raised when an operation requires a verified email address."""

    kind = AuthErrorKind.EMAIL_NOT_VERIFIED
    default_message = "Email address must be verified first"
