"""Authentication schemas (DTOs)."""

from enum import StrEnum

from pydantic import BaseModel, EmailStr, Field, field_validator

from src.features.user.schemas import UserResponse
from src.shared.validators.codes import validate_numeric_code, validate_two_factor_code
from src.shared.validators.names import validate_person_name
from src.shared.validators.password import validate_password_strength
from src.shared.validators.phone import validate_phone_number

GENERIC_LINK_SENT_MESSAGE = "If an account exists with this email, you will receive an email shortly"


class LoginOutcome(StrEnum):
    """Terminal state of a successful login attempt."""

    ACCESS_GRANTED = "access_granted"
    TWO_FACTOR_REQUIRED = "two_factor_required"


# Request schemas
class RegisterRequest(BaseModel):
    """Registration request.

    Note: Uses email-validator library via Pydantic's EmailStr for RFC 5322 compliant email validation.
    """

    email: EmailStr
    password: str = Field(
        ..., min_length=8, description="Password (minimum 8 characters, must include uppercase, lowercase, and digit)"
    )
    first_name: str = Field(..., max_length=50)
    last_name: str = Field(..., max_length=50)
    phone_number: str | None = Field(None, description="E.164 phone number")

    @field_validator("password")
    @classmethod
    def check_password_strength(cls, value: str) -> str:
        """Validate password strength using shared validator."""
        return validate_password_strength(value)

    @field_validator("first_name", "last_name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return validate_person_name(value)

    @field_validator("phone_number")
    @classmethod
    def check_phone(cls, value: str | None) -> str | None:
        return None if value is None else validate_phone_number(value)


class LoginRequest(BaseModel):
    """Login request.

    The password is only checked for presence; strength rules apply when it is set.
    """

    email: EmailStr
    password: str = Field(..., min_length=1)


class TwoFactorLoginRequest(BaseModel):
    """Second step of a login for accounts with 2FA enabled."""

    two_factor_token: str
    code: str = Field(..., description="6-digit authenticator code or 8-character backup code")

    @field_validator("code")
    @classmethod
    def check_code(cls, value: str) -> str:
        return validate_two_factor_code(value)


class RefreshTokenRequest(BaseModel):
    """Refresh token request."""

    refresh_token: str


class EmailRequest(BaseModel):
    """Request carrying only an email address (password reset, magic link)."""

    email: EmailStr


class TokenRequest(BaseModel):
    """Request carrying an emailed token (email verification, magic link)."""

    token: str = Field(..., min_length=1, max_length=128)


class PasswordResetRequest(BaseModel):
    """Complete a password reset with the emailed token."""

    token: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=8)

    @field_validator("new_password")
    @classmethod
    def check_password_strength(cls, value: str) -> str:
        return validate_password_strength(value)


class PhoneOtpRequest(BaseModel):
    phone_number: str = Field(..., description="E.164 phone number")

    @field_validator("phone_number")
    @classmethod
    def check_phone(cls, value: str) -> str:
        return validate_phone_number(value)


class OtpCodeRequest(BaseModel):
    """A 6-digit code (phone OTP or authenticator)."""

    code: str

    @field_validator("code")
    @classmethod
    def check_code(cls, value: str) -> str:
        return validate_numeric_code(value)


# Response schemas
class TokenResponse(BaseModel):
    """JWT token response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class LoginResponse(BaseModel):
    """Result of any operation that can end in a login.

    ``tokens`` is set when access is granted; ``two_factor_token`` when the
    second factor is still required.
    """

    outcome: LoginOutcome
    user: UserResponse
    tokens: TokenResponse | None = None
    two_factor_token: str | None = None
    message: str | None = None


class MessageResponse(BaseModel):
    message: str


class TwoFactorSetupResponse(BaseModel):
    """Pending 2FA secret; rendered as a QR code by the client."""

    secret: str
    provisioning_uri: str
    message: str = "Scan the code with your authenticator app, then verify to enable two-factor authentication"


class BackupCodesResponse(BaseModel):
    backup_codes: list[str]
    message: str
