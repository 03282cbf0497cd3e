"""User schemas (DTOs)."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from src.shared.validators.names import validate_person_name
from src.shared.validators.password import validate_password_strength
from src.shared.validators.phone import validate_phone_number

from .models import UserRole


# Request schemas
class UserUpdateRequest(BaseModel):
    """Profile update request; omitted fields are left unchanged."""

    first_name: str | None = Field(None, max_length=50)
    last_name: str | None = Field(None, max_length=50)
    phone_number: str | None = Field(None, description="E.164 phone number")

    @field_validator("first_name", "last_name")
    @classmethod
    def check_name(cls, value: str | None) -> str | None:
        return None if value is None else validate_person_name(value)

    @field_validator("phone_number")
    @classmethod
    def check_phone(cls, value: str | None) -> str | None:
        return None if value is None else validate_phone_number(value)


class PasswordChangeRequest(BaseModel):
    """Password change request."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, description="Password must be at least 8 characters")
    confirm_new_password: str = Field(..., min_length=8)
    refresh_token: str | None = Field(None, description="Caller's session to keep; all others are revoked")

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value):
        """Validate password strength using shared validator."""
        return validate_password_strength(value)

    @field_validator("confirm_new_password")
    @classmethod
    def passwords_match(cls, value, info):
        """Validate that new_password and confirm_new_password match."""
        if "new_password" in info.data and value != info.data["new_password"]:
            raise ValueError("New passwords do not match")
        return value


class RevokeOtherSessionsRequest(BaseModel):
    """Revoke every session except the caller's current one."""

    current_refresh_token: str | None = None


# Response schemas
class UserResponse(BaseModel):
    """User response."""

    id: int
    email: EmailStr
    first_name: str
    last_name: str
    phone_number: str | None = None
    role: UserRole
    is_email_verified: bool
    is_phone_verified: bool
    two_factor_enabled: bool
    is_active: bool
    created_at: datetime
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}


class SessionResponse(BaseModel):
    """Active session; the credential value itself is never returned."""

    id: int
    device_info: str
    created_at: datetime
    expires_at: datetime

    model_config = {"from_attributes": True}


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    total: int
