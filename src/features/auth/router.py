"""Authentication router (login, token and verification endpoints)."""

import logging

from fastapi import APIRouter, Depends, Request, status

from src.config.settings import settings
from src.features.user.models import User
from src.shared.rate_limit import limiter

from .dependencies import get_auth_service, get_current_user, get_device_info
from .schemas import (
    BackupCodesResponse,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OtpCodeRequest,
    PasswordResetRequest,
    PhoneOtpRequest,
    RefreshTokenRequest,
    RegisterRequest,
    TokenRequest,
    TokenResponse,
    TwoFactorLoginRequest,
    TwoFactorSetupResponse,
)
from .service import AuthService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    device_info: str | None = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
):
    """Register a new account.

    - **email**: Email address (validated via email-validator)
    - **password**: Password (minimum 8 characters, must include uppercase, lowercase, and digit)
    - **first_name** / **last_name**: 2-50 letters, spaces, hyphens or apostrophes
    - **phone_number**: Optional, E.164

    Returns the new user with access_token and refresh_token. A verification email is sent.
    """
    return await service.register(
        email=data.email,
        password=data.password,
        first_name=data.first_name,
        last_name=data.last_name,
        phone_number=data.phone_number,
        device_info=device_info,
    )


@router.post("/login", response_model=LoginResponse)
@limiter.limit(settings.rate_limit_login)
async def login(
    request: Request,
    data: LoginRequest,
    device_info: str | None = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
):
    """Login with email and password.

    Returns tokens, or a `two_factor_token` when two-factor authentication is
    enabled; complete the login at `/auth/2fa/login`.
    """
    return await service.login(data.email, data.password, device_info)


@router.post("/2fa/login", response_model=LoginResponse)
@limiter.limit(settings.rate_limit_login)
async def two_factor_login(
    request: Request,
    data: TwoFactorLoginRequest,
    device_info: str | None = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
):
    """Complete a login with an authenticator code or a backup code."""
    return await service.complete_two_factor_login(data.two_factor_token, data.code, device_info)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    data: RefreshTokenRequest,
    device_info: str | None = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
):
    """Refresh access token using refresh token.

    - **refresh_token**: Valid refresh token

    Returns new access_token and refresh_token. The old refresh token stops working.
    """
    return await service.refresh(data.refresh_token, device_info)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    data: RefreshTokenRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Logout and revoke refresh token.

    - **refresh_token**: Refresh token to revoke
    """
    return await service.logout(current_user, data.refresh_token)


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Revoke every session of the current user."""
    return await service.logout_all(current_user)


@router.post("/password-reset/request", response_model=MessageResponse)
@limiter.limit(settings.rate_limit_link_request)
async def request_password_reset(
    request: Request,
    data: EmailRequest,
    service: AuthService = Depends(get_auth_service),
):
    """Request a password reset link. The response is the same whether or not the email exists."""
    return await service.request_password_reset(data.email)


@router.post("/password-reset/verify", response_model=MessageResponse)
async def reset_password(data: PasswordResetRequest, service: AuthService = Depends(get_auth_service)):
    """Set a new password with a reset token. Every session is revoked."""
    return await service.reset_password(data.token, data.new_password)


@router.post("/magic-link/request", response_model=MessageResponse)
@limiter.limit(settings.rate_limit_link_request)
async def request_magic_link(
    request: Request,
    data: EmailRequest,
    service: AuthService = Depends(get_auth_service),
):
    """Request a sign-in link. The response is the same whether or not the email exists."""
    return await service.request_magic_link(data.email)


@router.post("/magic-link/verify", response_model=LoginResponse)
async def verify_magic_link(
    data: TokenRequest,
    device_info: str | None = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
):
    """Sign in with a magic link token."""
    return await service.verify_magic_link(data.token, device_info)


@router.post("/email/request-verification", response_model=MessageResponse)
@limiter.limit(settings.rate_limit_link_request)
async def request_email_verification(
    request: Request,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Send a new email verification link."""
    return await service.request_email_verification(current_user)


@router.post("/email/verify", response_model=MessageResponse)
async def verify_email(data: TokenRequest, service: AuthService = Depends(get_auth_service)):
    """Verify an email address with the emailed token."""
    return await service.verify_email(data.token)


@router.post("/phone/request-otp", response_model=MessageResponse)
@limiter.limit(settings.rate_limit_otp_request)
async def request_phone_otp(
    request: Request,
    data: PhoneOtpRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Text a verification code to a phone number."""
    return await service.request_phone_otp(current_user, data.phone_number)


@router.post("/phone/verify-otp", response_model=MessageResponse)
async def verify_phone_otp(
    data: OtpCodeRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Verify the texted code and attach the phone number to the account."""
    return await service.verify_phone_otp(current_user, data.code)


@router.post("/2fa/setup", response_model=TwoFactorSetupResponse)
async def setup_two_factor(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Start two-factor setup. Returns the secret and an otpauth:// provisioning URI."""
    return await service.setup_two_factor(current_user)


@router.post("/2fa/verify", response_model=BackupCodesResponse)
async def verify_two_factor(
    data: OtpCodeRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Confirm two-factor setup with an authenticator code. Returns backup codes."""
    return await service.verify_two_factor(current_user, data.code)


@router.post("/2fa/disable", response_model=MessageResponse)
async def disable_two_factor(
    data: OtpCodeRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Disable two-factor authentication with a current authenticator code."""
    return await service.disable_two_factor(current_user, data.code)


@router.post("/2fa/backup-codes", response_model=BackupCodesResponse)
async def regenerate_backup_codes(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Replace all backup codes with a new set."""
    return await service.regenerate_backup_codes(current_user)
