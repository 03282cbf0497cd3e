"""Application settings and configuration."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthPolicy:
    """Credential lifecycle policy handed to every auth component at construction.

    Defaults mirror the documented lifecycle: 15 minute access credentials,
    7 day sessions, a 2 hour lock after 5 failed attempts, 30 minute reset and
    magic links, 10 minute OTPs and at most 3 checks per ephemeral token.
    """

    access_token_ttl: timedelta = timedelta(minutes=15)
    refresh_token_ttl: timedelta = timedelta(days=7)
    two_factor_challenge_ttl: timedelta = timedelta(minutes=10)
    lockout_threshold: int = 5
    lock_duration: timedelta = timedelta(hours=2)
    email_verification_ttl: timedelta = timedelta(hours=24)
    password_reset_ttl: timedelta = timedelta(minutes=30)
    magic_link_ttl: timedelta = timedelta(minutes=30)
    otp_ttl: timedelta = timedelta(minutes=10)
    token_max_attempts: int = 3
    backup_code_count: int = 10
    totp_valid_window: int = 1
    totp_issuer: str = "Authflow"
    # When False a magic link grants a session even if 2FA is enabled
    magic_link_requires_two_factor: bool = False


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application (hardcoded constants)
    app_name: str = "Authflow API"
    app_version: str = "0.1.0"

    # Environment-specific settings
    debug: bool = False
    environment: str  # development, staging, production

    # Database
    database_url: str
    database_pool_size: int = 10
    database_max_overflow: int = 20
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    database_connect_timeout: int = 10
    database_command_timeout: int = 30
    database_echo: bool = False
    database_create_tables: bool = True

    # API
    api_prefix: str = "/api"
    client_url: str = "http://localhost:5173"

    # Rate limiting (slowapi, per client address)
    rate_limit_enabled: bool = True
    rate_limit_default: str = "60/minute"
    rate_limit_login: str = "10 per 15 minutes"
    rate_limit_link_request: str = "5 per 15 minutes"
    rate_limit_otp_request: str = "3/minute"

    # Signing
    jwt_access_secret: str
    jwt_refresh_secret: str
    jwt_algorithm: str = "HS256"

    # Password hashing work factor (Argon2)
    password_hash_time_cost: int = 3
    password_hash_memory_cost: int = 65536

    # Credential lifecycle
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    two_factor_challenge_expire_minutes: int = 10
    lockout_threshold: int = 5
    lock_duration_minutes: int = 120
    email_verification_expire_minutes: int = 24 * 60
    password_reset_expire_minutes: int = 30
    magic_link_expire_minutes: int = 30
    otp_expire_minutes: int = 10
    token_max_attempts: int = 3
    backup_code_count: int = 10
    totp_valid_window: int = 1
    totp_issuer: str = "Authflow"
    magic_link_requires_two_factor: bool = False

    # Notifications
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    email_from: str | None = None
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_from_number: str | None = None
    notification_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"development", "staging", "production"}
        env = str(v).lower()
        if env not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}, got {env}")
        return env

    @field_validator("lockout_threshold", "token_max_attempts", "backup_code_count")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    def auth_policy(self) -> AuthPolicy:
        """Build the lifecycle policy consumed by the auth components."""
        return AuthPolicy(
            access_token_ttl=timedelta(minutes=self.access_token_expire_minutes),
            refresh_token_ttl=timedelta(days=self.refresh_token_expire_days),
            two_factor_challenge_ttl=timedelta(minutes=self.two_factor_challenge_expire_minutes),
            lockout_threshold=self.lockout_threshold,
            lock_duration=timedelta(minutes=self.lock_duration_minutes),
            email_verification_ttl=timedelta(minutes=self.email_verification_expire_minutes),
            password_reset_ttl=timedelta(minutes=self.password_reset_expire_minutes),
            magic_link_ttl=timedelta(minutes=self.magic_link_expire_minutes),
            otp_ttl=timedelta(minutes=self.otp_expire_minutes),
            token_max_attempts=self.token_max_attempts,
            backup_code_count=self.backup_code_count,
            totp_valid_window=self.totp_valid_window,
            totp_issuer=self.totp_issuer,
            magic_link_requires_two_factor=self.magic_link_requires_two_factor,
        )


settings = Settings()  # type: ignore[call-arg]
