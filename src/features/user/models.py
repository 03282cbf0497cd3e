"""User domain models."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from pwdlib import PasswordHash
from pwdlib.hashers.argon2 import Argon2Hasher
from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.config.settings import settings
from src.database.base import Base, TimestampMixin, UTCDateTime, utcnow


class UserRole(StrEnum):
    """User role attribute carried on every identity."""

    USER = "user"
    ADMIN = "admin"
    MODERATOR = "moderator"


@dataclass(frozen=True)
class LocalCredential:
    """Identity authenticated by a password digest held locally."""

    digest: str


@dataclass(frozen=True)
class FederatedCredential:
    """Identity provisioned by an external provider; no local password."""

    provider: str
    subject: str | None


Credential = LocalCredential | FederatedCredential


pwd_hasher = PasswordHash(
    (
        Argon2Hasher(
            time_cost=settings.password_hash_time_cost,
            memory_cost=settings.password_hash_memory_cost,
        ),
    )
)


class User(Base, TimestampMixin):
    """User identity: profile, verification flags, lockout state and 2FA material.

    Users are never hard-deleted. Deactivation clears ``is_active`` and mangles
    the email so the address can be registered again.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "hashed_password IS NOT NULL OR federation_provider IS NOT NULL",
            name="ck_users_credential_present",
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity (email is stored lowercase)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True, unique=True)

    # Authentication
    hashed_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    federation_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    federation_subject: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Authorization
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.USER.value)

    # Verification
    is_email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Two-factor authentication; the secret is present while setup is pending or enabled
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    two_factor_secret: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Status and lockout
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    failed_login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Audit
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    password_changed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, default=utcnow)

    @property
    def credential(self) -> Credential:
        """The identity's credential as a tagged variant."""
        if self.hashed_password is not None:
            return LocalCredential(digest=self.hashed_password)
        if self.federation_provider is not None:
            return FederatedCredential(provider=self.federation_provider, subject=self.federation_subject)
        raise ValueError(f"User {self.id} has neither a password digest nor a federation link")

    def verify_password(self, plain_password: str) -> bool:
        """Verify a password against the stored Argon2 digest.

        Federated identities have no digest and always fail.
        """
        credential = self.credential
        if not isinstance(credential, LocalCredential):
            return False
        return pwd_hasher.verify(plain_password, credential.digest)

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using Argon2.

        Salt is automatically generated and embedded in the returned hash.
        """
        return pwd_hasher.hash(password)

    def is_account_locked(self) -> bool:
        """True while a lock is set and has not yet expired."""
        if not self.is_locked or self.locked_until is None:
            return False
        return self.locked_until > utcnow()


class BackupCode(Base):
    """Single-use two-factor fallback code."""

    __tablename__ = "backup_codes"
    __table_args__ = (UniqueConstraint("user_id", "code", name="uq_backup_codes_user_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
