"""Ephemeral token models (single-use, expiring verification tokens).

One table, one mapped subclass per kind. Only phone OTPs carry a payload:
the phone number is not committed to the user until the OTP is redeemed.
Two-factor login challenges live here too, so they share the same
expiry, attempt and single-use rules.
"""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, UTCDateTime, utcnow


class TokenKind(StrEnum):
    """Ephemeral token kinds."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"
    MAGIC_LINK = "magic_link"
    PHONE_OTP = "phone_otp"
    TWO_FACTOR_CHALLENGE = "two_factor_challenge"


class EphemeralToken(Base):
    """Base row for every ephemeral token kind.

    A token is valid iff it is unused, unexpired and has been checked fewer
    than the configured maximum number of times.
    """

    __tablename__ = "ephemeral_tokens"
    __table_args__ = (
        Index("ix_ephemeral_tokens_value_kind", "value", "kind"),
        Index("ix_ephemeral_tokens_user_kind", "user_id", "kind"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    value: Mapped[str] = mapped_column(String(128), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    __mapper_args__ = {"polymorphic_on": "kind"}

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())


class EmailVerificationToken(EphemeralToken):
    __mapper_args__ = {"polymorphic_identity": TokenKind.EMAIL_VERIFICATION.value}


class PasswordResetToken(EphemeralToken):
    __mapper_args__ = {"polymorphic_identity": TokenKind.PASSWORD_RESET.value}


class MagicLinkToken(EphemeralToken):
    __mapper_args__ = {"polymorphic_identity": TokenKind.MAGIC_LINK.value}


class PhoneOtpToken(EphemeralToken):
    """Six-digit OTP bound to the phone number awaiting verification."""

    pending_phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)

    __mapper_args__ = {"polymorphic_identity": TokenKind.PHONE_OTP.value}


class TwoFactorChallengeToken(EphemeralToken):
    """Pending second-factor login, referenced by the ``jti`` of the challenge credential."""

    __mapper_args__ = {"polymorphic_identity": TokenKind.TWO_FACTOR_CHALLENGE.value}


TOKEN_CLASSES: dict[TokenKind, type[EphemeralToken]] = {
    TokenKind.EMAIL_VERIFICATION: EmailVerificationToken,
    TokenKind.PASSWORD_RESET: PasswordResetToken,
    TokenKind.MAGIC_LINK: MagicLinkToken,
    TokenKind.PHONE_OTP: PhoneOtpToken,
    TokenKind.TWO_FACTOR_CHALLENGE: TwoFactorChallengeToken,
}
