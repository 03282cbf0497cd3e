"""Ephemeral token ledger: issue, redeem and consume single-use tokens."""

import logging
import secrets
from datetime import timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import AuthPolicy
from src.database.base import utcnow

from .exceptions import InvalidOrExpiredToken, TokenAlreadyUsed
from .models import TOKEN_CLASSES, EphemeralToken, TokenKind

logger = logging.getLogger(__name__)

OTP_DIGITS = 6


def generate_opaque_value() -> str:
    """64 hex characters (256 bits) for link-delivered tokens."""
    return secrets.token_hex(32)


def generate_otp() -> str:
    """Six-digit numeric one-time code, never starting with 0."""
    low = 10 ** (OTP_DIGITS - 1)
    return str(low + secrets.randbelow(9 * low))


class TokenLedger:
    """Owns ephemeral tokens: verification, reset and magic links, phone OTPs and 2FA login challenges.

    Lookup (``redeem``) is separate from consumption (``mark_used``) so callers
    can check contextual constraints before burning a token. ``mark_used`` is a
    conditional update and succeeds at most once per token, which also settles
    concurrent redemptions of the same value.
    """

    def __init__(self, session: AsyncSession, policy: AuthPolicy):
        self.session = session
        self.policy = policy

    def ttl_for(self, kind: TokenKind) -> timedelta:
        return {
            TokenKind.EMAIL_VERIFICATION: self.policy.email_verification_ttl,
            TokenKind.PASSWORD_RESET: self.policy.password_reset_ttl,
            TokenKind.MAGIC_LINK: self.policy.magic_link_ttl,
            TokenKind.PHONE_OTP: self.policy.otp_ttl,
            TokenKind.TWO_FACTOR_CHALLENGE: self.policy.two_factor_challenge_ttl,
        }[kind]

    async def issue(
        self,
        user_id: int,
        kind: TokenKind,
        ttl: timedelta | None = None,
        pending_phone_number: str | None = None,
    ) -> str:
        """Create a token and return its value.

        Args:
            user_id: Owning user
            kind: Token kind
            ttl: Lifetime override; defaults to the policy TTL for the kind
            pending_phone_number: Required for phone OTPs, rejected otherwise

        Returns:
            The token value to deliver to the user

        """
        if (kind == TokenKind.PHONE_OTP) != (pending_phone_number is not None):
            raise ValueError("pending_phone_number is required for phone OTPs and only for them")

        value = generate_otp() if kind == TokenKind.PHONE_OTP else generate_opaque_value()
        expires_at = utcnow() + (ttl or self.ttl_for(kind))

        token_cls = TOKEN_CLASSES[kind]
        fields = {"user_id": user_id, "value": value, "expires_at": expires_at, "used": False, "attempts": 0}
        if kind == TokenKind.PHONE_OTP:
            fields["pending_phone_number"] = pending_phone_number

        token = token_cls(**fields)
        self.session.add(token)
        await self.session.flush()

        logger.info(f"Issued {kind.value} token {token.id} for user {user_id}")
        return value

    async def find_valid(self, value: str, kind: TokenKind, user_id: int | None = None) -> EphemeralToken | None:
        """Newest currently valid token with this value, optionally limited to one owner."""
        token_cls = TOKEN_CLASSES[kind]
        stmt = select(token_cls).where(
            token_cls.value == value,
            ~token_cls.used,
            token_cls.expires_at > utcnow(),
            token_cls.attempts < self.policy.token_max_attempts,
        )
        if user_id is not None:
            stmt = stmt.where(token_cls.user_id == user_id)

        stmt = stmt.order_by(token_cls.id.desc()).limit(1).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def redeem(self, value: str, kind: TokenKind, user_id: int | None = None) -> EphemeralToken:
        """Find a currently valid token by value and kind.

        Does not consume the token; call ``mark_used`` once the caller has
        accepted it.

        Raises:
            InvalidOrExpiredToken: If no valid token matches

        """
        token = await self.find_valid(value, kind, user_id)
        if token is None:
            await self._log_rejection(value, kind)
            raise InvalidOrExpiredToken()

        return token

    async def mark_used(self, token: EphemeralToken) -> EphemeralToken:
        """Consume a redeemed token.

        Raises:
            TokenAlreadyUsed: If the token was already consumed

        """
        stmt = (
            update(EphemeralToken)
            .where(EphemeralToken.id == token.id, ~EphemeralToken.used)
            .values(used=True, used_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            logger.warning(f"Replay of consumed {token.kind} token {token.id}")
            raise TokenAlreadyUsed()

        await self.session.refresh(token)
        return token

    async def record_failed_check(self, token: EphemeralToken) -> EphemeralToken:
        """Count a failed contextual check against a matched token."""
        stmt = (
            update(EphemeralToken)
            .where(EphemeralToken.id == token.id)
            .values(attempts=EphemeralToken.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.refresh(token)
        return token

    async def record_failed_guess(self, user_id: int, kind: TokenKind) -> int:
        """Count a wrong code against every outstanding token of a kind for a user.

        Returns:
            Number of tokens charged

        """
        token_cls = TOKEN_CLASSES[kind]
        stmt = (
            update(EphemeralToken)
            .where(
                EphemeralToken.user_id == user_id,
                EphemeralToken.kind == kind.value,
                ~EphemeralToken.used,
                EphemeralToken.expires_at > utcnow(),
                EphemeralToken.attempts < self.policy.token_max_attempts,
            )
            .values(attempts=EphemeralToken.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        logger.info(f"Wrong {token_cls.__name__} code for user {user_id}; charged {result.rowcount} token(s)")
        return result.rowcount

    async def purge_expired(self) -> int:
        """Delete every expired token. Returns the number removed."""
        stmt = delete(EphemeralToken).where(EphemeralToken.expires_at <= utcnow())
        result = await self.session.execute(stmt)
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired ephemeral tokens")
        return result.rowcount

    async def _log_rejection(self, value: str, kind: TokenKind) -> None:
        """Log why a lookup failed; the caller only ever sees InvalidOrExpiredToken."""
        token_cls = TOKEN_CLASSES[kind]
        stmt = (
            select(token_cls)
            .where(token_cls.value == value)
            .order_by(token_cls.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        token = result.scalar_one_or_none()

        if token is None:
            reason = "unknown"
        elif token.used:
            reason = "already used"
        elif token.is_expired():
            reason = "expired"
        else:
            reason = "attempt limit reached"
        logger.info(f"Rejected {kind.value} token: {reason}")
