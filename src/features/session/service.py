"""Session registry: active refresh-credential records per user."""

import logging
from datetime import timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.base import utcnow

from .models import DEVICE_INFO_MAX_LENGTH, UserSession

logger = logging.getLogger(__name__)

DEFAULT_DEVICE = "Unknown"


def device_descriptor(device_info: str | None) -> str:
    """Stored form of a client-supplied device string, clipped to the column."""
    return (device_info or DEFAULT_DEVICE)[:DEVICE_INFO_MAX_LENGTH]


class SessionRegistry:
    """Owns the set of sessions per user.

    Each operation is a single INSERT, UPDATE or DELETE scoped to one user, so
    concurrent logins, refreshes and logouts never overwrite each other.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_session(self, user_id: int, token: str, ttl: timedelta, device_info: str | None = None) -> UserSession:
        """Record a new session. Sessions are not deduplicated by device."""
        now = utcnow()
        user_session = UserSession(
            user_id=user_id,
            token=token,
            created_at=now,
            expires_at=now + ttl,
            device_info=device_descriptor(device_info),
        )
        self.session.add(user_session)
        await self.session.flush()
        logger.info(f"Session {user_session.id} opened for user {user_id}")
        return user_session

    async def rotate(
        self,
        user_id: int,
        old_token: str,
        new_token: str,
        ttl: timedelta,
        device_info: str | None = None,
    ) -> bool:
        """Replace an unexpired session's credential in place.

        Returns:
            False if the old credential is unknown, already rotated or expired.
            Callers must treat False as an authentication failure.

        """
        now = utcnow()
        stmt = (
            update(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.token == old_token,
                UserSession.expires_at > now,
            )
            .values(
                token=new_token,
                created_at=now,
                expires_at=now + ttl,
                device_info=device_descriptor(device_info),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        rotated = result.rowcount == 1

        if not rotated:
            logger.warning(f"Refresh credential reuse or expiry detected for user {user_id}")
        return rotated

    async def revoke_one(self, user_id: int, *, token: str | None = None, session_id: int | None = None) -> bool:
        """Remove one session by credential value or id.

        Revoking a session that does not exist is not an error.

        Returns:
            True if a session was removed

        """
        if (token is None) == (session_id is None):
            raise ValueError("Pass exactly one of token or session_id")

        stmt = delete(UserSession).where(UserSession.user_id == user_id)
        if token is not None:
            stmt = stmt.where(UserSession.token == token)
        else:
            stmt = stmt.where(UserSession.id == session_id)

        result = await self.session.execute(stmt.execution_options(synchronize_session=False))
        removed = result.rowcount > 0
        if removed:
            logger.info(f"Session revoked for user {user_id}")
        return removed

    async def revoke_all(self, user_id: int, except_token: str | None = None) -> int:
        """Remove every session of a user, optionally keeping the caller's own.

        When ``except_token`` matches no session, everything is removed.

        Returns:
            Number of sessions removed

        """
        stmt = delete(UserSession).where(UserSession.user_id == user_id)
        if except_token is not None:
            stmt = stmt.where(UserSession.token != except_token)

        result = await self.session.execute(stmt.execution_options(synchronize_session=False))
        logger.info(f"Revoked {result.rowcount} session(s) for user {user_id}")
        return result.rowcount

    async def list_active(self, user_id: int) -> list[UserSession]:
        """Unexpired sessions, newest first. Expired rows are filtered, not deleted."""
        stmt = (
            select(UserSession)
            .where(UserSession.user_id == user_id, UserSession.expires_at > utcnow())
            .order_by(UserSession.created_at.desc(), UserSession.id.desc())
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
