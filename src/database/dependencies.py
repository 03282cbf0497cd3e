"""Database dependencies."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from src.database.client import get_session


async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """Get a database session.

    The session commits when the request handler returns and rolls back if it
    raises. Handlers that must persist state before raising (lockout
    accounting, token attempt counters) commit explicitly.
    """
    async with get_session() as session:
        yield session
