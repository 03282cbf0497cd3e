"""Out-of-band sweep for expired ephemeral tokens.

Run periodically (cron, scheduler) with:

    python -m src.features.tokens.cleanup
"""

import asyncio
import logging

from src.config.settings import settings
from src.database import client as db_client

from .service import TokenLedger

logger = logging.getLogger(__name__)


async def purge_expired_tokens() -> int:
    """Delete expired tokens in their own transaction and return how many were removed."""
    async with db_client.get_session() as session:
        return await TokenLedger(session, settings.auth_policy()).purge_expired()


async def _main() -> None:
    await db_client.init_db()
    try:
        removed = await purge_expired_tokens()
        logger.info(f"Token sweep complete: {removed} removed")
    finally:
        await db_client.close_db()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    asyncio.run(_main())
