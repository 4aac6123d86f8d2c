"""Refresh-token housekeeping."""

from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select

from taskwire.db.engine import SessionFactory
from taskwire.db.models import RefreshToken

logger = structlog.get_logger()

CLEANUP_BATCH_SIZE = 100


async def clean_expired_tokens(session_factory: SessionFactory) -> int:
    """Delete every refresh token past its expiry. Returns the number removed.

    All batches run in one transaction: either every expired token goes,
    or none does.
    """
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        async with session.begin():
            result = await session.execute(
                select(RefreshToken.id).where(RefreshToken.expires_at < now)
            )
            expired_ids = list(result.scalars())

            for start in range(0, len(expired_ids), CLEANUP_BATCH_SIZE):
                batch = expired_ids[start:start + CLEANUP_BATCH_SIZE]
                await session.execute(delete(RefreshToken).where(RefreshToken.id.in_(batch)))

    logger.info("tasks.tokens_cleaned", deleted=len(expired_ids))
    return len(expired_ids)
