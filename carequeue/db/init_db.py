"""Database initialization for development and tests."""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

# Import models so every table is registered on the metadata
import carequeue.models  # noqa: F401
from carequeue.db.base import Base

logger = logging.getLogger(__name__)


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created")
