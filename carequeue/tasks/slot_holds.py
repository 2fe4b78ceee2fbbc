"""Scheduled task that releases lapsed slot holds.

Holds that outlive slot_hold_ttl_seconds already read as open and can be
claimed by anyone; this sweep just resets the stored rows so admin views
and reports stop showing them as held.

Usage:
    # Run directly
    python -m carequeue.tasks.slot_holds

    # Or via cron (every minute)
    * * * * * cd /path/to/project && python -m carequeue.tasks.slot_holds

    # Environment variables:
    DATABASE_URL - database connection string (defaults to settings)
"""

import asyncio
import logging
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from carequeue.core.config import settings
from carequeue.core.logging import setup_logging
from carequeue.services.slots import SlotAllocator
from carequeue.utils.time import utc_now

logger = logging.getLogger(__name__)


async def run_slot_hold_expiry_task(database_url: str | None = None) -> dict:
    """Release every hold whose expiry has passed.

    Args:
        database_url: Database connection string. Defaults to DATABASE_URL.

    Returns:
        Job results summary
    """
    db_url = database_url or settings.database_url

    # Convert sync URL to async if needed
    if db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    started_at = utc_now()
    logger.info(f"Starting slot hold expiry task at {started_at.isoformat()}")

    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with session_factory() as session:
            released = await SlotAllocator(session).release_expired_holds(started_at)
            logger.info(f"Released {released} expired slot holds")
            return {"released": released, "ran_at": started_at.isoformat()}
    finally:
        await engine.dispose()


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Release expired slot holds")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (overrides DATABASE_URL env var)",
    )
    args = parser.parse_args()

    setup_logging()
    try:
        results = asyncio.run(run_slot_hold_expiry_task(database_url=args.database_url))
        print(f"Job completed successfully: {results}")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Job failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
