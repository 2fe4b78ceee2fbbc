"""Dialect-aware INSERT ... ON CONFLICT DO NOTHING."""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


async def insert_ignore(session: AsyncSession, model: Any, rows: list[dict]) -> None:
    """Insert rows, silently skipping any that violate a unique constraint.

    Used for rows whose identity is deterministic (materialized slots,
    per-day ledgers) so concurrent creators converge without savepoints.
    """
    if not rows:
        return

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(rows).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(rows).on_conflict_do_nothing()
    else:
        raise NotImplementedError(f"insert_ignore is not supported on {dialect}")

    await session.execute(stmt)
