"""
Common helpers shared by the SQL query mixins.

All functions are async - use AsyncSession from SQLAlchemy.
"""

import logging
from typing import Any

from sqlalchemy import Select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.store import NoRowsError, UniqueViolationError

logger = logging.getLogger(__name__)

# SQLSTATE for unique_violation
_UNIQUE_VIOLATION = "23505"

__all__ = ["SessionBound", "fetch_one", "fetch_all", "add_and_flush"]


class SessionBound:
    """Base for query mixins; holds the session of the current unit of work."""

    def __init__(self, db: AsyncSession):
        self._db = db


def _is_unique_violation(err: IntegrityError) -> bool:
    orig = getattr(err, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate == _UNIQUE_VIOLATION
    return "unique" in str(err).lower()


async def fetch_one(db: AsyncSession, stmt: Select[Any], what: str) -> Any:
    """Execute a single-row query.

    Raises:
        NoRowsError: If no row matches
    """
    result = await db.execute(stmt)
    row = result.scalar_one_or_none()
    if row is None:
        raise NoRowsError(f"{what} not found")
    return row


async def fetch_all(db: AsyncSession, stmt: Select[Any]) -> list[Any]:
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def add_and_flush(db: AsyncSession, row: Any) -> Any:
    """Insert a row and flush so generated columns are populated.

    The insert runs inside a savepoint, so a collision leaves the enclosing
    transaction usable.

    Raises:
        UniqueViolationError: If the row collides with a unique constraint
    """
    try:
        async with db.begin_nested():
            db.add(row)
    except IntegrityError as e:
        if _is_unique_violation(e):
            logger.info("Unique violation inserting %s", type(row).__name__)
            raise UniqueViolationError(str(e.orig)) from e
        raise
    return row
