"""
SQLAlchemy-backed implementation of the store contract.

Each transaction is one AsyncSession; the querier handed out for it is a
composition of the per-entity query mixins in `app.repos`.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.repos.profile_repo import ProfileQueries
from app.repos.project_repo import ProjectQueries, ProviderQueries
from app.repos.ruletype_repo import RuleTypeQueries
from app.repos.user_repo import UserQueries

logger = logging.getLogger(__name__)


class SqlQuerier(UserQueries, ProjectQueries, ProviderQueries, RuleTypeQueries, ProfileQueries):
    """Querier bound to one AsyncSession."""


class SqlStore:
    """Store over an async sessionmaker."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def read(self) -> AsyncIterator[SqlQuerier]:
        async with self._session_factory() as session:
            yield SqlQuerier(session)

    async def begin_transaction(self) -> AsyncSession:
        session = self._session_factory()
        await session.begin()
        return session

    def get_querier_with_transaction(self, tx: AsyncSession) -> SqlQuerier:
        return SqlQuerier(tx)

    async def commit(self, tx: AsyncSession) -> None:
        try:
            await tx.commit()
        finally:
            await tx.close()

    async def rollback(self, tx: AsyncSession) -> None:
        try:
            await tx.rollback()
        finally:
            await tx.close()
            logger.debug("Rolled back transaction")
