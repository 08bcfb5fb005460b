"""
Query mixin for projects and providers.
"""

import logging
from typing import Any

from sqlalchemy import delete, select

from app.db.models import Project, Provider
from app.repos.common import SessionBound, add_and_flush, fetch_all, fetch_one

logger = logging.getLogger(__name__)


class ProjectQueries(SessionBound):
    async def get_project_by_id(self, project_id: str) -> Project:
        stmt = select(Project).where(Project.id == project_id)
        return await fetch_one(self._db, stmt, "project")

    async def get_project_by_name(self, name: str, parent_id: str | None = None) -> Project:
        stmt = select(Project).where(Project.name == name)
        if parent_id is None:
            stmt = stmt.where(Project.parent_id.is_(None))
        else:
            stmt = stmt.where(Project.parent_id == parent_id)
        return await fetch_one(self._db, stmt, "project")

    async def get_children_projects(self, project_id: str) -> list[Project]:
        stmt = select(Project).where(Project.parent_id == project_id).order_by(Project.name)
        return await fetch_all(self._db, stmt)

    async def create_project(
        self, *, name: str, parent_id: str | None, metadata: dict[str, Any] | None = None
    ) -> Project:
        project = await add_and_flush(
            self._db,
            Project(name=name, parent_id=parent_id, project_metadata=metadata or {}),
        )
        logger.info("Created project %s (%s)", project.id, name)
        return project

    async def delete_project(self, project_id: str) -> None:
        await self._db.execute(delete(Project).where(Project.id == project_id))


class ProviderQueries(SessionBound):
    async def list_providers_by_project_id(self, project_id: str) -> list[Provider]:
        stmt = select(Provider).where(Provider.project_id == project_id).order_by(Provider.name)
        return await fetch_all(self._db, stmt)

    async def get_provider_by_name(self, *, project_id: str, name: str) -> Provider:
        stmt = select(Provider).where(Provider.project_id == project_id, Provider.name == name)
        return await fetch_one(self._db, stmt, "provider")

    async def get_provider_by_id(self, provider_id: str) -> Provider:
        stmt = select(Provider).where(Provider.id == provider_id)
        return await fetch_one(self._db, stmt, "provider")

    async def create_provider(
        self,
        *,
        project_id: str,
        name: str,
        provider_class: str,
        implements: list[str],
        config: bytes = b"{}",
    ) -> Provider:
        provider = await add_and_flush(
            self._db,
            Provider(
                project_id=project_id,
                name=name,
                provider_class=provider_class,
                implements=implements,
                config=config,
            ),
        )
        logger.info("Created provider %s in project %s", name, project_id)
        return provider

    async def find_providers(
        self, *, project_id: str, name: str | None = None, capability: str | None = None
    ) -> list[Provider]:
        stmt = select(Provider).where(Provider.project_id == project_id)
        if name:
            stmt = stmt.where(Provider.name == name)
        providers = await fetch_all(self._db, stmt.order_by(Provider.name))
        # implements is a JSON list; filter here to stay dialect neutral
        if capability:
            providers = [p for p in providers if capability in (p.implements or [])]
        return providers
