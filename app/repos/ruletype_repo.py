"""
Query mixin for rule types.
"""

import logging
from typing import Any

from sqlalchemy import delete, select

from app.db.models import RuleType
from app.repos.common import SessionBound, add_and_flush, fetch_all, fetch_one

logger = logging.getLogger(__name__)


class RuleTypeQueries(SessionBound):
    async def create_rule_type(
        self,
        *,
        project_id: str,
        provider: str,
        name: str,
        description: str,
        guidance: str,
        definition: dict[str, Any],
    ) -> RuleType:
        rule_type = await add_and_flush(
            self._db,
            RuleType(
                project_id=project_id,
                provider=provider,
                name=name,
                description=description,
                guidance=guidance,
                definition=definition,
            ),
        )
        logger.info("Created rule type %s (%s)", rule_type.id, name)
        return rule_type

    async def update_rule_type(
        self, *, rule_type_id: str, description: str, guidance: str, definition: dict[str, Any]
    ) -> RuleType:
        rule_type = await self.get_rule_type_by_id(rule_type_id)
        rule_type.description = description
        rule_type.guidance = guidance
        rule_type.definition = definition
        await self._db.flush()
        return rule_type

    async def delete_rule_type(self, rule_type_id: str) -> None:
        await self._db.execute(delete(RuleType).where(RuleType.id == rule_type_id))

    async def get_rule_type_by_id(self, rule_type_id: str) -> RuleType:
        stmt = select(RuleType).where(RuleType.id == rule_type_id)
        return await fetch_one(self._db, stmt, "rule type")

    async def get_rule_type_by_name(self, *, project_id: str, name: str) -> RuleType:
        stmt = select(RuleType).where(RuleType.project_id == project_id, RuleType.name == name)
        return await fetch_one(self._db, stmt, "rule type")

    async def list_rule_types_by_project(
        self, project_id: str, provider: str | None = None
    ) -> list[RuleType]:
        stmt = select(RuleType).where(RuleType.project_id == project_id)
        if provider:
            stmt = stmt.where(RuleType.provider == provider)
        return await fetch_all(self._db, stmt.order_by(RuleType.name))
