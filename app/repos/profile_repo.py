"""
Query mixin for profiles, their per-entity rule rows, rule instantiations
and the evaluation status rows written by the engine.
"""

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert

from app.db.models import (
    Artifact,
    EntityProfile,
    Profile,
    Repository,
    RuleEvaluation,
    RuleInstantiation,
)
from app.repos.common import SessionBound, add_and_flush, fetch_all, fetch_one

logger = logging.getLogger(__name__)


class ProfileQueries(SessionBound):
    async def create_profile(
        self, *, project_id: str, provider: str, name: str, remediate: str, alert: str
    ) -> Profile:
        profile = await add_and_flush(
            self._db,
            Profile(
                project_id=project_id,
                provider=provider,
                name=name,
                remediate=remediate,
                alert=alert,
            ),
        )
        logger.info("Created profile %s (%s)", profile.id, name)
        return profile

    async def update_profile(self, *, profile_id: str, remediate: str, alert: str) -> Profile:
        profile = await self.get_profile_by_id(profile_id)
        profile.remediate = remediate
        profile.alert = alert
        await self._db.flush()
        return profile

    async def delete_profile(self, profile_id: str) -> None:
        await self._db.execute(delete(Profile).where(Profile.id == profile_id))

    async def get_profile_by_id(self, profile_id: str) -> Profile:
        stmt = select(Profile).where(Profile.id == profile_id)
        return await fetch_one(self._db, stmt, "profile")

    async def get_profile_by_name(self, *, project_id: str, name: str) -> Profile:
        stmt = select(Profile).where(Profile.project_id == project_id, Profile.name == name)
        return await fetch_one(self._db, stmt, "profile")

    async def get_profile_by_id_and_lock(self, profile_id: str) -> Profile:
        stmt = select(Profile).where(Profile.id == profile_id).with_for_update()
        return await fetch_one(self._db, stmt, "profile")

    async def get_profile_by_name_and_lock(self, *, project_id: str, name: str) -> Profile:
        stmt = (
            select(Profile)
            .where(Profile.project_id == project_id, Profile.name == name)
            .with_for_update()
        )
        return await fetch_one(self._db, stmt, "profile")

    async def list_profiles_by_project_id(self, project_id: str) -> list[Profile]:
        stmt = select(Profile).where(Profile.project_id == project_id).order_by(Profile.name)
        return await fetch_all(self._db, stmt)

    async def list_entity_profiles(self, profile_id: str) -> list[EntityProfile]:
        stmt = (
            select(EntityProfile)
            .where(EntityProfile.profile_id == profile_id)
            .order_by(EntityProfile.entity)
        )
        return await fetch_all(self._db, stmt)

    async def create_profile_for_entity(
        self, *, profile_id: str, entity: str, contextual_rules: list[dict[str, Any]]
    ) -> EntityProfile:
        return await add_and_flush(
            self._db,
            EntityProfile(profile_id=profile_id, entity=entity, contextual_rules=contextual_rules),
        )

    async def upsert_profile_for_entity(
        self, *, profile_id: str, entity: str, contextual_rules: list[dict[str, Any]]
    ) -> EntityProfile:
        stmt = (
            insert(EntityProfile)
            .values(profile_id=profile_id, entity=entity, contextual_rules=contextual_rules)
            .on_conflict_do_update(
                constraint="entity_profiles_profile_id_entity_key",
                set_={"contextual_rules": contextual_rules},
            )
            .returning(EntityProfile)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one()

    async def delete_profile_for_entity(self, *, profile_id: str, entity: str) -> None:
        await self._db.execute(
            delete(EntityProfile).where(
                EntityProfile.profile_id == profile_id, EntityProfile.entity == entity
            )
        )

    async def upsert_rule_instantiation(
        self, *, entity_profile_id: str, rule_type_id: str
    ) -> RuleInstantiation:
        stmt = (
            insert(RuleInstantiation)
            .values(entity_profile_id=entity_profile_id, rule_type_id=rule_type_id)
            .on_conflict_do_update(
                constraint="rule_instantiations_entity_profile_id_rule_type_id_key",
                set_={"rule_type_id": rule_type_id},
            )
            .returning(RuleInstantiation)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one()

    async def delete_rule_instantiation(
        self, *, entity_profile_id: str, rule_type_id: str
    ) -> None:
        await self._db.execute(
            delete(RuleInstantiation).where(
                RuleInstantiation.entity_profile_id == entity_profile_id,
                RuleInstantiation.rule_type_id == rule_type_id,
            )
        )

    async def list_profiles_instantiating_rule_type(self, rule_type_id: str) -> list[str]:
        stmt = (
            select(Profile.name)
            .join(EntityProfile, EntityProfile.profile_id == Profile.id)
            .join(RuleInstantiation, RuleInstantiation.entity_profile_id == EntityProfile.id)
            .where(RuleInstantiation.rule_type_id == rule_type_id)
            .distinct()
            .order_by(Profile.name)
        )
        return await fetch_all(self._db, stmt)

    async def list_rule_evaluations_by_profile_id(
        self,
        profile_id: str,
        *,
        entity: str | None = None,
        entity_id: str | None = None,
        rule_name: str | None = None,
    ) -> list[RuleEvaluation]:
        stmt = select(RuleEvaluation).where(RuleEvaluation.profile_id == profile_id)
        if entity:
            stmt = stmt.where(RuleEvaluation.entity == entity)
        if entity_id:
            stmt = stmt.where(RuleEvaluation.entity_id == entity_id)
        if rule_name:
            stmt = stmt.where(RuleEvaluation.rule_name == rule_name)
        return await fetch_all(
            self._db, stmt.order_by(RuleEvaluation.rule_name, RuleEvaluation.entity_id)
        )

    async def delete_rule_statuses_for_profile_and_rule_type(
        self, *, profile_id: str, rule_type_id: str, rule_name: str
    ) -> None:
        await self._db.execute(
            delete(RuleEvaluation).where(
                RuleEvaluation.profile_id == profile_id,
                RuleEvaluation.rule_type_id == rule_type_id,
                RuleEvaluation.rule_name == rule_name,
            )
        )

    async def get_repository_by_id(self, repository_id: str) -> Repository:
        stmt = select(Repository).where(Repository.id == repository_id)
        return await fetch_one(self._db, stmt, "repository")

    async def get_artifact_by_id(self, artifact_id: str) -> Artifact:
        stmt = select(Artifact).where(Artifact.id == artifact_id)
        return await fetch_one(self._db, stmt, "artifact")
