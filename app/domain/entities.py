"""
Capabilities per entity kind.

Code that handles several entity kinds looks up the kind here instead of
switching on it. Each entry knows how to store a profile's rule list for that
kind, how to read it back, and how to describe an entity of that kind in a
status row.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from app.db.store import NoRowsError, Querier
from app.domain.enums import EntityKind
from app.domain.rules import RuleRef

logger = logging.getLogger(__name__)

Enricher = Callable[[Querier, str], Awaitable[dict[str, str]]]


def encode_rules(rules: list[RuleRef]) -> list[dict[str, Any]]:
    return [rule.to_row() for rule in rules]


def decode_rules(rows: list[dict[str, Any]] | None) -> list[RuleRef]:
    return [RuleRef.model_validate(row) for row in rows or []]


async def _no_enrichment(_querier: Querier, _entity_id: str) -> dict[str, str]:
    return {}


async def _enrich_repository(querier: Querier, entity_id: str) -> dict[str, str]:
    try:
        repo = await querier.get_repository_by_id(entity_id)
    except NoRowsError:
        logger.warning("repository %s not found while enriching status", entity_id)
        return {}
    return {"repo_owner": repo.repo_owner, "repo_name": repo.repo_name}


async def _enrich_artifact(querier: Querier, entity_id: str) -> dict[str, str]:
    try:
        artifact = await querier.get_artifact_by_id(entity_id)
    except NoRowsError:
        logger.warning("artifact %s not found while enriching status", entity_id)
        return {}
    return {"artifact_name": artifact.artifact_name, "artifact_type": artifact.artifact_type}


@dataclass(frozen=True)
class EntityCapabilities:
    kind: EntityKind
    encode: Callable[[list[RuleRef]], list[dict[str, Any]]]
    decode: Callable[[list[dict[str, Any]] | None], list[RuleRef]]
    enrich: Enricher


ENTITY_CAPABILITIES: dict[EntityKind, EntityCapabilities] = {
    EntityKind.REPOSITORY: EntityCapabilities(
        EntityKind.REPOSITORY, encode_rules, decode_rules, _enrich_repository
    ),
    EntityKind.ARTIFACT: EntityCapabilities(
        EntityKind.ARTIFACT, encode_rules, decode_rules, _enrich_artifact
    ),
    EntityKind.BUILD_ENVIRONMENT: EntityCapabilities(
        EntityKind.BUILD_ENVIRONMENT, encode_rules, decode_rules, _no_enrichment
    ),
    EntityKind.PULL_REQUEST: EntityCapabilities(
        EntityKind.PULL_REQUEST, encode_rules, decode_rules, _no_enrichment
    ),
}


def capabilities_for(kind: EntityKind | str) -> EntityCapabilities:
    """
    Raises:
        ValueError: If `kind` is not a known entity kind
    """
    return ENTITY_CAPABILITIES[EntityKind(kind)]
