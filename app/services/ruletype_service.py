"""
Rule Type Service

Create, update, delete and read rule types within a project.

Updates to a rule type that profiles already instantiate must keep both of
its schemas backward compatible, and a rule type cannot be deleted while any
profile uses it.
"""

import logging
from typing import Any

from app.api.schemas.ruletype import RuleTypeSpec
from app.core.errors import (
    ConflictError,
    NotFoundError,
    PreconditionError,
    UnknownError,
    ValidationError,
)
from app.core.validators import (
    validate_guidance,
    validate_rule_type_definition,
    validate_rule_type_name,
)
from app.db.models import RuleType
from app.db.store import NoRowsError, Querier, Store, StoreError, UniqueViolationError, transaction
from app.db.validators import parse_uuid
from app.services.schema_update import SchemaUpdateError, validate_schema_update

logger = logging.getLogger(__name__)


def _validate_spec(spec: RuleTypeSpec) -> str:
    validate_rule_type_name(spec.name)
    guidance = validate_guidance(spec.guidance)
    validate_rule_type_definition(spec.definition)
    return guidance


def check_definition_update(old: dict[str, Any], new: dict[str, Any]) -> None:
    """
    Both schemas of `new` must accept everything `old` accepted.

    Raises:
        ValidationError: Naming the schema whose update is incompatible
    """
    try:
        validate_schema_update(old.get("rule_schema"), new.get("rule_schema"))
    except SchemaUpdateError as e:
        raise ValidationError(f"Rule schema update is invalid: {e}")

    try:
        validate_schema_update(old.get("param_schema"), new.get("param_schema"))
    except SchemaUpdateError as e:
        raise ValidationError(f"Parameter schema update is invalid: {e}")


async def _get_in_project(querier: Querier, project_id: str, rule_type_id: str) -> RuleType:
    try:
        rule_type = await querier.get_rule_type_by_id(rule_type_id)
    except NoRowsError:
        raise NotFoundError(f"rule type {rule_type_id} not found")
    except StoreError as e:
        raise UnknownError("failed to get rule type") from e

    if rule_type.project_id != project_id:
        raise NotFoundError(f"rule type {rule_type_id} not found")
    return rule_type


async def create_rule_type(
    store: Store, *, project_id: str, provider: str, spec: RuleTypeSpec
) -> RuleType:
    """
    Create a rule type in a project.

    Raises:
        ValidationError: If the name, guidance or definition is invalid
        ConflictError: If the project already has a rule type with this name
    """
    guidance = _validate_spec(spec)

    try:
        async with transaction(store) as q:
            rule_type = await q.create_rule_type(
                project_id=project_id,
                provider=provider,
                name=spec.name,
                description=spec.description,
                guidance=guidance,
                definition=spec.definition,
            )
    except UniqueViolationError:
        raise ConflictError(f"rule type {spec.name} already exists", details={"name": spec.name})
    except StoreError as e:
        raise UnknownError("failed to create rule type") from e

    logger.info(
        "Created rule type %s",
        spec.name,
        extra={"project_id": project_id, "rule_type_id": rule_type.id},
    )
    return rule_type


async def update_rule_type(
    store: Store, *, project_id: str, provider: str, spec: RuleTypeSpec
) -> RuleType:
    """
    Replace the description, guidance and definition of a rule type.

    Raises:
        NotFoundError: If no rule type with this name exists in the project
        ValidationError: If the new definition is invalid, or incompatible
            with profiles that use the rule type
        PreconditionError: If the entity kind changes while profiles use it
    """
    guidance = _validate_spec(spec)

    try:
        async with transaction(store) as q:
            try:
                existing = await q.get_rule_type_by_name(project_id=project_id, name=spec.name)
            except NoRowsError:
                raise NotFoundError(f"rule type {spec.name} not found")

            users = await q.list_profiles_instantiating_rule_type(existing.id)
            if users:
                if existing.definition.get("in_entity") != spec.definition.get("in_entity"):
                    raise PreconditionError(
                        f"cannot change entity of rule type {spec.name}: "
                        f"used by profiles {', '.join(users)}",
                        details={"profiles": users},
                    )
                check_definition_update(existing.definition, spec.definition)

            rule_type = await q.update_rule_type(
                rule_type_id=existing.id,
                description=spec.description,
                guidance=guidance,
                definition=spec.definition,
            )
    except StoreError as e:
        raise UnknownError("failed to update rule type") from e

    logger.info(
        "Updated rule type %s",
        spec.name,
        extra={"project_id": project_id, "provider": provider, "rule_type_id": rule_type.id},
    )
    return rule_type


async def delete_rule_type(store: Store, *, project_id: str, rule_type_id: str) -> None:
    """
    Delete a rule type no profile uses.

    Raises:
        ValidationError: If the id is not a UUID
        NotFoundError: If the project has no such rule type
        PreconditionError: Listing the profiles that still use it
    """
    if parse_uuid(rule_type_id) is None:
        raise ValidationError("invalid rule type ID")

    try:
        async with transaction(store) as q:
            rule_type = await _get_in_project(q, project_id, rule_type_id)

            profiles = await q.list_profiles_instantiating_rule_type(rule_type.id)
            if profiles:
                raise PreconditionError(
                    f"cannot delete: rule type {rule_type_id} is used by profiles "
                    f"{', '.join(profiles)}",
                    details={"profiles": profiles},
                )

            await q.delete_rule_type(rule_type.id)
    except StoreError as e:
        raise UnknownError("failed to delete rule type") from e

    logger.info("Deleted rule type %s", rule_type.name, extra={"project_id": project_id})


async def get_rule_type_by_id(store: Store, *, project_id: str, rule_type_id: str) -> RuleType:
    if parse_uuid(rule_type_id) is None:
        raise ValidationError("invalid rule type ID")
    async with store.read() as q:
        return await _get_in_project(q, project_id, rule_type_id)


async def get_rule_type_by_name(store: Store, *, project_id: str, name: str) -> RuleType:
    async with store.read() as q:
        try:
            return await q.get_rule_type_by_name(project_id=project_id, name=name)
        except NoRowsError:
            raise NotFoundError(f"rule type {name} not found")
        except StoreError as e:
            raise UnknownError("failed to get rule type") from e


async def list_rule_types(
    store: Store, *, project_id: str, provider: str | None = None
) -> list[RuleType]:
    async with store.read() as q:
        try:
            return await q.list_rule_types_by_project(project_id, provider)
        except StoreError as e:
            raise UnknownError("failed to get rule types") from e
