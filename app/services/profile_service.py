"""
Profile Service

Transactional create/update/delete of profiles and the rule-instantiation
bookkeeping behind them, plus status reads.

Write flows run inside a single store transaction; any failure rolls back the
whole profile. A `profile-initialised` event is published only after the
transaction commits, and a publish failure never fails the call.
"""

import logging
from datetime import datetime

from app.api.schemas.context import EntityContextResponse
from app.api.schemas.profile import (
    EntitySelector,
    ProfilePatch,
    ProfileResponse,
    ProfileSpec,
    ProfileStatus,
    ProfileStatusResponse,
    RuleEvaluationStatus,
)
from app.core.errors import ConflictError, NotFoundError, UnknownError, ValidationError
from app.core.events import (
    PROFILE_INITIALISED_TOPIC,
    EventPublisher,
    ProfileInitialised,
    publish_safely,
)
from app.core.providers import get_provider_or_not_found
from app.db.models import Profile, RuleEvaluation, RuleType
from app.db.store import NoRowsError, Querier, Store, StoreError, UniqueViolationError, transaction
from app.db.validators import parse_uuid
from app.domain.entities import capabilities_for
from app.domain.enums import GUIDANCE_STATUSES, EntityKind, EvalStatus
from app.domain.rules import RuleRef
from app.services.profile_validation import (
    RuleInstance,
    RuleMapping,
    populate_rule_names,
    validate_and_extract_rules,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Helpers
# ============================================================================


def _profile_id_or_error(profile_id: str) -> str:
    parsed = parse_uuid(profile_id)
    if parsed is None:
        raise ValidationError("invalid profile ID")
    return parsed


async def _rules_of(querier: Querier, profile_id: str) -> dict[EntityKind, list[RuleRef]]:
    rules: dict[EntityKind, list[RuleRef]] = {kind: [] for kind in EntityKind}
    for entity_profile in await querier.list_entity_profiles(profile_id):
        caps = capabilities_for(entity_profile.entity)
        rules[caps.kind] = caps.decode(entity_profile.contextual_rules)
    return rules


def _build_response(profile: Profile, rules: dict[EntityKind, list[RuleRef]]) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        name=profile.name,
        context=EntityContextResponse(project=profile.project_id, provider=profile.provider),
        remediate=profile.remediate,
        alert=profile.alert,
        **{kind.value: rules.get(kind, []) for kind in EntityKind},
    )


async def _old_rule_mapping(querier: Querier, profile: Profile) -> RuleMapping:
    """Rule instances currently stored for `profile`, keyed like a new mapping."""
    mapping: RuleMapping = {}
    rule_types: dict[str, RuleType | None] = {}
    for kind, rules in (await _rules_of(querier, profile.id)).items():
        for rule in rules:
            if rule.type not in rule_types:
                try:
                    rule_types[rule.type] = await querier.get_rule_type_by_name(
                        project_id=profile.project_id, name=rule.type
                    )
                except NoRowsError:
                    logger.warning(
                        "profile %s references missing rule type %s", profile.id, rule.type
                    )
                    rule_types[rule.type] = None
            rule_type = rule_types[rule.type]
            if rule_type is None:
                continue
            mapping[(kind, rule_type.name, rule.effective_name)] = RuleInstance(
                entity=kind,
                rule_type_id=rule_type.id,
                rule_type_name=rule_type.name,
                rule_name=rule.effective_name,
            )
    return mapping


async def _write_entity_rules(
    querier: Querier,
    profile_id: str,
    spec: ProfileSpec,
    new_rules: RuleMapping,
    old_rules: RuleMapping,
    *,
    creating: bool,
) -> None:
    for kind, rules in spec.rules_by_entity().items():
        new_type_ids = {i.rule_type_id for key, i in new_rules.items() if key[0] == kind}
        old_type_ids = {i.rule_type_id for key, i in old_rules.items() if key[0] == kind}

        if not rules:
            if not creating:
                await querier.delete_profile_for_entity(profile_id=profile_id, entity=kind.value)
            continue

        encoded = capabilities_for(kind).encode(rules)
        if creating:
            entity_profile = await querier.create_profile_for_entity(
                profile_id=profile_id, entity=kind.value, contextual_rules=encoded
            )
        else:
            entity_profile = await querier.upsert_profile_for_entity(
                profile_id=profile_id, entity=kind.value, contextual_rules=encoded
            )

        for rule_type_id in sorted(new_type_ids):
            await querier.upsert_rule_instantiation(
                entity_profile_id=entity_profile.id, rule_type_id=rule_type_id
            )
        for rule_type_id in sorted(old_type_ids - new_type_ids):
            await querier.delete_rule_instantiation(
                entity_profile_id=entity_profile.id, rule_type_id=rule_type_id
            )


async def _send_profile_initialised(
    publisher: EventPublisher, *, provider_name: str, project_id: str
) -> None:
    await publish_safely(
        publisher,
        PROFILE_INITIALISED_TOPIC,
        ProfileInitialised(provider_name=provider_name, project_id=project_id),
    )


# ============================================================================
# Writes
# ============================================================================


async def create_profile(
    store: Store,
    publisher: EventPublisher,
    *,
    project_id: str,
    provider_name: str,
    spec: ProfileSpec,
) -> ProfileResponse:
    """
    Create a profile with its per-entity rules.

    Raises:
        NotFoundError: If the provider does not exist in the project
        ValidationError: If the profile or one of its rules is invalid
        ConflictError: If the project already has a profile with this name
    """
    provider_name = spec.provider or provider_name

    try:
        async with transaction(store) as q:
            provider = await get_provider_or_not_found(q, project_id, provider_name)
            rules = await validate_and_extract_rules(
                q, project_id=project_id, provider=provider.name, spec=spec
            )
            spec = populate_rule_names(spec)

            try:
                profile = await q.create_profile(
                    project_id=project_id,
                    provider=provider.name,
                    name=spec.name,
                    remediate=spec.remediate.value,
                    alert=spec.alert.value,
                )
            except UniqueViolationError:
                raise ConflictError("profile already exists", details={"name": spec.name})

            await _write_entity_rules(q, profile.id, spec, rules, {}, creating=True)
    except StoreError as e:
        logger.error("error creating profile %s: %s", spec.name, e)
        raise UnknownError("error creating profile") from e

    logger.info("Created profile %s", profile.name, extra={"profile_id": profile.id})

    await _send_profile_initialised(
        publisher, provider_name=profile.provider, project_id=project_id
    )
    return _build_response(profile, spec.rules_by_entity())


async def _lock_for_update(querier: Querier, project_id: str, spec: ProfileSpec) -> Profile:
    try:
        if spec.id:
            profile = await querier.get_profile_by_id_and_lock(_profile_id_or_error(spec.id))
        else:
            profile = await querier.get_profile_by_name_and_lock(
                project_id=project_id, name=spec.name
            )
    except NoRowsError:
        raise NotFoundError("profile not found")

    if profile.project_id != project_id:
        raise NotFoundError("profile not found")
    return profile


def _check_immutable_fields(
    old: Profile, spec: ProfileSpec, project_id: str, provider_name: str | None
) -> None:
    if old.name != spec.name:
        raise ValidationError("invalid profile update: cannot change profile name")
    if old.project_id != project_id:
        raise ValidationError("invalid profile update: cannot change profile project")
    requested = spec.provider or provider_name
    if requested and requested != old.provider:
        raise ValidationError("invalid profile update: cannot change profile provider")


async def _update_locked(
    querier: Querier, old: Profile, spec: ProfileSpec, project_id: str, provider_name: str | None
) -> tuple[Profile, ProfileSpec]:
    _check_immutable_fields(old, spec, project_id, provider_name)

    new_rules = await validate_and_extract_rules(
        querier, project_id=project_id, provider=old.provider, spec=spec
    )
    spec = populate_rule_names(spec)
    old_rules = await _old_rule_mapping(querier, old)

    profile = await querier.update_profile(
        profile_id=old.id, remediate=spec.remediate.value, alert=spec.alert.value
    )

    await _write_entity_rules(querier, profile.id, spec, new_rules, old_rules, creating=False)

    for key in sorted(old_rules.keys() - new_rules.keys()):
        dropped = old_rules[key]
        await querier.delete_rule_statuses_for_profile_and_rule_type(
            profile_id=profile.id, rule_type_id=dropped.rule_type_id, rule_name=dropped.rule_name
        )

    return profile, spec


async def update_profile(
    store: Store,
    publisher: EventPublisher,
    *,
    project_id: str,
    provider_name: str | None,
    spec: ProfileSpec,
) -> ProfileResponse:
    """
    Replace a profile's actions and rules.

    The stored profile is locked for the duration of the transaction. Rules
    that leave the profile lose their instantiations and evaluation status.

    Raises:
        NotFoundError: If the profile does not exist in the project
        ValidationError: If the update is invalid or changes an immutable field
    """
    try:
        async with transaction(store) as q:
            old = await _lock_for_update(q, project_id, spec)
            profile, spec = await _update_locked(q, old, spec, project_id, provider_name)
    except StoreError as e:
        logger.error("error updating profile %s: %s", spec.name, e)
        raise UnknownError("error updating profile") from e

    logger.info("Updated profile %s", profile.name, extra={"profile_id": profile.id})

    await _send_profile_initialised(
        publisher, provider_name=profile.provider, project_id=project_id
    )
    return _build_response(profile, spec.rules_by_entity())


async def patch_profile(
    store: Store,
    publisher: EventPublisher,
    *,
    project_id: str,
    profile_id: str,
    patch: ProfilePatch,
) -> ProfileResponse:
    """Apply the fields set in `patch` to a stored profile, then update it."""
    profile_id = _profile_id_or_error(profile_id)
    changes = patch.model_dump(exclude_unset=True, exclude_none=True, by_alias=True)

    try:
        async with transaction(store) as q:
            try:
                old = await q.get_profile_by_id_and_lock(profile_id)
            except NoRowsError:
                raise NotFoundError("profile not found")
            if old.project_id != project_id:
                raise NotFoundError("profile not found")

            current = await _rules_of(q, old.id)
            base = ProfileSpec(
                id=old.id,
                name=old.name,
                remediate=old.remediate,
                alert=old.alert,
                **{kind.value: current[kind] for kind in EntityKind},
            )
            spec = ProfileSpec.model_validate({**base.model_dump(by_alias=True), **changes})
            profile, spec = await _update_locked(q, old, spec, project_id, None)
    except StoreError as e:
        logger.error("error patching profile %s: %s", profile_id, e)
        raise UnknownError("error updating profile") from e

    await _send_profile_initialised(
        publisher, provider_name=profile.provider, project_id=project_id
    )
    return _build_response(profile, spec.rules_by_entity())


async def delete_profile(store: Store, *, project_id: str, profile_id: str) -> None:
    """
    Raises:
        ValidationError: If the id is not a UUID
        NotFoundError: If the project has no such profile
    """
    profile_id = _profile_id_or_error(profile_id)

    try:
        async with transaction(store) as q:
            try:
                profile = await q.get_profile_by_id(profile_id)
            except NoRowsError:
                raise NotFoundError("profile not found")
            if profile.project_id != project_id:
                raise NotFoundError("profile not found")

            for entity_profile in await q.list_entity_profiles(profile.id):
                await q.delete_profile_for_entity(
                    profile_id=profile.id, entity=entity_profile.entity
                )
            await q.delete_profile(profile.id)
    except StoreError as e:
        raise UnknownError("failed to delete profile") from e

    logger.info("Deleted profile %s", profile.name, extra={"profile_id": profile.id})


# ============================================================================
# Reads
# ============================================================================


async def get_profile_by_id(store: Store, *, project_id: str, profile_id: str) -> ProfileResponse:
    profile_id = _profile_id_or_error(profile_id)
    async with store.read() as q:
        try:
            profile = await q.get_profile_by_id(profile_id)
        except NoRowsError:
            raise NotFoundError("profile not found")
        if profile.project_id != project_id:
            raise NotFoundError("profile not found")
        return _build_response(profile, await _rules_of(q, profile.id))


async def get_profile_by_name(store: Store, *, project_id: str, name: str) -> ProfileResponse:
    async with store.read() as q:
        try:
            profile = await q.get_profile_by_name(project_id=project_id, name=name)
        except NoRowsError:
            raise NotFoundError(f"profile {name} not found")
        return _build_response(profile, await _rules_of(q, profile.id))


async def list_profiles(store: Store, *, project_id: str) -> list[ProfileResponse]:
    async with store.read() as q:
        try:
            profiles = await q.list_profiles_by_project_id(project_id)
        except StoreError as e:
            raise UnknownError("failed to get profiles") from e
        return [_build_response(p, await _rules_of(q, p.id)) for p in profiles]


# ============================================================================
# Status
# ============================================================================


_STATUS_PRECEDENCE = (
    EvalStatus.FAILURE,
    EvalStatus.ERROR,
    EvalStatus.SUCCESS,
    EvalStatus.SKIPPED,
)


def aggregate_status(statuses: list[str]) -> str:
    """Failure beats error beats success beats skipped; nothing means pending."""
    present = set(statuses)
    for status in _STATUS_PRECEDENCE:
        if status.value in present:
            return status.value
    return EvalStatus.PENDING.value


def _is_reportable(row: RuleEvaluation) -> bool:
    return row.eval_status is not None and row.eval_last_updated is not None


def _last_updated(rows: list[RuleEvaluation]) -> datetime | None:
    stamps = [r.eval_last_updated for r in rows if r.eval_last_updated is not None]
    return max(stamps) if stamps else None


async def _profile_status(querier: Querier, profile: Profile) -> ProfileStatus:
    evaluations = await querier.list_rule_evaluations_by_profile_id(profile.id)
    rows = [r for r in evaluations if _is_reportable(r)]
    return ProfileStatus(
        profile_id=profile.id,
        profile_name=profile.name,
        profile_status=aggregate_status([r.eval_status for r in rows]),
        last_updated=_last_updated(rows),
    )


async def _rule_type_for_status(
    querier: Querier, cache: dict[str, RuleType | None], rule_type_id: str
) -> RuleType | None:
    if rule_type_id not in cache:
        try:
            cache[rule_type_id] = await querier.get_rule_type_by_id(rule_type_id)
        except StoreError as e:
            logger.warning("cannot load rule type %s for status: %s", rule_type_id, e)
            cache[rule_type_id] = None
    return cache[rule_type_id]


async def _evaluation_status(
    querier: Querier, row: RuleEvaluation, rule_type: RuleType | None
) -> RuleEvaluationStatus:
    guidance = ""
    if rule_type is not None and row.eval_status in {s.value for s in GUIDANCE_STATUSES}:
        guidance = rule_type.guidance

    try:
        entity_info = await capabilities_for(row.entity).enrich(querier, row.entity_id)
    except (StoreError, ValueError) as e:
        logger.warning("cannot enrich %s %s: %s", row.entity, row.entity_id, e)
        entity_info = {}

    return RuleEvaluationStatus(
        profile_id=row.profile_id,
        rule_id=row.rule_type_id,
        rule_name=row.rule_name,
        rule_type_name=rule_type.name if rule_type is not None else "",
        entity=row.entity,
        entity_id=row.entity_id,
        status=row.eval_status,
        details=row.eval_details or "",
        last_updated=row.eval_last_updated,
        remediation_status=row.remediation_status,
        remediation_details=row.remediation_details or "",
        remediation_last_updated=row.remediation_last_updated,
        entity_info=entity_info,
        guidance=guidance,
    )


async def get_profile_status_by_name(
    store: Store,
    *,
    project_id: str,
    name: str,
    selector: EntitySelector | None = None,
    rule_name: str | None = None,
) -> ProfileStatusResponse:
    """
    Aggregate status of a profile plus its rule evaluation rows.

    Rows may be narrowed by entity id, entity kind and rule name. Failed and
    errored rows carry the rule type's guidance.

    Raises:
        NotFoundError: If the profile does not exist in the project
    """
    selector = selector or EntitySelector()
    if selector.id is not None and parse_uuid(selector.id) is None:
        raise ValidationError("invalid entity ID in entity selector")

    async with store.read() as q:
        try:
            profile = await q.get_profile_by_name(project_id=project_id, name=name)
        except NoRowsError:
            raise NotFoundError(f"profile {name} not found")

        profile_status = await _profile_status(q, profile)

        rows = await q.list_rule_evaluations_by_profile_id(
            profile.id,
            entity=selector.type.value if selector.type else None,
            entity_id=selector.id,
            rule_name=rule_name,
        )

        cache: dict[str, RuleType | None] = {}
        statuses = []
        for row in rows:
            if not _is_reportable(row):
                continue
            rule_type = await _rule_type_for_status(q, cache, row.rule_type_id)
            statuses.append(await _evaluation_status(q, row, rule_type))

    return ProfileStatusResponse(profile_status=profile_status, rule_evaluation_status=statuses)


async def get_profile_status_by_project(store: Store, *, project_id: str) -> list[ProfileStatus]:
    async with store.read() as q:
        try:
            profiles = await q.list_profiles_by_project_id(project_id)
        except StoreError as e:
            raise UnknownError("failed to get profile status") from e
        return [await _profile_status(q, p) for p in profiles]
