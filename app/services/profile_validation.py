"""
Profile validation.

Checks a submitted profile and resolves each of its rule references to the
rule type it instantiates. Every failure is an InvalidArgument error naming
the offending rule type.
"""

import logging
from dataclasses import dataclass

from app.api.schemas.profile import ProfileSpec
from app.core.errors import ValidationError
from app.core.validators import schema_violation, validate_resource_name
from app.db.models import RuleType
from app.db.store import NoRowsError, Querier
from app.domain.enums import EntityKind
from app.domain.rules import RuleRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleInstance:
    """A rule reference resolved to its rule type."""

    entity: EntityKind
    rule_type_id: str
    rule_type_name: str
    rule_name: str


# (entity, rule type name, rule name) -> instance
RuleMapping = dict[tuple[EntityKind, str, str], RuleInstance]


class RuleViolation(Exception):
    def __init__(self, rule_type: str, message: str):
        self.rule_type = rule_type
        self.message = message
        super().__init__(f"{rule_type}: {message}")


def validate_rule_names(kind: EntityKind, rules: list[RuleRef]) -> None:
    """
    Rule names must be unique within an entity kind.

    An unnamed rule is named after its rule type, and an explicit name may
    not be the name of a different rule type used in the same list.

    Raises:
        ValidationError: Describing the first conflict
    """
    types = {rule.type for rule in rules}
    seen: dict[str, str] = {}

    for rule in rules:
        if rule.name and rule.name != rule.type and rule.name in types:
            raise ValidationError(
                f"profile failed rule name validation: rule name '{rule.name}' conflicts "
                f"with a rule type in entity '{kind.value}'"
            )

        name = rule.effective_name
        if name in seen:
            raise ValidationError(
                f"profile failed rule name validation: multiple rules named '{name}' "
                f"in entity '{kind.value}', assign unique names to rules"
            )
        seen[name] = rule.type


def check_rule_against_type(kind: EntityKind, rule: RuleRef, rule_type: RuleType) -> None:
    """
    Raises:
        RuleViolation: If the reference does not fit the rule type
    """
    definition = rule_type.definition or {}

    in_entity = definition.get("in_entity")
    if in_entity != kind.value:
        raise RuleViolation(
            rule.type, f"rule type expects entity {in_entity}, but was given entity {kind.value}"
        )

    problem = schema_violation(definition.get("rule_schema"), rule.def_)
    if problem is not None:
        raise RuleViolation(rule.type, f"invalid rule definition: {problem}")

    problem = schema_violation(definition.get("param_schema"), rule.params)
    if problem is not None:
        raise RuleViolation(rule.type, f"invalid rule parameters: {problem}")


async def validate_and_extract_rules(
    querier: Querier, *, project_id: str, provider: str, spec: ProfileSpec
) -> RuleMapping:
    """
    Validate a profile and map each rule to the rule type it uses.

    Raises:
        ValidationError: If the profile or any rule reference is invalid
    """
    validate_resource_name(spec.name, "profile name")

    rules_by_entity = spec.rules_by_entity()
    if not any(rules_by_entity.values()):
        raise ValidationError("invalid profile: profile must have at least one rule")

    mapping: RuleMapping = {}
    cache: dict[str, RuleType] = {}

    for kind, rules in rules_by_entity.items():
        validate_rule_names(kind, rules)

        for rule in rules:
            try:
                rule_type = cache.get(rule.type)
                if rule_type is None:
                    try:
                        rule_type = await querier.get_rule_type_by_name(
                            project_id=project_id, name=rule.type
                        )
                    except NoRowsError:
                        raise RuleViolation(rule.type, f"cannot find rule type {rule.type}")
                    if rule_type.provider != provider:
                        raise RuleViolation(rule.type, f"cannot find rule type {rule.type}")
                    cache[rule.type] = rule_type

                check_rule_against_type(kind, rule, rule_type)
            except RuleViolation as violation:
                logger.info("Rejected profile %s: %s", spec.name, violation)
                raise ValidationError(
                    f"profile contained invalid rule '{violation.rule_type}': {violation.message}",
                    details={"rule_type": violation.rule_type},
                )

            instance = RuleInstance(
                entity=kind,
                rule_type_id=rule_type.id,
                rule_type_name=rule_type.name,
                rule_name=rule.effective_name,
            )
            mapping[(kind, instance.rule_type_name, instance.rule_name)] = instance

    return mapping


def populate_rule_names(spec: ProfileSpec) -> ProfileSpec:
    """Copy of `spec` where every rule carries its effective name."""
    update = {
        kind.value: [rule.model_copy(update={"name": rule.effective_name}) for rule in rules]
        for kind, rules in spec.rules_by_entity().items()
    }
    return spec.model_copy(update=update)
