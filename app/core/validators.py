"""Shared validators for rule types, profiles and their JSON schemas."""

import re
from html.parser import HTMLParser
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError, best_match

from app.core.errors import ValidationError
from app.domain.enums import EntityKind

MAX_GUIDANCE_BYTES = 4096

RULE_TYPE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9](?:[-_/.A-Za-z0-9]*[A-Za-z0-9])?$")

# Profile and project names: DNS-style, at most 63 characters
NAME_PATTERN = re.compile(r"^[a-zA-Z0-9](?:[-_a-zA-Z0-9]{0,61}[a-zA-Z0-9])?$")


class _TagDetector(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.found_tag: str | None = None

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self.found_tag = self.found_tag or tag

    def handle_endtag(self, tag: str) -> None:
        self.found_tag = self.found_tag or tag

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self.found_tag = self.found_tag or tag


def find_html_tag(text: str) -> str | None:
    """Return the first markup tag found in `text`, or None."""
    detector = _TagDetector()
    detector.feed(text)
    detector.close()
    return detector.found_tag


def validate_guidance(guidance: str | bytes) -> str:
    """
    Check rule type guidance: UTF-8, at most 4 KiB, no markup tags.

    Returns:
        The guidance as text

    Raises:
        ValidationError: If any rule is broken
    """
    if isinstance(guidance, bytes):
        raw = guidance
        try:
            text = guidance.decode("utf-8")
        except UnicodeDecodeError:
            raise ValidationError("guidance is not valid UTF-8")
    else:
        text = guidance
        try:
            raw = guidance.encode("utf-8")
        except UnicodeEncodeError:
            raise ValidationError("guidance is not valid UTF-8")

    if len(raw) > MAX_GUIDANCE_BYTES:
        raise ValidationError(
            "guidance too long",
            details={"max_bytes": MAX_GUIDANCE_BYTES, "bytes": len(raw)},
        )

    tag = find_html_tag(text)
    if tag is not None:
        raise ValidationError("guidance may not contain HTML", details={"tag": tag})

    return text


def validate_rule_type_name(name: str) -> None:
    if not name or not RULE_TYPE_NAME_PATTERN.match(name):
        raise ValidationError(f"invalid rule type name: {name!r}")


def validate_resource_name(name: str, what: str = "name") -> None:
    if not name or not NAME_PATTERN.match(name):
        raise ValidationError(
            f"{what} may only contain letters, numbers, hyphens and underscores, "
            "and is limited to a maximum of 63 characters"
        )


def check_json_schema(schema: Any, what: str) -> None:
    """
    Raises:
        ValidationError: If `schema` is not a valid JSON Schema document
    """
    if not isinstance(schema, dict):
        raise ValidationError(f"invalid rule type definition: {what} must be an object")
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as e:
        raise ValidationError(f"invalid rule type definition: {what} is invalid: {e.message}")


def validate_rule_type_definition(definition: Any) -> None:
    """
    Static checks on a rule type definition.

    `in_entity` must name a known entity kind, `rule_schema` must be a valid
    JSON Schema, `param_schema` must be valid when present, and `ingest` and
    `eval` are required.

    Raises:
        ValidationError: With the first problem found
    """
    if not isinstance(definition, dict):
        raise ValidationError("invalid rule type definition: definition is missing")

    in_entity = definition.get("in_entity")
    if in_entity not in {e.value for e in EntityKind}:
        raise ValidationError(f"invalid rule type definition: invalid entity type: {in_entity}")

    if definition.get("rule_schema") is None:
        raise ValidationError("invalid rule type definition: rule schema is nil")
    check_json_schema(definition["rule_schema"], "rule schema")

    if definition.get("param_schema") is not None:
        check_json_schema(definition["param_schema"], "parameter schema")

    if not definition.get("ingest"):
        raise ValidationError("invalid rule type definition: data ingest is nil")
    if not definition.get("eval"):
        raise ValidationError("invalid rule type definition: data eval is nil")


def schema_violation(schema: dict[str, Any] | None, instance: Any) -> str | None:
    """Describe why `instance` fails `schema`, or None when it validates."""
    if not schema:
        return None
    error = best_match(Draft202012Validator(schema).iter_errors(instance))
    if error is None:
        return None
    path = "/".join(str(p) for p in error.absolute_path)
    return f"{path}: {error.message}" if path else error.message
