"""
Backward-compatibility check between two versions of a JSON schema.

A new schema is compatible with an old one when every document the old one
accepted is still accepted. The check is structural and conservative: it
walks both documents side by side and rejects anything that could narrow the
accepted set, such as a removed property or enum value, a new required
property, a narrower type, or a tighter bound.
"""

from typing import Any

LOWER_BOUNDS = ("minimum", "exclusiveMinimum", "minLength", "minItems", "minProperties")
UPPER_BOUNDS = ("maximum", "exclusiveMaximum", "maxLength", "maxItems", "maxProperties")

_OBJECT_KEYWORDS = ("properties", "required", "additionalProperties")


class SchemaUpdateError(ValueError):
    """The new schema rejects documents the old one accepted."""

    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


def _is_empty(schema: dict[str, Any] | None) -> bool:
    return not schema


def _types(schema: dict[str, Any]) -> set[str] | None:
    """Types a schema admits; None when it does not constrain the type."""
    declared = schema.get("type")
    if declared is None:
        if any(k in schema for k in _OBJECT_KEYWORDS):
            return {"object"}
        return None
    if isinstance(declared, str):
        return {declared}
    if isinstance(declared, list) and all(isinstance(t, str) for t in declared):
        return set(declared)
    raise SchemaUpdateError("invalid type field")


def _covers(new_types: set[str], old_type: str) -> bool:
    if old_type in new_types:
        return True
    return old_type == "integer" and "number" in new_types


def _check_types(old: dict[str, Any], new: dict[str, Any], path: str) -> None:
    old_types = _types(old)
    new_types = _types(new)
    if new_types is None:
        return
    if old_types is None or not all(_covers(new_types, t) for t in old_types):
        raise SchemaUpdateError("cannot change type of schema", path)


def _check_required(old: dict[str, Any], new: dict[str, Any], path: str) -> None:
    old_required = old.get("required") or []
    new_required = new.get("required") or []
    if not isinstance(old_required, list) or not isinstance(new_required, list):
        raise SchemaUpdateError("invalid required field", path)
    added = [r for r in new_required if r not in old_required]
    if added:
        raise SchemaUpdateError(f"cannot add required fields: {', '.join(map(str, added))}", path)


def _check_enum(old: dict[str, Any], new: dict[str, Any], path: str) -> None:
    if "enum" not in new:
        return
    if "enum" not in old:
        raise SchemaUpdateError("cannot restrict values with an enum", path)
    removed = [v for v in old["enum"] if v not in new["enum"]]
    if removed:
        raise SchemaUpdateError(
            f"cannot remove enum values: {', '.join(map(str, removed))}", path
        )


def _check_bounds(old: dict[str, Any], new: dict[str, Any], path: str) -> None:
    for key in LOWER_BOUNDS:
        if key in new and (key not in old or new[key] > old[key]):
            raise SchemaUpdateError(f"cannot tighten {key}", path)
    for key in UPPER_BOUNDS:
        if key in new and (key not in old or new[key] < old[key]):
            raise SchemaUpdateError(f"cannot tighten {key}", path)

    if "pattern" in new and new["pattern"] != old.get("pattern"):
        raise SchemaUpdateError("cannot change pattern", path)
    if "const" in new and ("const" not in old or new["const"] != old["const"]):
        raise SchemaUpdateError("cannot change const", path)


def _is_open(value: Any) -> bool:
    return value is None or value is True or value == {}


def _check_additional_properties(old: dict[str, Any], new: dict[str, Any], path: str) -> None:
    old_ap = old.get("additionalProperties")
    new_ap = new.get("additionalProperties")
    if _is_open(new_ap):
        return
    if new_ap is False:
        if old_ap is not False:
            raise SchemaUpdateError("cannot forbid additional properties", path)
        return
    if _is_open(old_ap):
        raise SchemaUpdateError("cannot restrict additional properties", path)
    if old_ap is False:
        return
    _check_node(old_ap, new_ap, f"{path}/additionalProperties")


def _check_properties(old: dict[str, Any], new: dict[str, Any], path: str) -> None:
    old_props = old.get("properties") or {}
    new_props = new.get("properties") or {}

    removed = [name for name in old_props if name not in new_props]
    if removed:
        raise SchemaUpdateError(f"cannot remove properties: {', '.join(removed)}", path)

    for name, old_prop in old_props.items():
        _check_node(old_prop, new_props[name], f"{path}/properties/{name}")


def _check_items(old: dict[str, Any], new: dict[str, Any], path: str) -> None:
    new_items = new.get("items")
    if _is_open(new_items):
        return
    old_items = old.get("items")
    if _is_open(old_items):
        raise SchemaUpdateError("cannot restrict array items", path)
    if isinstance(old_items, dict) and isinstance(new_items, dict):
        _check_node(old_items, new_items, f"{path}/items")
    elif old_items != new_items:
        raise SchemaUpdateError("cannot change array items", path)


def _check_node(old: Any, new: Any, path: str) -> None:
    if new is True or _is_empty(new):
        return
    if old is False:
        return
    if not isinstance(new, dict):
        raise SchemaUpdateError("invalid schema", path)
    if old is True or _is_empty(old):
        old = {}
    if not isinstance(old, dict):
        raise SchemaUpdateError("invalid schema", path)

    _check_types(old, new, path)
    _check_enum(old, new, path)
    _check_bounds(old, new, path)
    _check_required(old, new, path)
    _check_additional_properties(old, new, path)
    _check_properties(old, new, path)
    _check_items(old, new, path)


def validate_schema_update(old: dict[str, Any] | None, new: dict[str, Any] | None) -> None:
    """
    Check that `new` accepts every document `old` accepted.

    An empty new schema always passes. An empty old schema accepts any new
    schema that does not declare required properties.

    Raises:
        SchemaUpdateError: Describing the first incompatible change found
    """
    if _is_empty(new):
        return

    if _is_empty(old):
        if new.get("required"):
            raise SchemaUpdateError("cannot add required fields")
        return

    _check_node(old, new, "")
