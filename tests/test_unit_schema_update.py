"""
Unit tests for the JSON schema backward-compatibility check.

Each case states an old and a new schema; compatible updates must pass and
every narrowing must be reported with the path where it happens.
"""

import pytest

from app.services.schema_update import SchemaUpdateError, validate_schema_update
from tests.fakes import SEVERITY_SCHEMA


def _object(properties=None, **extra):
    schema = {"type": "object", "properties": properties or {}}
    schema.update(extra)
    return schema


class TestCompatibleUpdates:
    @pytest.mark.parametrize(
        ("old", "new"),
        [
            (SEVERITY_SCHEMA, SEVERITY_SCHEMA),
            (SEVERITY_SCHEMA, None),
            (SEVERITY_SCHEMA, {}),
            (None, _object({"a": {"type": "string"}})),
            ({}, _object({"a": {"type": "string"}})),
        ],
    )
    def test_identity_and_empty_schemas(self, old, new):
        validate_schema_update(old, new)

    def test_adding_an_optional_property(self):
        new = _object(
            {
                "severity": SEVERITY_SCHEMA["properties"]["severity"],
                "owner": {"type": "string"},
            }
        )
        validate_schema_update(SEVERITY_SCHEMA, new)

    def test_adding_an_enum_value(self):
        levels = ["low", "medium", "high", "critical"]
        new = _object({"severity": {"type": "string", "enum": levels}})
        validate_schema_update(SEVERITY_SCHEMA, new)

    def test_dropping_a_required_entry(self):
        old = _object({"a": {"type": "string"}}, required=["a"])
        new = _object({"a": {"type": "string"}})
        validate_schema_update(old, new)

    def test_widening_integer_to_number(self):
        old = _object({"n": {"type": "integer"}})
        new = _object({"n": {"type": "number"}})
        validate_schema_update(old, new)

    def test_relaxing_bounds(self):
        old = _object({"n": {"type": "integer", "minimum": 1, "maximum": 10}})
        new = _object({"n": {"type": "integer", "minimum": 0, "maximum": 20}})
        validate_schema_update(old, new)

    def test_widening_array_items_type(self):
        old = _object({"xs": {"type": "array", "items": {"type": "string"}}})
        new = _object({"xs": {"type": "array", "items": {"type": ["string", "null"]}}})
        validate_schema_update(old, new)


class TestIncompatibleUpdates:
    def test_removing_an_enum_value(self):
        new = _object({"severity": {"type": "string", "enum": ["medium", "high"]}})

        with pytest.raises(SchemaUpdateError) as exc_info:
            validate_schema_update(SEVERITY_SCHEMA, new)

        assert exc_info.value.path == "/properties/severity"
        assert "cannot remove enum values: low" in str(exc_info.value)

    def test_introducing_an_enum(self):
        old = _object({"mode": {"type": "string"}})
        new = _object({"mode": {"type": "string", "enum": ["a"]}})
        with pytest.raises(SchemaUpdateError, match="cannot restrict values with an enum"):
            validate_schema_update(old, new)

    def test_removing_a_property(self):
        old = _object({"a": {"type": "string"}, "b": {"type": "string"}}, required=["a"])
        new = _object({"b": {"type": "string"}})
        with pytest.raises(SchemaUpdateError, match="cannot remove properties: a"):
            validate_schema_update(old, new)

    def test_adding_a_required_property(self):
        new = dict(SEVERITY_SCHEMA, required=["severity"])
        with pytest.raises(SchemaUpdateError, match="cannot add required fields: severity"):
            validate_schema_update(SEVERITY_SCHEMA, new)

    def test_required_on_previously_empty_schema(self):
        with pytest.raises(SchemaUpdateError, match="cannot add required fields"):
            validate_schema_update({}, _object({"a": {"type": "string"}}, required=["a"]))

    def test_changing_a_type(self):
        old = _object({"n": {"type": "string"}})
        new = _object({"n": {"type": "integer"}})
        with pytest.raises(SchemaUpdateError, match="cannot change type") as exc_info:
            validate_schema_update(old, new)
        assert exc_info.value.path == "/properties/n"

    def test_narrowing_number_to_integer(self):
        old = _object({"n": {"type": "number"}})
        new = _object({"n": {"type": "integer"}})
        with pytest.raises(SchemaUpdateError, match="cannot change type"):
            validate_schema_update(old, new)

    @pytest.mark.parametrize(
        ("old_bound", "new_bound"),
        [
            ({"minimum": 1}, {"minimum": 2}),
            ({"maximum": 10}, {"maximum": 9}),
            ({}, {"maxLength": 5}),
            ({"minLength": 1}, {"minLength": 3}),
            ({"exclusiveMaximum": 5}, {"exclusiveMaximum": 4}),
        ],
    )
    def test_tightening_a_bound(self, old_bound, new_bound):
        old = _object({"v": {"type": "integer", **old_bound}})
        new = _object({"v": {"type": "integer", **new_bound}})
        with pytest.raises(SchemaUpdateError, match="cannot tighten"):
            validate_schema_update(old, new)

    def test_adding_a_pattern(self):
        old = _object({"s": {"type": "string"}})
        new = _object({"s": {"type": "string", "pattern": "^a"}})
        with pytest.raises(SchemaUpdateError, match="cannot change pattern"):
            validate_schema_update(old, new)

    def test_forbidding_additional_properties(self):
        new = dict(SEVERITY_SCHEMA, additionalProperties=False)
        with pytest.raises(SchemaUpdateError, match="cannot forbid additional properties"):
            validate_schema_update(SEVERITY_SCHEMA, new)

    def test_change_deep_inside_items_reports_full_path(self):
        old = _object({"xs": {"type": "array", "items": _object({"k": {"enum": [1, 2]}})}})
        new = _object({"xs": {"type": "array", "items": _object({"k": {"enum": [1]}})}})

        with pytest.raises(SchemaUpdateError) as exc_info:
            validate_schema_update(old, new)

        assert exc_info.value.path == "/properties/xs/items/properties/k"
