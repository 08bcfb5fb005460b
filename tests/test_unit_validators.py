"""
Unit tests for shared validators: guidance, names and rule type definitions.
"""

import pytest

from app.core.errors import ValidationError
from app.core.validators import (
    MAX_GUIDANCE_BYTES,
    find_html_tag,
    schema_violation,
    validate_guidance,
    validate_resource_name,
    validate_rule_type_definition,
    validate_rule_type_name,
)
from tests.fakes import SEVERITY_SCHEMA, rule_type_definition


class TestGuidance:
    def test_plain_markdown_is_accepted(self):
        text = "# Fix it\n\nEnable *branch protection* on `main` if 2 < 3."
        assert validate_guidance(text) == text

    def test_bytes_are_decoded(self):
        assert validate_guidance("héllo".encode()) == "héllo"

    def test_exactly_at_limit_is_accepted(self):
        validate_guidance("a" * MAX_GUIDANCE_BYTES)

    def test_one_byte_over_limit_is_rejected(self):
        with pytest.raises(ValidationError, match="guidance too long") as exc_info:
            validate_guidance("a" * (MAX_GUIDANCE_BYTES + 1))
        assert exc_info.value.details["bytes"] == 4097

    def test_limit_counts_bytes_not_characters(self):
        # 2 bytes per character in UTF-8
        with pytest.raises(ValidationError, match="guidance too long"):
            validate_guidance("é" * (MAX_GUIDANCE_BYTES // 2 + 1))

    def test_invalid_utf8_is_rejected(self):
        with pytest.raises(ValidationError, match="not valid UTF-8"):
            validate_guidance(b"\xff\xfe\xfd")

    @pytest.mark.parametrize(
        "text", ["<script>alert(1)</script>", "see <a href='x'>docs</a>", "line<br/>break"]
    )
    def test_markup_is_rejected(self, text):
        with pytest.raises(ValidationError, match="may not contain HTML"):
            validate_guidance(text)

    def test_find_html_tag_reports_first_tag(self):
        assert find_html_tag("x <b>bold</b> <i>it</i>") == "b"
        assert find_html_tag("no tags here") is None


class TestNames:
    @pytest.mark.parametrize("name", ["secret_scanning", "a", "org/rule.v2", "branch-protection"])
    def test_valid_rule_type_names(self, name):
        validate_rule_type_name(name)

    @pytest.mark.parametrize("name", ["", "-leading", "trailing-", "has space", "semi;colon"])
    def test_invalid_rule_type_names(self, name):
        with pytest.raises(ValidationError, match="invalid rule type name"):
            validate_rule_type_name(name)

    def test_resource_name_limit(self):
        validate_resource_name("a" * 63)
        with pytest.raises(ValidationError, match="maximum of 63 characters"):
            validate_resource_name("a" * 64)

    def test_resource_name_rejects_slashes(self):
        with pytest.raises(ValidationError, match="profile name may only contain"):
            validate_resource_name("a/b", "profile name")


class TestRuleTypeDefinition:
    def test_valid_definition(self):
        validate_rule_type_definition(
            rule_type_definition(rule_schema=SEVERITY_SCHEMA, param_schema={"type": "object"})
        )

    def test_unknown_entity(self):
        with pytest.raises(ValidationError, match="invalid entity type: widget"):
            validate_rule_type_definition(rule_type_definition(in_entity="widget"))

    def test_missing_rule_schema(self):
        definition = rule_type_definition()
        del definition["rule_schema"]
        with pytest.raises(ValidationError, match="rule schema is nil"):
            validate_rule_type_definition(definition)

    def test_invalid_rule_schema(self):
        with pytest.raises(ValidationError, match="rule schema is invalid"):
            validate_rule_type_definition(rule_type_definition(rule_schema={"type": 12}))

    def test_invalid_param_schema(self):
        with pytest.raises(ValidationError, match="parameter schema is invalid"):
            validate_rule_type_definition(
                rule_type_definition(param_schema={"required": "not-a-list"})
            )

    @pytest.mark.parametrize(("key", "message"), [("ingest", "data ingest"), ("eval", "data eval")])
    def test_missing_ingest_or_eval(self, key, message):
        definition = rule_type_definition()
        del definition[key]
        with pytest.raises(ValidationError, match=message):
            validate_rule_type_definition(definition)

    def test_definition_must_be_an_object(self):
        with pytest.raises(ValidationError, match="definition is missing"):
            validate_rule_type_definition(None)


class TestSchemaViolation:
    def test_valid_instance(self):
        assert schema_violation(SEVERITY_SCHEMA, {"severity": "low"}) is None

    def test_empty_schema_accepts_anything(self):
        assert schema_violation(None, {"anything": 1}) is None

    def test_violation_names_the_path(self):
        problem = schema_violation(SEVERITY_SCHEMA, {"severity": "extreme"})
        assert problem.startswith("severity: ")
