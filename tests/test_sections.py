"""Tests for the section schema registry."""
import pytest

from whatidid.exceptions import ErrorCode, ValidationError
from whatidid.models import sections as registry
from whatidid.models.schema import PageType


class TestSchemaFor:
    """Tests for schema_for()."""

    def test_freeform_types_have_no_schema(self):
        assert registry.schema_for(PageType.SESSION_LOG) is None
        assert registry.schema_for(PageType.REFERENCE) is None

    def test_decision_schema_order_and_required(self):
        schema = registry.schema_for(PageType.DECISION)
        assert [(s.key, s.required) for s in schema] == [
            ("context", True),
            ("options_considered", True),
            ("decision", True),
            ("consequences", False),
        ]

    def test_runbook_only_requires_steps(self):
        schema = registry.schema_for(PageType.RUNBOOK)
        assert [s.key for s in schema if s.required] == ["steps"]

    def test_accepts_string_type(self):
        assert registry.section_keys("troubleshooting") == ["problem", "diagnosis", "solution"]

    def test_heading_from_key(self):
        schema = registry.schema_for(PageType.DECISION)
        assert schema[1].heading == "Options Considered"


class TestValidate:
    """Tests for validate()."""

    def test_valid_sections_returned_in_schema_order(self):
        result = registry.validate(
            PageType.DECISION,
            {"decision": "d", "context": "c", "options_considered": "o"},
        )
        assert list(result) == ["context", "options_considered", "decision"]

    def test_missing_required_section(self):
        with pytest.raises(ValidationError) as exc_info:
            registry.validate(PageType.DECISION, {"context": "c", "decision": "d"})
        assert exc_info.value.code == ErrorCode.INVALID_SECTIONS
        assert "options_considered" in exc_info.value.message

    def test_blank_required_section(self):
        with pytest.raises(ValidationError):
            registry.validate(
                PageType.TROUBLESHOOTING,
                {"problem": "p", "diagnosis": "   ", "solution": "s"},
            )

    def test_unknown_section(self):
        with pytest.raises(ValidationError) as exc_info:
            registry.validate(PageType.RUNBOOK, {"steps": "1. go", "notes": "x"})
        assert "notes" in exc_info.value.message

    def test_non_text_value(self):
        with pytest.raises(ValidationError):
            registry.validate(PageType.RUNBOOK, {"steps": ["a", "b"]})

    def test_freeform_type_rejects_sections(self):
        with pytest.raises(ValidationError) as exc_info:
            registry.validate(PageType.REFERENCE, {"context": "c"})
        assert exc_info.value.code == ErrorCode.INVALID_SECTIONS

    def test_blank_optional_section_dropped(self):
        result = registry.validate(PageType.RUNBOOK, {"steps": "go", "rollback": ""})
        assert result == {"steps": "go"}


class TestRender:
    """Tests for render()."""

    def test_render_decision(self):
        content = registry.render(
            PageType.DECISION,
            {"context": "c", "options_considered": "o", "decision": "d"},
        )
        assert content == "## Context\nc\n\n## Options Considered\no\n\n## Decision\nd"

    def test_render_ignores_input_order(self):
        a = registry.render(PageType.ARCHITECTURE, {"design": "x", "context": "y"})
        b = registry.render(PageType.ARCHITECTURE, {"context": "y", "design": "x"})
        assert a == b
        assert a.startswith("## Context\ny")

    def test_render_includes_optional_sections(self):
        content = registry.render(
            PageType.RUNBOOK,
            {"prerequisites": "access", "steps": "run", "rollback": "undo"},
        )
        assert content == "## Prerequisites\naccess\n\n## Steps\nrun\n\n## Rollback\nundo"
