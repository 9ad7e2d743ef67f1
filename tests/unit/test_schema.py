"""
Unit tests for boardstore/schema.py

Tests field validation, payload preparation and migrations.
"""

from datetime import datetime, timezone

import pytest

from boardstore import TaskSchema, ValidationError
from boardstore.schema import BaseSchema, Field, FieldType, ValidationResult


class TestField:
    """Test single-field validation."""

    def test_required(self):
        field = Field("title", FieldType.STRING, required=True)
        assert field.validate(None) == (False, "Field 'title' is required")
        assert field.validate("x") == (True, None)

    def test_optional_none(self):
        assert Field("note", FieldType.STRING, required=False).validate(None) == (True, None)

    @pytest.mark.parametrize("field_type, good, bad", [
        (FieldType.STRING, "a", 1),
        (FieldType.INTEGER, 3, "3"),
        (FieldType.INTEGER, 3, True),
        (FieldType.FLOAT, 1.5, True),
        (FieldType.BOOLEAN, False, 0),
        (FieldType.LIST, [], ()),
        (FieldType.DICT, {}, []),
        (FieldType.DATETIME, "2026-01-01T00:00:00Z", "next tuesday"),
    ])
    def test_types(self, field_type, good, bad):
        """Test type checks, including bool never counting as a number."""
        field = Field("f", field_type, required=True)
        assert field.validate(good)[0]
        assert not field.validate(bad)[0]

    def test_datetime_object_accepted(self):
        field = Field("due", FieldType.DATETIME, required=False)
        assert field.validate(datetime(2026, 1, 1, tzinfo=timezone.utc))[0]

    def test_choices(self):
        field = Field("status", FieldType.ENUM, choices=["a", "b"])
        assert field.validate("a")[0]
        valid, error = field.validate("c")
        assert not valid
        assert "must be one of" in error

    def test_list_item_type(self):
        field = Field("tags", FieldType.LIST, item_type=FieldType.STRING)
        assert field.validate(["a", "b"])[0]
        valid, error = field.validate(["a", 2])
        assert not valid
        assert "tags[1]" in error

    def test_custom_validator(self):
        field = Field("n", FieldType.INTEGER, validator=lambda n: n > 0)
        assert field.validate(1)[0]
        assert not field.validate(0)[0]

    def test_validator_exception_is_invalid(self):
        field = Field("n", FieldType.ANY, validator=lambda n: n.missing)
        valid, error = field.validate(5)
        assert not valid
        assert "validation error" in error

    def test_default_is_copied(self):
        """Test mutable defaults are not shared between payloads."""
        field = Field("tags", FieldType.LIST, required=False, default=[])
        first, second = {}, {}
        field.apply_default(first)
        field.apply_default(second)
        first["tags"].append("x")
        assert second["tags"] == []


class TestValidationResult:
    """Test ValidationResult."""

    def test_raise_if_invalid(self):
        result = ValidationResult(valid=True)
        result.raise_if_invalid("task")

        result.add_error("first")
        result.add_error("second")
        with pytest.raises(ValidationError) as exc_info:
            result.raise_if_invalid("task")
        assert exc_info.value.context["errors"] == ["first", "second"]
        assert "Invalid task" in str(exc_info.value)


class TestTaskSchema:
    """Test the task schema."""

    def test_prepare_payload(self):
        data = TaskSchema.prepare_payload({"title": "Plan", "tags": ["q1"]})
        assert data["status"] == "backlog"
        assert data["priority"] == 100
        assert data["tags"] == ["q1"]

    def test_prepare_payload_does_not_alias_input(self):
        tags = ["q1"]
        data = TaskSchema.prepare_payload({"title": "Plan", "tags": tags})
        data["tags"].append("q2")
        assert tags == ["q1"]

    def test_blank_title_rejected(self):
        with pytest.raises(ValidationError):
            TaskSchema.prepare_payload({"title": "   "})

    def test_numeric_estimate_rejected(self):
        with pytest.raises(ValidationError):
            TaskSchema.prepare_payload({"title": "Plan", "estimate": 4})
        assert TaskSchema.prepare_payload({"title": "Plan", "estimate": "4h"})["estimate"] == "4h"

    def test_validate_changes_only_checks_present_fields(self):
        assert TaskSchema.validate_changes({"status": "done"}).valid
        assert not TaskSchema.validate_changes({"priority": "high"}).valid
        assert not TaskSchema.validate_changes({"status": None}).valid
        assert TaskSchema.validate_changes({"assignee": None}).valid

    def test_strict_warns_on_unknown(self):
        result = TaskSchema.validate({"title": "x", "status": "backlog", "priority": 1, "colour": "red"},
                                     strict=True)
        assert result.valid
        assert result.warnings == ["Unknown field 'colour'"]

    def test_date_fields(self):
        assert TaskSchema.date_fields() == ["due_date"]


class ThreeStepSchema(BaseSchema):
    schema_version = 3
    entity_type = "thing"
    fields = {}

    @classmethod
    def migrate_v1_to_v2(cls, data):
        data["steps"] = data.get("steps", []) + ["v2"]
        return data

    @classmethod
    def migrate_v2_to_v3(cls, data):
        data["steps"] = data["steps"] + ["v3"]
        return data


class TestMigrations:
    """Test migration discovery and chaining."""

    def test_discovery(self):
        assert sorted(ThreeStepSchema.get_migrations()) == [1, 2]

    def test_chain(self):
        data, result = ThreeStepSchema.migrate({}, from_version=1)
        assert data["steps"] == ["v2", "v3"]
        assert result.migrated
        assert (result.from_version, result.to_version) == (1, 3)

    def test_partial_chain(self):
        data, _ = ThreeStepSchema.migrate({"steps": ["v2"]}, from_version=2)
        assert data["steps"] == ["v2", "v3"]

    def test_current_version_untouched(self):
        data, result = ThreeStepSchema.migrate({"steps": []}, from_version=3)
        assert data == {"steps": []}
        assert not result.migrated
