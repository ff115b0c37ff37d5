"""
Tests for field specifications.

Tests parsing raw schema metadata into typed field variants.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from crudkit.errors import DefinitionError
from crudkit.specs.fields import (
    FieldKind,
    FileField,
    FixedField,
    FloatField,
    ReferenceField,
    SetField,
    TextField,
    parse_field,
)

# =============================================================================
# Parsing Tests
# =============================================================================


class TestParseField:
    """Tests for parse_field()."""

    def test_parse_text(self) -> None:
        """Test parsing a plain text field with flags."""
        field = parse_field("title", {"type": "text", "required": True, "label": "Title"})

        assert isinstance(field, TextField)
        assert field.type == FieldKind.TEXT
        assert field.required is True
        assert field.unique is False
        assert field.label == "Title"

    def test_parse_reference(self) -> None:
        """Test parsing a reference field with its target."""
        field = parse_field(
            "author",
            {
                "type": "reference",
                "reference": {"table": "author", "nameField": "name", "entity": "author"},
            },
        )

        assert isinstance(field, ReferenceField)
        assert field.reference.table == "author"
        assert field.reference.name_field == "name"
        assert field.reference.entity == "author"

    def test_parse_reference_without_entity(self) -> None:
        """Test that the referenced entity is optional."""
        field = parse_field(
            "publisher",
            {"type": "reference", "reference": {"table": "publisher", "nameField": "name"}},
        )

        assert isinstance(field, ReferenceField)
        assert field.reference.entity is None

    def test_parse_set_keeps_item_order(self) -> None:
        """Test that set items keep their declared order."""
        field = parse_field("genre", {"type": "set", "setitems": ["poetry", "essay", "fiction"]})

        assert isinstance(field, SetField)
        assert field.items == ("poetry", "essay", "fiction")

    def test_parse_fixed(self) -> None:
        field = parse_field("status", {"type": "fixed", "fixedvalue": "active"})

        assert isinstance(field, FixedField)
        assert field.value == "active"

    def test_parse_float_step(self) -> None:
        field = parse_field("price", {"type": "float", "floatStep": 0.5})

        assert isinstance(field, FloatField)
        assert field.step == 0.5

    def test_parse_file_path(self) -> None:
        field = parse_field("cover", {"type": "file", "filepath": "covers"})

        assert isinstance(field, FileField)
        assert field.path == "covers"

    def test_unknown_keys_are_ignored(self) -> None:
        """Test that keys of other field types don't break parsing."""
        field = parse_field("title", {"type": "text", "setitems": ["a"], "fixedvalue": 1})

        assert isinstance(field, TextField)

    def test_unknown_type_raises(self) -> None:
        """Test that an unknown type is a definition error."""
        with pytest.raises(DefinitionError, match="title"):
            parse_field("title", {"type": "markdown"})

    def test_reference_without_target_raises(self) -> None:
        with pytest.raises(DefinitionError):
            parse_field("author", {"type": "reference"})


class TestFieldSpec:
    """Tests for field variant behavior."""

    def test_fields_are_frozen(self) -> None:
        """Test that field specs cannot be mutated in place."""
        field = parse_field("title", {"type": "text"})

        with pytest.raises(ValidationError):
            field.required = True  # type: ignore[misc]

    def test_to_metadata_uses_schema_keys(self) -> None:
        """Test that metadata dumps back to schema key names."""
        field = parse_field("genre", {"type": "set", "setitems": ["a", "b"], "required": True})

        metadata = field.to_metadata()

        assert metadata["type"] == "set"
        assert metadata["setitems"] == ("a", "b")
        assert metadata["required"] is True
        assert "label" not in metadata
