"""
Write-time validation of entities against their definition.

Coerces every editable value to the primitive stored for its field type,
collects per-field messages and checks reference targets and uniqueness
through the data access contract, so every backend validates identically.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from pydantic import TypeAdapter, ValidationError

from crudkit.errors import UniqueConstraintViolation, ValidationFailure
from crudkit.specs.fields import (
    FieldKind,
    FieldSpec,
    FixedField,
    ReferenceField,
    SetField,
)

if TYPE_CHECKING:
    from crudkit.runtime.data_access import DataAccess
    from crudkit.runtime.entity import Entity


_ADAPTERS: dict[str, TypeAdapter[Any]] = {
    FieldKind.TEXT.value: TypeAdapter(str),
    FieldKind.FILE.value: TypeAdapter(str),
    FieldKind.BOOL.value: TypeAdapter(bool),
    FieldKind.INT.value: TypeAdapter(int),
    FieldKind.FLOAT.value: TypeAdapter(float),
    FieldKind.DATE.value: TypeAdapter(date),
    FieldKind.DATETIME.value: TypeAdapter(datetime),
    FieldKind.REFERENCE.value: TypeAdapter(int | str),
}


def is_empty(value: Any) -> bool:
    """None and the empty string count as "no value"."""
    return value is None or value == ""


def coerce_value(field: FieldSpec, value: Any) -> Any:
    """
    Convert a raw value to the primitive stored for the field type.

    Dates and datetimes are stored as ISO-8601 strings.

    Raises:
        ValueError: If the value does not fit the field type
    """
    match field:
        case FixedField(value=fixed):
            return fixed
        case SetField(items=items):
            if value not in items:
                raise ValueError(f"must be one of: {', '.join(items)}")
            return value

    adapter = _ADAPTERS.get(field.type)
    if adapter is None:
        return value
    try:
        coerced = adapter.validate_python(value)
    except ValidationError as exc:
        reason = exc.errors()[0]["msg"] if exc.errors() else str(exc)
        raise ValueError(f"invalid {field.type}: {reason}") from exc

    if isinstance(field, ReferenceField):
        # row ids are strings in every backend
        return str(coerced)
    if isinstance(coerced, datetime):
        return coerced.isoformat()
    if isinstance(coerced, date):
        return coerced.isoformat()
    return coerced


def validate_entity(data: DataAccess, entity: Entity) -> dict[str, Any]:
    """
    Validate and normalize the editable values of an entity.

    Args:
        data: Data access of the entity's definition (used for lookups)
        entity: The entity about to be written

    Returns:
        Editable field name to normalized value

    Raises:
        ValidationFailure: With per-field messages when any value is invalid
        UniqueConstraintViolation: When a unique value is taken by a live row
    """
    definition = data.definition
    errors: dict[str, list[str]] = {}
    values: dict[str, Any] = {}

    for field_name in definition.get_editable_field_names():
        field = definition.get_field(field_name)
        if field is None:
            continue
        raw = entity.get(field_name)

        if isinstance(field, FixedField):
            values[field_name] = field.value
            continue

        if is_empty(raw):
            if field.required:
                errors.setdefault(field_name, []).append("is required")
            # empty unique values are stored as NULL, which never collides
            keep_blank = field.type == FieldKind.TEXT and not field.unique
            values[field_name] = raw if keep_blank else None
            continue

        # A resolved reference ({"id", "name"}) is written back as its id
        if isinstance(field, ReferenceField) and isinstance(raw, dict):
            raw = raw.get("id")

        try:
            values[field_name] = coerce_value(field, raw)
        except ValueError as exc:
            errors.setdefault(field_name, []).append(str(exc))

    for field_name in definition.get_fields_of_type(FieldKind.REFERENCE):
        value = values.get(field_name)
        if field_name in errors or is_empty(value):
            continue
        table = definition.get_reference_table(field_name)
        if table and data.count_by(table, {"id": value}, {"id": "="}, True) == 0:
            errors.setdefault(field_name, []).append("references no existing row")

    if errors:
        raise ValidationFailure(errors)

    entity_id = None if entity.get("id") is None else str(entity.get("id"))
    for field_name in definition.get_editable_field_names():
        value = values.get(field_name)
        if not definition.is_unique(field_name) or is_empty(value):
            continue
        taken = data.count_by(
            definition.table,
            {field_name: value, "id": entity_id},
            {field_name: "=", "id": "!="},
            True,
        )
        if taken:
            raise UniqueConstraintViolation(definition.table, field_name, value)

    return values
