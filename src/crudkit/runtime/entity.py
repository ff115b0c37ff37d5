"""
Entity - a single record of a defined entity type.

Values are keyed by field name and checked structurally against the bound
definition: only field names the definition knows may be read or written.
No type coercion happens here; the data access layer validates at write time.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

from crudkit.errors import UnknownFieldError
from crudkit.specs.entity import EntityDefinition


class Entity:
    """Mutable field-name to value container bound to one EntityDefinition."""

    def __init__(
        self,
        definition: EntityDefinition,
        values: Mapping[str, Any] | None = None,
    ):
        self._definition = definition
        self._values: dict[str, Any] = {}
        for field_name, value in (values or {}).items():
            self.set(field_name, value)

    def __repr__(self) -> str:
        return f"Entity(table={self._definition.table!r}, values={self._values!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return NotImplemented
        return self._definition is other._definition and self._values == other._values

    __hash__ = None  # type: ignore[assignment]

    @property
    def definition(self) -> EntityDefinition:
        return self._definition

    def _check_field(self, field_name: str) -> None:
        if not self._definition.has_field(field_name):
            raise UnknownFieldError(field_name, self._definition.table)

    def set(self, field_name: str, value: Any) -> None:
        """Set the raw value of a field."""
        self._check_field(field_name)
        self._values[field_name] = value

    def get(self, field_name: str) -> Any:
        """Raw value of a field; None if the field was never set."""
        self._check_field(field_name)
        return self._values.get(field_name)

    def is_set(self, field_name: str) -> bool:
        """Whether the field holds a value (possibly None)."""
        self._check_field(field_name)
        return field_name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def to_dict(self) -> dict[str, Any]:
        """Copy of the set values, in definition field order."""
        return {
            name: self._values[name]
            for name in self._definition.get_field_names()
            if name in self._values
        }
