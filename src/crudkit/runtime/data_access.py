"""
Data access contract.

DataAccess binds one EntityDefinition to a storage backend. Backends
implement the storage primitives (get, list_entries, create, update, delete,
get_references, count_by, fetch_references); everything built on top of
them - empty entities, hydration, validation, file delegation - lives here
once and is shared by every backend.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from crudkit.errors import BackendFailure, ConcurrencyConflict, FileProcessorMissing, QueryError
from crudkit.logging import get_logger, log_with_context
from crudkit.runtime.entity import Entity
from crudkit.runtime.file_processor import FileProcessor
from crudkit.runtime.query_builder import FilterCondition
from crudkit.runtime.validation import validate_entity
from crudkit.specs.entity import ChildReference, EntityDefinition
from crudkit.specs.fields import FieldKind

logger = get_logger("data")


def utc_now() -> str:
    """Current UTC time as ISO-8601 string, the stored timestamp format."""
    return datetime.now(UTC).isoformat()


def new_id() -> str:
    """Generate a row id."""
    return str(uuid4())


class DataAccess(ABC):
    """
    Abstract data access for a single entity definition.

    Entities are transient values passed through the operations; a
    DataAccess owns none of them.
    """

    def __init__(
        self,
        definition: EntityDefinition,
        file_processor: FileProcessor | None = None,
        definitions: Mapping[str, EntityDefinition] | None = None,
    ):
        """
        Initialize the data access.

        Args:
            definition: The definition this instance serves
            file_processor: Collaborator handling file fields
            definitions: All linked definitions by entity name, used to
                follow child references when cascading deletes
        """
        self._definition = definition
        self._file_processor = file_processor
        self._definitions: dict[str, EntityDefinition] = dict(definitions or {})

    @property
    def definition(self) -> EntityDefinition:
        return self._definition

    @property
    def file_processor(self) -> FileProcessor | None:
        return self._file_processor

    # =========================================================================
    # Storage primitives
    # =========================================================================

    @abstractmethod
    def get(self, id: Any) -> Entity | None:
        """
        Get the entity with the given id.

        Returns:
            The entity, or None if absent or soft-deleted
        """
        ...

    @abstractmethod
    def list_entries(
        self,
        filter: Mapping[str, Any] | None = None,
        filter_operators: Mapping[str, str] | None = None,
        skip: int | None = None,
        amount: int | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[Entity]:
        """
        List entities fulfilling all filter conditions.

        Args:
            filter: Field name to value; every condition must hold
            filter_operators: Field name to comparison operator (default "=")
            skip: Amount of matching rows to skip
            amount: Maximum amount of rows to return
            include_deleted: Also return soft-deleted rows

        Returns:
            Matching entities in a stable order
        """
        ...

    @abstractmethod
    def create(self, entity: Entity) -> Entity:
        """
        Persist the entity as a new row.

        Populates id, created_at, updated_at, version and deleted_at on the
        given entity and returns it.

        Raises:
            ValidationFailure: If values are invalid
            UniqueConstraintViolation: If a unique value is already taken
        """
        ...

    @abstractmethod
    def update(self, entity: Entity) -> Entity:
        """
        Persist the entity over the row with the same id.

        The entity's version must equal the stored one; on success the
        version is incremented and updated_at refreshed.

        Raises:
            ConcurrencyConflict: On a stale version or a vanished row
            ValidationFailure: If values are invalid
            UniqueConstraintViolation: If a unique value is already taken
        """
        ...

    @abstractmethod
    def delete(self, id: Any) -> bool:
        """
        Soft-delete the row with the given id.

        With delete_cascade, every row of every registered child table
        referencing it is soft-deleted too, all or nothing. Without it the
        row is kept while live children still reference it.

        Returns:
            True if the row was deleted
        """
        ...

    @abstractmethod
    def get_references(self, table: str, name_field: str) -> dict[str, Any]:
        """
        Ids and display names of all live rows of a table.

        Returns:
            Mapping of id to name, ordered by name
        """
        ...

    @abstractmethod
    def count_by(
        self,
        table: str,
        params: Mapping[str, Any],
        param_operators: Mapping[str, str],
        exclude_deleted: bool,
    ) -> int:
        """
        Count rows of a table matching the given conditions.

        Args:
            table: The table to count in
            params: Field name to value
            param_operators: Field name to comparison operator (default "=")
            exclude_deleted: False to count soft-deleted rows as well
        """
        ...

    @abstractmethod
    def fetch_references(self, entities: list[Entity]) -> list[Entity]:
        """
        Resolve reference fields of a batch of entities.

        Each raw referenced id is replaced by {"id": ..., "name": ...};
        entities without a value for a reference field are left untouched.

        Returns:
            The same entities
        """
        ...

    # =========================================================================
    # Shared orchestration
    # =========================================================================

    def create_empty(self) -> Entity:
        """New entity with editable fields empty and fixed fields prefilled."""
        entity = Entity(self._definition)
        for field_name in self._definition.get_editable_field_names():
            value = None
            if self._definition.get_type(field_name) == FieldKind.FIXED:
                value = self._definition.get_fixed_value(field_name)
            entity.set(field_name, value)
        entity.set("id", None)
        return entity

    def hydrate(self, row: Mapping[str, Any]) -> Entity:
        """
        Build an entity from a raw storage row.

        Raises:
            BackendFailure: If the row lacks a field of the definition
        """
        entity = Entity(self._definition)
        for field_name in self._definition.get_field_names():
            try:
                entity.set(field_name, row[field_name])
            except KeyError:
                raise BackendFailure(
                    f"Row of '{self._definition.table}' lacks field '{field_name}'"
                ) from None
        return entity

    def validate(self, entity: Entity) -> dict[str, Any]:
        """Validate and normalize the editable values of an entity."""
        if entity.definition is not self._definition:
            raise BackendFailure(
                f"Entity of '{entity.definition.table}' passed to data access "
                f"of '{self._definition.table}'"
            )
        return validate_entity(self, entity)

    def _prepare_create(self, entity: Entity) -> dict[str, Any]:
        """Validated row for a new entity, including the implicit fields."""
        values = self.validate(entity)
        entity_id = entity.get("id")
        now = utc_now()
        return {
            "id": new_id() if entity_id is None else str(entity_id),
            "created_at": now,
            "updated_at": now,
            "version": 1,
            "deleted_at": None,
            **values,
        }

    def _prepare_update(self, entity: Entity) -> tuple[str, int, dict[str, Any]]:
        """Id, expected version and validated values of an update."""
        entity_id = entity.get("id")
        version = entity.get("version")
        if entity_id is None:
            raise ConcurrencyConflict(self._definition.table, None, version)
        try:
            expected = int(version)
        except (TypeError, ValueError):
            raise ConcurrencyConflict(
                self._definition.table, entity_id, version, "unknown"
            ) from None
        return str(entity_id), expected, self.validate(entity)

    @staticmethod
    def _apply_row(entity: Entity, row: Mapping[str, Any]) -> Entity:
        for field_name, value in row.items():
            entity.set(field_name, value)
        return entity

    def _child_definition(self, child: ChildReference) -> EntityDefinition | None:
        """Definition of a registered child, if it is known."""
        return self._definitions.get(child.entity)

    def _table_definition(self, table: str) -> EntityDefinition | None:
        """Definition stored in the given table, if it is known."""
        if table == self._definition.table:
            return self._definition
        for definition in self._definitions.values():
            if definition.table == table:
                return definition
        return None

    def _filter_conditions(
        self,
        table: str,
        params: Mapping[str, Any] | None,
        operators: Mapping[str, str] | None,
    ) -> list[FilterCondition]:
        """
        Conditions of a filter on a table.

        Raises:
            QueryError: If a filter names a field the table does not have
        """
        definition = self._table_definition(table)
        if definition is not None:
            unknown = [name for name in params or {} if not definition.has_field(name)]
            if unknown:
                raise QueryError(
                    f"Unknown filter field(s) for '{table}': {', '.join(map(str, unknown))}"
                )
        return FilterCondition.build(params, operators)

    def _log(self, level: int, message: str, **context: Any) -> None:
        log_with_context(logger, level, message, table=self._definition.table, **context)

    def _log_conflict(self, conflict: ConcurrencyConflict) -> None:
        self._log(
            logging.WARNING,
            "Update rejected",
            id=conflict.entity_id,
            expected_version=conflict.expected_version,
            actual_version=conflict.actual_version,
        )

    # =========================================================================
    # File delegation
    # =========================================================================

    def _file_fields(self) -> list[str]:
        return [
            name
            for name in self._definition.get_editable_field_names()
            if self._definition.get_type(name) == FieldKind.FILE
        ]

    def _require_file_processor(self) -> FileProcessor:
        if self._file_processor is None:
            raise FileProcessorMissing(
                f"No file processor configured for '{self._definition.table}'"
            )
        return self._file_processor

    def create_files(self, request: Any, entity: Entity, entity_name: str) -> None:
        """Store the uploaded files of a newly created entity."""
        for field_name in self._file_fields():
            self._require_file_processor().create_file(request, entity, entity_name, field_name)

    def update_files(self, request: Any, entity: Entity, entity_name: str) -> None:
        """Replace the uploaded files of an updated entity."""
        for field_name in self._file_fields():
            self._require_file_processor().update_file(request, entity, entity_name, field_name)

    def delete_file(self, entity: Entity, entity_name: str, field: str) -> None:
        """Delete the file of one field."""
        self._require_file_processor().delete_file(entity, entity_name, field)

    def delete_files(self, entity: Entity, entity_name: str) -> None:
        """Delete the files of all file fields."""
        for field_name in self._file_fields():
            self._require_file_processor().delete_file(entity, entity_name, field_name)

    def render_file(self, entity: Entity, entity_name: str, field: str) -> Any:
        """Renderable response for the file of one field."""
        return self._require_file_processor().render_file(entity, entity_name, field)
