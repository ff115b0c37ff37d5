"""
In-memory storage backend.

Rows live in a MemoryStore shared by all data access instances of an
application, so references and cascades work across tables. A single
reentrant lock serializes writers; transaction() journals every write and
undoes them in reverse order when the block raises.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from crudkit.errors import ConcurrencyConflict, UniqueConstraintViolation
from crudkit.runtime.data_access import DataAccess, utc_now
from crudkit.runtime.entity import Entity
from crudkit.runtime.file_processor import FileProcessor
from crudkit.runtime.query_builder import FilterCondition, matches_all, validate_sql_identifier
from crudkit.specs.entity import EntityDefinition
from crudkit.specs.fields import FieldKind

Row = dict[str, Any]


class MemoryStore:
    """Tables of rows keyed by id, in insertion order."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, Row]] = {}
        self._undo: list[Callable[[], None]] | None = None
        self.lock = threading.RLock()

    def table(self, name: str) -> dict[str, Row]:
        """Rows of a table (created empty on first access)."""
        return self._tables.setdefault(validate_sql_identifier(name, "table name"), {})

    def rows(
        self,
        table: str,
        conditions: list[FilterCondition] | None = None,
        *,
        exclude_deleted: bool = True,
    ) -> list[Row]:
        """Rows of a table matching all conditions."""
        with self.lock:
            return [
                row
                for row in self.table(table).values()
                if matches_all(row, conditions or [], exclude_deleted=exclude_deleted)
            ]

    def insert(self, table: str, row: Row) -> None:
        """Add a row under its id."""
        rows = self.table(table)
        entity_id = row["id"]
        rows[entity_id] = row
        self._record(lambda: rows.pop(entity_id, None))

    def write(self, table: str, id: str, changes: Mapping[str, Any]) -> Row:
        """Apply changes to a stored row and return it."""
        row = self.table(table)[id]
        previous = {key: row.get(key) for key in changes}
        row.update(changes)
        self._record(lambda: row.update(previous))
        return row

    def _record(self, undo: Callable[[], None]) -> None:
        if self._undo is not None:
            self._undo.append(undo)

    @contextmanager
    def transaction(self) -> Iterator[MemoryStore]:
        """
        Run a block atomically.

        Writes made through insert() and write() are journaled; a nested
        block joins the outermost one.

        Yields:
            The store itself; all changes are undone if the block raises
        """
        with self.lock:
            if self._undo is not None:
                yield self
                return
            self._undo = []
            try:
                yield self
            except BaseException:
                for undo in reversed(self._undo):
                    undo()
                raise
            finally:
                self._undo = None


class InMemoryDataAccess(DataAccess):
    """DataAccess over a MemoryStore."""

    def __init__(
        self,
        definition: EntityDefinition,
        store: MemoryStore,
        file_processor: FileProcessor | None = None,
        definitions: Mapping[str, EntityDefinition] | None = None,
    ):
        super().__init__(definition, file_processor, definitions)
        self.store = store

    @property
    def _rows(self) -> dict[str, Row]:
        return self.store.table(self.definition.table)

    def get(self, id: Any) -> Entity | None:
        if id is None:
            return None
        with self.store.lock:
            row = self._rows.get(str(id))
            if row is None or row["deleted_at"] is not None:
                return None
            return self.hydrate(row)

    def list_entries(
        self,
        filter: Mapping[str, Any] | None = None,
        filter_operators: Mapping[str, str] | None = None,
        skip: int | None = None,
        amount: int | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[Entity]:
        conditions = self._filter_conditions(self.definition.table, filter, filter_operators)
        with self.store.lock:
            rows = self.store.rows(
                self.definition.table, conditions, exclude_deleted=not include_deleted
            )
            start = skip or 0
            end = None if amount is None else start + amount
            return [self.hydrate(row) for row in rows[start:end]]

    def create(self, entity: Entity) -> Entity:
        with self.store.transaction():
            row = self._prepare_create(entity)
            if row["id"] in self._rows:
                raise UniqueConstraintViolation(self.definition.table, "id", row["id"])
            self.store.insert(self.definition.table, dict(row))
        self._log(logging.DEBUG, "Created row", id=row["id"])
        return self._apply_row(entity, row)

    def update(self, entity: Entity) -> Entity:
        with self.store.transaction():
            entity_id, expected, values = self._prepare_update(entity)
            stored = self._rows.get(entity_id)
            if stored is None or stored["deleted_at"] is not None:
                conflict = ConcurrencyConflict(self.definition.table, entity_id, expected)
            elif stored["version"] != expected:
                conflict = ConcurrencyConflict(
                    self.definition.table, entity_id, expected, stored["version"]
                )
            else:
                changes = {"version": expected + 1, "updated_at": utc_now(), **values}
                self.store.write(self.definition.table, entity_id, changes)
                conflict = None
        if conflict is not None:
            self._log_conflict(conflict)
            raise conflict
        self._log(logging.DEBUG, "Updated row", id=entity_id, version=changes["version"])
        return self._apply_row(entity, changes)

    def delete(self, id: Any) -> bool:
        if id is None:
            return False
        entity_id = str(id)
        with self.store.transaction():
            row = self._rows.get(entity_id)
            if row is None or row["deleted_at"] is not None:
                return False
            if not self.definition.delete_cascade:
                for child in self.definition.get_children():
                    referencing = self.store.rows(
                        child.table, FilterCondition.build({child.field_name: entity_id})
                    )
                    if referencing:
                        self._log(
                            logging.WARNING,
                            "Delete refused, row still referenced",
                            id=entity_id,
                            child_table=child.table,
                        )
                        return False
            now = utc_now()
            deleted = 1
            if self.definition.delete_cascade:
                deleted += self._delete_children(self.definition, entity_id, now)
            self.store.write(self.definition.table, entity_id, {"deleted_at": now})
        self._log(logging.DEBUG, "Deleted row", id=entity_id, rows=deleted)
        return True

    def _delete_children(self, definition: EntityDefinition, parent_id: str, now: str) -> int:
        """Soft-delete the live rows referencing parent_id, recursively."""
        deleted = 0
        for child in definition.get_children():
            referencing = self.store.rows(
                child.table, FilterCondition.build({child.field_name: parent_id})
            )
            child_definition = self._child_definition(child)
            for child_row in referencing:
                self.store.write(child.table, child_row["id"], {"deleted_at": now})
                deleted += 1
                if child_definition is not None:
                    deleted += self._delete_children(child_definition, child_row["id"], now)
        return deleted

    def get_references(self, table: str, name_field: str) -> dict[str, Any]:
        validate_sql_identifier(name_field, "field name")
        with self.store.lock:
            rows = self.store.rows(table)
            ordered = sorted(
                rows, key=lambda row: (row.get(name_field) is None, str(row.get(name_field)))
            )
            return {row["id"]: row.get(name_field) for row in ordered}

    def count_by(
        self,
        table: str,
        params: Mapping[str, Any],
        param_operators: Mapping[str, str],
        exclude_deleted: bool,
    ) -> int:
        conditions = self._filter_conditions(table, params, param_operators)
        return len(self.store.rows(table, conditions, exclude_deleted=exclude_deleted))

    def fetch_references(self, entities: list[Entity]) -> list[Entity]:
        if not entities:
            return entities
        definition = self.definition
        with self.store.lock:
            for field_name in definition.get_fields_of_type(FieldKind.REFERENCE):
                table = definition.get_reference_table(field_name)
                name_field = definition.get_reference_name_field(field_name)
                if not table or not name_field:
                    continue
                rows = self.store.table(table)
                for entity in entities:
                    value = entity.get(field_name)
                    if value is None or isinstance(value, dict):
                        continue
                    row = rows.get(str(value))
                    if row is not None:
                        entity.set(field_name, {"id": row["id"], "name": row.get(name_field)})
        return entities
