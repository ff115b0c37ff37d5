"""
SQL storage backend.

DatabaseManager owns SQLite connections and creates tables from entity
definitions; SqlDataAccess implements the data access contract with plain
SQL and works with any manager exposing the same interface (see
crudkit.runtime.pg_backend for PostgreSQL).

Uniqueness among live rows is enforced by partial unique indexes
(WHERE deleted_at IS NULL); optimistic concurrency by a conditional UPDATE
on the stored version.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from crudkit.errors import BackendFailure, ConcurrencyConflict, UniqueConstraintViolation
from crudkit.runtime.data_access import DataAccess, utc_now
from crudkit.runtime.entity import Entity
from crudkit.runtime.file_processor import FileProcessor
from crudkit.runtime.query_builder import build_where_clause, quote_identifier
from crudkit.specs.entity import EntityDefinition
from crudkit.specs.fields import FieldKind, FixedField

# Integrity and generic driver errors of every supported driver.
_INTEGRITY_ERRORS: tuple[type[Exception], ...] = (sqlite3.IntegrityError,)
_DRIVER_ERRORS: tuple[type[Exception], ...] = (sqlite3.Error,)
try:
    import psycopg

    _INTEGRITY_ERRORS += (psycopg.IntegrityError,)
    _DRIVER_ERRORS += (psycopg.Error,)
except ImportError:
    pass


def _parse_unique_error(exc: Exception) -> str | None:
    """
    Extract the offending column from a unique constraint error.

    Handles SQLite ("UNIQUE constraint failed: book.isbn") and PostgreSQL
    ("Key (isbn)=(...) already exists") messages.
    """
    err = str(exc)
    if "UNIQUE constraint failed:" in err:
        column = err.split("UNIQUE constraint failed:")[-1].strip().split(",")[0]
        return column.split(".")[-1].strip() or None
    detail = getattr(getattr(exc, "diag", None), "message_detail", None) or ""
    match = re.search(r"Key \((\w+)\)", f"{err} {detail}")
    return match.group(1) if match else None


# =============================================================================
# Database Manager
# =============================================================================


class DatabaseManager:
    """
    Manages SQLite connections and schema.

    Every connection() block is one transaction: committed when the block
    completes, rolled back when it raises.
    """

    backend_type = "sqlite"
    placeholder = "?"

    # Column types per field kind
    column_types: dict[str, str] = {
        FieldKind.TEXT.value: "TEXT",
        FieldKind.BOOL.value: "INTEGER",
        FieldKind.INT.value: "INTEGER",
        FieldKind.FLOAT.value: "REAL",
        FieldKind.DATE.value: "TEXT",
        FieldKind.DATETIME.value: "TEXT",
        FieldKind.SET.value: "TEXT",
        FieldKind.REFERENCE.value: "TEXT",
        FieldKind.FILE.value: "TEXT",
    }
    implicit_columns: tuple[str, ...] = (
        '"id" TEXT PRIMARY KEY',
        '"created_at" TEXT NOT NULL',
        '"updated_at" TEXT NOT NULL',
        '"version" INTEGER NOT NULL DEFAULT 1',
        '"deleted_at" TEXT',
    )

    def __init__(self, db_path: str | Path = ".crudkit/data.db"):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """
        Open a connection running a single write transaction.

        Yields:
            SQLite connection with sqlite3.Row rows
        """
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def to_db(self, value: Any) -> Any:
        """Convert a Python value to a driver value."""
        if isinstance(value, bool):
            return 1 if value else 0
        return value

    def limit_clause(self, skip: int | None, amount: int | None) -> tuple[str, list[Any]]:
        """LIMIT/OFFSET clause for optional skip and amount."""
        if amount is None and not skip:
            return "", []
        ph = self.placeholder
        limit = -1 if amount is None else amount
        return f"LIMIT {ph} OFFSET {ph}", [limit, skip or 0]

    def column_type(self, definition: EntityDefinition, field_name: str) -> str:
        field = definition.get_field(field_name)
        if isinstance(field, FixedField):
            return self._fixed_column_type(field.value)
        return self.column_types.get(definition.get_type(field_name) or "", "TEXT")

    def _fixed_column_type(self, value: Any) -> str:
        if isinstance(value, (bool, int)):
            return "INTEGER"
        if isinstance(value, float):
            return "REAL"
        return "TEXT"

    def create_table(self, definition: EntityDefinition) -> None:
        """
        Create the table of a definition if it doesn't exist.

        Also creates partial unique indexes for unique fields and indexes on
        reference fields.
        """
        table = quote_identifier(definition.table, "table name")
        columns = list(self.implicit_columns)
        for field_name in definition.get_editable_field_names():
            col = quote_identifier(field_name, "field name")
            columns.append(f"{col} {self.column_type(definition, field_name)}")

        with self.connection() as conn:
            conn.execute(f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(columns)})")
            for field_name in definition.get_editable_field_names():
                col = quote_identifier(field_name, "field name")
                if definition.is_unique(field_name):
                    conn.execute(
                        f'CREATE UNIQUE INDEX IF NOT EXISTS "uq_{definition.table}_{field_name}" '
                        f'ON {table} ({col}) WHERE "deleted_at" IS NULL'
                    )
                elif definition.get_type(field_name) == FieldKind.REFERENCE:
                    conn.execute(
                        f'CREATE INDEX IF NOT EXISTS "idx_{definition.table}_{field_name}" '
                        f"ON {table} ({col})"
                    )

    def create_all_tables(self, definitions: Mapping[str, EntityDefinition]) -> None:
        """Create the tables of all definitions."""
        for definition in definitions.values():
            self.create_table(definition)

    def table_exists(self, table_name: str) -> bool:
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table_name,)
            )
            return cursor.fetchone() is not None

    def get_table_columns(self, table_name: str) -> list[str]:
        with self.connection() as conn:
            cursor = conn.execute(f"PRAGMA table_info({quote_identifier(table_name)})")
            return [row[1] for row in cursor.fetchall()]


# =============================================================================
# Data Access
# =============================================================================


class SqlDataAccess(DataAccess):
    """DataAccess over an SQL database manager."""

    def __init__(
        self,
        definition: EntityDefinition,
        db: DatabaseManager,
        file_processor: FileProcessor | None = None,
        definitions: Mapping[str, EntityDefinition] | None = None,
    ):
        super().__init__(definition, file_processor, definitions)
        self.db = db
        self._table = quote_identifier(definition.table, "table name")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        """Connection whose driver errors surface as BackendFailure."""
        try:
            with self.db.connection() as conn:
                yield conn
        except _INTEGRITY_ERRORS as exc:
            field = _parse_unique_error(exc)
            if field is not None or "unique" in str(exc).lower():
                raise UniqueConstraintViolation(self.definition.table, field) from exc
            self._log(logging.ERROR, "Integrity error", error=str(exc))
            raise BackendFailure(
                f"Integrity constraint violated on {self.definition.table}: {exc}"
            ) from exc
        except _DRIVER_ERRORS as exc:
            self._log(logging.ERROR, "Database error", error=str(exc))
            raise BackendFailure(f"Database error on {self.definition.table}: {exc}") from exc

    def _where(
        self,
        table: str,
        params: Mapping[str, Any] | None,
        operators: Mapping[str, str] | None,
        *,
        exclude_deleted: bool,
    ) -> tuple[str, list[Any]]:
        conditions = self._filter_conditions(table, params, operators)
        return build_where_clause(
            conditions, self.db.placeholder, self.db.to_db, exclude_deleted=exclude_deleted
        )

    def _row_to_dict(self, row: Any) -> dict[str, Any]:
        """Convert a driver row to field values."""
        data = dict(row)
        for field_name in self.definition.get_editable_field_names():
            field = self.definition.get_field(field_name)
            is_bool = field is not None and (
                field.type == FieldKind.BOOL
                or (isinstance(field, FixedField) and isinstance(field.value, bool))
            )
            if is_bool and data.get(field_name) is not None:
                data[field_name] = bool(data[field_name])
        return data

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, id: Any) -> Entity | None:
        if id is None:
            return None
        ph = self.db.placeholder
        sql = f'SELECT * FROM {self._table} WHERE "id" = {ph} AND "deleted_at" IS NULL'
        with self._connection() as conn:
            row = conn.execute(sql, (str(id),)).fetchone()
        if row is None:
            return None
        return self.hydrate(self._row_to_dict(row))

    def list_entries(
        self,
        filter: Mapping[str, Any] | None = None,
        filter_operators: Mapping[str, str] | None = None,
        skip: int | None = None,
        amount: int | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[Entity]:
        where, params = self._where(
            self.definition.table, filter, filter_operators, exclude_deleted=not include_deleted
        )
        limit, limit_params = self.db.limit_clause(skip, amount)
        sql = " ".join(
            part
            for part in (
                f"SELECT * FROM {self._table}",
                where,
                'ORDER BY "created_at" ASC, "id" ASC',
                limit,
            )
            if part
        )
        with self._connection() as conn:
            rows = conn.execute(sql, params + limit_params).fetchall()
        return [self.hydrate(self._row_to_dict(row)) for row in rows]

    def get_references(self, table: str, name_field: str) -> dict[str, Any]:
        qtable = quote_identifier(table, "table name")
        qname = quote_identifier(name_field, "field name")
        sql = (
            f'SELECT "id", {qname} AS "name" FROM {qtable} '
            f'WHERE "deleted_at" IS NULL ORDER BY {qname} ASC, "id" ASC'
        )
        with self._connection() as conn:
            rows = conn.execute(sql).fetchall()
        return {row["id"]: row["name"] for row in rows}

    def count_by(
        self,
        table: str,
        params: Mapping[str, Any],
        param_operators: Mapping[str, str],
        exclude_deleted: bool,
    ) -> int:
        where, values = self._where(
            table, params, param_operators, exclude_deleted=exclude_deleted
        )
        sql = f"SELECT COUNT(*) AS \"count\" FROM {quote_identifier(table, 'table name')} {where}"
        with self._connection() as conn:
            row = conn.execute(sql.strip(), values).fetchone()
        return int(row["count"])

    def fetch_references(self, entities: list[Entity]) -> list[Entity]:
        if not entities:
            return entities
        definition = self.definition
        ph = self.db.placeholder
        with self._connection() as conn:
            for field_name in definition.get_fields_of_type(FieldKind.REFERENCE):
                table = definition.get_reference_table(field_name)
                name_field = definition.get_reference_name_field(field_name)
                if not table or not name_field:
                    continue
                ids = sorted(
                    {
                        str(entity.get(field_name))
                        for entity in entities
                        if entity.get(field_name) is not None
                        and not isinstance(entity.get(field_name), dict)
                    }
                )
                if not ids:
                    continue
                sql = (
                    f'SELECT "id", {quote_identifier(name_field, "field name")} AS "name" '
                    f'FROM {quote_identifier(table, "table name")} '
                    f'WHERE "id" IN ({", ".join(ph for _ in ids)})'
                )
                names = {row["id"]: row["name"] for row in conn.execute(sql, ids).fetchall()}
                for entity in entities:
                    value = entity.get(field_name)
                    if value is None or isinstance(value, dict) or str(value) not in names:
                        continue
                    entity.set(field_name, {"id": str(value), "name": names[str(value)]})
        return entities

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, entity: Entity) -> Entity:
        row = self._prepare_create(entity)
        columns = ", ".join(quote_identifier(name, "field name") for name in row)
        placeholders = ", ".join(self.db.placeholder for _ in row)
        sql = f"INSERT INTO {self._table} ({columns}) VALUES ({placeholders})"
        with self._connection() as conn:
            conn.execute(sql, [self.db.to_db(value) for value in row.values()])
        self._log(logging.DEBUG, "Created row", id=row["id"])
        return self._apply_row(entity, row)

    def update(self, entity: Entity) -> Entity:
        entity_id, expected, values = self._prepare_update(entity)
        ph = self.db.placeholder
        now = utc_now()
        assignments = [f"{quote_identifier(name, 'field name')} = {ph}" for name in values]
        assignments += ['"version" = "version" + 1', f'"updated_at" = {ph}']
        sql = (
            f"UPDATE {self._table} SET {', '.join(assignments)} "
            f'WHERE "id" = {ph} AND "version" = {ph} AND "deleted_at" IS NULL'
        )
        params = [self.db.to_db(value) for value in values.values()]
        params += [now, entity_id, expected]

        conflict: ConcurrencyConflict | None = None
        with self._connection() as conn:
            cursor = conn.execute(sql, params)
            if cursor.rowcount == 0:
                current = conn.execute(
                    f'SELECT "version" FROM {self._table} '
                    f'WHERE "id" = {ph} AND "deleted_at" IS NULL',
                    (entity_id,),
                ).fetchone()
                conflict = ConcurrencyConflict(
                    self.definition.table,
                    entity_id,
                    expected,
                    current["version"] if current is not None else None,
                )
        if conflict is not None:
            self._log_conflict(conflict)
            raise conflict

        self._log(logging.DEBUG, "Updated row", id=entity_id, version=expected + 1)
        return self._apply_row(entity, {**values, "version": expected + 1, "updated_at": now})

    def delete(self, id: Any) -> bool:
        if id is None:
            return False
        entity_id = str(id)
        ph = self.db.placeholder
        with self._connection() as conn:
            row = conn.execute(
                f'SELECT "id" FROM {self._table} WHERE "id" = {ph} AND "deleted_at" IS NULL',
                (entity_id,),
            ).fetchone()
            if row is None:
                return False

            if not self.definition.delete_cascade:
                for child in self.definition.get_children():
                    referencing = conn.execute(
                        f"SELECT COUNT(*) AS \"count\" FROM {quote_identifier(child.table)} "
                        f"WHERE {quote_identifier(child.field_name)} = {ph} "
                        f'AND "deleted_at" IS NULL',
                        (entity_id,),
                    ).fetchone()
                    if referencing["count"]:
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
                deleted += self._delete_children(conn, self.definition, entity_id, now)
            conn.execute(
                f'UPDATE {self._table} SET "deleted_at" = {ph} WHERE "id" = {ph}',
                (now, entity_id),
            )
        self._log(logging.DEBUG, "Deleted row", id=entity_id, rows=deleted)
        return True

    def _delete_children(
        self, conn: Any, definition: EntityDefinition, parent_id: str, now: str
    ) -> int:
        """Soft-delete the live rows referencing parent_id, recursively."""
        ph = self.db.placeholder
        deleted = 0
        for child in definition.get_children():
            table = quote_identifier(child.table, "table name")
            column = quote_identifier(child.field_name, "field name")
            child_ids = [
                row["id"]
                for row in conn.execute(
                    f'SELECT "id" FROM {table} WHERE {column} = {ph} AND "deleted_at" IS NULL',
                    (parent_id,),
                ).fetchall()
            ]
            if not child_ids:
                continue
            conn.execute(
                f'UPDATE {table} SET "deleted_at" = {ph} '
                f'WHERE "id" IN ({", ".join(ph for _ in child_ids)})',
                [now, *child_ids],
            )
            deleted += len(child_ids)
            child_definition = self._child_definition(child)
            if child_definition is not None:
                for child_id in child_ids:
                    deleted += self._delete_children(conn, child_definition, child_id, now)
        return deleted
