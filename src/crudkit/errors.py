"""
Error types for crudkit definitions, validation and data access.

Every failure surfaced by this package derives from CrudError so callers can
distinguish the kinds below without inspecting driver-specific exceptions.
"""

from __future__ import annotations

from typing import Any


class CrudError(Exception):
    """Base exception for all crudkit errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class DefinitionError(CrudError):
    """
    Raised when an entity definition is built or modified incorrectly.

    Examples:
    - Unknown field type in the schema
    - Schema mutation after the definition was frozen
    """

    pass


class LinkError(DefinitionError):
    """
    Raised when definitions cannot be linked together.

    Examples:
    - Reference field pointing at an unknown entity
    - Duplicate table names across entities
    """

    pass


class ConfigError(CrudError):
    """Raised when settings cannot be loaded or are invalid."""

    pass


class UnknownFieldError(CrudError, KeyError):
    """Raised when an entity is accessed with a field its definition lacks."""

    def __init__(self, field: str, table: str):
        self.field = field
        self.table = table
        super().__init__(f"Unknown field '{field}' for entity table '{table}'")

    def __str__(self) -> str:
        return self.message


class ValidationFailure(CrudError):
    """
    Raised when entity values fail write-time validation.

    Attributes:
        errors: Mapping of field name to the list of messages for that field
    """

    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        summary = "; ".join(f"{field}: {', '.join(msgs)}" for field, msgs in errors.items())
        super().__init__(f"Validation failed ({summary})")


class UniqueConstraintViolation(CrudError):
    """Raised when a unique field collides with an existing non-deleted row."""

    def __init__(self, table: str, field: str | None, value: Any = None):
        self.table = table
        self.field = field
        self.value = value
        if field:
            message = f"A {table} row with this {field} already exists"
        else:
            message = f"Duplicate value violates unique constraint on {table}"
        super().__init__(message)


class ConcurrencyConflict(CrudError):
    """
    Raised when an update carries a stale version.

    The caller must re-fetch the row and retry, or report the conflict.
    """

    def __init__(
        self,
        table: str,
        entity_id: Any,
        expected_version: Any,
        actual_version: Any = None,
    ):
        self.table = table
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        if actual_version is None:
            message = f"{table} row '{entity_id}' no longer exists"
        else:
            message = (
                f"{table} row '{entity_id}' was modified concurrently "
                f"(expected version {expected_version}, found {actual_version})"
            )
        super().__init__(message)


class BackendFailure(CrudError):
    """Raised when the storage backend fails (connection, syntax, timeout)."""

    pass


class QueryError(BackendFailure):
    """Raised when a query cannot be built (bad identifier or operator)."""

    pass


class FileProcessorMissing(CrudError):
    """Raised when a file field is processed without a FileProcessor."""

    pass
