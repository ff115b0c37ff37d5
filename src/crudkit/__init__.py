"""
crudkit - schema-driven CRUD data access.

This package provides:
- Entity definitions built from a parsed schema and linked into a
  back-reference graph
- Entities validated against their definition at write time
- A DataAccess contract with in-memory, SQLite and PostgreSQL backends
"""

__version__ = "0.1.0"

from crudkit.config import CrudSettings, load_settings
from crudkit.errors import (
    BackendFailure,
    ConcurrencyConflict,
    CrudError,
    UniqueConstraintViolation,
    UnknownFieldError,
    ValidationFailure,
)
from crudkit.runtime import DataAccess, DataAccessFactory, Entity, FileProcessor
from crudkit.specs import EntityDefinition, build_definitions

__all__ = [
    "BackendFailure",
    "ConcurrencyConflict",
    "CrudError",
    "CrudSettings",
    "DataAccess",
    "DataAccessFactory",
    "Entity",
    "EntityDefinition",
    "FileProcessor",
    "UniqueConstraintViolation",
    "UnknownFieldError",
    "ValidationFailure",
    "__version__",
    "build_definitions",
    "load_settings",
]
