"""
crudkit runtime

Entities, write-time validation and the data access contract with its
storage backends.

This module provides:
- Entity: a record bound to an EntityDefinition
- DataAccess: the per-definition CRUD contract
- InMemoryDataAccess / SqlDataAccess: storage backends
- DataAccessFactory: creates data access instances from settings

Example usage:
    >>> from crudkit.runtime import DataAccessFactory
    >>>
    >>> factory = DataAccessFactory.from_schema(schema)
    >>> authors = factory.create_data_access("author")
    >>> author = authors.create_empty()
    >>> author.set("name", "Ada")
    >>> authors.create(author)
"""

from crudkit.runtime.data_access import DataAccess
from crudkit.runtime.entity import Entity
from crudkit.runtime.factory import DataAccessFactory
from crudkit.runtime.file_processor import FileProcessor
from crudkit.runtime.memory_backend import InMemoryDataAccess, MemoryStore
from crudkit.runtime.query_builder import FilterCondition, Operator
from crudkit.runtime.sql_backend import DatabaseManager, SqlDataAccess
from crudkit.runtime.validation import validate_entity

__all__ = [
    "DataAccess",
    "DataAccessFactory",
    "DatabaseManager",
    "Entity",
    "FileProcessor",
    "FilterCondition",
    "InMemoryDataAccess",
    "MemoryStore",
    "Operator",
    "SqlDataAccess",
    "validate_entity",
]
