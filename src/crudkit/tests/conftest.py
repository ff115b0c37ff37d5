"""
Shared fixtures for crudkit tests.

The library schema used throughout:
- publisher <- book.publisher (no cascade: publishers with books stay)
- author <- book.author <- review.book (cascading)
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from crudkit.config import CrudSettings
from crudkit.runtime.data_access import DataAccess
from crudkit.runtime.entity import Entity
from crudkit.runtime.factory import DataAccessFactory
from crudkit.runtime.file_processor import FileProcessor
from crudkit.specs.entity import EntityDefinition
from crudkit.specs.linker import build_definitions

STANDARD_FIELD_LABELS = {"id": "Id", "created_at": "Created", "updated_at": "Updated"}

LIBRARY_SCHEMA: dict[str, dict[str, Any]] = {
    "publisher": {
        "label": "Publisher",
        "fields": {
            "name": {"type": "text", "required": True},
        },
    },
    "author": {
        "label": "Author",
        "deleteCascade": True,
        "fields": {
            "name": {"type": "text", "required": True, "unique": True, "label": "Name"},
            "email": {"type": "text", "unique": True},
        },
    },
    "book": {
        "table": "book",
        "label": "Book",
        "deleteCascade": True,
        "listFields": ["title", "author", "genre"],
        "filter": ["genre", "available"],
        "pageSize": 10,
        "fields": {
            "title": {"type": "text", "required": True},
            "author": {
                "type": "reference",
                "reference": {"table": "author", "nameField": "name", "entity": "author"},
            },
            "publisher": {
                "type": "reference",
                "reference": {"table": "publisher", "nameField": "name"},
            },
            "status": {"type": "fixed", "fixedvalue": "active"},
            "genre": {"type": "set", "setitems": ["fiction", "poetry", "essay"]},
            "pages": {"type": "int"},
            "price": {"type": "float", "floatStep": 0.01},
            "published": {"type": "date"},
            "available": {"type": "bool"},
            "cover": {"type": "file", "filepath": "covers"},
        },
    },
    "review": {
        "fields": {
            "book": {
                "type": "reference",
                "reference": {"table": "book", "nameField": "title", "entity": "book"},
            },
            "rating": {"type": "int", "required": True},
            "comment": {"type": "text"},
        },
    },
}


class RecordingFileProcessor(FileProcessor):
    """File processor double recording every call it receives."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []

    def create_file(self, request: Any, entity: Entity, entity_name: str, field: str) -> None:
        self.calls.append(("create", request, entity, entity_name, field))

    def update_file(self, request: Any, entity: Entity, entity_name: str, field: str) -> None:
        self.calls.append(("update", request, entity, entity_name, field))

    def delete_file(self, entity: Entity, entity_name: str, field: str) -> None:
        self.calls.append(("delete", entity, entity_name, field))

    def render_file(self, entity: Entity, entity_name: str, field: str) -> Any:
        self.calls.append(("render", entity, entity_name, field))
        return f"rendered:{entity_name}.{field}"


@pytest.fixture
def library_schema() -> dict[str, dict[str, Any]]:
    """The parsed library schema."""
    return LIBRARY_SCHEMA


@pytest.fixture
def definitions() -> dict[str, EntityDefinition]:
    """Linked, frozen library definitions."""
    return build_definitions(LIBRARY_SCHEMA, STANDARD_FIELD_LABELS)


@pytest.fixture
def file_processor() -> RecordingFileProcessor:
    return RecordingFileProcessor()


def _settings_for(backend: str, tmp_path: Path) -> CrudSettings:
    if backend == "sqlite":
        return CrudSettings(backend="sqlite", database_path=str(tmp_path / "library.db"))
    return CrudSettings(backend="memory")


@pytest.fixture(params=["memory", "sqlite"])
def factory(
    request: pytest.FixtureRequest,
    tmp_path: Path,
    definitions: dict[str, EntityDefinition],
    file_processor: RecordingFileProcessor,
) -> DataAccessFactory:
    """Factory for every backend the contract tests run against."""
    return DataAccessFactory(
        definitions, _settings_for(request.param, tmp_path), file_processor=file_processor
    )


@pytest.fixture
def authors(factory: DataAccessFactory) -> DataAccess:
    return factory.create_data_access("author")


@pytest.fixture
def books(factory: DataAccessFactory) -> DataAccess:
    return factory.create_data_access("book")


@pytest.fixture
def reviews(factory: DataAccessFactory) -> DataAccess:
    return factory.create_data_access("review")


@pytest.fixture
def publishers(factory: DataAccessFactory) -> DataAccess:
    return factory.create_data_access("publisher")


@pytest.fixture
def make_entity() -> Callable[..., Entity]:
    """Create and persist an entity from keyword values."""

    def _make(data: DataAccess, **values: Any) -> Entity:
        entity = data.create_empty()
        for field_name, value in values.items():
            entity.set(field_name, value)
        return data.create(entity)

    return _make
