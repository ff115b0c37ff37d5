"""
Data access factory.

Creates one DataAccess per linked entity definition, backed by the storage
selected in the settings. All instances of a factory share the same store
or database so references and cascades work across tables.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from crudkit.config import BackendKind, CrudSettings
from crudkit.errors import ConfigError
from crudkit.logging import get_logger
from crudkit.runtime.data_access import DataAccess
from crudkit.runtime.file_processor import FileProcessor
from crudkit.runtime.memory_backend import InMemoryDataAccess, MemoryStore
from crudkit.runtime.sql_backend import DatabaseManager, SqlDataAccess
from crudkit.specs.entity import EntityDefinition
from crudkit.specs.linker import build_definitions

logger = get_logger("factory")


class DataAccessFactory:
    """
    Factory for creating data access instances from entity definitions.
    """

    def __init__(
        self,
        definitions: Mapping[str, EntityDefinition],
        settings: CrudSettings | None = None,
        *,
        file_processor: FileProcessor | None = None,
        db: DatabaseManager | None = None,
        store: MemoryStore | None = None,
        project_root: Path | None = None,
    ):
        """
        Initialize the factory.

        Tables of SQL backends are created right away.

        Args:
            definitions: Linked definitions by entity name
            settings: Backend selection (in-memory defaults when omitted)
            file_processor: Collaborator handling file fields
            db: Database manager to use instead of one built from settings
            store: Memory store to use instead of a new one
            project_root: Directory a relative database_path is resolved
                against (the working directory when omitted)
        """
        self.definitions = dict(definitions)
        self.settings = settings or CrudSettings()
        self.file_processor = file_processor
        self.db = db
        self.store = store
        self.project_root = project_root or Path.cwd()
        self._data_access: dict[str, DataAccess] = {}

        if self.db is None and self.store is None:
            self.db, self.store = self._create_storage()
        if self.db is not None:
            self.db.create_all_tables(self.definitions)
            logger.info(
                "Created %d tables on %s backend", len(self.definitions), self.db.backend_type
            )

    @classmethod
    def from_schema(
        cls,
        schema: Mapping[str, Mapping[str, Any]],
        settings: CrudSettings | None = None,
        **kwargs: Any,
    ) -> DataAccessFactory:
        """Build and link the definitions of a parsed schema, then create the factory."""
        settings = settings or CrudSettings()
        definitions = build_definitions(
            schema,
            settings.standard_field_labels,
            default_page_size=settings.page_size,
        )
        return cls(definitions, settings, **kwargs)

    def _create_storage(self) -> tuple[DatabaseManager | None, MemoryStore | None]:
        backend = self.settings.backend
        if backend == BackendKind.MEMORY:
            return None, MemoryStore()
        if backend == BackendKind.SQLITE:
            return DatabaseManager(self.settings.get_database_path(self.project_root)), None
        if not self.settings.database_url:
            raise ConfigError("The postgres backend requires database_url")
        from crudkit.runtime.pg_backend import PostgresDatabaseManager

        return PostgresDatabaseManager(self.settings.database_url), None

    def create_data_access(self, entity_name: str) -> DataAccess:
        """
        Create the data access of an entity.

        Args:
            entity_name: Name of the entity in the definitions

        Returns:
            DataAccess instance

        Raises:
            KeyError: If the entity is unknown
        """
        definition = self.definitions.get(entity_name)
        if definition is None:
            raise KeyError(f"No definition found for entity: {entity_name}")

        data: DataAccess
        if self.db is not None:
            data = SqlDataAccess(definition, self.db, self.file_processor, self.definitions)
        else:
            assert self.store is not None
            data = InMemoryDataAccess(
                definition, self.store, self.file_processor, self.definitions
            )
        self._data_access[entity_name] = data
        return data

    def create_all(self) -> dict[str, DataAccess]:
        """Create the data access of every entity."""
        for entity_name in self.definitions:
            self.create_data_access(entity_name)
        return dict(self._data_access)

    def get_data_access(self, entity_name: str) -> DataAccess | None:
        """Get a previously created data access by entity name."""
        return self._data_access.get(entity_name)
