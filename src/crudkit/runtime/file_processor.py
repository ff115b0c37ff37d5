"""
File processor interface.

The data access layer hands file-typed fields to a FileProcessor, passing
the entity, the entity name and the field name. How bytes are stored,
replaced, removed or streamed back is entirely the processor's concern.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from crudkit.runtime.entity import Entity


class FileProcessor(ABC):
    """Abstract collaborator handling files attached to entity fields."""

    @abstractmethod
    def create_file(self, request: Any, entity: Entity, entity_name: str, field: str) -> None:
        """
        Store the uploaded file of a newly created entity.

        Args:
            request: The incoming request carrying the upload
            entity: The just created entity
            entity_name: Name of the entity type
            field: The file field
        """
        ...

    @abstractmethod
    def update_file(self, request: Any, entity: Entity, entity_name: str, field: str) -> None:
        """Replace the stored file of an updated entity."""
        ...

    @abstractmethod
    def delete_file(self, entity: Entity, entity_name: str, field: str) -> None:
        """Remove the stored file of a field."""
        ...

    @abstractmethod
    def render_file(self, entity: Entity, entity_name: str, field: str) -> Any:
        """
        Produce a renderable response for the stored file.

        Returns:
            Whatever response object the surrounding web layer renders
            (typically a streamed response with size, MIME type and name set)
        """
        ...
