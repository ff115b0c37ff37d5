"""
Tests for the in-memory backend.

Tests the store's transaction journal and cascade rollback.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from crudkit.runtime.factory import DataAccessFactory
from crudkit.runtime.memory_backend import MemoryStore
from crudkit.specs.entity import EntityDefinition


class TestMemoryStore:
    """Tests for MemoryStore transactions."""

    def test_failed_block_undoes_writes(self) -> None:
        store = MemoryStore()
        store.insert("author", {"id": "a1", "name": "Ada", "deleted_at": None})

        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert("author", {"id": "a2", "name": "Grace", "deleted_at": None})
                store.write("author", "a1", {"name": "Ada Lovelace", "deleted_at": "now"})
                raise RuntimeError("boom")

        assert list(store.table("author")) == ["a1"]
        assert store.table("author")["a1"] == {"id": "a1", "name": "Ada", "deleted_at": None}

    def test_nested_block_joins_outer(self) -> None:
        store = MemoryStore()

        with pytest.raises(RuntimeError):
            with store.transaction():
                with store.transaction():
                    store.insert("author", {"id": "a1", "deleted_at": None})
                store.insert("author", {"id": "a2", "deleted_at": None})
                raise RuntimeError("boom")

        assert store.table("author") == {}

    def test_successful_block_keeps_writes(self) -> None:
        store = MemoryStore()

        with store.transaction():
            store.insert("author", {"id": "a1", "deleted_at": None})

        assert list(store.table("author")) == ["a1"]


class TestCascadeRollback:
    """Tests for all-or-nothing cascades."""

    def test_failing_child_delete_keeps_every_row_live(
        self, definitions: dict[str, EntityDefinition], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        store = MemoryStore()
        factory = DataAccessFactory(definitions, store=store)
        authors = factory.create_data_access("author")
        books = factory.create_data_access("book")
        reviews = factory.create_data_access("review")

        author = authors.create_empty()
        author.set("name", "Ada")
        authors.create(author)
        book = books.create_empty()
        book.set("title", "Notes")
        book.set("author", author.get("id"))
        books.create(book)
        review = reviews.create_empty()
        review.set("book", book.get("id"))
        review.set("rating", 5)
        reviews.create(review)

        write = store.write

        def failing_write(table: str, id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
            if table == "review":
                raise RuntimeError("disk full")
            return write(table, id, changes)

        monkeypatch.setattr(store, "write", failing_write)

        with pytest.raises(RuntimeError, match="disk full"):
            authors.delete(author.get("id"))

        assert authors.get(author.get("id")) is not None
        assert books.get(book.get("id")) is not None
        assert reviews.get(review.get("id")) is not None
