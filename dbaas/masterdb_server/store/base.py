"""
Base protocol and types for the document store abstraction.

The engine treats persistence as a schemaless, collection-oriented document
store reachable through a small async command/query interface. This module
defines that interface (DocumentStore), its error types, and the factory
that selects a backend from configuration.

Invariants:
    - Documents are JSON-compatible mappings; stores return copies
    - Collections are created implicitly on first insert
    - Unique-field checks are atomic with the write they guard
    - All methods are coroutines; backends must not block the event loop

How to change safely:
    - Protocol changes require updating every backend
    - Keep filter semantics identical across backends (see query.py)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import ServerConfig

Document = dict[str, Any]
Query = Mapping[str, Any]
SortSpec = Sequence[tuple[str, int]]

ASCENDING = 1
DESCENDING = -1


class StoreError(Exception):
    """Base exception for document store operations."""
    pass


class StoreConnectionError(StoreError):
    """Store is not connected or the connection failed."""
    pass


class DuplicateKeyError(StoreError):
    """A unique field value is already taken in the collection."""

    def __init__(self, collection: str, field: str, value: Any) -> None:
        super().__init__(f"Duplicate value for '{field}' in '{collection}': {value!r}")
        self.collection = collection
        self.field = field
        self.value = value


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends.

    Queries are Mongo-style filter mappings (see query.matches). Sort specs
    are sequences of ``(field_path, ASCENDING | DESCENDING)`` pairs.
    Update values use ``$set`` semantics: supplied top-level keys replace
    the stored ones, everything else is kept.

    Example:
        >>> store = create_document_store(config)
        >>> await store.connect()
        >>> await store.insert_one("city", {"cityId": "a1", "cityName": "Pune"})
        >>> await store.find_one("city", {"cityId": "a1"})
    """

    @property
    def is_connected(self) -> bool:
        ...

    async def connect(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def insert_one(
        self,
        collection: str,
        document: Mapping[str, Any],
        unique_fields: Sequence[str] = (),
    ) -> Document:
        """Insert a document.

        Raises:
            DuplicateKeyError: If a unique field value already exists
        """
        ...

    async def find_one(self, collection: str, query: Query) -> Document | None:
        ...

    async def find(
        self,
        collection: str,
        query: Query | None = None,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Document]:
        ...

    async def count(self, collection: str, query: Query | None = None) -> int:
        ...

    async def exists(self, collection: str, query: Query) -> bool:
        ...

    async def update_one(
        self,
        collection: str,
        query: Query,
        values: Mapping[str, Any],
        unique_fields: Sequence[str] = (),
    ) -> Document | None:
        """Merge ``values`` into the first matching document.

        Returns:
            The updated document, or None if nothing matched

        Raises:
            DuplicateKeyError: If the update would duplicate a unique value
        """
        ...

    async def delete_one(self, collection: str, query: Query) -> Document | None:
        """Delete the first matching document and return it."""
        ...

    async def delete_many(self, collection: str, query: Query) -> int:
        ...

    async def drop_collection(self, collection: str) -> bool:
        """Remove a collection and all its documents."""
        ...

    async def list_collections(self) -> list[str]:
        ...


def create_document_store(config: ServerConfig) -> DocumentStore:
    """Factory function to create the configured document store.

    Args:
        config: Server configuration

    Returns:
        DocumentStore implementation for the configured backend

    Raises:
        ValueError: If the backend is not supported
    """
    from ..config import StoreBackend

    backend = config.storage.backend
    if backend == StoreBackend.SQLITE:
        from .sqlite import SqliteDocumentStore

        return SqliteDocumentStore(
            db_path=config.storage.db_path,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
        )
    if backend == StoreBackend.MEMORY:
        from .memory import InMemoryDocumentStore

        return InMemoryDocumentStore()
    raise ValueError(f"Unsupported store backend: {backend}")
