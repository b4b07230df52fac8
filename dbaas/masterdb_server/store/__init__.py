"""
Document store abstraction for MasterDB.

This package provides a pluggable persistence layer:
- InMemoryDocumentStore: In-process collections for tests and development
- SqliteDocumentStore: JSON documents in a single SQLite file

Usage:
    from dbaas.masterdb_server.store import create_document_store

    store = create_document_store(config)
    await store.connect()
    await store.insert_one("city", {"cityId": "a1", "cityName": "Pune"})
"""

from .base import (
    ASCENDING,
    DESCENDING,
    Document,
    DocumentStore,
    DuplicateKeyError,
    StoreConnectionError,
    StoreError,
    create_document_store,
)
from .memory import InMemoryDocumentStore
from .sqlite import SqliteDocumentStore

__all__ = [
    "ASCENDING",
    "DESCENDING",
    "Document",
    "DocumentStore",
    "DuplicateKeyError",
    "StoreConnectionError",
    "StoreError",
    "create_document_store",
    "InMemoryDocumentStore",
    "SqliteDocumentStore",
]
