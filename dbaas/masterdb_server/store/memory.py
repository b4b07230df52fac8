"""
In-memory document store implementation.

This module provides a document store that keeps every collection in
process memory. Useful for:
- Unit and integration tests
- Local development without a data directory

Invariants:
    - All data is lost on process exit
    - Documents are deep-copied on the way in and out
    - Writes are serialized by an asyncio lock so unique checks are atomic

How to change safely:
    - Keep behavior identical to SqliteDocumentStore; the shared matcher
      in query.py is the single definition of filter semantics
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from .base import Document, Query, SortSpec, StoreConnectionError
from .query import apply_set, check_unique, matches, sort_documents, window

logger = logging.getLogger(__name__)


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore.

    Thread safety:
        Uses an asyncio lock for writes. Safe to use from multiple
        coroutines on one event loop.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> await store.insert_one("city", {"cityId": "a1", "cityName": "Pune"})
        >>> await store.count("city")
        1
    """

    def __init__(self) -> None:
        self._collections: dict[str, list[Document]] = {}
        self._lock = asyncio.Lock()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True
        logger.info("In-memory document store connected")

    async def close(self) -> None:
        self._connected = False
        logger.info("In-memory document store closed")

    def _check_connected(self) -> None:
        if not self._connected:
            raise StoreConnectionError("Document store is not connected")

    def _select(self, collection: str, query: Query | None) -> list[Document]:
        return [doc for doc in self._collections.get(collection, []) if matches(doc, query)]

    async def insert_one(
        self,
        collection: str,
        document: Mapping[str, Any],
        unique_fields: Sequence[str] = (),
    ) -> Document:
        self._check_connected()
        stored = copy.deepcopy(dict(document))
        async with self._lock:
            docs = self._collections.setdefault(collection, [])
            check_unique(collection, stored, docs, unique_fields)
            docs.append(stored)
        return copy.deepcopy(stored)

    async def find_one(self, collection: str, query: Query) -> Document | None:
        self._check_connected()
        for doc in self._collections.get(collection, []):
            if matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def find(
        self,
        collection: str,
        query: Query | None = None,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Document]:
        self._check_connected()
        selected = sort_documents(self._select(collection, query), sort)
        return copy.deepcopy(window(selected, skip, limit))

    async def count(self, collection: str, query: Query | None = None) -> int:
        self._check_connected()
        return len(self._select(collection, query))

    async def exists(self, collection: str, query: Query) -> bool:
        self._check_connected()
        return any(matches(doc, query) for doc in self._collections.get(collection, []))

    async def update_one(
        self,
        collection: str,
        query: Query,
        values: Mapping[str, Any],
        unique_fields: Sequence[str] = (),
    ) -> Document | None:
        self._check_connected()
        async with self._lock:
            docs = self._collections.get(collection, [])
            for index, doc in enumerate(docs):
                if not matches(doc, query):
                    continue
                updated = apply_set(doc, copy.deepcopy(dict(values)))
                others = docs[:index] + docs[index + 1:]
                check_unique(collection, updated, others, unique_fields)
                docs[index] = updated
                return copy.deepcopy(updated)
        return None

    async def delete_one(self, collection: str, query: Query) -> Document | None:
        self._check_connected()
        async with self._lock:
            docs = self._collections.get(collection, [])
            for index, doc in enumerate(docs):
                if matches(doc, query):
                    return docs.pop(index)
        return None

    async def delete_many(self, collection: str, query: Query) -> int:
        self._check_connected()
        async with self._lock:
            docs = self._collections.get(collection, [])
            kept = [doc for doc in docs if not matches(doc, query)]
            removed = len(docs) - len(kept)
            if collection in self._collections:
                self._collections[collection] = kept
        return removed

    async def drop_collection(self, collection: str) -> bool:
        self._check_connected()
        async with self._lock:
            dropped = self._collections.pop(collection, None) is not None
        if dropped:
            logger.info(f"Dropped collection {collection}")
        return dropped

    async def list_collections(self) -> list[str]:
        self._check_connected()
        return sorted(self._collections)
