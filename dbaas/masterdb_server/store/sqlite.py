"""
SQLite-backed document store.

This module persists every collection in a single SQLite file as JSON
documents. Filters are evaluated in Python with the shared matcher, so the
backend behaves exactly like the in-memory store.

Invariants:
    - One SQLite file per deployment; a collection is a row prefix, not a table
    - Every write runs in a BEGIN IMMEDIATE transaction, so unique checks
      and the write they guard are atomic across connections
    - Blocking SQLite calls run in a worker thread, never on the event loop
    - Insertion order (row id) is the natural order of a collection

How to change safely:
    - Table migrations must be backward compatible (bump SCHEMA_VERSION)
    - Keep documents JSON-serializable; encoding of rich types belongs to
      the accessor layer
    - Test with large collections before production

Table schema:
    documents:
        - doc_id INTEGER PRIMARY KEY AUTOINCREMENT
        - collection TEXT
        - body TEXT (JSON)
        - INDEX on (collection, doc_id)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .base import Document, Query, SortSpec, StoreConnectionError, StoreError
from .query import apply_set, check_unique, matches, sort_documents, window

logger = logging.getLogger(__name__)


class SqliteDocumentStore:
    """SQLite implementation of DocumentStore.

    Thread safety:
        A connection is created per operation inside the worker thread.
        SQLite handles concurrent access via WAL mode and busy timeouts.

    Example:
        >>> store = SqliteDocumentStore("/var/lib/masterdb/masterdb.db")
        >>> await store.connect()
        >>> await store.insert_one("schemas", {"schema": {"name": "city"}})
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the database file."""
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS documents (
                    doc_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection TEXT NOT NULL,
                    body TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_documents_collection
                    ON documents(collection, doc_id);
            """)
            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                (self.SCHEMA_VERSION, int(time.time() * 1000)),
            )

    async def connect(self) -> None:
        try:
            await asyncio.to_thread(self._create_schema)
        except sqlite3.Error as e:
            raise StoreConnectionError(f"Failed to open {self.db_path}: {e}") from e
        self._connected = True
        logger.info(f"SQLite document store connected: {self.db_path}")

    async def close(self) -> None:
        self._connected = False
        logger.info("SQLite document store closed")

    async def _run(self, func: Any, *args: Any) -> Any:
        if not self._connected:
            raise StoreConnectionError("Document store is not connected")
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as e:
            raise StoreError(f"SQLite operation failed: {e}") from e

    @staticmethod
    def _load(conn: sqlite3.Connection, collection: str) -> list[tuple[int, Document]]:
        rows = conn.execute(
            "SELECT doc_id, body FROM documents WHERE collection = ? ORDER BY doc_id",
            (collection,),
        ).fetchall()
        return [(row[0], json.loads(row[1])) for row in rows]

    def _select(self, collection: str, query: Query | None) -> list[Document]:
        with self._get_connection() as conn:
            return [doc for _, doc in self._load(conn, collection) if matches(doc, query)]

    # Write paths

    def _insert(
        self, collection: str, document: Document, unique_fields: Sequence[str]
    ) -> Document:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if unique_fields:
                    others = [doc for _, doc in self._load(conn, collection)]
                    check_unique(collection, document, others, unique_fields)
                body = json.dumps(document)
                conn.execute(
                    "INSERT INTO documents (collection, body) VALUES (?, ?)",
                    (collection, body),
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return json.loads(body)

    def _update(
        self,
        collection: str,
        query: Query,
        values: Document,
        unique_fields: Sequence[str],
    ) -> Document | None:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                loaded = self._load(conn, collection)
                for doc_id, doc in loaded:
                    if not matches(doc, query):
                        continue
                    updated = apply_set(doc, values)
                    if unique_fields:
                        others = [other for other_id, other in loaded if other_id != doc_id]
                        check_unique(collection, updated, others, unique_fields)
                    conn.execute(
                        "UPDATE documents SET body = ? WHERE doc_id = ?",
                        (json.dumps(updated), doc_id),
                    )
                    conn.execute("COMMIT")
                    return updated
                conn.execute("ROLLBACK")
                return None
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _delete(self, collection: str, query: Query, many: bool) -> list[Document]:
        removed: list[Document] = []
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for doc_id, doc in self._load(conn, collection):
                    if not matches(doc, query):
                        continue
                    conn.execute("DELETE FROM documents WHERE doc_id = ?", (doc_id,))
                    removed.append(doc)
                    if not many:
                        break
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return removed

    def _drop(self, collection: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM documents WHERE collection = ?", (collection,))
            return cursor.rowcount > 0

    def _collections(self) -> list[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT DISTINCT collection FROM documents ORDER BY collection"
            ).fetchall()
            return [row[0] for row in rows]

    # DocumentStore protocol

    async def insert_one(
        self,
        collection: str,
        document: Mapping[str, Any],
        unique_fields: Sequence[str] = (),
    ) -> Document:
        return await self._run(self._insert, collection, dict(document), tuple(unique_fields))

    async def find_one(self, collection: str, query: Query) -> Document | None:
        found = await self._run(self._select, collection, query)
        return found[0] if found else None

    async def find(
        self,
        collection: str,
        query: Query | None = None,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Document]:
        selected = await self._run(self._select, collection, query)
        return window(sort_documents(selected, sort), skip, limit)

    async def count(self, collection: str, query: Query | None = None) -> int:
        return len(await self._run(self._select, collection, query))

    async def exists(self, collection: str, query: Query) -> bool:
        return await self.find_one(collection, query) is not None

    async def update_one(
        self,
        collection: str,
        query: Query,
        values: Mapping[str, Any],
        unique_fields: Sequence[str] = (),
    ) -> Document | None:
        return await self._run(
            self._update, collection, query, dict(values), tuple(unique_fields)
        )

    async def delete_one(self, collection: str, query: Query) -> Document | None:
        removed = await self._run(self._delete, collection, query, False)
        return removed[0] if removed else None

    async def delete_many(self, collection: str, query: Query) -> int:
        return len(await self._run(self._delete, collection, query, True))

    async def drop_collection(self, collection: str) -> bool:
        dropped = await self._run(self._drop, collection)
        if dropped:
            logger.info(f"Dropped collection {collection}", extra={"db_path": str(self.db_path)})
        return dropped

    async def list_collections(self) -> list[str]:
        return await self._run(self._collections)
