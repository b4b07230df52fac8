"""
Accessor cache: the live mapping from schema name to its accessor.

The cache is the single source of truth for "does schema X currently exist
and what does it look like" on this instance. It is populated at startup
from persisted metadata and kept current by direct calls from the schema
registry (and, for changes made on other instances, by the schema
synchronizer).

Invariants:
    - Keys are lower-cased schema names
    - Entries are immutable; replacement is a single dict assignment, so a
      reader observes either the old entry or the new one in full
    - Reads take no lock; writers are serialized by an asyncio lock
    - Startup build failures are logged and leave the schema absent

How to change safely:
    - Never mutate a CacheEntry or its accessor in place; build a new one
    - Keep get() synchronous so record operations resolve without awaiting
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from ..errors import MasterDbError, NotFoundError
from ..ids import IdFactory, generate_id
from ..schema.types import SchemaDefinition
from ..store.base import DocumentStore
from .builder import Accessor, Clock, build_accessor, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """An installed schema definition and the accessor built from it."""

    schema: SchemaDefinition
    accessor: Accessor


class AccessorCache:
    """Case-insensitive schema name -> current accessor.

    Example:
        >>> cache = AccessorCache(store)
        >>> await cache.install(city_schema)
        >>> cache.get("City").id_field
        'cityId'
    """

    def __init__(
        self,
        store: DocumentStore,
        id_factory: IdFactory = generate_id,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._id_factory = id_factory
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def names(self) -> list[str]:
        return sorted(self._entries)

    def peek(self, name: str) -> CacheEntry | None:
        return self._entries.get(name.lower())

    def get_entry(self, name: str) -> CacheEntry:
        """Resolve the current entry for a schema.

        Raises:
            NotFoundError: If no accessor is installed for the name
        """
        entry = self._entries.get(name.lower())
        if entry is None:
            raise NotFoundError(f"Schema {name} not found", resource_type="schema", resource_id=name)
        return entry

    def get(self, name: str) -> Accessor:
        return self.get_entry(name).accessor

    def build(self, schema: SchemaDefinition) -> Accessor:
        """Build an accessor without installing it.

        Raises:
            ValidationError: If the schema cannot be laid out
        """
        return build_accessor(schema, self._store, id_factory=self._id_factory, clock=self._clock)

    async def install(self, schema: SchemaDefinition, accessor: Accessor | None = None) -> Accessor:
        """Install (or replace) the accessor for a schema."""
        if accessor is None:
            accessor = self.build(schema)
        async with self._lock:
            replaced = schema.key in self._entries
            self._entries[schema.key] = CacheEntry(schema=schema, accessor=accessor)
        logger.info(
            f"{'Rebuilt' if replaced else 'Installed'} accessor for schema {schema.key}",
            extra={"schema": schema.key, "fields": len(schema.fields)},
        )
        return accessor

    async def evict(self, name: str) -> bool:
        async with self._lock:
            removed = self._entries.pop(name.lower(), None) is not None
        if removed:
            logger.info(f"Evicted accessor for schema {name.lower()}")
        return removed

    async def load_all(self, schemas: Iterable[SchemaDefinition]) -> int:
        """Build and install accessors for every schema.

        A schema whose accessor cannot be built is logged and skipped.

        Returns:
            Number of accessors installed
        """
        loaded = 0
        for schema in schemas:
            try:
                accessor = self.build(schema)
            except MasterDbError as e:
                logger.error(
                    f"Failed to build accessor for schema {schema.name}: {e.message}",
                    extra={"schema": schema.name},
                )
                continue
            await self.install(schema, accessor)
            loaded += 1
        logger.info(f"Loaded {loaded} schema accessor(s)")
        return loaded
