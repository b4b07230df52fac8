"""
Service root for MasterDB.

MasterDataService wires the engine together: one document store, one
accessor cache, the group directory, the schema registry, the reference
validator and the record engine, plus an optional event bus and the
synchronizer that applies other instances' schema changes.

Invariants:
    - Exactly one AccessorCache per service; registry, reference validator
      and record engine all share it
    - start() loads every persisted schema before the synchronizer runs
    - stop() is safe to call more than once

How to change safely:
    - Keep construction side-effect free; all I/O happens in start()
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from .accessor.cache import AccessorCache
from .config import ServerConfig, StoreBackend
from .events.base import SchemaEventBus, create_event_bus
from .events.sync import SchemaSynchronizer
from .ids import IdFactory, generate_id
from .ids import id_factory as sized_id_factory
from .records.engine import RecordEngine
from .records.references import ReferenceValidator
from .schema.groups import DEFAULT_GROUP_COLLECTION, GroupDirectory
from .schema.registry import DEFAULT_SCHEMA_COLLECTION, SchemaRegistry
from .store.base import DocumentStore, create_document_store

logger = logging.getLogger(__name__)


class MasterDataService:
    """Owns every engine component and their lifecycle.

    Attributes:
        store: Document store holding metadata, groups and records
        cache: Accessor cache shared by all components
        groups: Read-only group directory
        registry: Schema registry
        references: Reference validator
        records: Record engine
        event_bus: Optional schema event bus
        instance_id: Identifier of this instance on the event bus

    Example:
        >>> service = MasterDataService(InMemoryDocumentStore())
        >>> await service.start()
        >>> await service.registry.create_schema({"name": "city", "fields": [...]})
        >>> await service.records.create("city", {"cityName": "Pune"})
        >>> await service.stop()
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        schema_collection: str = DEFAULT_SCHEMA_COLLECTION,
        group_collection: str = DEFAULT_GROUP_COLLECTION,
        id_factory: IdFactory = generate_id,
        event_bus: SchemaEventBus | None = None,
        instance_id: str | None = None,
    ) -> None:
        self.store = store
        self.instance_id = instance_id or uuid.uuid4().hex[:12]
        self.event_bus = event_bus

        self.cache = AccessorCache(store, id_factory=id_factory)
        self.groups = GroupDirectory(store, collection=group_collection)
        self.registry = SchemaRegistry(
            store,
            self.cache,
            groups=self.groups,
            events=event_bus,
            collection=schema_collection,
            instance_id=self.instance_id,
        )
        self.references = ReferenceValidator(self.cache)
        self.records = RecordEngine(self.cache, self.references)

        self.synchronizer: SchemaSynchronizer | None = None
        if event_bus is not None:
            self.synchronizer = SchemaSynchronizer(self.registry, event_bus, self.instance_id)

        self._running = False

    @classmethod
    def from_config(cls, config: ServerConfig) -> MasterDataService:
        """Build a service from server configuration."""
        if config.storage.backend == StoreBackend.SQLITE:
            Path(config.storage.data_dir).mkdir(parents=True, exist_ok=True)

        return cls(
            create_document_store(config),
            schema_collection=config.storage.schema_collection,
            group_collection=config.storage.group_collection,
            id_factory=sized_id_factory(config.engine.id_length),
            event_bus=create_event_bus(config),
            instance_id=config.instance_id,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Connect the store, load schemas, then start event synchronization."""
        if self._running:
            return

        await self.store.connect()
        loaded = await self.registry.load()
        logger.info(
            f"Loaded {loaded} schema(s)",
            extra={"instance_id": self.instance_id, "schemas": self.cache.names()},
        )

        if self.event_bus is not None:
            await self.event_bus.connect()
        if self.synchronizer is not None:
            await self.synchronizer.start()

        self._running = True
        logger.info("MasterDataService started", extra={"instance_id": self.instance_id})

    async def stop(self) -> None:
        if not self._running:
            return

        if self.synchronizer is not None:
            await self.synchronizer.stop()
        if self.event_bus is not None:
            await self.event_bus.close()
        await self.store.close()

        self._running = False
        logger.info("MasterDataService stopped", extra={"instance_id": self.instance_id})
