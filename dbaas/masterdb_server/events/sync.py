"""
Cross-instance schema synchronization.

Each instance keeps its own accessor cache. The synchronizer listens on the
schema event bus and, for events published by other instances, re-reads the
affected definition from the shared store and installs or evicts the
accessor. Events published by this instance are ignored: the registry has
already updated the local cache by direct call.

Invariants:
    - The persisted definition, not the event payload, decides the outcome,
      so out-of-order or duplicate events converge to the stored state
    - A failed reload is logged and does not stop the loop
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ..errors import MasterDbError
from ..store.base import StoreError
from .base import SchemaEvent, SchemaEventBus

if TYPE_CHECKING:
    from ..schema.registry import SchemaRegistry

logger = logging.getLogger(__name__)


class SchemaSynchronizer:
    """Applies schema events from other instances to the local cache.

    Attributes:
        applied: Number of remote events applied so far
    """

    def __init__(self, registry: SchemaRegistry, bus: SchemaEventBus, instance_id: str) -> None:
        self._registry = registry
        self._bus = bus
        self._instance_id = instance_id
        self._running = False
        self._task: asyncio.Task | None = None
        self.applied = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Subscribe and start the background consume loop."""
        if self._running:
            return
        self._running = True
        events = self._bus.subscribe()
        self._task = asyncio.create_task(self._consume(events))
        logger.info("SchemaSynchronizer started", extra={"instance_id": self._instance_id})

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("SchemaSynchronizer stopped")

    async def _consume(self, events) -> None:
        try:
            async for event in events:
                await self.handle(event)
        except asyncio.CancelledError:
            pass

    async def handle(self, event: SchemaEvent) -> bool:
        """Apply one event; returns whether the local cache was refreshed."""
        if event.origin == self._instance_id:
            return False
        try:
            await self._registry.reload_schema(event.schema_name)
        except (MasterDbError, StoreError) as e:
            logger.error(
                f"Failed to apply {event.kind.value} for schema {event.schema_name}: {e}",
                extra={"origin": event.origin},
            )
            return False
        self.applied += 1
        logger.info(
            f"Applied remote {event.kind.value} for schema {event.schema_name}",
            extra={"origin": event.origin},
        )
        return True
