"""
In-memory schema event bus.

Fans events out to every active subscriber of the same bus object. Used in
tests, for single-instance deployments, and to wire several in-process
instances together.

Invariants:
    - All events are lost on process exit
    - Subscribers only see events published after they subscribed
    - Every published event is also kept in ``published`` for inspection
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from .base import EventBusConnectionError, SchemaEvent

logger = logging.getLogger(__name__)


class InMemorySchemaEventBus:
    """In-memory implementation of SchemaEventBus.

    Example:
        >>> bus = InMemorySchemaEventBus()
        >>> await bus.connect()
        >>> await bus.publish(event)
        >>> bus.published[-1] is event
        True
    """

    def __init__(self) -> None:
        self.published: list[SchemaEvent] = []
        self._queues: list[asyncio.Queue[SchemaEvent | None]] = []
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    async def connect(self) -> None:
        self._connected = True
        logger.debug("InMemorySchemaEventBus connected")

    async def close(self) -> None:
        self._connected = False
        for queue in self._queues:
            queue.put_nowait(None)
        logger.debug("InMemorySchemaEventBus closed")

    async def publish(self, event: SchemaEvent) -> None:
        if not self._connected:
            raise EventBusConnectionError("Not connected")
        self.published.append(event)
        for queue in self._queues:
            queue.put_nowait(event)
        logger.debug(
            "Schema event published",
            extra={"kind": event.kind.value, "schema": event.schema_name},
        )

    def subscribe(self) -> AsyncIterator[SchemaEvent]:
        """Register a subscriber; it receives events published from now on."""
        if not self._connected:
            raise EventBusConnectionError("Not connected")
        queue: asyncio.Queue[SchemaEvent | None] = asyncio.Queue()
        self._queues.append(queue)
        return _Subscription(self, queue)

    def _unsubscribe(self, queue: asyncio.Queue[SchemaEvent | None]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)


class _Subscription:
    """Async iterator over one subscriber queue."""

    def __init__(
        self, bus: InMemorySchemaEventBus, queue: asyncio.Queue[SchemaEvent | None]
    ) -> None:
        self._bus = bus
        self._queue = queue

    def __aiter__(self) -> _Subscription:
        return self

    async def __anext__(self) -> SchemaEvent:
        event = await self._queue.get()
        if event is None:
            self._bus._unsubscribe(self._queue)
            raise StopAsyncIteration
        return event

    async def aclose(self) -> None:
        self._bus._unsubscribe(self._queue)
