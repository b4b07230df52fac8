"""
Base protocol and types for schema lifecycle events.

Every committed schema mutation is published as a SchemaEvent. Within one
instance the registry updates its accessor cache directly; the event bus
exists so that other instances sharing the same store can converge.

Invariants:
    - Events are published only after the mutation is persisted
    - ``origin`` identifies the publishing instance; consumers ignore their own
    - Events carry the schema name always and the definition when it exists

How to change safely:
    - Events are consumed by other (possibly older) instances; only add
      optional keys to the wire form
    - Protocol changes require updating every backend
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)


class EventBusError(Exception):
    """Base exception for event bus operations."""
    pass


class EventBusConnectionError(EventBusError):
    """Connection to the event bus backend failed."""
    pass


class EventSerializationError(EventBusError):
    """Failed to serialize/deserialize a schema event."""
    pass


class SchemaEventKind(Enum):
    """Schema lifecycle event names."""

    CREATED = "schema.created"
    UPDATED = "schema.updated"
    DELETED = "schema.deleted"


@dataclass(frozen=True)
class SchemaEvent:
    """A schema lifecycle event.

    Attributes:
        kind: What happened
        schema_name: Lower-cased schema name
        schema: Definition dictionary (absent for deletions)
        origin: Instance id of the publisher
        timestamp_ms: Publication time (Unix ms)
    """

    kind: SchemaEventKind
    schema_name: str
    schema: dict[str, Any] | None = None
    origin: str | None = None
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "kind": self.kind.value,
            "schemaName": self.schema_name,
            "timestampMs": self.timestamp_ms,
        }
        if self.schema is not None:
            result["schema"] = self.schema
        if self.origin is not None:
            result["origin"] = self.origin
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchemaEvent:
        return cls(
            kind=SchemaEventKind(data["kind"]),
            schema_name=data["schemaName"],
            schema=data.get("schema"),
            origin=data.get("origin"),
            timestamp_ms=data.get("timestampMs", 0),
        )

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> SchemaEvent:
        """Decode an event from its wire form.

        Raises:
            EventSerializationError: If the payload is not a valid event
        """
        try:
            return cls.from_dict(json.loads(data.decode("utf-8")))
        except (json.JSONDecodeError, UnicodeDecodeError, KeyError, ValueError, TypeError) as e:
            raise EventSerializationError(f"Invalid schema event payload: {e}") from e


@runtime_checkable
class SchemaEventBus(Protocol):
    """Protocol for schema event bus backends.

    Example:
        >>> bus = create_event_bus(config)
        >>> await bus.connect()
        >>> await bus.publish(SchemaEvent(SchemaEventKind.CREATED, "city"))
        >>> async for event in bus.subscribe():
        ...     print(event.kind, event.schema_name)
    """

    @property
    def is_connected(self) -> bool:
        ...

    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            EventBusConnectionError: If connection fails
        """
        ...

    async def close(self) -> None:
        ...

    async def publish(self, event: SchemaEvent) -> None:
        """Publish an event to every subscriber.

        Raises:
            EventBusError: If the event could not be published
        """
        ...

    def subscribe(self) -> AsyncIterator[SchemaEvent]:
        """Yield events as they are published until the bus is closed."""
        ...


def create_event_bus(config: ServerConfig) -> SchemaEventBus:
    """Factory function to create the configured event bus.

    Raises:
        ValueError: If the backend is not supported
    """
    from ..config import EventBusBackend

    backend = config.events.backend
    if backend == EventBusBackend.KAFKA:
        from .kafka import KafkaSchemaEventBus

        return KafkaSchemaEventBus(config.kafka, instance_id=config.instance_id)
    if backend == EventBusBackend.LOCAL:
        from .memory import InMemorySchemaEventBus

        return InMemorySchemaEventBus()
    raise ValueError(f"Unsupported event bus backend: {backend}")
