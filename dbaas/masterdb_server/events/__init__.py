"""
Schema lifecycle events for MasterDB.

This package provides the event bus used to keep several instances'
accessor caches consistent:
- InMemorySchemaEventBus: In-process fan-out (tests, single instance)
- KafkaSchemaEventBus: Broadcast over a Kafka topic
- SchemaSynchronizer: Applies events from other instances

Usage:
    from dbaas.masterdb_server.events import create_event_bus

    bus = create_event_bus(config)
    await bus.connect()
"""

from .base import (
    EventBusConnectionError,
    EventBusError,
    EventSerializationError,
    SchemaEvent,
    SchemaEventBus,
    SchemaEventKind,
    create_event_bus,
)
from .kafka import KafkaSchemaEventBus
from .memory import InMemorySchemaEventBus
from .sync import SchemaSynchronizer

__all__ = [
    "EventBusConnectionError",
    "EventBusError",
    "EventSerializationError",
    "SchemaEvent",
    "SchemaEventBus",
    "SchemaEventKind",
    "create_event_bus",
    "KafkaSchemaEventBus",
    "InMemorySchemaEventBus",
    "SchemaSynchronizer",
]
