"""
Kafka/Redpanda schema event bus.

Publishes schema lifecycle events to a Kafka topic so that every instance
sharing the same document store can refresh its accessor cache.

Invariants:
    - Every instance consumes with its own consumer group, so each instance
      sees every event (broadcast, not work sharing)
    - Consumers start from the latest offset; a fresh instance loads all
      schemas from the store at startup and needs no history
    - Events are keyed by schema name so changes to one schema stay ordered

How to change safely:
    - Test with an actual Kafka/Redpanda cluster before deploying
    - Keep the topic single-purpose; other producers would confuse consumers
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.errors import KafkaConnectionError, KafkaError

from .base import EventBusConnectionError, EventBusError, EventSerializationError, SchemaEvent

if TYPE_CHECKING:
    from ..config import KafkaConfig

logger = logging.getLogger(__name__)


class KafkaSchemaEventBus:
    """Kafka implementation of SchemaEventBus.

    Attributes:
        config: KafkaConfig with connection settings
        instance_id: Identifier of this instance, used for the consumer group

    Example:
        >>> bus = KafkaSchemaEventBus(KafkaConfig(brokers="localhost:9092"), "node-a")
        >>> await bus.connect()
        >>> await bus.publish(event)
    """

    def __init__(self, config: KafkaConfig, instance_id: str) -> None:
        self.config = config
        self.instance_id = instance_id
        self._producer: AIOKafkaProducer | None = None
        self._consumer: AIOKafkaConsumer | None = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self._producer is not None

    def _security_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if self.config.security_protocol != "PLAINTEXT":
            options["security_protocol"] = self.config.security_protocol
        if self.config.sasl_mechanism:
            options["sasl_mechanism"] = self.config.sasl_mechanism
            options["sasl_plain_username"] = self.config.sasl_username
            options["sasl_plain_password"] = self.config.sasl_password
        if self.config.ssl_cafile:
            options["ssl_cafile"] = self.config.ssl_cafile
        return options

    async def connect(self) -> None:
        """Start the producer.

        Raises:
            EventBusConnectionError: If connection fails
        """
        if self._connected:
            return
        try:
            self._producer = AIOKafkaProducer(
                bootstrap_servers=self.config.brokers,
                client_id=f"{self.config.client_id}-{self.instance_id}",
                acks=self.config.acks,
                request_timeout_ms=30000,
                retry_backoff_ms=100,
                **self._security_options(),
            )
            await self._producer.start()
            self._connected = True
            logger.info(
                "Connected to Kafka schema event bus",
                extra={"brokers": self.config.brokers, "topic": self.config.topic},
            )
        except Exception as e:
            self._connected = False
            raise EventBusConnectionError(f"Failed to connect to Kafka: {e}") from e

    async def close(self) -> None:
        if self._consumer:
            try:
                await self._consumer.stop()
            except KafkaError as e:
                logger.warning(f"Error closing consumer: {e}")
            self._consumer = None

        if self._producer:
            try:
                await self._producer.stop()
            except KafkaError as e:
                logger.warning(f"Error closing producer: {e}")
            self._producer = None

        self._connected = False
        logger.info("Kafka schema event bus closed")

    async def publish(self, event: SchemaEvent) -> None:
        """Publish and wait for the broker acknowledgment.

        Raises:
            EventBusConnectionError: If not connected or the connection is lost
            EventBusError: For other Kafka errors
        """
        if not self._producer:
            raise EventBusConnectionError("Not connected to Kafka")
        try:
            await self._producer.send_and_wait(
                self.config.topic,
                value=event.to_bytes(),
                key=event.schema_name.encode("utf-8"),
            )
        except KafkaConnectionError as e:
            self._connected = False
            raise EventBusConnectionError(f"Kafka connection lost: {e}") from e
        except KafkaError as e:
            raise EventBusError(f"Kafka send failed: {e}") from e

        logger.debug(
            "Schema event published to Kafka",
            extra={"kind": event.kind.value, "schema": event.schema_name},
        )

    async def subscribe(self) -> AsyncIterator[SchemaEvent]:
        """Consume schema events published by any instance.

        Undecodable messages are logged and skipped.

        Raises:
            EventBusConnectionError: If the consumer cannot be started
        """
        group_id = f"{self.config.group_prefix}-{self.instance_id}"
        try:
            self._consumer = AIOKafkaConsumer(
                self.config.topic,
                bootstrap_servers=self.config.brokers,
                group_id=group_id,
                auto_offset_reset="latest",
                enable_auto_commit=True,
                **self._security_options(),
            )
            await self._consumer.start()
        except KafkaError as e:
            raise EventBusConnectionError(f"Failed to subscribe to Kafka: {e}") from e

        logger.info(
            "Subscribed to schema events",
            extra={"topic": self.config.topic, "group_id": group_id},
        )

        try:
            async for msg in self._consumer:
                try:
                    yield SchemaEvent.from_bytes(msg.value)
                except EventSerializationError as e:
                    logger.warning(
                        f"Skipping undecodable schema event: {e}",
                        extra={"partition": msg.partition, "offset": msg.offset},
                    )
        except KafkaConnectionError as e:
            raise EventBusConnectionError(f"Kafka connection lost: {e}") from e
