"""
Configuration management for MasterDB Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for critical settings
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .ids import DEFAULT_ID_LENGTH

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported document store backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


class EventBusBackend(Enum):
    """Supported schema event bus backends."""

    LOCAL = "local"
    KAFKA = "kafka"


def _parse_enum(enum_cls: type[Enum], env_name: str, default: str) -> Enum:
    raw = os.getenv(env_name, default).lower()
    try:
        return enum_cls(raw)
    except ValueError:
        valid = ", ".join(member.value for member in enum_cls)
        raise ValueError(f"Invalid {env_name} '{raw}'. Must be one of: {valid}") from None


@dataclass(frozen=True)
class StorageConfig:
    """Document store configuration.

    Attributes:
        backend: Which document store to use
        data_dir: Directory for the SQLite database
        db_file: SQLite database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        schema_collection: Collection holding schema metadata documents
        group_collection: Externally owned collection of groups
    """

    backend: StoreBackend = StoreBackend.SQLITE
    data_dir: str = "/var/lib/masterdb"
    db_file: str = "masterdb.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    schema_collection: str = "schemas"
    group_collection: str = "groups"

    @property
    def db_path(self) -> str:
        return str(Path(self.data_dir) / self.db_file)

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            backend=_parse_enum(StoreBackend, "STORE_BACKEND", "sqlite"),
            data_dir=os.getenv("DATA_DIR", "/var/lib/masterdb"),
            db_file=os.getenv("DB_FILE", "masterdb.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            schema_collection=os.getenv("SCHEMA_COLLECTION", "schemas"),
            group_collection=os.getenv("GROUP_COLLECTION", "groups"),
        )


@dataclass(frozen=True)
class EngineConfig:
    """Record engine configuration.

    Attributes:
        id_length: Length of generated record identifiers
        default_page_size: Page size when a listing does not specify one
    """

    id_length: int = DEFAULT_ID_LENGTH
    default_page_size: int = 10

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from environment variables."""
        return cls(
            id_length=int(os.getenv("RECORD_ID_LENGTH", str(DEFAULT_ID_LENGTH))),
            default_page_size=int(os.getenv("DEFAULT_PAGE_SIZE", "10")),
        )


@dataclass(frozen=True)
class EventBusConfig:
    """Schema event bus configuration.

    Attributes:
        backend: Which event bus to use
    """

    backend: EventBusBackend = EventBusBackend.LOCAL

    @classmethod
    def from_env(cls) -> EventBusConfig:
        """Load configuration from environment variables."""
        return cls(backend=_parse_enum(EventBusBackend, "EVENT_BUS_BACKEND", "local"))


@dataclass(frozen=True)
class KafkaConfig:
    """Kafka/Redpanda event bus configuration.

    Attributes:
        brokers: Comma-separated list of broker addresses
        topic: Topic carrying schema lifecycle events
        client_id: Producer client id prefix
        group_prefix: Consumer group prefix; the instance id is appended
        acks: Producer acknowledgment level
        sasl_mechanism: SASL authentication mechanism (PLAIN, SCRAM-SHA-256, etc.)
        sasl_username: SASL username (if authentication enabled)
        sasl_password: SASL password (if authentication enabled)
        security_protocol: Security protocol (PLAINTEXT, SSL, SASL_PLAINTEXT, SASL_SSL)
        ssl_cafile: Path to CA certificate file
    """

    brokers: str = "localhost:9092"
    topic: str = "masterdb-schema-events"
    client_id: str = "masterdb"
    group_prefix: str = "masterdb-schema-sync"
    acks: str = "all"
    sasl_mechanism: str | None = None
    sasl_username: str | None = None
    sasl_password: str | None = None
    security_protocol: str = "PLAINTEXT"
    ssl_cafile: str | None = None

    @classmethod
    def from_env(cls) -> KafkaConfig:
        """Load configuration from environment variables."""
        return cls(
            brokers=os.getenv("KAFKA_BROKERS", "localhost:9092"),
            topic=os.getenv("KAFKA_TOPIC", "masterdb-schema-events"),
            client_id=os.getenv("KAFKA_CLIENT_ID", "masterdb"),
            group_prefix=os.getenv("KAFKA_GROUP_PREFIX", "masterdb-schema-sync"),
            acks=os.getenv("KAFKA_ACKS", "all"),
            sasl_mechanism=os.getenv("KAFKA_SASL_MECHANISM"),
            sasl_username=os.getenv("KAFKA_SASL_USERNAME"),
            sasl_password=os.getenv("KAFKA_SASL_PASSWORD"),
            security_protocol=os.getenv("KAFKA_SECURITY_PROTOCOL", "PLAINTEXT"),
            ssl_cafile=os.getenv("KAFKA_SSL_CAFILE"),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Interface to bind
        port: Port to bind
        cors_origins: Allowed CORS origins (empty disables CORS)
    """

    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: tuple[str, ...] = ()

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("CORS_ORIGINS", "")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        instance_id: Identifier of this instance on the event bus
        storage: Document store configuration
        engine: Record engine configuration
        events: Event bus configuration
        kafka: Kafka configuration (if events.backend is KAFKA)
        http: HTTP server configuration
        observability: Logging configuration
    """

    instance_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    storage: StorageConfig = field(default_factory=StorageConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    events: EventBusConfig = field(default_factory=EventBusConfig)
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            instance_id=os.getenv("INSTANCE_ID") or uuid.uuid4().hex[:12],
            storage=StorageConfig.from_env(),
            engine=EngineConfig.from_env(),
            events=EventBusConfig.from_env(),
            kafka=KafkaConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.events.backend == EventBusBackend.KAFKA:
            if not self.kafka.brokers:
                raise ValueError("KAFKA_BROKERS is required when EVENT_BUS_BACKEND=kafka")
            if not self.kafka.topic:
                raise ValueError("KAFKA_TOPIC is required when EVENT_BUS_BACKEND=kafka")

        if self.engine.id_length < 8:
            raise ValueError(f"RECORD_ID_LENGTH must be at least 8, got {self.engine.id_length}")
        if self.engine.default_page_size < 1:
            raise ValueError("DEFAULT_PAGE_SIZE must be positive")
        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT out of range: {self.http.port}")

        if self.storage.backend == StoreBackend.SQLITE and not os.path.exists(
            self.storage.data_dir
        ):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "instance_id": self.instance_id,
                "store_backend": self.storage.backend.value,
                "db_path": self.storage.db_path
                if self.storage.backend == StoreBackend.SQLITE
                else None,
                "event_bus_backend": self.events.backend.value,
                "kafka_brokers": self.kafka.brokers
                if self.events.backend == EventBusBackend.KAFKA
                else None,
                "kafka_topic": self.kafka.topic
                if self.events.backend == EventBusBackend.KAFKA
                else None,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "log_level": self.observability.log_level,
            },
        )
