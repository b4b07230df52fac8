"""
Unit tests for environment-driven configuration.
"""

from pathlib import Path

import pytest

from dbaas.masterdb_server.config import (
    EngineConfig,
    EventBusBackend,
    EventBusConfig,
    HttpConfig,
    KafkaConfig,
    ServerConfig,
    StorageConfig,
    StoreBackend,
)

ENV_NAMES = [
    "INSTANCE_ID",
    "STORE_BACKEND",
    "DATA_DIR",
    "DB_FILE",
    "SQLITE_WAL_MODE",
    "EVENT_BUS_BACKEND",
    "KAFKA_BROKERS",
    "KAFKA_TOPIC",
    "RECORD_ID_LENGTH",
    "DEFAULT_PAGE_SIZE",
    "HTTP_PORT",
    "CORS_ORIGINS",
    "LOG_LEVEL",
    "LOG_FORMAT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


class TestServerConfig:
    """Tests for ServerConfig and its sections."""

    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        config = ServerConfig.from_env()

        assert config.storage.backend == StoreBackend.SQLITE
        assert config.storage.db_path == str(tmp_path / "masterdb.db")
        assert config.storage.schema_collection == "schemas"
        assert config.storage.group_collection == "groups"
        assert config.events.backend == EventBusBackend.LOCAL
        assert config.engine.id_length == 16
        assert config.http.port == 8080
        assert config.http.cors_origins == ()
        assert config.observability.log_format == "json"
        assert len(config.instance_id) == 12

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("INSTANCE_ID", "node-a")
        monkeypatch.setenv("STORE_BACKEND", "MEMORY")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("EVENT_BUS_BACKEND", "kafka")
        monkeypatch.setenv("KAFKA_BROKERS", "k1:9092,k2:9092")
        monkeypatch.setenv("RECORD_ID_LENGTH", "21")
        monkeypatch.setenv("HTTP_PORT", "9000")
        monkeypatch.setenv("CORS_ORIGINS", "http://a.example, http://b.example,")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        config = ServerConfig.from_env()

        assert config.instance_id == "node-a"
        assert config.storage.backend == StoreBackend.MEMORY
        assert config.storage.wal_mode is False
        assert config.events.backend == EventBusBackend.KAFKA
        assert config.kafka.brokers == "k1:9092,k2:9092"
        assert config.engine.id_length == 21
        assert config.http.port == 9000
        assert config.http.cors_origins == ("http://a.example", "http://b.example")
        assert config.observability.log_level == "DEBUG"

    def test_invalid_backend(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "mongodb")
        with pytest.raises(ValueError, match="Invalid STORE_BACKEND 'mongodb'"):
            ServerConfig.from_env()

    def test_short_ids_rejected(self):
        config = ServerConfig(
            storage=StorageConfig(backend=StoreBackend.MEMORY),
            engine=EngineConfig(id_length=4),
        )
        with pytest.raises(ValueError, match="RECORD_ID_LENGTH"):
            config.validate()

    def test_kafka_requires_brokers(self):
        config = ServerConfig(
            storage=StorageConfig(backend=StoreBackend.MEMORY),
            events=EventBusConfig(backend=EventBusBackend.KAFKA),
            kafka=KafkaConfig(brokers=""),
        )
        with pytest.raises(ValueError, match="KAFKA_BROKERS"):
            config.validate()

    def test_port_range(self):
        config = ServerConfig(
            storage=StorageConfig(backend=StoreBackend.MEMORY), http=HttpConfig(port=70000)
        )
        with pytest.raises(ValueError, match="HTTP_PORT"):
            config.validate()

    def test_db_path(self):
        storage = StorageConfig(data_dir="/data", db_file="md.db")
        assert storage.db_path == str(Path("/data") / "md.db")
