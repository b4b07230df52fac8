"""
Unit tests for the document store backends.

The same behavior is checked against InMemoryDocumentStore and
SqliteDocumentStore; SQLite-only tests cover persistence across reopen.

Tests cover:
- Connection lifecycle
- Insert / find / count / exists
- $set updates and unique constraints
- Delete and drop
"""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from dbaas.masterdb_server.config import ServerConfig, StorageConfig, StoreBackend
from dbaas.masterdb_server.store import (
    ASCENDING,
    DESCENDING,
    DocumentStore,
    DuplicateKeyError,
    InMemoryDocumentStore,
    SqliteDocumentStore,
    StoreConnectionError,
    create_document_store,
)


class StoreBehavior:
    """Behavior shared by every DocumentStore backend."""

    @pytest.mark.asyncio
    async def test_satisfies_protocol(self, store):
        assert isinstance(store, DocumentStore)
        assert store.is_connected

    @pytest.mark.asyncio
    async def test_insert_and_find_one(self, store):
        """Inserted documents are returned and findable."""
        stored = await store.insert_one("city", {"cityId": "c1", "cityName": "Pune"})
        assert stored == {"cityId": "c1", "cityName": "Pune"}

        found = await store.find_one("city", {"cityId": "c1"})
        assert found["cityName"] == "Pune"
        assert await store.find_one("city", {"cityId": "missing"}) is None

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, store):
        await store.insert_one("city", {"cityId": "c1", "tags": ["a"]})

        found = await store.find_one("city", {"cityId": "c1"})
        found["tags"].append("b")

        again = await store.find_one("city", {"cityId": "c1"})
        assert again["tags"] == ["a"]

    @pytest.mark.asyncio
    async def test_find_sort_skip_limit(self, store):
        for i in range(5):
            await store.insert_one("city", {"n": i})

        docs = await store.find("city", sort=[("n", DESCENDING)], skip=1, limit=2)
        assert [d["n"] for d in docs] == [3, 2]

        docs = await store.find("city", {"n": {"$gte": 3}}, sort=[("n", ASCENDING)])
        assert [d["n"] for d in docs] == [3, 4]

    @pytest.mark.asyncio
    async def test_count_and_exists(self, store):
        await store.insert_one("city", {"n": 1})
        await store.insert_one("city", {"n": 2})

        assert await store.count("city") == 2
        assert await store.count("city", {"n": 2}) == 1
        assert await store.count("nothing") == 0
        assert await store.exists("city", {"n": 1})
        assert not await store.exists("city", {"n": 3})

    @pytest.mark.asyncio
    async def test_unique_insert(self, store):
        """A unique field value may only appear once per collection."""
        await store.insert_one("city", {"code": "PNQ"}, unique_fields=("code",))

        with pytest.raises(DuplicateKeyError) as exc_info:
            await store.insert_one("city", {"code": "PNQ"}, unique_fields=("code",))
        assert exc_info.value.field == "code"
        assert await store.count("city") == 1

        # Other collections are independent
        await store.insert_one("airport", {"code": "PNQ"}, unique_fields=("code",))

    @pytest.mark.asyncio
    async def test_update_one_merges(self, store):
        """update_one sets the given keys and keeps the rest."""
        await store.insert_one("city", {"cityId": "c1", "name": "Pune", "rank": 1})

        updated = await store.update_one("city", {"cityId": "c1"}, {"rank": 2, "state": "MH"})

        assert updated == {"cityId": "c1", "name": "Pune", "rank": 2, "state": "MH"}
        assert (await store.find_one("city", {"cityId": "c1"}))["rank"] == 2

    @pytest.mark.asyncio
    async def test_update_one_missing(self, store):
        assert await store.update_one("city", {"cityId": "nope"}, {"rank": 2}) is None

    @pytest.mark.asyncio
    async def test_update_one_unique(self, store):
        await store.insert_one("city", {"cityId": "c1", "code": "PNQ"}, ("code",))
        await store.insert_one("city", {"cityId": "c2", "code": "BOM"}, ("code",))

        # Keeping its own value is not a conflict
        await store.update_one("city", {"cityId": "c1"}, {"code": "PNQ"}, ("code",))

        with pytest.raises(DuplicateKeyError):
            await store.update_one("city", {"cityId": "c2"}, {"code": "PNQ"}, ("code",))
        assert (await store.find_one("city", {"cityId": "c2"}))["code"] == "BOM"

    @pytest.mark.asyncio
    async def test_delete_one_and_many(self, store):
        for i in range(4):
            await store.insert_one("city", {"n": i, "even": i % 2 == 0})

        deleted = await store.delete_one("city", {"n": 1})
        assert deleted == {"n": 1, "even": False}
        assert await store.delete_one("city", {"n": 1}) is None

        assert await store.delete_many("city", {"even": True}) == 2
        assert await store.count("city") == 1

    @pytest.mark.asyncio
    async def test_drop_and_list_collections(self, store):
        await store.insert_one("city", {"n": 1})
        await store.insert_one("schemas", {"schema": {"name": "city"}})

        assert await store.list_collections() == ["city", "schemas"]
        assert await store.drop_collection("city") is True
        assert await store.drop_collection("city") is False
        assert await store.list_collections() == ["schemas"]

    @pytest.mark.asyncio
    async def test_requires_connection(self, store):
        await store.close()

        with pytest.raises(StoreConnectionError):
            await store.find("city")


class TestInMemoryDocumentStore(StoreBehavior):
    """Tests for InMemoryDocumentStore."""

    @pytest_asyncio.fixture
    async def store(self):
        store = InMemoryDocumentStore()
        await store.connect()
        yield store
        await store.close()


class TestSqliteDocumentStore(StoreBehavior):
    """Tests for SqliteDocumentStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest_asyncio.fixture
    async def store(self, data_dir):
        store = SqliteDocumentStore(str(Path(data_dir) / "masterdb.db"), wal_mode=False)
        await store.connect()
        yield store
        await store.close()

    @pytest.mark.asyncio
    async def test_persists_across_reopen(self, data_dir):
        """Documents survive closing and reopening the database file."""
        path = str(Path(data_dir) / "nested" / "masterdb.db")
        first = SqliteDocumentStore(path, wal_mode=True)
        await first.connect()
        await first.insert_one("city", {"cityId": "c1", "name": "Pune"})
        await first.close()

        second = SqliteDocumentStore(path)
        await second.connect()
        assert await second.find_one("city", {"cityId": "c1"}) == {"cityId": "c1", "name": "Pune"}
        await second.close()


class TestCreateDocumentStore:
    """Tests for the store factory."""

    def test_memory_backend(self):
        config = ServerConfig(storage=StorageConfig(backend=StoreBackend.MEMORY))
        assert isinstance(create_document_store(config), InMemoryDocumentStore)

    def test_sqlite_backend(self):
        config = ServerConfig(storage=StorageConfig(data_dir="/tmp/masterdb", db_file="x.db"))
        store = create_document_store(config)

        assert isinstance(store, SqliteDocumentStore)
        assert str(store.db_path) == str(Path("/tmp/masterdb") / "x.db")
