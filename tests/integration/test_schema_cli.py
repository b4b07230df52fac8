"""
Integration tests for the schema CLI tool.

Tests cover:
- Dependency ordering of schema imports
- Export / import including skip-existing
- Legacy collection migration
- The command-line entry point
"""

import json

import pytest
import pytest_asyncio

from dbaas.masterdb_server.errors import ConflictError, ValidationError
from dbaas.masterdb_server.schema.types import SchemaDefinition, field
from dbaas.masterdb_server.service import MasterDataService
from dbaas.masterdb_server.store import InMemoryDocumentStore
from dbaas.masterdb_server.tools import SchemaCLI, dependency_order
from dbaas.masterdb_server.tools.schema_cli import LEGACY_SCHEMA_COLLECTION, main


def schema(name, *refs):
    return SchemaDefinition(
        name=name,
        fields=(
            field("label", "string"),
            *(field("", "master", master_type=ref, relationship_type="manyToOne") for ref in refs),
        ),
    ).normalized()


CITY = {"name": "city", "fields": [{"name": "cityName", "type": "string"}]}
STORE = {
    "name": "store",
    "fields": [
        {"name": "name", "type": "string"},
        {"type": "master", "masterType": "city", "relationshipType": "manyToOne"},
    ],
}


class TestDependencyOrder:
    """Tests for dependency_order."""

    def test_referenced_first(self):
        ordered = dependency_order(
            [schema("store", "city"), schema("region"), schema("city", "region")]
        )
        assert [s.name for s in ordered] == ["region", "city", "store"]

    def test_keeps_input_order_for_independent(self):
        ordered = dependency_order([schema("b"), schema("a"), schema("c")])
        assert [s.name for s in ordered] == ["b", "a", "c"]

    def test_ignores_self_and_external_references(self):
        ordered = dependency_order([schema("employee", "employee", "country")])
        assert [s.name for s in ordered] == ["employee"]

    def test_cycle(self):
        with pytest.raises(ValidationError, match="Circular schema references: a, b") as exc_info:
            dependency_order([schema("a", "b"), schema("b", "a"), schema("c")])
        assert exc_info.value.details["errors"] == ["a", "b"]


class TestSchemaCLI:
    """Tests for SchemaCLI against an in-memory store."""

    @pytest_asyncio.fixture
    async def service(self):
        service = MasterDataService(InMemoryDocumentStore())
        await service.start()
        yield service
        await service.stop()

    @pytest.fixture
    def cli(self, service):
        return SchemaCLI(service)

    @pytest.mark.asyncio
    async def test_import_orders_by_reference(self, cli, service):
        created = await cli.import_schemas({"version": 1, "schemas": [STORE, CITY]})

        assert created == ["city", "store"]
        assert sorted(service.cache.names()) == ["city", "store"]

    @pytest.mark.asyncio
    async def test_import_existing(self, cli):
        await cli.import_schemas([CITY])

        with pytest.raises(ConflictError):
            await cli.import_schemas([CITY])
        assert await cli.import_schemas([CITY, STORE], skip_existing=True) == ["store"]

    @pytest.mark.asyncio
    async def test_import_rejects_bad_shape(self, cli):
        with pytest.raises(ValidationError):
            await cli.import_schemas({"schemas": "city"})

    @pytest.mark.asyncio
    async def test_export_round_trip(self, cli, service):
        await cli.import_schemas([CITY, STORE])

        exported = json.loads(await cli.export())

        assert exported["version"] == 1
        assert [s["name"] for s in exported["schemas"]] == ["city", "store"]

        fresh = MasterDataService(InMemoryDocumentStore())
        await fresh.start()
        try:
            assert await SchemaCLI(fresh).import_schemas(exported) == ["city", "store"]
        finally:
            await fresh.stop()

    @pytest.mark.asyncio
    async def test_export_selected(self, cli):
        await cli.import_schemas([CITY, STORE])

        exported = json.loads(await cli.export(["STORE"]))

        assert [s["name"] for s in exported["schemas"]] == ["store"]

    @pytest.mark.asyncio
    async def test_list_schemas(self, cli):
        await cli.import_schemas([CITY, STORE])

        summaries = await cli.list_schemas()

        assert summaries[1] == {
            "name": "store",
            "displayName": "store",
            "groupId": None,
            "fields": 2,
            "references": ["city"],
        }

    @pytest.mark.asyncio
    async def test_migrate(self, cli, service):
        """Legacy documents are copied in any order, then the source is dropped."""
        await service.store.insert_one(LEGACY_SCHEMA_COLLECTION, {"schema": STORE})
        await service.store.insert_one(LEGACY_SCHEMA_COLLECTION, {**CITY, "name": "City"})

        result = await cli.migrate()

        assert result.migrated == ["store", "city"]
        assert result.source_dropped is True
        assert sorted(service.cache.names()) == ["city", "store"]
        assert LEGACY_SCHEMA_COLLECTION not in await service.store.list_collections()

    @pytest.mark.asyncio
    async def test_migrate_skips_existing(self, cli, service):
        await cli.import_schemas([CITY])
        await service.store.insert_one(LEGACY_SCHEMA_COLLECTION, {"schema": CITY})

        result = await cli.migrate(keep_source=True)

        assert result.migrated == []
        assert result.skipped == ["city"]
        assert result.source_dropped is False

    @pytest.mark.asyncio
    async def test_migrate_dry_run(self, cli, service):
        await service.store.insert_one(LEGACY_SCHEMA_COLLECTION, {"schema": CITY})

        result = await cli.migrate(dry_run=True)

        assert result.migrated == ["city"]
        assert result.source_dropped is False
        assert "city" not in service.cache
        assert await service.store.count(LEGACY_SCHEMA_COLLECTION) == 1

    @pytest.mark.asyncio
    async def test_migrate_keeps_source_on_failure(self, cli, service):
        await service.store.insert_one(LEGACY_SCHEMA_COLLECTION, {"schema": CITY})
        await service.store.insert_one(LEGACY_SCHEMA_COLLECTION, {"schema": {"fields": []}})

        result = await cli.migrate()

        assert result.migrated == ["city"]
        assert result.failed == ["Schema name is required"]
        assert result.source_dropped is False

    @pytest.mark.asyncio
    async def test_migrate_without_source(self, cli):
        result = await cli.migrate()
        assert result.migrated == [] and result.source_dropped is False


class TestMain:
    """Tests for the command-line entry point."""

    @pytest.fixture(autouse=True)
    def env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STORE_BACKEND", "sqlite")
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("EVENT_BUS_BACKEND", "local")
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        monkeypatch.delenv("RECORD_ID_LENGTH", raising=False)
        monkeypatch.delenv("HTTP_PORT", raising=False)

    def test_list_empty(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["list"])

        assert exc_info.value.code == 0
        assert "No schemas registered" in capsys.readouterr().out

    def test_import_then_list(self, tmp_path, capsys):
        path = tmp_path / "schemas.json"
        path.write_text(json.dumps({"version": 1, "schemas": [STORE, CITY]}))

        with pytest.raises(SystemExit) as exc_info:
            main(["import", str(path)])
        assert exc_info.value.code == 0

        with pytest.raises(SystemExit):
            main(["list"])
        output = capsys.readouterr().out
        assert "Created 2 schema(s)" in output
        assert "store (2 field(s)) -> city" in output

    def test_error_exit_code(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["export", "warehouse"])

        assert exc_info.value.code == 1
        assert "Error: Schema warehouse not found" in capsys.readouterr().err

    def test_invalid_config(self, monkeypatch, capsys):
        monkeypatch.setenv("STORE_BACKEND", "oracle")

        with pytest.raises(SystemExit) as exc_info:
            main(["list"])

        assert exc_info.value.code == 1
        assert "Configuration error" in capsys.readouterr().err
