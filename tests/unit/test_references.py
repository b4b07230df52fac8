"""
Unit tests for the reference validator.

Tests cover:
- Single and collection MASTER fields
- Required references on create and update
- Referential integrity failures
"""

import pytest
import pytest_asyncio

from dbaas.masterdb_server.accessor import AccessorCache
from dbaas.masterdb_server.errors import (
    NotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from dbaas.masterdb_server.records import ReferenceValidator
from dbaas.masterdb_server.schema.types import SchemaDefinition, field
from dbaas.masterdb_server.store import InMemoryDocumentStore


class TestReferenceValidator:
    """Tests for ReferenceValidator."""

    @pytest_asyncio.fixture
    async def cache(self):
        store = InMemoryDocumentStore()
        await store.connect()
        cache = AccessorCache(store)
        await cache.install(
            SchemaDefinition(name="city", fields=(field("cityName", "string"),)).normalized()
        )
        await cache.install(
            SchemaDefinition(name="tag", fields=(field("label", "string"),)).normalized()
        )
        await cache.install(
            SchemaDefinition(
                name="store",
                fields=(
                    field("name", "string"),
                    field(
                        "", "master", master_type="city", relationship_type="manyToOne",
                        required=True,
                    ),
                    field("", "master", master_type="tag", relationship_type="manyToMany"),
                ),
            ).normalized()
        )
        yield cache
        await store.close()

    @pytest.fixture
    def validator(self, cache):
        return ReferenceValidator(cache)

    @pytest_asyncio.fixture
    async def pune(self, cache):
        return await cache.get("city").insert({"cityName": "Pune"})

    @pytest_asyncio.fixture
    async def tags(self, cache):
        accessor = cache.get("tag")
        return [await accessor.insert({"label": label}) for label in ("new", "open")]

    @pytest.mark.asyncio
    async def test_valid_references(self, validator, pune, tags):
        await validator.validate(
            "store",
            {"name": "S1", "cityId": pune["cityId"], "tagId": [t["tagId"] for t in tags]},
        )

    @pytest.mark.asyncio
    async def test_missing_single_reference(self, validator):
        with pytest.raises(ReferentialIntegrityError) as exc_info:
            await validator.validate("store", {"cityId": "nope"})

        error = exc_info.value
        assert error.message == "Invalid reference: nope does not exist in city"
        assert error.field_name == "cityId"
        assert error.reference_id == "nope"
        assert error.target_schema == "city"
        assert error.code == "REFERENTIAL_INTEGRITY"
        assert isinstance(error, ValidationError)

    @pytest.mark.asyncio
    async def test_one_missing_in_collection(self, validator, pune, tags):
        """The first missing id of a collection is reported."""
        ids = [tags[0]["tagId"], "ghost", tags[1]["tagId"]]

        with pytest.raises(ReferentialIntegrityError) as exc_info:
            await validator.validate("store", {"cityId": pune["cityId"], "tagId": ids})
        assert exc_info.value.reference_id == "ghost"

    @pytest.mark.asyncio
    async def test_required_on_create(self, validator):
        with pytest.raises(ValidationError, match="Field cityId is required"):
            await validator.validate("store", {"name": "S1"})

    @pytest.mark.asyncio
    async def test_required_empty_value(self, validator):
        with pytest.raises(ValidationError, match="Field cityId is required"):
            await validator.validate("store", {"cityId": ""})

    @pytest.mark.asyncio
    async def test_update_skips_absent_fields(self, validator):
        await validator.validate("store", {"name": "renamed"}, update=True)

    @pytest.mark.asyncio
    async def test_update_cannot_clear_required(self, validator):
        with pytest.raises(ValidationError, match="Field cityId is required"):
            await validator.validate("store", {"cityId": None}, update=True)

    @pytest.mark.asyncio
    async def test_optional_empty_collection(self, validator, pune):
        await validator.validate("store", {"cityId": pune["cityId"], "tagId": []})

    @pytest.mark.asyncio
    async def test_collection_requires_list(self, validator, pune, tags):
        with pytest.raises(ValidationError, match="Field tagId must be a list of references"):
            await validator.validate("store", {"cityId": pune["cityId"], "tagId": tags[0]["tagId"]})

    @pytest.mark.asyncio
    async def test_single_rejects_list(self, validator, pune):
        with pytest.raises(ValidationError, match="Field cityId expects a single reference"):
            await validator.validate("store", {"cityId": [pune["cityId"]]})

    @pytest.mark.asyncio
    async def test_unknown_schema(self, validator):
        with pytest.raises(NotFoundError):
            await validator.validate("warehouse", {})

    @pytest.mark.asyncio
    async def test_single_reference_must_be_an_id(self, validator, pune):
        """An operator mapping is not an id, even when it would match a record."""
        with pytest.raises(
            ValidationError, match="Field cityId must hold reference ids"
        ) as exc_info:
            await validator.validate("store", {"cityId": {"$ne": "nope"}})
        assert not isinstance(exc_info.value, ReferentialIntegrityError)

    @pytest.mark.asyncio
    async def test_collection_elements_must_be_ids(self, validator, pune, tags):
        ids = [tags[0]["tagId"], {"$exists": True}]
        with pytest.raises(ValidationError, match="Field tagId must hold reference ids"):
            await validator.validate("store", {"cityId": pune["cityId"], "tagId": ids})
