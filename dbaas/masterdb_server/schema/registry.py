"""
Schema Registry for MasterDB.

The SchemaRegistry owns the lifecycle of persisted schema definitions:
- Create, update, fetch, list and group-filtered list
- Reference-guarded deletion (optionally forced, purging records)
- Startup loading of every persisted schema into the accessor cache
- Reloading a single schema when another instance changed it

Metadata documents live in one collection and look like
``{"schema": SchemaDefinition.to_dict()}``.

Invariants:
    - Schema names are stored lower-cased and are unique
    - A MASTER field may only reference a schema that already exists
    - The accessor is built before anything is persisted, so a definition
      that cannot be laid out leaves no trace
    - The cache is updated by direct call inside the same operation; the
      event is published afterwards for other instances
    - Schema mutations are serialized by a single-writer lock

How to change safely:
    - Keep the metadata document shape stable; other instances and the
      schema CLI read it
    - Any new validation rule must also hold for schemas already persisted,
      or startup loading will skip them
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..errors import ConflictError, InternalError, NotFoundError, ValidationError
from ..events.base import EventBusError, SchemaEvent, SchemaEventBus, SchemaEventKind
from ..store.base import Document, DocumentStore, DuplicateKeyError, StoreError
from .groups import GroupDirectory
from .types import FieldType, SchemaDefinition

if TYPE_CHECKING:
    from ..accessor.cache import AccessorCache

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_COLLECTION = "schemas"
SCHEMA_NAME_PATH = "schema.name"


class SchemaRegistry:
    """Persisted schema definitions and their cached accessors.

    Example:
        >>> registry = SchemaRegistry(store, cache, groups=GroupDirectory(store))
        >>> await registry.create_schema({
        ...     "name": "city",
        ...     "fields": [{"name": "cityName", "type": "string", "required": True}],
        ... })
        {'message': 'Schema city created successfully'}
        >>> (await registry.get_schema("City")).id_field
        'cityId'
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: AccessorCache,
        groups: GroupDirectory | None = None,
        events: SchemaEventBus | None = None,
        collection: str = DEFAULT_SCHEMA_COLLECTION,
        instance_id: str | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._groups = groups
        self._events = events
        self.collection = collection
        self.instance_id = instance_id
        self._lock = asyncio.Lock()

    @property
    def cache(self) -> AccessorCache:
        return self._cache

    # Loading

    async def load(self) -> int:
        """Build accessors for every persisted schema.

        Documents that cannot be parsed or laid out are logged and skipped;
        operations against those schemas fail NotFound until corrected.

        Returns:
            Number of accessors installed
        """
        schemas = []
        for document in await self._store.find(self.collection):
            try:
                schemas.append(SchemaDefinition.from_dict(document.get("schema")))
            except ValidationError as e:
                logger.error(
                    f"Skipping unreadable schema document: {e.message}",
                    extra={"collection": self.collection},
                )
        return await self._cache.load_all(schemas)

    async def reload_schema(self, name: str) -> bool:
        """Re-read one schema from the store and refresh its cache entry.

        Returns:
            True if the schema exists and was installed, False if evicted
        """
        key = name.lower()
        async with self._lock:
            document = await self._find_document(key)
            if document is None:
                await self._cache.evict(key)
                return False
            schema = SchemaDefinition.from_dict(document["schema"])
            await self._cache.install(schema)
            return True

    # Queries

    async def _find_document(self, key: str) -> Document | None:
        return await self._store.find_one(self.collection, {SCHEMA_NAME_PATH: key})

    def _parse_documents(self, documents: list[Document]) -> list[SchemaDefinition]:
        schemas = []
        for document in documents:
            try:
                schemas.append(SchemaDefinition.from_dict(document.get("schema")))
            except ValidationError as e:
                logger.warning(f"Ignoring unreadable schema document: {e.message}")
        return schemas

    async def get_schema(self, name: str) -> SchemaDefinition:
        """Fetch a persisted definition.

        Raises:
            NotFoundError: If no schema has this name
        """
        document = await self._find_document(name.lower())
        if document is None:
            raise NotFoundError(f"Schema {name} not found", resource_type="schema", resource_id=name)
        return SchemaDefinition.from_dict(document["schema"])

    async def get_all_schemas(self) -> list[SchemaDefinition]:
        return self._parse_documents(await self._store.find(self.collection))

    async def get_schemas_by_group(self, group_id: str) -> list[SchemaDefinition]:
        """List the schemas tagged with a group.

        Raises:
            NotFoundError: If the group does not exist
        """
        if self._groups is None or not await self._groups.exists(group_id):
            raise NotFoundError(
                f"Group with ID {group_id} not found", resource_type="group", resource_id=group_id
            )
        documents = await self._store.find(self.collection, {"schema.groupId": group_id})
        return self._parse_documents(documents)

    async def group_names(self, schemas: list[SchemaDefinition]) -> dict[str, str]:
        """Map the group ids used by ``schemas`` to their group names."""
        if self._groups is None:
            return {}
        return await self._groups.names(s.group_id for s in schemas)

    async def referencing_schemas(self, name: str) -> list[str]:
        """Names of other schemas with a MASTER field pointing at ``name``."""
        key = name.lower()
        documents = await self._store.find(
            self.collection,
            {"schema.fields": {"$elemMatch": {"type": FieldType.MASTER.value}}},
        )
        return [
            schema.name
            for schema in self._parse_documents(documents)
            if schema.key != key and schema.references(key)
        ]

    # Mutations

    @staticmethod
    def _parse(definition: SchemaDefinition | Mapping[str, Any]) -> SchemaDefinition:
        if isinstance(definition, SchemaDefinition):
            return definition
        return SchemaDefinition.from_dict(definition)

    async def _validate(self, schema: SchemaDefinition) -> None:
        """Run structural checks plus those that need the store."""
        schema.validate()

        for field in schema.master_fields():
            master = (field.master_type or "").lower()
            if not await self._store.exists(self.collection, {SCHEMA_NAME_PATH: master}):
                raise ValidationError(
                    f"Referenced master {field.master_type} does not exist",
                    field_name=field.name,
                )

        if schema.group_id is not None:
            if self._groups is None or not await self._groups.exists(schema.group_id):
                raise ValidationError(f"Invalid group ID: {schema.group_id}", field_name="groupId")

    async def create_schema(self, definition: SchemaDefinition | Mapping[str, Any]) -> dict[str, str]:
        """Register a new schema.

        Raises:
            ConflictError: If a schema with the same name exists
            ValidationError: If the definition is invalid
        """
        schema = self._parse(definition).normalized()

        async with self._lock:
            if await self._find_document(schema.key) is not None:
                raise ConflictError(
                    f"Schema {schema.name} already exists",
                    resource_type="schema",
                    resource_id=schema.name,
                )
            await self._validate(schema)
            accessor = self._cache.build(schema)

            try:
                await self._store.insert_one(
                    self.collection, {"schema": schema.to_dict()}, unique_fields=(SCHEMA_NAME_PATH,)
                )
            except DuplicateKeyError as e:
                raise ConflictError(
                    f"Schema {schema.name} already exists",
                    resource_type="schema",
                    resource_id=schema.name,
                ) from e
            await self._cache.install(schema, accessor)

        logger.info(
            f"Schema {schema.name} created",
            extra={"schema": schema.name, "fields": schema.field_names()},
        )
        await self._publish(SchemaEventKind.CREATED, schema.name, schema.to_dict())
        return {"message": f"Schema {schema.name} created successfully"}

    async def update_schema(
        self, name: str, definition: SchemaDefinition | Mapping[str, Any]
    ) -> dict[str, str]:
        """Replace an existing schema's definition wholesale.

        The name in the path is authoritative; a different name inside the
        definition is ignored.

        Raises:
            NotFoundError: If the schema does not exist
            ValidationError: If the definition is invalid
        """
        parsed = self._parse(definition)
        schema = SchemaDefinition(
            name=name,
            display_name=parsed.display_name,
            group_id=parsed.group_id,
            fields=parsed.fields,
        ).normalized()

        async with self._lock:
            if await self._find_document(schema.key) is None:
                raise NotFoundError(
                    f"Schema {name} not found", resource_type="schema", resource_id=name
                )
            await self._validate(schema)
            accessor = self._cache.build(schema)

            await self._store.update_one(
                self.collection, {SCHEMA_NAME_PATH: schema.key}, {"schema": schema.to_dict()}
            )
            await self._cache.install(schema, accessor)

        logger.info(
            f"Schema {schema.name} updated",
            extra={"schema": schema.name, "fields": schema.field_names()},
        )
        await self._publish(SchemaEventKind.UPDATED, schema.name, schema.to_dict())
        return {"message": f"Schema {schema.name} updated successfully"}

    async def delete_schema(self, name: str, force: bool = False) -> dict[str, str]:
        """Delete a schema, refusing while other schemas reference it.

        With ``force`` the references are ignored and every record of the
        schema is purged as well.

        Raises:
            NotFoundError: If the schema does not exist
            ConflictError: If other schemas reference it and force is False
            InternalError: If the store fails while deleting or purging
        """
        key = name.lower()

        async with self._lock:
            if await self._find_document(key) is None:
                raise NotFoundError(
                    f"Schema {name} not found", resource_type="schema", resource_id=name
                )

            referencing = await self.referencing_schemas(key)
            if referencing and not force:
                raise ConflictError(
                    f"Cannot delete schema {key} because it is referenced by: "
                    f"{', '.join(referencing)}. Use force=true to delete anyway.",
                    resource_type="schema",
                    resource_id=key,
                    conflicts=referencing,
                )

            entry = self._cache.peek(key)
            try:
                await self._store.delete_one(self.collection, {SCHEMA_NAME_PATH: key})
                await self._cache.evict(key)
                if force and entry is not None:
                    await entry.accessor.purge()
                elif force:
                    await self._store.drop_collection(key)
            except StoreError as e:
                logger.error(f"Failed to delete schema {key}: {e}", exc_info=True)
                raise InternalError(
                    f"Failed to delete schema {key}", details={"error": str(e)}
                ) from e

        logger.info(
            f"Schema {key} deleted",
            extra={"schema": key, "forced": force, "referenced_by": referencing},
        )
        await self._publish(SchemaEventKind.DELETED, key)
        return {"message": f"Schema {key} deleted successfully"}

    async def _publish(
        self, kind: SchemaEventKind, schema_name: str, schema: dict[str, Any] | None = None
    ) -> None:
        if self._events is None:
            return
        event = SchemaEvent(kind=kind, schema_name=schema_name, schema=schema, origin=self.instance_id)
        try:
            await self._events.publish(event)
        except EventBusError as e:
            # The mutation is already committed; other instances converge on restart.
            logger.error(
                f"Failed to publish {kind.value} for schema {schema_name}: {e}",
                exc_info=True,
            )
