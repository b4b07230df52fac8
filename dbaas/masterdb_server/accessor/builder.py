"""
Runtime accessor builder.

An Accessor is the dynamic equivalent of a typed table handle: built from a
SchemaDefinition, it knows the storage layout of the schema's records and
reads/writes them through the document store. Records are plain mappings;
each Slot carries the per-field (de)serialization rules.

Storage layout, in order:
    {schema}Id   generated identifier (unique, server-side only)
    createdAt    set on insert
    updatedAt    set on insert and on every update
    isActive     default true
    isDeleted    default false
    ...          author fields; MASTER fields become reference slots

Invariants:
    - Accessors are immutable once built; schema changes build a new one
    - Timestamps are stored as ISO-8601 UTC text and read back as datetimes
    - Unique-slot collisions surface as ConflictError
    - Values for unknown keys are never written

How to change safely:
    - Changing the encoding of a type requires a data migration
    - New system slots must be added to SYSTEM_FIELDS in schema/types.py
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from ..errors import ConflictError, ValidationError
from ..ids import IdFactory, generate_id
from ..schema.coercion import coerce_value
from ..schema.types import (
    CREATED_AT,
    IS_ACTIVE,
    IS_DELETED,
    UPDATED_AT,
    FieldType,
    SchemaDefinition,
)
from ..store.base import DocumentStore, DuplicateKeyError, SortSpec

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Record = dict[str, Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def encode_datetime(value: datetime) -> str:
    """Encode a timestamp so that text order equals time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass(frozen=True)
class Slot:
    """Storage slot for one record field.

    Attributes:
        name: Stored field name
        type: Field kind (MASTER for reference slots)
        required: Whether a value must be present on insert
        unique: Whether values must be unique in the collection
        default: Value written when absent on insert (already coerced)
        reference: Target schema key for reference slots
        collection: Whether a reference slot holds a list of ids
        system: Whether the slot is managed by the engine
    """

    name: str
    type: FieldType
    required: bool = False
    unique: bool = False
    default: Any = None
    reference: str | None = None
    collection: bool = False
    system: bool = False

    @property
    def is_reference(self) -> bool:
        return self.reference is not None

    def default_value(self) -> Any:
        if self.default is not None:
            return copy.deepcopy(self.default)
        if self.collection:
            return []
        return None

    def encode(self, value: Any) -> Any:
        if self.type == FieldType.DATE and isinstance(value, datetime):
            return encode_datetime(value)
        return value

    def decode(self, value: Any) -> Any:
        if self.type == FieldType.DATE and isinstance(value, str):
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                return value
        return value


def _encode_query(value: Any) -> Any:
    if isinstance(value, datetime):
        return encode_datetime(value)
    if isinstance(value, Mapping):
        return {k: _encode_query(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode_query(v) for v in value]
    return value


class Accessor:
    """Typed handle over one schema's record collection.

    Attributes:
        schema: The definition this accessor was built from
        slots: Storage layout, identifier and system slots first
        collection: Store collection holding the records

    Example:
        >>> accessor = build_accessor(city_schema, store)
        >>> record = await accessor.insert({"cityName": "Pune"})
        >>> await accessor.exists(record["cityId"])
        True
    """

    def __init__(
        self,
        schema: SchemaDefinition,
        slots: Sequence[Slot],
        store: DocumentStore,
        id_factory: IdFactory = generate_id,
        clock: Clock = utcnow,
    ) -> None:
        self.schema = schema
        self.slots = tuple(slots)
        self.store = store
        self.collection = schema.key
        self._id_factory = id_factory
        self._clock = clock
        self._by_name = {slot.name: slot for slot in self.slots}
        self.unique_fields = tuple(slot.name for slot in self.slots if slot.unique)

    @property
    def name(self) -> str:
        return self.schema.key

    @property
    def id_field(self) -> str:
        return self.schema.id_field

    def slot(self, name: str) -> Slot | None:
        return self._by_name.get(name)

    def search_fields(self) -> list[str]:
        """Text-valued slots: strings, the identifier and single references."""
        return [
            slot.name
            for slot in self.slots
            if slot.type == FieldType.STRING
            or (slot.type == FieldType.MASTER and not slot.collection)
        ]

    def reference_slots(self) -> list[Slot]:
        return [slot for slot in self.slots if slot.is_reference]

    def encode_query(self, query: Mapping[str, Any] | None) -> dict[str, Any]:
        """Encode datetimes in a filter into their stored form."""
        return _encode_query(dict(query or {}))

    def decode(self, document: Mapping[str, Any]) -> Record:
        """Turn a stored document into a record; unknown keys pass through."""
        record: Record = {}
        for key, value in document.items():
            slot = self._by_name.get(key)
            record[key] = slot.decode(value) if slot else value
        return record

    def _duplicate(self, error: DuplicateKeyError) -> ConflictError:
        return ConflictError(
            f"Duplicate value for unique field {error.field} in {self.name}: {error.value!r}",
            resource_type=self.name,
            resource_id=str(error.value),
            conflicts=[error.field],
        )

    async def insert(self, values: Mapping[str, Any]) -> Record:
        """Store a new record built from already coerced values.

        Raises:
            ValidationError: If a required slot has no value and no default
            ConflictError: If a unique slot value is already taken
        """
        now = self._clock()
        document: dict[str, Any] = {}
        for slot in self.slots:
            if slot.name == self.id_field:
                value = self._id_factory()
            elif slot.name in (CREATED_AT, UPDATED_AT):
                value = now
            else:
                value = values.get(slot.name)
                if value is None:
                    value = slot.default_value()
            if value is None:
                if slot.required:
                    raise ValidationError(f"Field {slot.name} is required", field_name=slot.name)
                continue
            document[slot.name] = slot.encode(value)

        try:
            stored = await self.store.insert_one(self.collection, document, self.unique_fields)
        except DuplicateKeyError as e:
            raise self._duplicate(e) from e

        logger.debug(
            "Inserted record",
            extra={"schema": self.name, "record_id": document[self.id_field]},
        )
        return self.decode(stored)

    async def find_by_id(self, record_id: str) -> Record | None:
        document = await self.store.find_one(self.collection, {self.id_field: record_id})
        return self.decode(document) if document is not None else None

    async def exists(self, record_id: str) -> bool:
        return await self.store.exists(self.collection, {self.id_field: record_id})

    async def find(
        self,
        query: Mapping[str, Any] | None = None,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Record]:
        documents = await self.store.find(
            self.collection, self.encode_query(query), sort=sort, skip=skip, limit=limit
        )
        return [self.decode(doc) for doc in documents]

    async def count(self, query: Mapping[str, Any] | None = None) -> int:
        return await self.store.count(self.collection, self.encode_query(query))

    async def update(self, record_id: str, values: Mapping[str, Any]) -> Record | None:
        """Merge-write the supplied values into an existing record.

        Identifier and timestamps are engine-managed and ignored in
        ``values``; updatedAt is refreshed.

        Returns:
            The updated record, or None if it does not exist

        Raises:
            ConflictError: If a unique slot value is already taken
        """
        changes: dict[str, Any] = {}
        for key, value in values.items():
            slot = self._by_name.get(key)
            if slot is None or key in (self.id_field, CREATED_AT, UPDATED_AT):
                continue
            changes[key] = slot.encode(value)
        changes[UPDATED_AT] = encode_datetime(self._clock())

        try:
            updated = await self.store.update_one(
                self.collection, {self.id_field: record_id}, changes, self.unique_fields
            )
        except DuplicateKeyError as e:
            raise self._duplicate(e) from e
        return self.decode(updated) if updated is not None else None

    async def delete(self, record_id: str) -> Record | None:
        document = await self.store.delete_one(self.collection, {self.id_field: record_id})
        return self.decode(document) if document is not None else None

    async def purge(self) -> bool:
        """Remove every record of this schema."""
        return await self.store.drop_collection(self.collection)


def build_slots(schema: SchemaDefinition) -> tuple[Slot, ...]:
    """Compute the storage layout for a schema.

    Raises:
        ValidationError: If a MASTER field lacks a recognized relationship
            type or target, or a default value cannot be coerced
    """
    slots = [
        Slot(schema.id_field, FieldType.STRING, required=True, unique=True, system=True),
        Slot(CREATED_AT, FieldType.DATE, system=True),
        Slot(UPDATED_AT, FieldType.DATE, system=True),
        Slot(IS_ACTIVE, FieldType.BOOLEAN, default=True, system=True),
        Slot(IS_DELETED, FieldType.BOOLEAN, default=False, system=True),
    ]

    for f in schema.fields:
        if f.is_master:
            if f.relationship_type is None:
                raise ValidationError(
                    f"Invalid relationship type for field {f.name}", field_name=f.name
                )
            if not f.master_type:
                raise ValidationError(
                    f"Field {f.name} is of type MASTER but masterType is not specified",
                    field_name=f.name,
                )
            slots.append(
                Slot(
                    f.name,
                    FieldType.MASTER,
                    required=f.required,
                    reference=f.master_type.lower(),
                    collection=f.relationship_type.is_collection,
                )
            )
            continue

        default = None
        if f.default_value is not None:
            try:
                default = coerce_value(f, f.default_value)
            except ValidationError as e:
                raise ValidationError(
                    f"Invalid default value for field {f.name}: {e.message}",
                    field_name=f.name,
                ) from e
        slots.append(Slot(f.name, f.type, required=f.required, unique=f.unique, default=default))

    return tuple(slots)


def build_accessor(
    schema: SchemaDefinition,
    store: DocumentStore,
    id_factory: IdFactory = generate_id,
    clock: Clock = utcnow,
) -> Accessor:
    """Build an accessor for a schema definition.

    Args:
        schema: Normalized schema definition
        store: Document store holding the records
        id_factory: Identifier generator for new records
        clock: Source of timestamps

    Raises:
        ValidationError: If the schema cannot be laid out
    """
    return Accessor(schema, build_slots(schema), store, id_factory=id_factory, clock=clock)
