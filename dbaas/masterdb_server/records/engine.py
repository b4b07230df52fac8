"""
Generic record engine.

Create, list, get, update and remove records of any registered schema. Each
operation resolves the schema's cache entry once and uses that accessor for
its whole duration, so a concurrent schema change never mixes two shapes
within one operation.

Write pipeline:
    resolve accessor -> strip identifier -> coerce -> check references -> write

Invariants:
    - Record identifiers are always generated server-side
    - Listing returns {data, total, page, limit, totalPages}
    - remove is a hard delete
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..accessor.builder import Record
from ..accessor.cache import AccessorCache
from ..errors import NotFoundError, ValidationError
from ..schema.coercion import coerce_payload
from ..store.base import ASCENDING, DESCENDING
from .references import ReferenceValidator

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
DEFAULT_SORT = "createdAt"
DEFAULT_ORDER = "desc"


@dataclass(frozen=True)
class ListOptions:
    """Paging, ordering and filtering for record listings.

    Attributes:
        page: 1-based page number
        limit: Page size
        sort: Field to order by
        order: "asc" or "desc"
        search: Case-insensitive substring matched against text fields
        filters: Exact-match / operator filter merged into the query
    """

    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    sort: str = DEFAULT_SORT
    order: str = DEFAULT_ORDER
    search: str | None = None
    filters: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if isinstance(self.page, bool) or not isinstance(self.page, int) or self.page < 1:
            raise ValidationError("page must be a positive integer", field_name="page")
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise ValidationError("limit must be a positive integer", field_name="limit")
        if not self.sort:
            raise ValidationError("sort must name a field", field_name="sort")
        if self.order.lower() not in ("asc", "desc"):
            raise ValidationError("order must be 'asc' or 'desc'", field_name="order")
        if self.filters is not None and not isinstance(self.filters, Mapping):
            raise ValidationError("filters must be an object", field_name="filters")

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def direction(self) -> int:
        return ASCENDING if self.order.lower() == "asc" else DESCENDING


class RecordEngine:
    """Generic CRUD over the records of registered schemas.

    Example:
        >>> engine = RecordEngine(cache)
        >>> city = await engine.create("city", {"cityName": "Pune"})
        >>> page = await engine.list("city", ListOptions(limit=20))
    """

    def __init__(self, cache: AccessorCache, references: ReferenceValidator | None = None) -> None:
        self._cache = cache
        self._references = references or ReferenceValidator(cache)

    async def create(self, schema_name: str, payload: Mapping[str, Any]) -> Record:
        """Create a record.

        Raises:
            NotFoundError: If the schema is unknown
            ValidationError: If the payload does not fit the schema
            ReferentialIntegrityError: If a MASTER value does not exist
            ConflictError: If a unique value is already taken
        """
        entry = self._cache.get_entry(schema_name)
        accessor = entry.accessor
        if not isinstance(payload, Mapping):
            raise ValidationError("Record payload must be an object")

        data = {k: v for k, v in payload.items() if k != accessor.id_field}
        values = coerce_payload(entry.schema, data)
        await self._references.validate(schema_name, values, schema=entry.schema)
        record = await accessor.insert(values)

        logger.info(
            f"Created record in {accessor.name}",
            extra={"schema": accessor.name, "record_id": record[accessor.id_field]},
        )
        return record

    async def list(self, schema_name: str, options: ListOptions | None = None) -> dict[str, Any]:
        """List records page by page.

        Returns:
            {"data": [...], "total": n, "page": p, "limit": l, "totalPages": t}
        """
        options = options or ListOptions()
        accessor = self._cache.get(schema_name)

        clauses: list[Mapping[str, Any]] = []
        if options.search:
            pattern = re.escape(options.search)
            clauses.append({
                "$or": [
                    {name: {"$regex": pattern, "$options": "i"}}
                    for name in accessor.search_fields()
                ]
            })
        if options.filters:
            clauses.append(dict(options.filters))

        if not clauses:
            query: dict[str, Any] = {}
        elif len(clauses) == 1:
            query = dict(clauses[0])
        else:
            query = {"$and": clauses}

        try:
            total, data = await asyncio.gather(
                accessor.count(query),
                accessor.find(
                    query,
                    sort=[(options.sort, options.direction)],
                    skip=options.skip,
                    limit=options.limit,
                ),
            )
        except ValueError as e:
            raise ValidationError(f"Invalid filters: {e}", field_name="filters") from e

        return {
            "data": data,
            "total": total,
            "page": options.page,
            "limit": options.limit,
            "totalPages": math.ceil(total / options.limit),
        }

    async def get(self, schema_name: str, record_id: str) -> Record:
        accessor = self._cache.get(schema_name)
        record = await accessor.find_by_id(record_id)
        if record is None:
            raise NotFoundError(
                f"Record {record_id} not found in {accessor.name}",
                resource_type=accessor.name,
                resource_id=record_id,
            )
        return record

    async def update(self, schema_name: str, record_id: str, payload: Mapping[str, Any]) -> Record:
        """Merge-write the supplied fields into an existing record.

        Only fields present in the payload are coerced and reference-checked.

        Raises:
            NotFoundError: If the schema or record is unknown
            ValidationError: If a supplied value does not fit the schema
            ReferentialIntegrityError: If a supplied MASTER value does not exist
            ConflictError: If a unique value is already taken
        """
        entry = self._cache.get_entry(schema_name)
        accessor = entry.accessor
        if not isinstance(payload, Mapping):
            raise ValidationError("Record payload must be an object")

        not_found = NotFoundError(
            f"Record {record_id} not found in {accessor.name}",
            resource_type=accessor.name,
            resource_id=record_id,
        )
        if not await accessor.exists(record_id):
            raise not_found

        data = {k: v for k, v in payload.items() if k != accessor.id_field}
        values = coerce_payload(entry.schema, data, partial=True)
        await self._references.validate(
            schema_name, values, update=True, schema=entry.schema
        )

        updated = await accessor.update(record_id, values)
        if updated is None:
            raise not_found

        logger.info(
            f"Updated record in {accessor.name}",
            extra={"schema": accessor.name, "record_id": record_id, "fields": sorted(values)},
        )
        return updated

    async def remove(self, schema_name: str, record_id: str) -> dict[str, str]:
        accessor = self._cache.get(schema_name)
        deleted = await accessor.delete(record_id)
        if deleted is None:
            raise NotFoundError(
                f"Record {record_id} not found in {accessor.name}",
                resource_type=accessor.name,
                resource_id=record_id,
            )
        logger.info(
            f"Deleted record from {accessor.name}",
            extra={"schema": accessor.name, "record_id": record_id},
        )
        return {"message": "Record deleted successfully"}
