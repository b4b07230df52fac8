"""
Referential integrity checks for MASTER fields.

A MASTER field holds the identifier(s) of records in another schema. Before
a record is written, every MASTER value present in the payload is checked
against the target schema's accessor.

Invariants:
    - Single-reference fields (oneToOne, manyToOne) hold one id, never a list
    - Collection fields (oneToMany, manyToMany) hold a list; every id is
      checked in order and the first missing one is reported
    - An unknown target schema raises NotFoundError (corrupted metadata)
    - In update mode, fields absent from the payload are not re-validated
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..accessor.cache import AccessorCache
from ..errors import ReferentialIntegrityError, ValidationError
from ..schema.types import FieldDefinition, SchemaDefinition

logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, tuple)) and not value)


class ReferenceValidator:
    """Checks MASTER values against the records of their target schemas.

    Example:
        >>> validator = ReferenceValidator(cache)
        >>> await validator.validate("store", {"name": "S1", "cityId": "abc"})
    """

    def __init__(self, cache: AccessorCache) -> None:
        self._cache = cache

    async def validate(
        self,
        schema_name: str,
        values: Mapping[str, Any],
        update: bool = False,
        schema: SchemaDefinition | None = None,
    ) -> None:
        """Validate every MASTER value in ``values``.

        Args:
            schema_name: Schema the values belong to
            values: Coerced field values
            update: Whether ``values`` is a partial update payload
            schema: Definition already resolved by the caller, if any

        Raises:
            NotFoundError: If the schema or a target schema is unknown
            ValidationError: If a required reference is missing or has the
                wrong cardinality
            ReferentialIntegrityError: If a referenced id does not exist
        """
        if schema is None:
            schema = self._cache.get_entry(schema_name).schema
        for field in schema.master_fields():
            if field.name not in values:
                if field.required and not update:
                    raise ValidationError(f"Field {field.name} is required", field_name=field.name)
                continue
            value = values[field.name]
            if _is_empty(value):
                if field.required:
                    raise ValidationError(f"Field {field.name} is required", field_name=field.name)
                continue
            await self._check_field(field, value)

    async def _check_field(self, field: FieldDefinition, value: Any) -> None:
        target = self._cache.get(field.master_type or "")

        if field.is_collection:
            if not isinstance(value, (list, tuple)):
                raise ValidationError(
                    f"Field {field.name} must be a list of references", field_name=field.name
                )
            ids = list(value)
        else:
            if isinstance(value, (list, tuple)):
                raise ValidationError(
                    f"Field {field.name} expects a single reference", field_name=field.name
                )
            ids = [value]

        for reference_id in ids:
            if not isinstance(reference_id, str):
                raise ValidationError(
                    f"Field {field.name} must hold reference ids, got {type(reference_id).__name__}",
                    field_name=field.name,
                )
            if not await target.exists(reference_id):
                logger.debug(
                    "Reference check failed",
                    extra={"field": field.name, "reference_id": reference_id, "target": target.name},
                )
                raise ReferentialIntegrityError(
                    f"Invalid reference: {reference_id} does not exist in {field.master_type}",
                    field_name=field.name,
                    reference_id=reference_id,
                    target_schema=target.name,
                )
