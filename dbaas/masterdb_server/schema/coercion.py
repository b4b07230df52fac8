"""
Coercion of raw input values into typed field values.

Every value written through the record engine passes through this module
first. Coercion is pure and synchronous: it never consults the store.
Existence and cardinality of MASTER references are checked separately by
the reference validator.

Coercion table:
    string   passed through unchanged
    number   numeric parse; non-finite or unparseable values fail
    boolean  text: case-insensitive equality to "true"; otherwise truthiness
    date     datetime, date, epoch milliseconds or ISO-8601 text; naive is UTC
    array    must already be a list/tuple
    object   must already be a mapping
    master   passed through uncoerced

Invariants:
    - Coercion is idempotent: coercing a coerced value yields the same value
    - A None value is treated as absent
    - Errors name the offending field

How to change safely:
    - Keep error messages stable; callers and clients match on them
    - Add a test row for every new accepted input shape
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import date, datetime, time, timezone
from typing import Any

from ..errors import ValidationError
from .types import IS_ACTIVE, IS_DELETED, FieldDefinition, FieldType, SchemaDefinition

# System flags that callers may change through a partial update
UPDATABLE_SYSTEM_FLAGS = (IS_ACTIVE, IS_DELETED)


def _coerce_number(name: str, value: Any) -> int | float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                raise ValidationError(
                    f"Field {name} must be a valid number", field_name=name
                ) from None
    else:
        raise ValidationError(f"Field {name} must be a valid number", field_name=name)

    if isinstance(number, float) and not math.isfinite(number):
        raise ValidationError(f"Field {name} must be a valid number", field_name=name)
    return number


def _coerce_boolean(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _coerce_date(name: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value):
            raise ValidationError(f"Field {name} must be a valid date", field_name=name)
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ValidationError(
                f"Field {name} must be a valid date", field_name=name
            ) from None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(
                f"Field {name} must be a valid date", field_name=name
            ) from None
    else:
        raise ValidationError(f"Field {name} must be a valid date", field_name=name)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def coerce_value(field: FieldDefinition, value: Any) -> Any:
    """Coerce one raw value according to its field definition.

    Args:
        field: Field definition driving the coercion
        value: Raw input value (must not be None)

    Returns:
        The typed value

    Raises:
        ValidationError: If the value cannot be coerced
    """
    name = field.name
    if field.type == FieldType.NUMBER:
        return _coerce_number(name, value)
    if field.type == FieldType.BOOLEAN:
        return _coerce_boolean(value)
    if field.type == FieldType.DATE:
        return _coerce_date(name, value)
    if field.type == FieldType.ARRAY:
        if not isinstance(value, (list, tuple)):
            raise ValidationError(f"Field {name} must be an array", field_name=name)
        return list(value)
    if field.type == FieldType.OBJECT:
        if not isinstance(value, Mapping):
            raise ValidationError(f"Field {name} must be an object", field_name=name)
        return dict(value)
    # STRING and MASTER pass through
    return value


def coerce_payload(
    schema: SchemaDefinition,
    payload: Mapping[str, Any],
    *,
    partial: bool = False,
) -> dict[str, Any]:
    """Coerce a raw payload into typed values for a schema.

    In full mode (create) every field of the schema is considered: required
    fields must be present, absent optional fields are omitted. In partial
    mode (update) only the supplied keys are processed, required fields may
    not be cleared, and the isActive/isDeleted flags may be set.

    Keys that are not fields of the schema are dropped.

    Args:
        schema: Schema whose field list drives the coercion
        payload: Raw input mapping
        partial: Whether this is a partial (update) payload

    Returns:
        Mapping of field name to typed value

    Raises:
        ValidationError: Naming the first offending field
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Record payload must be an object")

    result: dict[str, Any] = {}
    for f in schema.fields:
        present = f.name in payload
        value = payload.get(f.name)

        if value is None:
            if f.required and (present or not partial):
                raise ValidationError(f"Field {f.name} is required", field_name=f.name)
            if present and partial:
                result[f.name] = None
            continue

        result[f.name] = coerce_value(f, value)

    if partial:
        for flag in UPDATABLE_SYSTEM_FLAGS:
            if payload.get(flag) is not None:
                result[flag] = _coerce_boolean(payload[flag])

    return result
