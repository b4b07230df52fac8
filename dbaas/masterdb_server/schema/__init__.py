"""
Schema module for MasterDB.

This module provides the runtime type system and schema lifecycle:
- Type definitions (FieldType, RelationshipType, FieldDefinition, SchemaDefinition)
- Coercion of raw input values into typed field values
- Schema registry for persisted definitions
- Read-only directory of the external groups collection

Invariants:
    - Schema names are case-insensitive and stored lower-cased
    - MASTER fields are stored under ``{masterType}Id``
    - A schema may only reference schemas that already exist

How to change safely:
    - Keep the persisted dictionary forms stable
    - Add coercion tests alongside any new field type
"""

from .coercion import coerce_payload, coerce_value
from .groups import GroupDirectory
from .registry import SchemaRegistry
from .types import (
    SYSTEM_FIELDS,
    FieldDefinition,
    FieldType,
    RelationshipType,
    SchemaDefinition,
    field,
    id_field_name,
    master_field_name,
)

__all__ = [
    "coerce_payload",
    "coerce_value",
    "GroupDirectory",
    "SchemaRegistry",
    "SYSTEM_FIELDS",
    "FieldDefinition",
    "FieldType",
    "RelationshipType",
    "SchemaDefinition",
    "field",
    "id_field_name",
    "master_field_name",
]
