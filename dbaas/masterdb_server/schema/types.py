"""
Core type definitions for the MasterDB schema system.

This module defines the data model for runtime-defined record shapes:
- FieldType: The seven field kinds (six storage primitives plus MASTER)
- RelationshipType: Cardinality of a MASTER field
- FieldDefinition: One attribute of a schema
- SchemaDefinition: A named record shape

Invariants:
    - Schema names are case-insensitive; the canonical form is lower-case
    - MASTER fields are stored under the derived name ``{masterType}Id``
    - oneToOne/manyToOne store one reference, oneToMany/manyToMany a list
    - Field names are unique within a schema and never collide with the
      identifier field or the system fields

How to change safely:
    - Keep to_dict/from_dict key names stable; they are the persisted form
    - New FieldType values need coercion and accessor encoding support
    - Never change the derivation rule for MASTER field names; existing
      records are stored under the derived names

Example:
    >>> from dbaas.masterdb_server.schema.types import SchemaDefinition, field
    >>> store = SchemaDefinition(
    ...     name="store",
    ...     fields=(
    ...         field("name", "string", required=True),
    ...         field("cityRef", "master", master_type="city",
    ...               relationship_type="oneToOne"),
    ...     ),
    ... ).normalized()
    >>> [f.name for f in store.fields]
    ['name', 'cityId']
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from ..errors import ValidationError

SCHEMA_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

CREATED_AT = "createdAt"
UPDATED_AT = "updatedAt"
IS_ACTIVE = "isActive"
IS_DELETED = "isDeleted"
SYSTEM_FIELDS = (CREATED_AT, UPDATED_AT, IS_ACTIVE, IS_DELETED)


class FieldType(Enum):
    """Supported field kinds.

    Every kind except MASTER maps to exactly one primitive representation.
    MASTER is resolved into a reference slot at accessor-build time.
    """

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    OBJECT = "object"
    ARRAY = "array"
    MASTER = "master"

    @classmethod
    def from_str(cls, value: str) -> FieldType:
        """Convert string representation to FieldType.

        Args:
            value: Name of the field type (case-insensitive)

        Returns:
            Corresponding FieldType

        Raises:
            ValueError: If value is not a valid field type
        """
        if isinstance(value, str):
            for kind in cls:
                if kind.value == value.strip().lower():
                    return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field type '{value}'. Valid types: {valid}")


class RelationshipType(Enum):
    """Cardinality of a MASTER field."""

    ONE_TO_ONE = "oneToOne"
    ONE_TO_MANY = "oneToMany"
    MANY_TO_ONE = "manyToOne"
    MANY_TO_MANY = "manyToMany"

    @classmethod
    def from_str(cls, value: str) -> RelationshipType:
        """Convert string representation to RelationshipType.

        Accepts the camelCase wire form as well as hyphenated or underscored
        spellings such as ``one-to-many`` and ``MANY_TO_ONE``.

        Raises:
            ValueError: If value is not a valid relationship type
        """
        if isinstance(value, str):
            wanted = value.replace("-", "").replace("_", "").strip().lower()
            for kind in cls:
                if kind.value.lower() == wanted:
                    return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid relationship type '{value}'. Valid types: {valid}")

    @property
    def is_collection(self) -> bool:
        """Whether this cardinality stores a list of references."""
        return self in (RelationshipType.ONE_TO_MANY, RelationshipType.MANY_TO_MANY)


def id_field_name(schema_name: str) -> str:
    """Name of the generated identifier field for a schema."""
    return f"{schema_name.lower()}Id"


def master_field_name(master_type: str) -> str:
    """Stored name of a MASTER field referencing ``master_type``."""
    return f"{master_type.strip().lower()}Id"


@dataclass(frozen=True)
class FieldDefinition:
    """Definition of a single field within a schema.

    Attributes:
        name: Field name (derived from master_type for MASTER fields)
        type: The field kind
        required: Whether the field must be supplied on create
        unique: Whether values must be unique across the schema's records
        default_value: Value written when the field is absent on create
        master_type: Referenced schema name (MASTER only)
        relationship_type: Reference cardinality (MASTER only)
    """

    name: str
    type: FieldType
    required: bool = False
    unique: bool = False
    default_value: Any = None
    master_type: str | None = None
    relationship_type: RelationshipType | None = None

    @property
    def is_master(self) -> bool:
        return self.type == FieldType.MASTER

    @property
    def is_collection(self) -> bool:
        """Whether a MASTER field stores a list of references."""
        return self.relationship_type is not None and self.relationship_type.is_collection

    def normalized(self) -> FieldDefinition:
        """Return a copy with the stored name derived for MASTER fields."""
        if self.is_master and self.master_type:
            master_type = self.master_type.strip().lower()
            return replace(self, name=master_field_name(master_type), master_type=master_type)
        return replace(self, name=(self.name or "").strip())

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted/wire dictionary form."""
        result: dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
            "required": self.required,
            "unique": self.unique,
        }
        if self.default_value is not None:
            result["defaultValue"] = self.default_value
        if self.master_type is not None:
            result["masterType"] = self.master_type
        if self.relationship_type is not None:
            result["relationshipType"] = self.relationship_type.value
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FieldDefinition:
        """Create from the persisted/wire dictionary form.

        Raises:
            ValidationError: If the type or relationship type is not recognized
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Field definition must be an object")
        name = data.get("name") or ""
        try:
            field_type = FieldType.from_str(data.get("type"))
        except ValueError as e:
            raise ValidationError(str(e), field_name=name or None) from e

        relationship = data.get("relationshipType")
        relationship_type = None
        if relationship is not None:
            try:
                relationship_type = RelationshipType.from_str(relationship)
            except ValueError as e:
                raise ValidationError(str(e), field_name=name or None) from e

        return cls(
            name=name,
            type=field_type,
            required=bool(data.get("required", False)),
            unique=bool(data.get("unique", False)),
            default_value=data.get("defaultValue"),
            master_type=data.get("masterType") or None,
            relationship_type=relationship_type,
        )


def field(
    name: str,
    type: str | FieldType,
    *,
    required: bool = False,
    unique: bool = False,
    default_value: Any = None,
    master_type: str | None = None,
    relationship_type: str | RelationshipType | None = None,
) -> FieldDefinition:
    """Convenience function to create a FieldDefinition.

    Example:
        >>> city_name = field("cityName", "string", required=True)
        >>> city_ref = field("", "master", master_type="city",
        ...                  relationship_type="one-to-one")
    """
    if isinstance(type, str):
        type = FieldType.from_str(type)
    if isinstance(relationship_type, str):
        relationship_type = RelationshipType.from_str(relationship_type)
    return FieldDefinition(
        name=name,
        type=type,
        required=required,
        unique=unique,
        default_value=default_value,
        master_type=master_type,
        relationship_type=relationship_type,
    )


@dataclass(frozen=True)
class SchemaDefinition:
    """A named, versionless record shape.

    Attributes:
        name: Schema name (case-insensitive identity)
        display_name: Human-readable label
        group_id: Optional tag referencing an external group
        fields: Author-supplied field definitions
    """

    name: str
    display_name: str = ""
    group_id: str | None = None
    fields: tuple[FieldDefinition, ...] = ()

    @property
    def key(self) -> str:
        """Case-insensitive cache and lookup key."""
        return self.name.lower()

    @property
    def id_field(self) -> str:
        return id_field_name(self.name)

    def get_field(self, name: str) -> FieldDefinition | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def master_fields(self) -> list[FieldDefinition]:
        return [f for f in self.fields if f.is_master]

    def references(self, schema_name: str) -> bool:
        """Whether any MASTER field points at ``schema_name``."""
        target = schema_name.lower()
        return any(f.master_type and f.master_type.lower() == target for f in self.master_fields())

    def normalized(self) -> SchemaDefinition:
        """Return the canonical form: lower-cased name, derived MASTER names."""
        name = self.name.strip().lower()
        return replace(
            self,
            name=name,
            display_name=self.display_name or self.name.strip(),
            fields=tuple(f.normalized() for f in self.fields),
        )

    def validate(self) -> None:
        """Check structural invariants that need no store access.

        Raises:
            ValidationError: On the first violated invariant
        """
        if not self.name or not SCHEMA_NAME_PATTERN.match(self.name):
            raise ValidationError(
                f"Invalid schema name '{self.name}': must start with a letter and "
                "contain only letters, digits and underscores",
                field_name="name",
            )

        for f in self.fields:
            if f.is_master:
                if not f.master_type or f.relationship_type is None:
                    raise ValidationError(
                        f"Field {f.name or '<unnamed>'} is of type MASTER but "
                        "masterType/relationshipType is not specified",
                        field_name=f.name or None,
                    )
            elif not f.name:
                raise ValidationError("Field name is required", field_name="fields")
            if "." in f.name or f.name.startswith("$"):
                raise ValidationError(
                    f"Invalid field name '{f.name}': must not contain '.' or start with '$'",
                    field_name=f.name,
                )

        names = self.field_names()
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValidationError(
                "Field names must be unique",
                field_name="fields",
                errors=[f"Duplicate field name: {n}" for n in duplicates],
            )

        reserved = {self.id_field, *SYSTEM_FIELDS}
        clashes = sorted(reserved.intersection(names))
        if clashes:
            raise ValidationError(
                f"Field names {clashes} are reserved for system fields",
                field_name=clashes[0],
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted/wire dictionary form."""
        result: dict[str, Any] = {
            "name": self.name,
            "displayName": self.display_name,
            "fields": [f.to_dict() for f in self.fields],
        }
        if self.group_id is not None:
            result["groupId"] = self.group_id
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SchemaDefinition:
        """Create from the persisted/wire dictionary form.

        Raises:
            ValidationError: If the document is not a valid schema definition
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Schema definition must be an object")
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Schema name is required", field_name="name")
        raw_fields = data.get("fields", [])
        if not isinstance(raw_fields, (list, tuple)):
            raise ValidationError("Schema fields must be a list", field_name="fields")
        group_id = data.get("groupId")
        return cls(
            name=name,
            display_name=data.get("displayName") or "",
            group_id=str(group_id) if group_id not in (None, "") else None,
            fields=tuple(FieldDefinition.from_dict(f) for f in raw_fields),
        )
