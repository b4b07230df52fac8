"""
Error types for MasterDB.

This module defines the exception taxonomy surfaced by the engine:
- MasterDbError: Base exception
- NotFoundError: Unknown schema, record or group
- ValidationError: Missing required field, wrong type, malformed definition
- ReferentialIntegrityError: MASTER value points at a missing record
- ConflictError: Duplicate schema, unique collision, blocked deletion
- InternalError: Unexpected persistence failure

Invariants:
    - All engine errors inherit from MasterDbError
    - Errors carry enough context to identify the offending field/id/schema
    - ReferentialIntegrityError is a ValidationError at the boundary
"""

from __future__ import annotations

from typing import Any


class MasterDbError(Exception):
    """Base exception for all MasterDB errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "MASTERDB_ERROR"
        self.details = details or {}


class NotFoundError(MasterDbError):
    """Requested resource does not exist.

    Raised when:
    - Schema is not registered (or its accessor failed to build)
    - Record id does not exist in the schema
    - Group id does not resolve
    """

    def __init__(
        self,
        message: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ValidationError(MasterDbError):
    """Payload or definition validation failed.

    Raised when:
    - Required field is missing
    - Field value has wrong type
    - Relationship type is malformed
    - Field names are duplicated
    """

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class ReferentialIntegrityError(ValidationError):
    """A MASTER field references a record that does not exist."""

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        reference_id: Any = None,
        target_schema: str | None = None,
    ) -> None:
        super().__init__(message, field_name=field_name)
        self.code = "REFERENTIAL_INTEGRITY"
        self.details.update({"reference_id": reference_id, "target_schema": target_schema})
        self.reference_id = reference_id
        self.target_schema = target_schema


class ConflictError(MasterDbError):
    """Operation conflicts with existing state.

    Raised when:
    - A schema with the same name already exists
    - A unique field value is already taken
    - Schema deletion is blocked by referencing schemas
    """

    def __init__(
        self,
        message: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        conflicts: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="CONFLICT",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "conflicts": conflicts or [],
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.conflicts = conflicts or []


class InternalError(MasterDbError):
    """Unexpected persistence failure."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="INTERNAL_ERROR", details=details)
