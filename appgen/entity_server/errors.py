"""
Error types for the Entity Server.

This module defines all exception types raised by the entity core:
- EntityServerError: Base exception
- ValidationError: Bad names, reserved names, system data type misuse
- NotFoundError: Entity, field or permission field does not exist
- StaleVersionError: Attempt to modify a committed (non-current) version

Invariants:
    - All errors inherit from EntityServerError
    - Validation errors are raised before any mutating store call
    - Store and validator errors are never wrapped
    - Error messages are actionable and name the offending value
"""

from __future__ import annotations

from typing import Any


class EntityServerError(Exception):
    """Base exception for all Entity Server errors.

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
        self.code = code or "ENTITY_SERVER_ERROR"
        self.details = details or {}


class ValidationError(EntityServerError):
    """Input failed a naming or data type rule.

    Raised when:
    - A name does not match the identifier pattern
    - A reserved name is used on the user entity
    - A system data type is assigned, updated or removed
    - Field properties do not match the data type schema
    """

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, details=details)


class NameValidationError(ValidationError):
    """Name is not a valid identifier."""

    def __init__(self, message: str, name: str) -> None:
        super().__init__(message, code="INVALID_NAME", details={"name": name})
        self.name = name


class ReservedNameError(ValidationError):
    """Name is reserved on the user entity."""

    def __init__(self, name: str, entity_name: str) -> None:
        super().__init__(
            f"The field name '{name}' is a reserved field name "
            "and it cannot be used on the 'user' entity",
            code="RESERVED_NAME",
            details={"name": name, "entity_name": entity_name},
        )
        self.name = name
        self.entity_name = entity_name


class SystemDataTypeError(ValidationError):
    """System data types are owned by the platform."""

    def __init__(self, message: str, data_type: str, field_name: str | None = None) -> None:
        super().__init__(
            message,
            code="SYSTEM_DATA_TYPE",
            details={"data_type": data_type, "field_name": field_name},
        )
        self.data_type = data_type
        self.field_name = field_name


class FieldPropertiesError(ValidationError):
    """Field properties do not match the schema of the data type."""

    def __init__(self, data_type: str, errors: list[str]) -> None:
        super().__init__(
            f"Invalid properties for data type {data_type}: {'; '.join(errors)}",
            code="INVALID_FIELD_PROPERTIES",
            details={"data_type": data_type, "errors": errors},
        )
        self.data_type = data_type
        self.errors = errors


class EntityNameConflictError(ValidationError):
    """Another live entity in the application uses the name."""

    def __init__(self, name: str, app_id: str) -> None:
        super().__init__(
            f"An entity named '{name}' already exists in app {app_id}",
            code="ENTITY_NAME_CONFLICT",
            details={"name": name, "app_id": app_id},
        )
        self.name = name
        self.app_id = app_id


class FieldNameConflictError(ValidationError):
    """Another field of the current version uses the name."""

    def __init__(self, name: str, entity_id: str) -> None:
        super().__init__(
            f"A field named '{name}' already exists on entity {entity_id}",
            code="FIELD_NAME_CONFLICT",
            details={"name": name, "entity_id": entity_id},
        )
        self.name = name
        self.entity_id = entity_id


class PermissionRoleError(ValidationError):
    """Field-level roles must be granted on the parent permission."""

    def __init__(self, role_ids: list[str], permission_id: str) -> None:
        super().__init__(
            f"Roles {sorted(role_ids)} are not granted on permission {permission_id}",
            code="PERMISSION_ROLE",
            details={"role_ids": sorted(role_ids), "permission_id": permission_id},
        )
        self.role_ids = role_ids
        self.permission_id = permission_id


class NotFoundError(EntityServerError):
    """Resource not found.

    Raised when:
    - Entity doesn't exist or is soft-deleted
    - Field doesn't exist
    - Permission field lookup is empty or ambiguous
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class EntityNotFoundError(NotFoundError):
    """No live entity matches the id."""

    def __init__(self, entity_id: str) -> None:
        super().__init__(f"Cannot find entity {entity_id}", "entity", entity_id)


class EntityFieldNotFoundError(NotFoundError):
    """No field matches the id or name."""

    def __init__(self, field_ref: str) -> None:
        super().__init__(f"Cannot find entity field {field_ref}", "entity_field", field_ref)


class RecordNotFoundError(NotFoundError):
    """Lookup did not resolve to exactly one record."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__("Record not found", resource_type, resource_id)


class StaleVersionError(EntityServerError):
    """Committed versions are immutable.

    Attributes:
        version_number: Number of the version the record belongs to
        operation: Attempted operation (update, delete)
    """

    def __init__(self, message: str, version_number: int, operation: str) -> None:
        super().__init__(
            message,
            code="STALE_VERSION",
            details={"version_number": version_number, "operation": operation},
        )
        self.version_number = version_number
        self.operation = operation
