"""
Schema module for the Entity Server.

This module provides the modeling vocabulary shared by the engine:
- Record types (Entity, EntityVersion, EntityField, EntityPermission, ...)
- Data types, including the platform-owned system types
- Naming rules and reserved names
- Default templates seeded on new entities and applications
- Field properties validation

Invariants:
    - Names are identifier-safe
    - System data types are never assigned by users
    - Constants are immutable
"""

from .constants import (
    CURRENT_VERSION_NUMBER,
    DEFAULT_ENTITIES,
    DEFAULT_PERMISSIONS,
    INITIAL_ENTITY_FIELDS,
    RESERVED_FIELD_NAMES,
    USER_ENTITY_NAME,
    EntityTemplate,
    FieldTemplate,
    PermissionTemplate,
)
from .naming import (
    NAME_VALIDATION_ERROR_MESSAGE,
    is_name_valid,
    is_reserved_name,
    name_from_display_name,
    validate_name,
    validate_reserved_name,
)
from .properties import DATA_TYPE_SCHEMAS, FieldPropertiesValidator, default_properties
from .types import (
    SYSTEM_DATA_TYPES,
    DataType,
    Entity,
    EntityAction,
    EntityField,
    EntityPermission,
    EntityPermissionField,
    EntityVersion,
    PermissionType,
    is_system_type,
)

__all__ = [
    # Types
    "DataType",
    "SYSTEM_DATA_TYPES",
    "is_system_type",
    "EntityAction",
    "PermissionType",
    "Entity",
    "EntityVersion",
    "EntityField",
    "EntityPermission",
    "EntityPermissionField",
    # Constants
    "CURRENT_VERSION_NUMBER",
    "USER_ENTITY_NAME",
    "RESERVED_FIELD_NAMES",
    "DEFAULT_PERMISSIONS",
    "DEFAULT_ENTITIES",
    "INITIAL_ENTITY_FIELDS",
    "EntityTemplate",
    "FieldTemplate",
    "PermissionTemplate",
    # Naming
    "NAME_VALIDATION_ERROR_MESSAGE",
    "is_name_valid",
    "validate_name",
    "is_reserved_name",
    "validate_reserved_name",
    "name_from_display_name",
    # Properties
    "DATA_TYPE_SCHEMAS",
    "FieldPropertiesValidator",
    "default_properties",
]
