"""
Core type definitions for the entity modeling system.

This module defines the records stored for every entity:
- Entity: A user-defined schema object (akin to a table)
- EntityVersion: The current working copy or a committed snapshot
- EntityField: A field belonging to exactly one version
- EntityPermission: Rule for one (version, action) pair
- EntityPermissionField: Per-field restriction of a permission

Invariants:
    - version_number 0 is the current version, positive numbers are commits
    - permanent_id identifies a logical field across all versions
    - id and entity_version_id of a field change on every copy
    - System data types are owned by the platform

How to change safely:
    - Add new data types at the end of DataType
    - Mark platform-owned types in SYSTEM_DATA_TYPES, never hardcode names
    - New record attributes must be copied in versioning.snapshot
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any

# Sentinel version number of the mutable working copy
CURRENT_VERSION_NUMBER = 0


class DataType(Enum):
    """Supported field data types.

    The first group can be assigned by users. Id, CreatedAt and UpdatedAt are
    system types seeded by the platform on every entity.
    """

    SINGLE_LINE_TEXT = "SingleLineText"
    MULTI_LINE_TEXT = "MultiLineText"
    EMAIL = "Email"
    WHOLE_NUMBER = "WholeNumber"
    DATE_TIME = "DateTime"
    DECIMAL_NUMBER = "DecimalNumber"
    LOOKUP = "Lookup"
    MULTI_SELECT_OPTION_SET = "MultiSelectOptionSet"
    OPTION_SET = "OptionSet"
    BOOLEAN = "Boolean"
    GEOGRAPHIC_LOCATION = "GeographicLocation"
    ID = "Id"
    CREATED_AT = "CreatedAt"
    UPDATED_AT = "UpdatedAt"
    ROLES = "Roles"
    USERNAME = "Username"
    PASSWORD = "Password"

    @classmethod
    def from_str(cls, value: str) -> DataType:
        """Convert string representation to DataType.

        Args:
            value: String name of the data type

        Returns:
            Corresponding DataType enum value

        Raises:
            ValueError: If value is not a valid data type
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid data type '{value}'. Valid types: {valid}")

    @property
    def is_system(self) -> bool:
        """Whether users are barred from creating, updating or deleting it."""
        return self in SYSTEM_DATA_TYPES


SYSTEM_DATA_TYPES: frozenset[DataType] = frozenset(
    {DataType.ID, DataType.CREATED_AT, DataType.UPDATED_AT}
)


def is_system_type(data_type: DataType | str) -> bool:
    """Check whether a data type is reserved for the platform."""
    if isinstance(data_type, str):
        data_type = DataType.from_str(data_type)
    return data_type in SYSTEM_DATA_TYPES


class EntityAction(Enum):
    """Actions governed by entity permissions."""

    CREATE = "Create"
    DELETE = "Delete"
    SEARCH = "Search"
    UPDATE = "Update"
    VIEW = "View"


class PermissionType(Enum):
    """How a permission is granted."""

    ALL_ROLES = "AllRoles"
    GRANULAR = "Granular"
    DISABLED = "Disabled"


@dataclass
class EntityField:
    """A field of one entity version.

    Attributes:
        id: Row identifier (changes on every version copy)
        permanent_id: Identifier of the logical field (never changes)
        entity_version_id: Owning version
        name: Identifier-safe name
        display_name: Human-readable name
        data_type: Data type of the field
        properties: Type-specific configuration
        required: Whether a value is required
        searchable: Whether generated apps can search on it
        description: Human-readable description
        position: Ordering inside the version
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
        entity_version: Owning version, when loaded
    """

    id: str
    permanent_id: str
    entity_version_id: str
    name: str
    display_name: str
    data_type: DataType
    properties: dict[str, Any] = dataclass_field(default_factory=dict)
    required: bool = False
    searchable: bool = False
    description: str = ""
    position: int = 0
    created_at: int = 0
    updated_at: int = 0
    entity_version: EntityVersion | None = None


@dataclass
class EntityPermissionField:
    """Restriction of a permission to a set of roles for one field.

    The field is referenced through its permanent id so the rule survives
    version copies; field_id points at the row inside the same version.
    """

    id: str
    permission_id: str
    field_id: str
    field_permanent_id: str
    entity_version_id: str
    role_ids: list[str] = dataclass_field(default_factory=list)
    field: EntityField | None = None
    permission: EntityPermission | None = None


@dataclass
class EntityPermission:
    """Permission for one action on one entity version."""

    id: str
    entity_version_id: str
    action: EntityAction
    type: PermissionType
    role_ids: list[str] = dataclass_field(default_factory=list)
    permission_fields: list[EntityPermissionField] = dataclass_field(default_factory=list)
    entity_version: EntityVersion | None = None


@dataclass
class EntityVersion:
    """A version of an entity.

    Attributes:
        id: Row identifier
        entity_id: Owning entity
        version_number: 0 for the current version, commit sequence otherwise
        name: Entity name at this version
        display_name: Entity display name at this version
        plural_display_name: Entity plural display name at this version
        description: Entity description at this version
        commit_id: Commit of the snapshot (None for the current version)
        deleted: Set on the current version of a soft-deleted entity
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
        fields: Ordered fields, when loaded
        permissions: Permissions, when loaded
        entity: Owning entity, when loaded
    """

    id: str
    entity_id: str
    version_number: int
    name: str
    display_name: str
    plural_display_name: str
    description: str = ""
    commit_id: str | None = None
    deleted: bool = False
    created_at: int = 0
    updated_at: int = 0
    fields: list[EntityField] = dataclass_field(default_factory=list)
    permissions: list[EntityPermission] = dataclass_field(default_factory=list)
    entity: Entity | None = None

    @property
    def is_current(self) -> bool:
        return self.version_number == CURRENT_VERSION_NUMBER


@dataclass
class Entity:
    """A user-defined schema object owned by an application.

    Attributes:
        id: Entity identifier
        app_id: Owning application
        name: Identifier-safe name, unique among live entities of the app
        display_name: Human-readable name
        plural_display_name: Human-readable plural name
        description: Human-readable description
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
        deleted_at: Soft-delete timestamp (Unix ms)
        locked_by_user_id: User currently editing the entity
        locked_at: When the advisory lock was taken (Unix ms)
        fields: Fields of a specific version, when loaded
        permissions: Permissions of a specific version, when loaded
    """

    id: str
    app_id: str
    name: str
    display_name: str
    plural_display_name: str
    description: str = ""
    created_at: int = 0
    updated_at: int = 0
    deleted_at: int | None = None
    locked_by_user_id: str | None = None
    locked_at: int | None = None
    fields: list[EntityField] | None = None
    permissions: list[EntityPermission] | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_locked(self) -> bool:
        return self.locked_by_user_id is not None
