"""
Platform constants for entity modeling.

Invariants:
    - All values here are immutable and loaded once at import time
    - USER_ENTITY_NAME is compared case-sensitively
    - RESERVED_FIELD_NAMES are compared case-insensitively
    - Every new entity receives DEFAULT_PERMISSIONS and INITIAL_ENTITY_FIELDS

How to change safely:
    - Adding a reserved name can break existing user entities on next update
    - Changing DEFAULT_ENTITIES only affects applications created afterwards
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from .types import CURRENT_VERSION_NUMBER, DataType, EntityAction, PermissionType

USER_ENTITY_NAME = "User"

RESERVED_FIELD_NAMES: frozenset[str] = frozenset(
    name.lower() for name in ("id", "createdAt", "updatedAt", "username", "password", "roles")
)


@dataclass(frozen=True)
class PermissionTemplate:
    """Permission seeded on a new current version."""

    action: EntityAction
    type: PermissionType


@dataclass(frozen=True)
class FieldTemplate:
    """Field seeded on a new current version."""

    name: str
    display_name: str
    data_type: DataType
    properties: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    required: bool = False
    searchable: bool = False
    description: str = ""


@dataclass(frozen=True)
class EntityTemplate:
    """Entity seeded when an application is created."""

    name: str
    display_name: str
    plural_display_name: str
    description: str
    fields: tuple[FieldTemplate, ...]


DEFAULT_PERMISSIONS: tuple[PermissionTemplate, ...] = tuple(
    PermissionTemplate(action=action, type=PermissionType.ALL_ROLES) for action in EntityAction
)

INITIAL_ENTITY_FIELDS: tuple[FieldTemplate, ...] = (
    FieldTemplate(
        name="id",
        display_name="ID",
        data_type=DataType.ID,
        required=True,
        searchable=True,
        description="An automatically created unique identifier of the entity",
    ),
    FieldTemplate(
        name="createdAt",
        display_name="Created At",
        data_type=DataType.CREATED_AT,
        required=True,
        searchable=False,
        description="An automatically created field of the time the entity created at",
    ),
    FieldTemplate(
        name="updatedAt",
        display_name="Updated At",
        data_type=DataType.UPDATED_AT,
        required=True,
        searchable=False,
        description="An automatically created field of the last time the entity updated at",
    ),
)

DEFAULT_ENTITIES: tuple[EntityTemplate, ...] = (
    EntityTemplate(
        name=USER_ENTITY_NAME,
        display_name="User",
        plural_display_name="Users",
        description="An automatically created 'user' entity",
        fields=INITIAL_ENTITY_FIELDS
        + (
            FieldTemplate(
                name="firstName",
                display_name="First Name",
                data_type=DataType.SINGLE_LINE_TEXT,
                properties=MappingProxyType({"maxLength": 256}),
                searchable=True,
            ),
            FieldTemplate(
                name="lastName",
                display_name="Last Name",
                data_type=DataType.SINGLE_LINE_TEXT,
                properties=MappingProxyType({"maxLength": 256}),
                searchable=True,
            ),
            FieldTemplate(
                name="username",
                display_name="Username",
                data_type=DataType.USERNAME,
                required=True,
                searchable=True,
                description="An automatically created field of the username of the user",
            ),
            FieldTemplate(
                name="password",
                display_name="Password",
                data_type=DataType.PASSWORD,
                required=True,
                description="An automatically created field of the password of the user",
            ),
            FieldTemplate(
                name="roles",
                display_name="Roles",
                data_type=DataType.ROLES,
                required=True,
                description="An automatically created field of the roles of the user",
            ),
        ),
    ),
)

__all__ = [
    "CURRENT_VERSION_NUMBER",
    "USER_ENTITY_NAME",
    "RESERVED_FIELD_NAMES",
    "PermissionTemplate",
    "FieldTemplate",
    "EntityTemplate",
    "DEFAULT_PERMISSIONS",
    "INITIAL_ENTITY_FIELDS",
    "DEFAULT_ENTITIES",
]
