"""
Entity service - the public operation surface of the Entity Server.

This module provides EntityService, the facade used by API layers and the
commit pipeline:
- Entity queries, creation, update and soft delete
- Field creation, update and deletion on the current version
- Permission and permission field management on the current version
- Lock, commit snapshot and discard (delegated to EntityVersionManager)

Invariants:
    - All business-rule validation happens before any mutating store call
    - Writes only ever target the current version of an entity
    - Mutating operations record the acting user in the advisory lock
    - System data types can never be created, updated or deleted

How to change safely:
    - New mutating operations must validate first, then acquire the lock,
      then write
    - Keep error messages stable; clients display them verbatim

Example:
    >>> service = EntityService(store)
    >>> entity = await service.create_one_entity(
    ...     EntityCreateInput(app_id="app_1", name="Customer",
    ...                       display_name="Customer", plural_display_name="Customers"),
    ...     user_id="user_1",
    ... )
    >>> await service.create_field(
    ...     entity.id,
    ...     EntityFieldCreateInput(name="age", display_name="Age",
    ...                            data_type=DataType.WHOLE_NUMBER,
    ...                            properties={"minimumValue": 0, "maximumValue": 150}),
    ...     user_id="user_1",
    ... )
    >>> await service.create_version(entity.id, commit_id="commit_1")
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from .dto import (
    EntityCreateInput,
    EntityFieldCreateInput,
    EntityFieldUpdateInput,
    EntityUpdateInput,
)
from .errors import (
    EntityFieldNotFoundError,
    EntityNameConflictError,
    FieldNameConflictError,
    PermissionRoleError,
    RecordNotFoundError,
    StaleVersionError,
    SystemDataTypeError,
    ValidationError,
)
from .schema.constants import (
    DEFAULT_ENTITIES,
    DEFAULT_PERMISSIONS,
    INITIAL_ENTITY_FIELDS,
    EntityTemplate,
)
from .schema.naming import (
    is_reserved_name,
    name_from_display_name,
    validate_name,
    validate_reserved_name,
)
from .schema.properties import FieldPropertiesValidator, default_properties
from .schema.types import (
    CURRENT_VERSION_NUMBER,
    DataType,
    Entity,
    EntityAction,
    EntityField,
    EntityPermission,
    EntityPermissionField,
    EntityVersion,
    PermissionType,
)
from .soft_delete import prepare_deleted_item_name
from .store.structured_store import EntityStore
from .versioning.diff import VersionChange
from .versioning.manager import EntityVersionManager

logger = logging.getLogger(__name__)

# Keyword heuristics used to pick a data type from a display name.
# First match wins; the default is SingleLineText.
DATA_TYPE_KEYWORDS: tuple[tuple[tuple[str, ...], DataType], ...] = (
    (("date", "time", "birthday", "deadline"), DataType.DATE_TIME),
    (("email", "mail"), DataType.EMAIL),
    (("description", "comment", "comments", "notes", "summary", "bio"), DataType.MULTI_LINE_TEXT),
    (("price", "amount", "cost", "total", "rate", "balance"), DataType.DECIMAL_NUMBER),
    (("count", "quantity", "age", "number", "qty"), DataType.WHOLE_NUMBER),
    (("is", "has", "active", "enabled", "flag"), DataType.BOOLEAN),
    (("address", "location", "coordinates"), DataType.GEOGRAPHIC_LOCATION),
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_id() -> str:
    return str(uuid.uuid4())


def data_type_from_display_name(display_name: str) -> DataType:
    """Guess a data type from the words of a display name."""
    words = {w.lower() for w in re.findall(r"[A-Za-z0-9]+", display_name)}
    for keywords, data_type in DATA_TYPE_KEYWORDS:
        if words & set(keywords):
            return data_type
    return DataType.SINGLE_LINE_TEXT


class EntityService:
    """Facade over entities, fields, permissions and versions.

    Attributes:
        store: Structured store
        validator: Field properties validator
        versions: Version manager (locks, snapshots, discard)
    """

    def __init__(
        self,
        store: EntityStore,
        validator: FieldPropertiesValidator | None = None,
        versions: EntityVersionManager | None = None,
    ) -> None:
        self.store = store
        self.validator = validator or FieldPropertiesValidator()
        self.versions = versions or EntityVersionManager(store)

    # ------------------------------------------------------------------
    # Entity queries
    # ------------------------------------------------------------------

    async def entity(self, entity_id: str, version_number: int | None = None) -> Entity | None:
        """Get a live entity by id.

        Args:
            entity_id: Entity identifier
            version_number: When set, attach the fields and permissions of
                that version

        Returns:
            Entity or None if not found or soft-deleted
        """
        found = await self.store.find_entities(entity_id=entity_id, limit=1)
        if not found:
            return None
        entity = found[0]
        if version_number is not None:
            versions = await self.store.find_versions(
                entity_id=entity_id,
                version_number=version_number,
                include_fields=True,
                include_permissions=True,
            )
            if versions:
                entity.fields = versions[0].fields
                entity.permissions = versions[0].permissions
        return entity

    async def find_first(
        self, app_id: str | None = None, name: str | None = None
    ) -> Entity | None:
        """Get the first live entity matching the filter."""
        found = await self.store.find_entities(app_id=app_id, name=name, limit=1)
        return found[0] if found else None

    async def entities(
        self,
        app_id: str | None = None,
        name: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Entity]:
        """List live entities."""
        return await self.store.find_entities(
            app_id=app_id, name=name, limit=limit, offset=offset
        )

    async def is_entity_in_same_app(self, entity_id: str, app_id: str) -> bool:
        """Check that a live entity belongs to an application."""
        found = await self.store.find_entities(entity_id=entity_id, app_id=app_id, limit=1)
        return bool(found)

    # ------------------------------------------------------------------
    # Entity mutations
    # ------------------------------------------------------------------

    async def _check_entity_name(self, app_id: str, name: str, entity_id: str | None = None) -> None:
        validate_name(name)
        existing = await self.store.find_entities(app_id=app_id, name=name, limit=1)
        if existing and existing[0].id != entity_id:
            raise EntityNameConflictError(name, app_id)

    def _build_entity(
        self,
        app_id: str,
        template: EntityTemplate,
        user_id: str,
    ) -> tuple[Entity, EntityVersion]:
        now = _now_ms()
        entity = Entity(
            id=_new_id(),
            app_id=app_id,
            name=template.name,
            display_name=template.display_name,
            plural_display_name=template.plural_display_name,
            description=template.description,
            created_at=now,
            updated_at=now,
            locked_by_user_id=user_id,
            locked_at=now,
        )
        version_id = _new_id()
        fields = [
            EntityField(
                id=_new_id(),
                permanent_id=_new_id(),
                entity_version_id=version_id,
                name=t.name,
                display_name=t.display_name,
                data_type=t.data_type,
                properties=dict(t.properties),
                required=t.required,
                searchable=t.searchable,
                description=t.description,
                position=position,
                created_at=now,
                updated_at=now,
            )
            for position, t in enumerate(template.fields, start=1)
        ]
        permissions = [
            EntityPermission(
                id=_new_id(),
                entity_version_id=version_id,
                action=p.action,
                type=p.type,
            )
            for p in DEFAULT_PERMISSIONS
        ]
        version = EntityVersion(
            id=version_id,
            entity_id=entity.id,
            version_number=CURRENT_VERSION_NUMBER,
            name=entity.name,
            display_name=entity.display_name,
            plural_display_name=entity.plural_display_name,
            description=entity.description,
            created_at=now,
            updated_at=now,
            fields=fields,
            permissions=permissions,
        )
        return entity, version

    async def create_one_entity(self, data: EntityCreateInput, user_id: str) -> Entity:
        """Create an entity with its current version, initial fields and default permissions.

        The creator holds the lock of the new entity.

        Raises:
            NameValidationError: If the name is not identifier-safe
            EntityNameConflictError: If a live entity of the app has the name
        """
        await self._check_entity_name(data.app_id, data.name)
        template = EntityTemplate(
            name=data.name,
            display_name=data.display_name,
            plural_display_name=data.plural_display_name,
            description=data.description,
            fields=INITIAL_ENTITY_FIELDS,
        )
        entity, version = self._build_entity(data.app_id, template, user_id)
        created = await self.store.create_entity(entity, version)

        logger.info(
            "Created entity",
            extra={"entity_id": created.id, "app_id": created.app_id, "user_id": user_id},
        )
        return created

    async def create_default_entities(self, app_id: str, user_id: str) -> list[Entity]:
        """Seed the default entities of a new application."""
        created = []
        for template in DEFAULT_ENTITIES:
            await self._check_entity_name(app_id, template.name)
            entity, version = self._build_entity(app_id, template, user_id)
            created.append(await self.store.create_entity(entity, version))
        logger.info(
            "Created default entities",
            extra={"app_id": app_id, "entities": [e.name for e in created]},
        )
        return created

    async def update_one_entity(
        self, entity_id: str, data: EntityUpdateInput, user_id: str
    ) -> Entity:
        """Update an entity and the names of its current version.

        Raises:
            EntityNotFoundError: If no live entity matches the id
            NameValidationError: If the new name is not identifier-safe
            EntityNameConflictError: If another live entity of the app has the name
        """
        entity = await self.versions.get_entity(entity_id)
        changes = data.changes()
        if "name" in changes:
            await self._check_entity_name(entity.app_id, changes["name"], entity_id=entity_id)

        await self.versions.acquire_lock(entity_id, user_id)
        updated = await self.store.update_entity(entity_id, changes, current_version_changes=changes)
        logger.debug(
            "Updated entity",
            extra={"entity_id": entity_id, "changes": sorted(changes), "user_id": user_id},
        )
        return updated

    async def delete_one_entity(self, entity_id: str, user_id: str) -> Entity:
        """Soft-delete an entity.

        Name fields are rewritten with the deleted marker so the name can be
        reused, and the current version is flagged deleted.

        Raises:
            EntityNotFoundError: If no live entity matches the id
        """
        entity = await self.versions.acquire_lock(entity_id, user_id)
        deleted = await self.store.update_entity(
            entity_id,
            {
                "name": prepare_deleted_item_name(entity.name, entity.id),
                "display_name": prepare_deleted_item_name(entity.display_name, entity.id),
                "plural_display_name": prepare_deleted_item_name(
                    entity.plural_display_name, entity.id
                ),
                "deleted_at": _now_ms(),
            },
            current_version_changes={"deleted": True},
        )
        logger.info("Deleted entity", extra={"entity_id": entity_id, "user_id": user_id})
        return deleted

    # ------------------------------------------------------------------
    # Locks and versions
    # ------------------------------------------------------------------

    async def acquire_lock(self, entity_id: str, user_id: str) -> Entity:
        """Record the user as the editor of the entity."""
        return await self.versions.acquire_lock(entity_id, user_id)

    async def release_lock(self, entity_id: str) -> Entity:
        """Clear the editor of the entity."""
        return await self.versions.release_lock(entity_id)

    async def get_versions(self, entity_id: str) -> list[EntityVersion]:
        """List all versions of an entity, current first."""
        return await self.store.find_versions(entity_id=entity_id)

    async def get_version_commit(self, version_id: str) -> str | None:
        """Get the commit of a version (None for a current version).

        Raises:
            RecordNotFoundError: If the version does not exist
        """
        version = await self.store.get_version(version_id)
        if version is None:
            raise RecordNotFoundError("entity_version", version_id)
        return version.commit_id

    async def get_entities_by_versions(
        self,
        version_ids: list[str],
        include_fields: bool = False,
        include_permissions: bool = False,
    ) -> list[Entity]:
        """Get entities as they stood at the given versions.

        Versions flagged deleted are skipped. Each returned entity carries
        the names of its version.
        """
        versions = await self.store.find_versions(
            version_ids=version_ids,
            include_deleted=False,
            include_entity=True,
            include_fields=include_fields,
            include_permissions=include_permissions,
        )
        result = []
        for version in versions:
            if version.entity is None:
                continue
            result.append(
                replace(
                    version.entity,
                    name=version.name,
                    display_name=version.display_name,
                    plural_display_name=version.plural_display_name,
                    description=version.description,
                    fields=version.fields if include_fields else None,
                    permissions=version.permissions if include_permissions else None,
                )
            )
        return result

    async def create_version(self, entity_id: str, commit_id: str | None = None) -> EntityVersion:
        """Snapshot the current version; returns the current version."""
        return await self.versions.create_version(entity_id, commit_id)

    async def discard_pending_changes(self, entity_id: str, user_id: str) -> Entity:
        """Reset the current version to the latest committed version."""
        logger.debug("Discarding pending changes", extra={"entity_id": entity_id, "user_id": user_id})
        return await self.versions.discard_pending_changes(entity_id)

    async def get_pending_changes(self, entity_id: str) -> list[VersionChange]:
        """List changes of the current version since the latest commit."""
        await self.versions.get_entity(entity_id, include_deleted=True)
        return await self.versions.get_pending_changes(entity_id)

    async def has_pending_changes(self, entity_id: str) -> bool:
        """Check whether the current version differs from the latest commit."""
        return bool(await self.get_pending_changes(entity_id))

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    async def get_fields(
        self,
        entity_id: str,
        version_number: int = CURRENT_VERSION_NUMBER,
        names: list[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[EntityField]:
        """List the ordered fields of an entity version."""
        return await self.store.find_fields(
            entity_id=entity_id,
            version_number=version_number,
            names=names,
            limit=limit,
            offset=offset,
        )

    def validate_field_data(self, data_type: DataType, properties: dict[str, Any] | None) -> None:
        """Validate a properties payload against its data type.

        Raises:
            FieldPropertiesError: If the payload does not match the schema
        """
        self.validator.validate(data_type, properties)

    async def _check_field_name(
        self, entity_id: str, entity_name: str, name: str, field_id: str | None = None
    ) -> None:
        validate_name(name)
        validate_reserved_name(entity_name, name)
        existing = await self.store.find_fields(entity_id=entity_id, names=[name])
        if any(f.id != field_id for f in existing):
            raise FieldNameConflictError(name, entity_id)

    async def create_field(
        self, entity_id: str, data: EntityFieldCreateInput, user_id: str
    ) -> EntityField:
        """Create a field on the current version of an entity.

        A caller-supplied entity_version_id is ignored.

        Raises:
            SystemDataTypeError: If the data type is a system type
            EntityNotFoundError: If no live entity matches the id
            NameValidationError: If the name is not identifier-safe
            ReservedNameError: If the name is reserved on the entity
            FieldNameConflictError: If the current version has the name
            FieldPropertiesError: If the properties do not match the data type
        """
        if data.data_type.is_system:
            raise SystemDataTypeError(
                f"The {data.data_type.value} data type cannot be used to create new fields",
                data.data_type.value,
                data.name,
            )
        entity = await self.versions.get_entity(entity_id)
        await self._check_field_name(entity_id, entity.name, data.name)
        self.validate_field_data(data.data_type, data.properties)

        await self.versions.acquire_lock(entity_id, user_id)
        version_id = await self.versions.get_current_version_id(entity_id)
        now = _now_ms()
        created = await self.store.create_field(
            EntityField(
                id=_new_id(),
                permanent_id=_new_id(),
                entity_version_id=version_id,
                name=data.name,
                display_name=data.display_name,
                data_type=data.data_type,
                properties=dict(data.properties),
                required=data.required,
                searchable=data.searchable,
                description=data.description,
                created_at=now,
                updated_at=now,
            )
        )
        logger.debug(
            "Created entity field",
            extra={"entity_id": entity_id, "field": created.name, "user_id": user_id},
        )
        return created

    async def create_field_by_display_name(
        self, entity_id: str, display_name: str, user_id: str
    ) -> EntityField:
        """Create a field from a display name only.

        The name is derived from the display name (with a numeric suffix on
        collision) and the data type is guessed from its words.
        """
        entity = await self.versions.get_entity(entity_id)
        base = name_from_display_name(display_name)
        taken = {f.name for f in await self.store.find_fields(entity_id=entity_id)}
        name = base
        counter = 1
        while name in taken or is_reserved_name(entity.name, name):
            name = f"{base}{counter}"
            counter += 1

        data_type = data_type_from_display_name(display_name)
        return await self.create_field(
            entity_id,
            EntityFieldCreateInput(
                name=name,
                display_name=display_name,
                data_type=data_type,
                properties=default_properties(data_type),
            ),
            user_id,
        )

    async def _get_current_field(self, field_id: str, operation: str) -> EntityField:
        entity_field = await self.store.get_field(field_id, include_version=True)
        if entity_field is None:
            raise EntityFieldNotFoundError(field_id)
        version = entity_field.entity_version
        if not version.is_current:
            raise StaleVersionError(
                f"Cannot {operation} fields of previous versions "
                f"(version {version.version_number})",
                version.version_number,
                operation,
            )
        if entity_field.data_type.is_system:
            raise SystemDataTypeError(
                f"The {entity_field.name} field cannot be deleted or updated",
                entity_field.data_type.value,
                entity_field.name,
            )
        return entity_field

    async def update_field(
        self, field_id: str, data: EntityFieldUpdateInput, user_id: str
    ) -> EntityField:
        """Update a field of the current version.

        Raises:
            EntityFieldNotFoundError: If the field does not exist
            StaleVersionError: If the field belongs to a committed version
            SystemDataTypeError: If the field or the new data type is a system type
            NameValidationError: If the new name is not identifier-safe
            ReservedNameError: If the new name is reserved on the entity
            FieldNameConflictError: If another field of the version has the name
            FieldPropertiesError: If the properties do not match the data type
        """
        entity_field = await self._get_current_field(field_id, "update")
        changes = data.changes()
        data_type = changes.get("data_type", entity_field.data_type)
        if data_type.is_system:
            raise SystemDataTypeError(
                f"The {data_type.value} data type cannot be used to update fields",
                data_type.value,
                entity_field.name,
            )
        entity_id = entity_field.entity_version.entity_id
        if "name" in changes:
            await self._check_field_name(
                entity_id, entity_field.entity_version.name, changes["name"], field_id=field_id
            )
        self.validate_field_data(data_type, changes.get("properties", entity_field.properties))

        await self.versions.acquire_lock(entity_id, user_id)
        updated = await self.store.update_field(field_id, changes)
        logger.debug(
            "Updated entity field",
            extra={"field_id": field_id, "changes": sorted(changes), "user_id": user_id},
        )
        return updated

    async def delete_field(self, field_id: str, user_id: str) -> EntityField:
        """Delete a field of the current version and its permission rules.

        Raises:
            EntityFieldNotFoundError: If the field does not exist
            StaleVersionError: If the field belongs to a committed version
            SystemDataTypeError: If the field has a system type
        """
        entity_field = await self._get_current_field(field_id, "delete")
        await self.versions.acquire_lock(entity_field.entity_version.entity_id, user_id)
        deleted = await self.store.delete_field(field_id)
        logger.debug("Deleted entity field", extra={"field_id": field_id, "user_id": user_id})
        return deleted

    async def validate_all_fields_exist(
        self, entity_id: str, field_names: Iterable[str]
    ) -> set[str]:
        """Return the names that are not fields of the current version."""
        names = set(field_names)
        if not names:
            return set()
        found = await self.store.find_fields(entity_id=entity_id, names=sorted(names))
        return names - {f.name for f in found}

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def get_permissions(
        self,
        entity_id: str,
        action: EntityAction | None = None,
        version_number: int = CURRENT_VERSION_NUMBER,
    ) -> list[EntityPermission]:
        """List permissions of an entity version."""
        return await self.store.find_permissions(
            entity_id=entity_id, version_number=version_number, action=action
        )

    async def _get_current_permission(self, entity_id: str, action: EntityAction) -> EntityPermission:
        await self.versions.get_entity(entity_id)
        found = await self.store.find_permissions(entity_id=entity_id, action=action)
        if len(found) != 1:
            raise RecordNotFoundError("entity_permission", f"{entity_id}:{action.value}")
        return found[0]

    async def update_entity_permission(
        self,
        entity_id: str,
        action: EntityAction,
        permission_type: PermissionType,
        user_id: str,
    ) -> EntityPermission:
        """Set how a permission of the current version is granted."""
        permission = await self._get_current_permission(entity_id, action)
        await self.versions.acquire_lock(entity_id, user_id)
        await self.store.update_permission(permission.id, permission_type)
        return await self._get_current_permission(entity_id, action)

    async def update_entity_permission_roles(
        self,
        entity_id: str,
        action: EntityAction,
        add_role_ids: Iterable[str],
        delete_role_ids: Iterable[str],
        user_id: str,
    ) -> EntityPermission:
        """Grant and revoke roles on a permission of the current version.

        Revoked roles are also removed from the permission's field rules.
        """
        permission = await self._get_current_permission(entity_id, action)
        await self.versions.acquire_lock(entity_id, user_id)
        await self.store.update_permission_roles(
            permission.id, list(add_role_ids), list(delete_role_ids)
        )
        return await self._get_current_permission(entity_id, action)

    async def add_entity_permission_field(
        self, entity_id: str, action: EntityAction, field_name: str, user_id: str
    ) -> EntityPermissionField:
        """Restrict a permission of the current version on one field.

        Raises:
            EntityNotFoundError: If no live entity matches the id
            RecordNotFoundError: If the permission does not exist
            EntityFieldNotFoundError: If the current version has no such field
            ValidationError: If the field already has a rule for the action
        """
        permission = await self._get_current_permission(entity_id, action)
        found = await self.store.find_fields(entity_id=entity_id, names=[field_name])
        if not found:
            raise EntityFieldNotFoundError(field_name)
        entity_field = found[0]
        if any(pf.field_permanent_id == entity_field.permanent_id for pf in permission.permission_fields):
            raise ValidationError(
                f"The field '{field_name}' already has a permission rule for action {action.value}",
                code="PERMISSION_FIELD_CONFLICT",
                details={"field_name": field_name, "action": action.value},
            )

        await self.versions.acquire_lock(entity_id, user_id)
        created = await self.store.create_permission_field(
            EntityPermissionField(
                id=_new_id(),
                permission_id=permission.id,
                field_id=entity_field.id,
                field_permanent_id=entity_field.permanent_id,
                entity_version_id=permission.entity_version_id,
            )
        )
        return await self.store.get_permission_field(created.id)

    async def delete_entity_permission_field(
        self,
        entity_id: str,
        action: EntityAction,
        field_permanent_id: str,
        user_id: str,
    ) -> EntityPermissionField:
        """Remove the rule of one field from a permission of the current version.

        Raises:
            RecordNotFoundError: If not exactly one rule matches
        """
        found = await self.store.find_permission_fields(
            entity_id=entity_id, action=action, field_permanent_id=field_permanent_id
        )
        if len(found) != 1:
            raise RecordNotFoundError("entity_permission_field", field_permanent_id)

        await self.versions.acquire_lock(entity_id, user_id)
        deleted = await self.store.delete_permission_field(found[0].id)
        logger.debug(
            "Deleted permission field",
            extra={"entity_id": entity_id, "action": action.value, "user_id": user_id},
        )
        return deleted

    async def update_entity_permission_field_roles(
        self,
        permission_field_id: str,
        add_role_ids: Iterable[str],
        delete_role_ids: Iterable[str],
        user_id: str,
    ) -> EntityPermissionField:
        """Grant and revoke roles on a permission field.

        Raises:
            RecordNotFoundError: If the permission field does not exist
            StaleVersionError: If it belongs to a committed version
            PermissionRoleError: If a granted role is not granted on the permission
        """
        permission_field = await self.store.get_permission_field(
            permission_field_id, include_permission=True
        )
        if permission_field is None:
            raise RecordNotFoundError("entity_permission_field", permission_field_id)
        permission = permission_field.permission
        version = permission.entity_version
        if not version.is_current:
            raise StaleVersionError(
                f"Cannot update permission fields of previous versions "
                f"(version {version.version_number})",
                version.version_number,
                "update",
            )
        add_role_ids = list(add_role_ids)
        missing = set(add_role_ids) - set(permission.role_ids)
        if missing:
            raise PermissionRoleError(sorted(missing), permission.id)

        await self.versions.acquire_lock(version.entity_id, user_id)
        await self.store.update_permission_field_roles(
            permission_field_id, add_role_ids, list(delete_role_ids)
        )
        return await self.store.get_permission_field(permission_field_id)
