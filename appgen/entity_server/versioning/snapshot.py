"""
Deep copy of version content.

Builds, in memory, the fields and permissions of one version re-homed onto
another version. The caller persists the result in a single batched write.

Invariants:
    - Every copied row gets a new id and points at the target version
    - permanent_id and every other field attribute are preserved verbatim
    - Permission fields are re-pointed at the copied field through an
      old-id to new-id map built during the field copy

How to change safely:
    - New attributes on EntityField or EntityPermission must be copied here
    - Never regenerate permanent ids

Example:
    >>> fields, permissions = copy_version_content(current, target_version_id)
    >>> [f.permanent_id for f in fields] == [f.permanent_id for f in current.fields]
    True
"""

from __future__ import annotations

import uuid
from dataclasses import replace

from ..schema.types import (
    EntityField,
    EntityPermission,
    EntityPermissionField,
    EntityVersion,
)


def _new_id() -> str:
    return str(uuid.uuid4())


def copy_fields(
    fields: list[EntityField], target_version_id: str
) -> tuple[list[EntityField], dict[str, str]]:
    """Copy fields onto a target version.

    Returns:
        Tuple of (copied fields, map of source field id to copied field id)
    """
    copies = []
    id_map: dict[str, str] = {}
    for source in fields:
        copy = replace(
            source,
            id=_new_id(),
            entity_version_id=target_version_id,
            properties=dict(source.properties),
            entity_version=None,
        )
        id_map[source.id] = copy.id
        copies.append(copy)
    return copies, id_map


def copy_permissions(
    permissions: list[EntityPermission],
    target_version_id: str,
    field_id_map: dict[str, str],
) -> list[EntityPermission]:
    """Copy permissions, their roles and permission fields onto a target version.

    Raises:
        KeyError: If a permission field references a field that was not copied
    """
    copies = []
    for source in permissions:
        permission_id = _new_id()
        permission_fields = [
            EntityPermissionField(
                id=_new_id(),
                permission_id=permission_id,
                field_id=field_id_map[pf.field_id],
                field_permanent_id=pf.field_permanent_id,
                entity_version_id=target_version_id,
                role_ids=list(pf.role_ids),
            )
            for pf in source.permission_fields
        ]
        copies.append(
            EntityPermission(
                id=permission_id,
                entity_version_id=target_version_id,
                action=source.action,
                type=source.type,
                role_ids=list(source.role_ids),
                permission_fields=permission_fields,
            )
        )
    return copies


def copy_version_content(
    source: EntityVersion, target_version_id: str
) -> tuple[list[EntityField], list[EntityPermission]]:
    """Copy all fields and permissions of a version onto another version."""
    fields, field_id_map = copy_fields(source.fields, target_version_id)
    permissions = copy_permissions(source.permissions, target_version_id, field_id_map)
    return fields, permissions


def build_snapshot(
    source: EntityVersion,
    version_number: int,
    commit_id: str | None,
    now: int,
) -> EntityVersion:
    """Build a committed version mirroring a loaded current version.

    Args:
        source: Current version loaded with fields and permissions
        version_number: Number of the new version
        commit_id: Commit the snapshot belongs to
        now: Creation timestamp (Unix ms)

    Returns:
        New EntityVersion carrying the copied content
    """
    version_id = _new_id()
    fields, permissions = copy_version_content(source, version_id)
    return EntityVersion(
        id=version_id,
        entity_id=source.entity_id,
        version_number=version_number,
        name=source.name,
        display_name=source.display_name,
        plural_display_name=source.plural_display_name,
        description=source.description,
        commit_id=commit_id,
        deleted=source.deleted,
        created_at=now,
        updated_at=now,
        fields=fields,
        permissions=permissions,
    )
