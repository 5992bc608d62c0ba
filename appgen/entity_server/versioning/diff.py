"""
Structural comparison of entity versions.

Computes the pending changes of an entity: what differs between its latest
committed version and its current version. Fields are matched by
permanent_id, so a renamed field is reported as renamed, not as removed and
added.

Invariants:
    - Comparing a version with itself yields no changes
    - Fields are matched by permanent_id, permissions by action
    - A missing baseline (nothing committed yet) reports the whole entity

Example:
    >>> changes = compare_versions(last_committed, current)
    >>> for change in changes:
    ...     print(change)
    FIELD_RENAMED: field:3f2a.. - Field renamed from 'age' to 'ageInYears'
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from ..schema.types import EntityField, EntityPermission, EntityVersion

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    """Types of changes between two versions."""

    ENTITY_CREATED = auto()
    ENTITY_DELETED = auto()
    ENTITY_RESTORED = auto()
    ENTITY_RENAMED = auto()
    DESCRIPTION_CHANGED = auto()
    FIELD_ADDED = auto()
    FIELD_REMOVED = auto()
    FIELD_RENAMED = auto()
    FIELD_DATA_TYPE_CHANGED = auto()
    FIELD_PROPERTIES_CHANGED = auto()
    FIELD_FLAGS_CHANGED = auto()
    PERMISSION_CHANGED = auto()


@dataclass
class VersionChange:
    """A single change between two versions.

    Attributes:
        kind: The type of change
        path: Path to the changed element (e.g., "field:<permanent_id>")
        old_value: Previous value (if applicable)
        new_value: New value (if applicable)
        message: Human-readable description of the change
    """

    kind: ChangeKind
    path: str
    old_value: Any | None = None
    new_value: Any | None = None
    message: str = ""

    def __str__(self) -> str:
        return f"{self.kind.name}: {self.path} - {self.message}"


def _names(version: EntityVersion) -> tuple[str, str, str]:
    return (version.name, version.display_name, version.plural_display_name)


def _compare_fields(old: EntityField, new: EntityField) -> list[VersionChange]:
    path = f"field:{new.permanent_id}"
    changes = []
    if (old.name, old.display_name) != (new.name, new.display_name):
        changes.append(
            VersionChange(
                kind=ChangeKind.FIELD_RENAMED,
                path=path,
                old_value=(old.name, old.display_name),
                new_value=(new.name, new.display_name),
                message=f"Field renamed from '{old.name}' to '{new.name}'",
            )
        )
    if old.data_type != new.data_type:
        changes.append(
            VersionChange(
                kind=ChangeKind.FIELD_DATA_TYPE_CHANGED,
                path=path,
                old_value=old.data_type.value,
                new_value=new.data_type.value,
                message=(
                    f"Field '{new.name}' data type changed from "
                    f"{old.data_type.value} to {new.data_type.value}"
                ),
            )
        )
    if old.properties != new.properties:
        changes.append(
            VersionChange(
                kind=ChangeKind.FIELD_PROPERTIES_CHANGED,
                path=path,
                old_value=old.properties,
                new_value=new.properties,
                message=f"Field '{new.name}' properties changed",
            )
        )
    old_flags = {"required": old.required, "searchable": old.searchable, "description": old.description}
    new_flags = {"required": new.required, "searchable": new.searchable, "description": new.description}
    if old_flags != new_flags:
        changed = sorted(k for k in old_flags if old_flags[k] != new_flags[k])
        changes.append(
            VersionChange(
                kind=ChangeKind.FIELD_FLAGS_CHANGED,
                path=path,
                old_value={k: old_flags[k] for k in changed},
                new_value={k: new_flags[k] for k in changed},
                message=f"Field '{new.name}' changed: {', '.join(changed)}",
            )
        )
    return changes


def _permission_shape(
    permission: EntityPermission,
) -> tuple[str, tuple[str, ...], tuple[tuple[str, tuple[str, ...]], ...]]:
    return (
        permission.type.value,
        tuple(sorted(permission.role_ids)),
        tuple(
            sorted(
                (pf.field_permanent_id, tuple(sorted(pf.role_ids)))
                for pf in permission.permission_fields
            )
        ),
    )


def compare_versions(old: EntityVersion | None, new: EntityVersion) -> list[VersionChange]:
    """Compare two loaded versions of the same entity.

    Args:
        old: Baseline version with content, or None when nothing was committed
        new: Version to compare, with content

    Returns:
        List of changes, entity-level first, then fields, then permissions
    """
    changes: list[VersionChange] = []

    if old is None:
        changes.append(
            VersionChange(
                kind=ChangeKind.ENTITY_CREATED,
                path=f"entity:{new.entity_id}",
                new_value=new.name,
                message=f"Entity '{new.name}' has never been committed",
            )
        )
        for entity_field in new.fields:
            changes.append(
                VersionChange(
                    kind=ChangeKind.FIELD_ADDED,
                    path=f"field:{entity_field.permanent_id}",
                    new_value=entity_field.name,
                    message=f"Field '{entity_field.name}' added",
                )
            )
        return changes

    entity_path = f"entity:{new.entity_id}"
    if old.deleted != new.deleted:
        changes.append(
            VersionChange(
                kind=ChangeKind.ENTITY_DELETED if new.deleted else ChangeKind.ENTITY_RESTORED,
                path=entity_path,
                old_value=old.deleted,
                new_value=new.deleted,
                message=f"Entity '{old.name}' {'deleted' if new.deleted else 'restored'}",
            )
        )
    if _names(old) != _names(new):
        changes.append(
            VersionChange(
                kind=ChangeKind.ENTITY_RENAMED,
                path=entity_path,
                old_value=_names(old),
                new_value=_names(new),
                message=f"Entity renamed from '{old.name}' to '{new.name}'",
            )
        )
    if old.description != new.description:
        changes.append(
            VersionChange(
                kind=ChangeKind.DESCRIPTION_CHANGED,
                path=entity_path,
                old_value=old.description,
                new_value=new.description,
                message="Entity description changed",
            )
        )

    old_fields = {f.permanent_id: f for f in old.fields}
    new_fields = {f.permanent_id: f for f in new.fields}
    for permanent_id, entity_field in new_fields.items():
        if permanent_id not in old_fields:
            changes.append(
                VersionChange(
                    kind=ChangeKind.FIELD_ADDED,
                    path=f"field:{permanent_id}",
                    new_value=entity_field.name,
                    message=f"Field '{entity_field.name}' added",
                )
            )
        else:
            changes.extend(_compare_fields(old_fields[permanent_id], entity_field))
    for permanent_id, entity_field in old_fields.items():
        if permanent_id not in new_fields:
            changes.append(
                VersionChange(
                    kind=ChangeKind.FIELD_REMOVED,
                    path=f"field:{permanent_id}",
                    old_value=entity_field.name,
                    message=f"Field '{entity_field.name}' removed",
                )
            )

    old_permissions = {p.action: p for p in old.permissions}
    new_permissions = {p.action: p for p in new.permissions}
    for action in sorted(set(old_permissions) | set(new_permissions), key=lambda a: a.value):
        old_shape = _permission_shape(old_permissions[action]) if action in old_permissions else None
        new_shape = _permission_shape(new_permissions[action]) if action in new_permissions else None
        if old_shape != new_shape:
            changes.append(
                VersionChange(
                    kind=ChangeKind.PERMISSION_CHANGED,
                    path=f"permission:{action.value}",
                    old_value=old_shape,
                    new_value=new_shape,
                    message=f"Permission for action {action.value} changed",
                )
            )

    if changes:
        logger.debug(
            "Computed version changes",
            extra={"entity_id": new.entity_id, "changes": len(changes)},
        )
    return changes
