"""
Entity version manager.

Owns the lifecycle of entity versions:
- Resolving the current version of an entity
- Advisory lock acquisition and release
- Snapshotting the current version into a new committed version
- Discarding pending changes back to the last committed version

Invariants:
    - Committed version numbers start at 1 and increase by exactly 1
    - A snapshot is written in one store transaction (no orphan version rows)
    - Discard replaces the current version content in one store transaction
    - The lock is advisory metadata; it never gates a write

How to change safely:
    - Keep the read of the latest version number and the snapshot write
      close together; concurrent commits of one entity are rejected by the
      (entity_id, version_number) unique constraint
    - Never copy content without going through versioning.snapshot

Example:
    >>> manager = EntityVersionManager(store)
    >>> await manager.acquire_lock(entity_id, user_id="u1")
    >>> current = await manager.create_version(entity_id, commit_id="c1")
    >>> entity = await manager.discard_pending_changes(entity_id)
"""

from __future__ import annotations

import logging
import time

from ..errors import EntityNameConflictError, EntityNotFoundError
from ..schema.types import Entity, EntityVersion
from ..store.structured_store import EntityStore
from .diff import VersionChange, compare_versions
from .snapshot import build_snapshot, copy_version_content

logger = logging.getLogger(__name__)


class EntityVersionManager:
    """Manages versions and advisory locks of entities.

    Attributes:
        store: Structured store holding entities and versions
    """

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    async def get_entity(self, entity_id: str, include_deleted: bool = False) -> Entity:
        """Load an entity.

        Raises:
            EntityNotFoundError: If no matching entity exists
        """
        found = await self.store.find_entities(
            entity_id=entity_id, include_deleted=include_deleted, limit=1
        )
        if not found:
            raise EntityNotFoundError(entity_id)
        return found[0]

    async def _check_name_available(self, entity: Entity, name: str) -> None:
        if name == entity.name:
            return
        taken = await self.store.find_entities(app_id=entity.app_id, name=name, limit=1)
        if taken and taken[0].id != entity.id:
            raise EntityNameConflictError(name, entity.app_id)

    async def get_current_version_id(self, entity_id: str) -> str:
        """Resolve the id of the current version.

        Raises:
            EntityNotFoundError: If the entity has no current version
        """
        version_id = await self.store.get_current_version_id(entity_id)
        if version_id is None:
            raise EntityNotFoundError(entity_id)
        return version_id

    async def get_current_version(self, entity_id: str) -> EntityVersion:
        """Load the current version with fields and permissions."""
        version_id = await self.get_current_version_id(entity_id)
        version = await self.store.get_version(version_id, include_content=True)
        if version is None:
            raise EntityNotFoundError(entity_id)
        return version

    async def get_latest_committed_version(
        self, entity_id: str, include_content: bool = False
    ) -> EntityVersion | None:
        """Load the committed version with the highest number, if any."""
        versions = await self.store.find_versions(
            entity_id=entity_id, descending=True, limit=1
        )
        if not versions or versions[0].is_current:
            return None
        if not include_content:
            return versions[0]
        return await self.store.get_version(versions[0].id, include_content=True)

    async def acquire_lock(self, entity_id: str, user_id: str) -> Entity:
        """Record that a user is editing an entity.

        An existing lock held by another user is overwritten.

        Raises:
            EntityNotFoundError: If no live entity matches the id
        """
        entity = await self.get_entity(entity_id)
        previous = entity.locked_by_user_id
        updated = await self.store.update_entity(
            entity.id,
            {"locked_by_user_id": user_id, "locked_at": int(time.time() * 1000)},
        )
        if previous is not None and previous != user_id:
            logger.info(
                "Entity lock taken over",
                extra={"entity_id": entity_id, "user_id": user_id, "previous_user_id": previous},
            )
        return updated

    async def release_lock(self, entity_id: str) -> Entity:
        """Clear the lock of an entity unconditionally.

        Raises:
            EntityNotFoundError: If the entity does not exist
        """
        updated = await self.store.update_entity(
            entity_id, {"locked_by_user_id": None, "locked_at": None}
        )
        if updated is None:
            raise EntityNotFoundError(entity_id)
        return updated

    async def create_version(self, entity_id: str, commit_id: str | None = None) -> EntityVersion:
        """Snapshot the current version into a new committed version.

        Args:
            entity_id: Entity to snapshot
            commit_id: Commit the new version belongs to

        Returns:
            The current version as loaded before the copy

        Raises:
            EntityNotFoundError: If the entity or its current version is missing
            EntityNameConflictError: If the name of a soft-deleted entity was
                taken by another live entity in the meantime
        """
        versions = await self.store.find_versions(entity_id=entity_id)
        if not versions:
            raise EntityNotFoundError(entity_id)
        next_number = versions[-1].version_number + 1

        current = await self.get_current_version(entity_id)
        entity = await self.get_entity(entity_id, include_deleted=True)
        await self._check_name_available(entity, current.name)
        now = int(time.time() * 1000)
        snapshot = build_snapshot(current, next_number, commit_id, now)

        await self.store.insert_version_snapshot(
            snapshot,
            {
                "name": current.name,
                "display_name": current.display_name,
                "plural_display_name": current.plural_display_name,
                "deleted_at": None,
            },
            current_version_changes={"deleted": False},
        )

        logger.info(
            "Created entity version",
            extra={
                "entity_id": entity_id,
                "version_number": next_number,
                "commit_id": commit_id,
                "fields": len(snapshot.fields),
            },
        )
        return current

    async def discard_pending_changes(self, entity_id: str) -> Entity:
        """Reset the current version to the latest committed version.

        When nothing was committed yet the entity is returned unchanged.
        Otherwise the current version's fields and permissions are replaced
        by a copy of the committed ones, names are restored on the current
        version and on the entity, and the advisory lock is released.

        Raises:
            EntityNotFoundError: If the entity does not exist
            EntityNameConflictError: If the committed name was taken by another
                live entity since the entity was soft-deleted
        """
        entity = await self.get_entity(entity_id, include_deleted=True)
        source = await self.get_latest_committed_version(entity_id, include_content=True)
        if source is None:
            logger.debug("No committed version to discard to", extra={"entity_id": entity_id})
            return entity

        await self._check_name_available(entity, source.name)
        target_id = await self.get_current_version_id(entity_id)
        fields, permissions = copy_version_content(source, target_id)
        names = {
            "name": source.name,
            "display_name": source.display_name,
            "plural_display_name": source.plural_display_name,
        }
        await self.store.replace_version_content(
            target_id,
            {**names, "description": source.description, "deleted": False},
            fields,
            permissions,
            {**names, "description": source.description, "deleted_at": None},
        )

        logger.info(
            "Discarded pending changes",
            extra={"entity_id": entity_id, "version_number": source.version_number},
        )
        return await self.release_lock(entity_id)

    async def get_pending_changes(self, entity_id: str) -> list[VersionChange]:
        """Compare the current version with the latest committed version."""
        current = await self.get_current_version(entity_id)
        committed = await self.get_latest_committed_version(entity_id, include_content=True)
        return compare_versions(committed, current)


