"""
Integration tests for the structured SQLite store.

Tests cover:
- Schema initialization
- Entity creation with its current version
- Filters and includes
- Cascading deletes
- Atomic snapshot insertion and content replacement
"""

import sqlite3
import tempfile
import uuid

import pytest

from appgen.entity_server.schema.types import (
    DataType,
    Entity,
    EntityAction,
    EntityField,
    EntityPermission,
    EntityPermissionField,
    EntityVersion,
    PermissionType,
)
from appgen.entity_server.store.structured_store import EntityStore, StoreNotInitializedError
from appgen.entity_server.versioning.snapshot import build_snapshot, copy_version_content


def new_id():
    return str(uuid.uuid4())


def make_entity(app_id="app_1", name="Customer", field_names=("name", "email")):
    """Helper to create an entity with a populated current version."""
    entity = Entity(
        id=new_id(),
        app_id=app_id,
        name=name,
        display_name=name,
        plural_display_name=f"{name}s",
        created_at=1,
        updated_at=1,
    )
    version_id = new_id()
    fields = [
        EntityField(
            id=new_id(),
            permanent_id=new_id(),
            entity_version_id=version_id,
            name=field_name,
            display_name=field_name.title(),
            data_type=DataType.SINGLE_LINE_TEXT,
            properties={"maxLength": 256},
            position=position,
            created_at=1,
            updated_at=1,
        )
        for position, field_name in enumerate(field_names, start=1)
    ]
    view_id = new_id()
    permissions = [
        EntityPermission(
            id=view_id,
            entity_version_id=version_id,
            action=EntityAction.VIEW,
            type=PermissionType.GRANULAR,
            role_ids=["admin", "sales"],
            permission_fields=[
                EntityPermissionField(
                    id=new_id(),
                    permission_id=view_id,
                    field_id=fields[-1].id,
                    field_permanent_id=fields[-1].permanent_id,
                    entity_version_id=version_id,
                    role_ids=["admin"],
                )
            ]
            if fields
            else [],
        ),
        EntityPermission(
            id=new_id(),
            entity_version_id=version_id,
            action=EntityAction.CREATE,
            type=PermissionType.ALL_ROLES,
        ),
    ]
    version = EntityVersion(
        id=version_id,
        entity_id=entity.id,
        version_number=0,
        name=entity.name,
        display_name=entity.display_name,
        plural_display_name=entity.plural_display_name,
        created_at=1,
        updated_at=1,
        fields=fields,
        permissions=permissions,
    )
    return entity, version


class TestEntityStore:
    """Tests for EntityStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def store(self, data_dir):
        """Create store."""
        return EntityStore(data_dir, wal_mode=False)

    @pytest.mark.asyncio
    async def test_requires_initialization(self, store):
        """Queries fail before the database is created."""
        with pytest.raises(StoreNotInitializedError):
            await store.find_entities()

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, store):
        """Initializing twice keeps the database usable."""
        await store.initialize()
        await store.initialize()
        assert store.get_db_path().exists()
        assert await store.find_entities() == []

    @pytest.mark.asyncio
    async def test_create_entity_with_content(self, store):
        """Entity, current version, fields and permissions are stored together."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)

        (found,) = await store.find_entities(app_id="app_1")
        assert found.id == entity.id
        assert found.name == "Customer"

        loaded = await store.get_version(version.id, include_content=True)
        assert loaded.is_current
        assert [f.name for f in loaded.fields] == ["name", "email"]
        assert loaded.fields[0].properties == {"maxLength": 256}
        view = next(p for p in loaded.permissions if p.action is EntityAction.VIEW)
        assert view.role_ids == ["admin", "sales"]
        (pf,) = view.permission_fields
        assert pf.role_ids == ["admin"]
        assert pf.field.name == "email"

    @pytest.mark.asyncio
    async def test_entity_name_unique_per_app(self, store):
        """Two entities of one app cannot share a name."""
        await store.initialize()
        await store.create_entity(*make_entity())

        with pytest.raises(sqlite3.IntegrityError):
            await store.create_entity(*make_entity())

        await store.create_entity(*make_entity(app_id="app_2"))
        assert len(await store.find_entities(name="Customer")) == 2

    @pytest.mark.asyncio
    async def test_find_entities_excludes_deleted(self, store):
        """Soft-deleted entities are hidden unless requested."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)
        await store.update_entity(entity.id, {"deleted_at": 5})

        assert await store.find_entities(entity_id=entity.id) == []
        (deleted,) = await store.find_entities(entity_id=entity.id, include_deleted=True)
        assert deleted.deleted_at == 5

    @pytest.mark.asyncio
    async def test_pagination(self, store):
        """Limit and offset page through entities."""
        await store.initialize()
        for name in ("A", "B", "C"):
            await store.create_entity(*make_entity(name=name))

        page = await store.find_entities(limit=2, offset=1)
        assert len(page) == 2

    @pytest.mark.asyncio
    async def test_update_entity_and_current_version(self, store):
        """Entity changes can be mirrored on the current version."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)

        updated = await store.update_entity(
            entity.id,
            {"display_name": "Client"},
            current_version_changes={"display_name": "Client"},
        )

        assert updated.display_name == "Client"
        assert updated.updated_at > entity.updated_at
        loaded = await store.get_version(version.id)
        assert loaded.display_name == "Client"

    @pytest.mark.asyncio
    async def test_update_entity_rejects_unknown_columns(self, store):
        """Only known attributes can be updated."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)

        with pytest.raises(ValueError, match="Unknown columns"):
            await store.update_entity(entity.id, {"app_id": "other"})

    @pytest.mark.asyncio
    async def test_update_missing_entity(self, store):
        """Updating a missing entity returns None."""
        await store.initialize()
        assert await store.update_entity("missing", {"locked_at": None}) is None

    @pytest.mark.asyncio
    async def test_create_field_appends(self, store):
        """New fields are positioned after existing ones."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)

        created = await store.create_field(
            EntityField(
                id=new_id(),
                permanent_id=new_id(),
                entity_version_id=version.id,
                name="age",
                display_name="Age",
                data_type=DataType.WHOLE_NUMBER,
                properties={"minimumValue": 0, "maximumValue": 150},
            )
        )

        assert created.position == 3
        fields = await store.find_fields(entity_id=entity.id)
        assert [f.name for f in fields] == ["name", "email", "age"]
        assert fields[2].data_type is DataType.WHOLE_NUMBER

    @pytest.mark.asyncio
    async def test_find_fields_by_names(self, store):
        """Fields can be filtered by name; an empty filter matches nothing."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)

        found = await store.find_fields(entity_id=entity.id, names=["email", "other"])
        assert [f.name for f in found] == ["email"]
        assert await store.find_fields(entity_id=entity.id, names=[]) == []

    @pytest.mark.asyncio
    async def test_update_field(self, store):
        """Field updates encode properties, flags and data types."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)
        target = version.fields[0]

        updated = await store.update_field(
            target.id,
            {"properties": {"maxLength": 20}, "required": True, "data_type": DataType.EMAIL},
        )

        assert updated.properties == {"maxLength": 20}
        assert updated.required is True
        assert updated.data_type is DataType.EMAIL
        assert updated.permanent_id == target.permanent_id
        assert await store.update_field("missing", {"name": "x"}) is None

    @pytest.mark.asyncio
    async def test_delete_field_cascades_to_permission_fields(self, store):
        """Deleting a field removes the permission rules that reference it."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)
        email = version.fields[1]

        deleted = await store.delete_field(email.id)

        assert deleted.name == "email"
        assert await store.find_permission_fields(entity_id=entity.id) == []
        assert await store.delete_field(email.id) is None

    @pytest.mark.asyncio
    async def test_insert_version_snapshot(self, store):
        """A snapshot is stored with its copied content."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)
        current = await store.get_version(version.id, include_content=True)

        snapshot = build_snapshot(current, 1, "c1", now=10)
        await store.insert_version_snapshot(snapshot, {"deleted_at": None})

        versions = await store.find_versions(entity_id=entity.id)
        assert [v.version_number for v in versions] == [0, 1]
        loaded = await store.get_version(snapshot.id, include_content=True)
        assert loaded.commit_id == "c1"
        assert [f.permanent_id for f in loaded.fields] == [f.permanent_id for f in current.fields]
        view = next(p for p in loaded.permissions if p.action is EntityAction.VIEW)
        assert view.permission_fields[0].field_id == loaded.fields[1].id

    @pytest.mark.asyncio
    async def test_insert_version_snapshot_updates_current_version(self, store):
        """Current version changes are applied with the snapshot."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)
        await store.update_entity(entity.id, {}, current_version_changes={"deleted": True})
        current = await store.get_version(version.id, include_content=True)

        snapshot = build_snapshot(current, 1, "c1", now=10)
        await store.insert_version_snapshot(
            snapshot, {"deleted_at": None}, current_version_changes={"deleted": False}
        )

        assert (await store.get_version(version.id)).deleted is False
        assert (await store.get_version(snapshot.id)).deleted is True

    @pytest.mark.asyncio
    async def test_failed_snapshot_leaves_no_rows(self, store):
        """A snapshot that violates a constraint is rolled back completely."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)
        current = await store.get_version(version.id, include_content=True)

        # Fields are inserted before permissions; the duplicate action fails late.
        snapshot = build_snapshot(current, 1, "c1", now=10)
        snapshot.permissions.append(
            EntityPermission(
                id=new_id(),
                entity_version_id=snapshot.id,
                action=EntityAction.CREATE,
                type=PermissionType.DISABLED,
            )
        )
        with pytest.raises(sqlite3.IntegrityError):
            await store.insert_version_snapshot(snapshot, {})

        versions = await store.find_versions(entity_id=entity.id)
        assert [v.version_number for v in versions] == [0]
        assert await store.find_fields(entity_id=entity.id, version_number=1) == []

    @pytest.mark.asyncio
    async def test_version_numbers_unique(self, store):
        """Two snapshots cannot share a version number."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)
        current = await store.get_version(version.id, include_content=True)

        await store.insert_version_snapshot(build_snapshot(current, 1, "c1", now=10), {})
        with pytest.raises(sqlite3.IntegrityError):
            await store.insert_version_snapshot(build_snapshot(current, 1, "c2", now=11), {})

    @pytest.mark.asyncio
    async def test_replace_version_content(self, store):
        """Replacing content removes old rows and writes the new ones."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)
        other, other_version = make_entity(name="Order", field_names=("total",))
        await store.create_entity(other, other_version)

        source = await store.get_version(other_version.id, include_content=True)
        fields, permissions = copy_version_content(source, version.id)
        await store.replace_version_content(
            version.id, {"name": "Customer2"}, fields, permissions, {"name": "Customer2"}
        )

        loaded = await store.get_version(version.id, include_content=True)
        assert loaded.name == "Customer2"
        assert [f.name for f in loaded.fields] == ["total"]
        assert len(loaded.permissions) == 2
        (entity_row,) = await store.find_entities(entity_id=entity.id)
        assert entity_row.name == "Customer2"

        # Source version is untouched
        source_again = await store.get_version(other_version.id, include_content=True)
        assert [f.id for f in source_again.fields] == [f.id for f in source.fields]

    @pytest.mark.asyncio
    async def test_revoking_permission_role_updates_field_rules(self, store):
        """A revoked role is removed from the permission's field rules."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)
        (view,) = await store.find_permissions(entity_id=entity.id, action=EntityAction.VIEW)

        await store.update_permission_roles(view.id, add_role_ids=["guest"], delete_role_ids=["admin"])

        (view,) = await store.find_permissions(entity_id=entity.id, action=EntityAction.VIEW)
        assert view.role_ids == ["guest", "sales"]
        assert view.permission_fields[0].role_ids == []

    @pytest.mark.asyncio
    async def test_find_versions_with_entity(self, store):
        """Versions can be loaded with their entity, filtered by id."""
        await store.initialize()
        entity, version = make_entity()
        await store.create_entity(entity, version)

        (loaded,) = await store.find_versions(version_ids=[version.id], include_entity=True)
        assert loaded.entity.id == entity.id
        assert await store.find_versions(version_ids=[]) == []
        assert await store.get_current_version_id(entity.id) == version.id
        assert await store.get_current_version_id("missing") is None
