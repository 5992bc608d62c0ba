"""
Integration tests for entity permissions.

Tests cover:
- Permission type and role updates
- Field-level permission rules
- Role subset checks and revocation cascade
- Committed permissions are read-only
"""

import tempfile

import pytest

from appgen.entity_server.dto import EntityCreateInput, EntityFieldCreateInput
from appgen.entity_server.errors import (
    EntityFieldNotFoundError,
    EntityNotFoundError,
    PermissionRoleError,
    RecordNotFoundError,
    StaleVersionError,
    ValidationError,
)
from appgen.entity_server.schema.types import DataType, EntityAction, PermissionType
from appgen.entity_server.service import EntityService
from appgen.entity_server.store.structured_store import EntityStore


async def create_order(service):
    """Helper to initialize the store and create an entity with a total field."""
    await service.store.initialize()
    entity = await service.create_one_entity(
        EntityCreateInput(
            app_id="app_1",
            name="Order",
            display_name="Order",
            plural_display_name="Orders",
        ),
        user_id="user_1",
    )
    await service.create_field(
        entity.id,
        EntityFieldCreateInput(
            name="total",
            display_name="Total",
            data_type=DataType.DECIMAL_NUMBER,
            properties={"minimumValue": 0, "maximumValue": 100000, "precision": 2},
        ),
        user_id="user_1",
    )
    return entity


class TestEntityPermissions:
    """Tests for permission operations of EntityService."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def service(self, data_dir):
        """Create service backed by a fresh store."""
        return EntityService(EntityStore(data_dir, wal_mode=False))

    @pytest.mark.asyncio
    async def test_update_permission_type(self, service):
        """A permission can be switched to granular."""
        entity = await create_order(service)

        updated = await service.update_entity_permission(
            entity.id, EntityAction.UPDATE, PermissionType.GRANULAR, user_id="user_2"
        )

        assert updated.action is EntityAction.UPDATE
        assert updated.type is PermissionType.GRANULAR
        (view,) = await service.get_permissions(entity.id, action=EntityAction.VIEW)
        assert view.type is PermissionType.ALL_ROLES
        assert (await service.entity(entity.id)).locked_by_user_id == "user_2"

    @pytest.mark.asyncio
    async def test_update_permission_missing_entity(self, service):
        """Permissions of unknown entities cannot be changed."""
        await service.store.initialize()
        with pytest.raises(EntityNotFoundError):
            await service.update_entity_permission(
                "missing", EntityAction.VIEW, PermissionType.GRANULAR, user_id="user_1"
            )

    @pytest.mark.asyncio
    async def test_update_permission_roles(self, service):
        """Roles are added and removed; results are sorted."""
        entity = await create_order(service)

        await service.update_entity_permission_roles(
            entity.id, EntityAction.VIEW, ["sales", "admin", "ops"], [], user_id="user_1"
        )
        updated = await service.update_entity_permission_roles(
            entity.id, EntityAction.VIEW, ["admin"], ["ops"], user_id="user_1"
        )

        assert updated.role_ids == ["admin", "sales"]

    @pytest.mark.asyncio
    async def test_add_permission_field(self, service):
        """A field rule references the field by permanent id."""
        entity = await create_order(service)
        (total,) = await service.get_fields(entity.id, names=["total"])

        rule = await service.add_entity_permission_field(
            entity.id, EntityAction.VIEW, "total", user_id="user_1"
        )

        assert rule.field_id == total.id
        assert rule.field_permanent_id == total.permanent_id
        assert rule.field.name == "total"
        assert rule.role_ids == []
        (view,) = await service.get_permissions(entity.id, action=EntityAction.VIEW)
        assert [pf.id for pf in view.permission_fields] == [rule.id]

    @pytest.mark.asyncio
    async def test_add_permission_field_errors(self, service):
        """Unknown fields and duplicate rules are rejected."""
        entity = await create_order(service)
        await service.add_entity_permission_field(
            entity.id, EntityAction.VIEW, "total", user_id="user_1"
        )

        with pytest.raises(EntityFieldNotFoundError, match="Cannot find entity field ghost"):
            await service.add_entity_permission_field(
                entity.id, EntityAction.VIEW, "ghost", user_id="user_1"
            )
        with pytest.raises(ValidationError) as exc_info:
            await service.add_entity_permission_field(
                entity.id, EntityAction.VIEW, "total", user_id="user_1"
            )
        assert exc_info.value.code == "PERMISSION_FIELD_CONFLICT"

        other = await service.add_entity_permission_field(
            entity.id, EntityAction.UPDATE, "total", user_id="user_1"
        )
        assert other.field.name == "total"

    @pytest.mark.asyncio
    async def test_delete_permission_field(self, service):
        """Rules are removed by permanent field id."""
        entity = await create_order(service)
        rule = await service.add_entity_permission_field(
            entity.id, EntityAction.VIEW, "total", user_id="user_1"
        )

        deleted = await service.delete_entity_permission_field(
            entity.id, EntityAction.VIEW, rule.field_permanent_id, user_id="user_1"
        )

        assert deleted.id == rule.id
        (view,) = await service.get_permissions(entity.id, action=EntityAction.VIEW)
        assert view.permission_fields == []

        with pytest.raises(RecordNotFoundError, match="Record not found"):
            await service.delete_entity_permission_field(
                entity.id, EntityAction.VIEW, rule.field_permanent_id, user_id="user_1"
            )

    @pytest.mark.asyncio
    async def test_field_roles_must_be_granted_on_permission(self, service):
        """Field rules only accept roles of their permission."""
        entity = await create_order(service)
        await service.update_entity_permission_roles(
            entity.id, EntityAction.VIEW, ["admin", "sales"], [], user_id="user_1"
        )
        rule = await service.add_entity_permission_field(
            entity.id, EntityAction.VIEW, "total", user_id="user_1"
        )

        updated = await service.update_entity_permission_field_roles(
            rule.id, ["admin"], [], user_id="user_1"
        )
        assert updated.role_ids == ["admin"]

        with pytest.raises(PermissionRoleError):
            await service.update_entity_permission_field_roles(
                rule.id, ["guest"], [], user_id="user_1"
            )
        with pytest.raises(RecordNotFoundError):
            await service.update_entity_permission_field_roles(
                "missing", ["admin"], [], user_id="user_1"
            )

    @pytest.mark.asyncio
    async def test_revoking_role_strips_field_rules(self, service):
        """A role revoked on the permission is removed from its field rules."""
        entity = await create_order(service)
        await service.update_entity_permission_roles(
            entity.id, EntityAction.VIEW, ["admin", "sales"], [], user_id="user_1"
        )
        rule = await service.add_entity_permission_field(
            entity.id, EntityAction.VIEW, "total", user_id="user_1"
        )
        await service.update_entity_permission_field_roles(
            rule.id, ["admin", "sales"], [], user_id="user_1"
        )

        await service.update_entity_permission_roles(
            entity.id, EntityAction.VIEW, [], ["sales"], user_id="user_1"
        )

        (view,) = await service.get_permissions(entity.id, action=EntityAction.VIEW)
        assert view.role_ids == ["admin"]
        assert view.permission_fields[0].role_ids == ["admin"]

    @pytest.mark.asyncio
    async def test_deleting_field_removes_rules(self, service):
        """Field rules go away with their field."""
        entity = await create_order(service)
        rule = await service.add_entity_permission_field(
            entity.id, EntityAction.VIEW, "total", user_id="user_1"
        )

        await service.delete_field(rule.field_id, user_id="user_1")

        (view,) = await service.get_permissions(entity.id, action=EntityAction.VIEW)
        assert view.permission_fields == []

    @pytest.mark.asyncio
    async def test_snapshot_copies_rules(self, service):
        """Committed rules point at the committed copy of the field."""
        entity = await create_order(service)
        await service.update_entity_permission(
            entity.id, EntityAction.VIEW, PermissionType.GRANULAR, user_id="user_1"
        )
        await service.update_entity_permission_roles(
            entity.id, EntityAction.VIEW, ["admin"], [], user_id="user_1"
        )
        rule = await service.add_entity_permission_field(
            entity.id, EntityAction.VIEW, "total", user_id="user_1"
        )
        await service.update_entity_permission_field_roles(
            rule.id, ["admin"], [], user_id="user_1"
        )

        await service.create_version(entity.id, commit_id="c1")

        (committed_view,) = await service.get_permissions(
            entity.id, action=EntityAction.VIEW, version_number=1
        )
        (committed_total,) = await service.get_fields(entity.id, version_number=1, names=["total"])
        assert committed_view.type is PermissionType.GRANULAR
        assert committed_view.role_ids == ["admin"]
        (committed_rule,) = committed_view.permission_fields
        assert committed_rule.id != rule.id
        assert committed_rule.field_permanent_id == rule.field_permanent_id
        assert committed_rule.field_id == committed_total.id
        assert committed_rule.role_ids == ["admin"]

    @pytest.mark.asyncio
    async def test_committed_rules_are_read_only(self, service):
        """Rules of committed versions cannot be changed."""
        entity = await create_order(service)
        await service.update_entity_permission_roles(
            entity.id, EntityAction.VIEW, ["admin"], [], user_id="user_1"
        )
        await service.add_entity_permission_field(
            entity.id, EntityAction.VIEW, "total", user_id="user_1"
        )
        await service.create_version(entity.id, commit_id="c1")
        (committed_view,) = await service.get_permissions(
            entity.id, action=EntityAction.VIEW, version_number=1
        )

        with pytest.raises(StaleVersionError) as exc_info:
            await service.update_entity_permission_field_roles(
                committed_view.permission_fields[0].id, ["admin"], [], user_id="user_1"
            )
        assert str(exc_info.value) == (
            "Cannot update permission fields of previous versions (version 1)"
        )

    @pytest.mark.asyncio
    async def test_discard_restores_permissions(self, service):
        """Discarding brings back committed permission settings."""
        entity = await create_order(service)
        await service.add_entity_permission_field(
            entity.id, EntityAction.VIEW, "total", user_id="user_1"
        )
        await service.create_version(entity.id, commit_id="c1")
        await service.update_entity_permission(
            entity.id, EntityAction.DELETE, PermissionType.DISABLED, user_id="user_1"
        )
        (view,) = await service.get_permissions(entity.id, action=EntityAction.VIEW)
        await service.delete_entity_permission_field(
            entity.id, EntityAction.VIEW, view.permission_fields[0].field_permanent_id, "user_1"
        )

        await service.discard_pending_changes(entity.id, user_id="user_1")

        (delete,) = await service.get_permissions(entity.id, action=EntityAction.DELETE)
        assert delete.type is PermissionType.ALL_ROLES
        (view,) = await service.get_permissions(entity.id, action=EntityAction.VIEW)
        (total,) = await service.get_fields(entity.id, names=["total"])
        assert [pf.field_id for pf in view.permission_fields] == [total.id]
