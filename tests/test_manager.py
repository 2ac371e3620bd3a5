import pytest
from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError

from rbac.features.permissions.events import MutationKind
from rbac.features.permissions.exceptions import (
    InvalidRoleError,
    PermissionAlreadyAssignedError,
    PermissionGrantedByRoleError,
    PermissionNotAssignedError,
    PermissionNotSyncedError,
    RoleAlreadyAssignedError,
    RoleNotAssignedError,
    RoleNotSyncedError,
)
from rbac.features.permissions.models import user_permissions
from rbac.features.permissions.resolver import AccessResolver
from rbac.features.permissions.service import AccessManager
from rbac.features.permissions.store import AccessStore
from sample_roles import Roles


async def _direct(session, user_id) -> list[str]:
    return [permission.name for permission in await AccessStore(session).direct_permissions_for(user_id)]


async def _roles(session, user_id) -> list[str]:
    return [role.name for role in await AccessStore(session).roles_for(user_id)]


async def _assert_no_overlap(session, user_id):
    """Direct permissions never repeat a role-granted permission."""
    assert await AccessStore(session).redundant_direct_permissions_for(user_id) == []


# ============================================================================
# Roles
# ============================================================================

@pytest.mark.asyncio
async def test_add_and_remove_role(session, seeded):
    manager = AccessManager(session)
    resolver = AccessResolver(session, cache=manager.cache)

    result = await manager.add_role(seeded.alice, "Admin")
    assert result.kind is MutationKind.ROLE_ADDED
    assert result.applied == ("admin",)
    assert await resolver.has_role(seeded.alice, "admin")

    with pytest.raises(RoleAlreadyAssignedError):
        await manager.add_role(seeded.alice, "admin")

    result = await manager.remove_role(seeded.alice, "admin")
    assert result.detached == ("admin",)
    assert not await resolver.has_role(seeded.alice, "admin")

    with pytest.raises(RoleNotAssignedError):
        await manager.remove_role(seeded.alice, "admin")


@pytest.mark.asyncio
async def test_add_role_requires_synced_role(session, seeded):
    manager = AccessManager(session)

    with pytest.raises(RoleNotSyncedError) as excinfo:
        await manager.add_role(seeded.alice, "ghost")

    assert excinfo.value.names == ["ghost"]
    assert "Role 'ghost' is not synced with the database." in str(excinfo.value)
    assert "rbac sync-roles" in str(excinfo.value)


@pytest.mark.asyncio
async def test_role_enum_is_enforced(session, seeded):
    manager = AccessManager(session, role_enum=Roles)

    await manager.add_role(seeded.alice, Roles.EDITOR)
    with pytest.raises(InvalidRoleError):
        await manager.add_role(seeded.alice, "superuser")

    assert await _roles(session, seeded.alice) == ["editor"]


@pytest.mark.asyncio
async def test_add_role_absorbs_covered_direct_permissions(session, seeded):
    manager = AccessManager(session)
    await manager.add_permission(seeded.alice, "post.update")
    await manager.add_permission(seeded.alice, "post.view")

    result = await manager.add_role(seeded.alice, "admin")

    assert result.absorbed == ("post.update",)
    assert await _direct(session, seeded.alice) == ["post.view"]
    assert await AccessResolver(session).has_permission(seeded.alice, "post.update")
    await _assert_no_overlap(session, seeded.alice)


@pytest.mark.asyncio
async def test_absorbed_permissions_stay_gone_after_role_removal(session, seeded):
    manager = AccessManager(session)
    await manager.add_permission(seeded.alice, "post.update")
    await manager.add_role(seeded.alice, "admin")

    await manager.remove_role(seeded.alice, "admin")

    assert await _direct(session, seeded.alice) == []
    assert not await AccessResolver(session).has_permission(seeded.alice, "post.update")


@pytest.mark.asyncio
async def test_sync_roles(session, seeded):
    manager = AccessManager(session)
    await manager.add_role(seeded.alice, "editor")

    result = await manager.sync_roles(seeded.alice, ["admin", "Admin"])

    assert result.kind is MutationKind.ROLES_SYNCED
    assert result.applied == ("admin",)
    assert result.previous == ("editor",)
    assert result.attached == ("admin",)
    assert result.detached == ("editor",)
    assert await _roles(session, seeded.alice) == ["admin"]

    result = await manager.sync_roles(seeded.alice, [])
    assert result.detached == ("admin",)
    assert await _roles(session, seeded.alice) == []


@pytest.mark.asyncio
async def test_sync_roles_reports_every_missing_role_and_changes_nothing(session, seeded):
    manager = AccessManager(session)
    await manager.add_role(seeded.alice, "editor")

    with pytest.raises(RoleNotSyncedError) as excinfo:
        await manager.sync_roles(seeded.alice, ["admin", "ghost"])
    assert excinfo.value.names == ["ghost"]

    with pytest.raises(RoleNotSyncedError) as excinfo:
        await manager.sync_roles(seeded.alice, ["phantom", "admin", "ghost", "phantom"])
    assert excinfo.value.names == ["phantom", "ghost"]
    assert "Roles 'phantom, ghost' are not synced" in str(excinfo.value)

    assert await _roles(session, seeded.alice) == ["editor"]


@pytest.mark.asyncio
async def test_sync_roles_absorbs_covered_direct_permissions(session, seeded):
    manager = AccessManager(session)
    await manager.add_permission(seeded.alice, "post.delete")

    result = await manager.sync_roles(seeded.alice, ["admin", "editor"])

    assert result.absorbed == ("post.delete",)
    assert await _direct(session, seeded.alice) == []
    await _assert_no_overlap(session, seeded.alice)


# ============================================================================
# Direct permissions
# ============================================================================

@pytest.mark.asyncio
async def test_permission_round_trip(session, seeded):
    manager = AccessManager(session)
    resolver = AccessResolver(session, cache=manager.cache)

    await manager.add_permission(seeded.alice, "post.update")
    assert await resolver.has_permission(seeded.alice, "post.update")

    await manager.remove_permission(seeded.alice, "post.update")
    assert not await resolver.has_permission(seeded.alice, "post.update")


@pytest.mark.asyncio
async def test_add_permission_errors(session, seeded):
    manager = AccessManager(session)

    with pytest.raises(PermissionNotSyncedError) as excinfo:
        await manager.add_permission(seeded.alice, "ghost.view")
    assert excinfo.value.names == ["ghost.view"]
    assert "rbac sync-permissions" in str(excinfo.value)

    await manager.add_permission(seeded.alice, "post.view")
    with pytest.raises(PermissionAlreadyAssignedError) as excinfo:
        await manager.add_permission(seeded.alice, "Post View")
    assert not isinstance(excinfo.value, PermissionGrantedByRoleError)

    with pytest.raises(PermissionNotAssignedError):
        await manager.remove_permission(seeded.alice, "user.view")


@pytest.mark.asyncio
async def test_role_granted_permission_cannot_be_added_directly(session, seeded):
    manager = AccessManager(session)
    resolver = AccessResolver(session, cache=manager.cache)
    await manager.add_role(seeded.alice, "admin")

    with pytest.raises(PermissionGrantedByRoleError):
        await manager.add_permission(seeded.alice, "post.update")

    assert await resolver.has_permission(seeded.alice, "post.update")
    assert await _direct(session, seeded.alice) == []

    # Only removing the role takes the permission away
    with pytest.raises(PermissionNotAssignedError):
        await manager.remove_permission(seeded.alice, "post.update")
    assert await resolver.has_permission(seeded.alice, "post.update")

    await manager.remove_role(seeded.alice, "admin")
    await manager.add_permission(seeded.alice, "post.update")
    assert await _direct(session, seeded.alice) == ["post.update"]


@pytest.mark.asyncio
async def test_granted_by_role_is_an_already_assigned_error(session, seeded):
    manager = AccessManager(session)
    await manager.add_role(seeded.alice, "admin")

    with pytest.raises(PermissionAlreadyAssignedError):
        await manager.add_permission(seeded.alice, "post.delete")


@pytest.mark.asyncio
async def test_sync_permissions(session, seeded):
    manager = AccessManager(session)
    await manager.add_permission(seeded.alice, "user.view")

    result = await manager.sync_permissions(seeded.alice, ["post.view", "Post View"])

    assert result.kind is MutationKind.PERMISSIONS_SYNCED
    assert result.previous == ("user.view",)
    assert result.attached == ("post.view",)
    assert result.detached == ("user.view",)
    assert await _direct(session, seeded.alice) == ["post.view"]

    await manager.sync_permissions(seeded.alice, [])
    assert await _direct(session, seeded.alice) == []


@pytest.mark.asyncio
async def test_sync_permissions_skips_role_granted(session, seeded):
    manager = AccessManager(session)
    await manager.add_role(seeded.alice, "admin")

    result = await manager.sync_permissions(seeded.alice, ["post.update", "post.view"])

    assert result.applied == ("post.view",)
    assert result.absorbed == ("post.update",)
    assert await _direct(session, seeded.alice) == ["post.view"]
    await _assert_no_overlap(session, seeded.alice)

    again = await manager.sync_permissions(seeded.alice, ["post.update", "post.view"])
    assert not again.attached and not again.detached


@pytest.mark.asyncio
async def test_sync_permissions_reports_every_missing_permission(session, seeded):
    manager = AccessManager(session)
    await manager.add_permission(seeded.alice, "user.view")

    with pytest.raises(PermissionNotSyncedError) as excinfo:
        await manager.sync_permissions(seeded.alice, ["ghost.one", "post.view", "ghost.two"])

    assert excinfo.value.names == ["ghost.one", "ghost.two"]
    assert await _direct(session, seeded.alice) == ["user.view"]


# ============================================================================
# Role permissions and cascades
# ============================================================================

@pytest.mark.asyncio
async def test_sync_role_permissions_prunes_holders(session, seeded):
    manager = AccessManager(session)
    resolver = AccessResolver(session, cache=manager.cache)
    await manager.add_role(seeded.alice, "editor")
    await manager.add_permission(seeded.alice, "post.view")
    await manager.add_permission(seeded.bob, "post.view")
    assert await resolver.has_permission(seeded.bob, "post.view")

    result = await manager.sync_role_permissions("editor", ["post.view", "user.view"])

    assert result.kind is MutationKind.ROLE_PERMISSIONS_SYNCED
    assert result.subject_id == seeded.editor_role
    assert result.previous == ()
    assert result.attached == ("post.view", "user.view")

    # alice keeps post.view through the role; bob does not hold the role
    assert await _direct(session, seeded.alice) == []
    assert await _direct(session, seeded.bob) == ["post.view"]
    assert await resolver.permission_names(seeded.alice) == {"post.view", "user.view"}
    await _assert_no_overlap(session, seeded.alice)

    result = await manager.sync_role_permissions("editor", ["user.view"])
    assert result.detached == ("post.view",)
    assert not await resolver.has_permission(seeded.alice, "post.view")


@pytest.mark.asyncio
async def test_sync_role_permissions_requires_synced_names(session, seeded):
    manager = AccessManager(session)

    with pytest.raises(RoleNotSyncedError):
        await manager.sync_role_permissions("ghost", ["post.view"])

    with pytest.raises(PermissionNotSyncedError) as excinfo:
        await manager.sync_role_permissions("admin", ["post.view", "ghost.view"])
    assert excinfo.value.names == ["ghost.view"]

    permissions = await AccessStore(session).permissions_for_role(seeded.admin_role)
    assert [permission.name for permission in permissions] == ["post.delete", "post.update"]


@pytest.mark.asyncio
async def test_revoke_all(session, seeded):
    manager = AccessManager(session)
    await manager.add_role(seeded.alice, "admin")
    await manager.add_role(seeded.alice, "editor")
    await manager.add_permission(seeded.alice, "user.view")

    result = await manager.revoke_all(seeded.alice)

    assert result.kind is MutationKind.ACCESS_REVOKED
    assert result.detached == ("admin", "editor")
    assert result.detached_permissions == ("user.view",)
    assert await AccessResolver(session).permission_names(seeded.alice) == frozenset()


# ============================================================================
# Transactions
# ============================================================================

@pytest.mark.asyncio
async def test_unexpected_integrity_errors_roll_back(session, seeded, monkeypatch):
    manager = AccessManager(session)
    await manager.add_role(seeded.alice, "editor")
    await manager.add_permission(seeded.alice, "user.view")

    async def broken(user_id, permission_ids):
        # Violates NOT NULL on permission_id
        await session.execute(insert(user_permissions).values(user_id=user_id, permission_id=None))

    monkeypatch.setattr(manager.store, "attach_permissions", broken)

    with pytest.raises(IntegrityError):
        await manager.sync_permissions(seeded.alice, ["post.view"])

    assert await _roles(session, seeded.alice) == ["editor"]
    # Detaching user.view is undone along with the failed attach
    assert await _direct(session, seeded.alice) == ["user.view"]


@pytest.mark.asyncio
async def test_cache_is_kept_when_a_mutation_fails(session, seeded):
    manager = AccessManager(session)
    resolver = AccessResolver(session, cache=manager.cache)
    await resolver.has_role(seeded.alice, "admin")

    with pytest.raises(RoleNotSyncedError):
        await manager.add_role(seeded.alice, "ghost")

    assert manager.cache.get_roles(seeded.alice) == []
