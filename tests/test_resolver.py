import pytest
from sqlalchemy.exc import OperationalError

from rbac.features.permissions.cache import AccessCache
from rbac.features.permissions.exceptions import InvalidNameError, InvalidRoleError
from rbac.features.permissions.resolver import AccessResolver, permission_gate
from rbac.features.permissions.service import AccessManager
from sample_roles import Roles


@pytest.mark.asyncio
async def test_effective_permissions_are_direct_and_role_derived(session, seeded):
    manager = AccessManager(session)
    await manager.add_role(seeded.alice, "admin")
    await manager.add_permission(seeded.alice, "post.view")

    resolver = AccessResolver(session)

    assert await resolver.permission_names(seeded.alice) == {"post.update", "post.delete", "post.view"}
    assert await resolver.has_permission(seeded.alice, "Post Update")
    assert await resolver.has_permission(seeded.alice, "post-view")
    assert not await resolver.has_permission(seeded.alice, "user.view")
    assert [permission.name for permission in await resolver.direct_permissions(seeded.alice)] == ["post.view"]


@pytest.mark.asyncio
async def test_has_any_and_has_all(session, seeded):
    await AccessManager(session).add_permission(seeded.alice, "post.view")
    resolver = AccessResolver(session)

    assert await resolver.has_any_permission(seeded.alice, ["user.view", "post.view"])
    assert not await resolver.has_any_permission(seeded.alice, ["user.view"])
    assert await resolver.has_all_permissions(seeded.alice, ["post.view"])
    assert not await resolver.has_all_permissions(seeded.alice, ["post.view", "user.view"])

    assert not await resolver.has_any_permission(seeded.alice, [])
    assert await resolver.has_all_permissions(seeded.alice, [])
    assert not await resolver.has_any_role(seeded.alice, [])
    assert await resolver.has_all_roles(seeded.alice, [])


@pytest.mark.asyncio
async def test_roles_are_not_inherited(session, seeded):
    await AccessManager(session).add_role(seeded.alice, "editor")
    resolver = AccessResolver(session)

    assert await resolver.has_role(seeded.alice, "editor")
    assert await resolver.has_any_role(seeded.alice, ["admin", "editor"])
    assert not await resolver.has_all_roles(seeded.alice, ["admin", "editor"])
    assert not await resolver.has_permission(seeded.alice, "post.update")


@pytest.mark.asyncio
async def test_role_checks_against_enum(session, seeded):
    await AccessManager(session, role_enum=Roles).add_role(seeded.alice, Roles.ADMIN)
    resolver = AccessResolver(session, role_enum=Roles)

    assert await resolver.has_role(seeded.alice, Roles.ADMIN)
    assert await resolver.has_role(seeded.alice, "admin")
    assert not await resolver.has_role(seeded.alice, Roles.EDITOR)

    with pytest.raises(InvalidRoleError):
        await resolver.has_role(seeded.alice, "ghost")


@pytest.mark.asyncio
async def test_invalid_permission_name_raises(session, seeded):
    with pytest.raises(InvalidNameError):
        await AccessResolver(session).has_permission(seeded.alice, "post:update")


@pytest.mark.asyncio
async def test_repeated_checks_hit_the_cache(session, seeded, select_counter):
    resolver = AccessResolver(session)

    await resolver.has_role(seeded.alice, "admin")
    await resolver.has_role(seeded.alice, "editor")
    assert len(select_counter) == 1

    select_counter.clear()
    await resolver.has_permission(seeded.alice, "post.update")
    await resolver.has_any_permission(seeded.alice, ["post.view", "post.delete"])
    await resolver.has_all_permissions(seeded.alice, ["user.view"])
    assert len(select_counter) == 1


@pytest.mark.asyncio
async def test_mutations_invalidate_the_shared_cache(session, seeded):
    cache = AccessCache()
    resolver = AccessResolver(session, cache=cache)
    manager = AccessManager(session, cache=cache)

    assert not await resolver.has_role(seeded.alice, "admin")
    assert not await resolver.has_permission(seeded.alice, "post.update")
    assert seeded.alice in cache

    await manager.add_role(seeded.alice, "admin")

    assert seeded.alice not in cache
    assert await resolver.has_role(seeded.alice, "admin")
    assert await resolver.has_permission(seeded.alice, "post.update")


@pytest.mark.asyncio
async def test_cache_is_per_principal(session, seeded):
    cache = AccessCache()
    resolver = AccessResolver(session, cache=cache)
    manager = AccessManager(session, cache=cache)

    await resolver.permission_names(seeded.alice)
    await resolver.permission_names(seeded.bob)

    await manager.add_permission(seeded.bob, "user.view")

    assert cache.get_permissions(seeded.alice) is not None
    assert cache.get_permissions(seeded.bob) is None


@pytest.mark.asyncio
async def test_permission_gate(session, seeded):
    await AccessManager(session).add_permission(seeded.alice, "post.view")
    resolver = AccessResolver(session)

    assert await permission_gate(resolver, seeded.alice, "post.view") is True
    assert await permission_gate(resolver, seeded.alice, "user.view") is None
    assert await permission_gate(resolver, seeded.alice, "edit settings!") is None


@pytest.mark.asyncio
async def test_permission_gate_fails_closed_on_database_errors(session, seeded, monkeypatch):
    resolver = AccessResolver(session)

    async def broken(_user_id):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(resolver.store, "effective_permissions_for", broken)

    assert await permission_gate(resolver, seeded.alice, "post.view") is None
