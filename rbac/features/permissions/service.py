"""
Access mutations: granting and revoking roles and permissions.

Rules enforced here:
- roles and permissions must exist (created by the batch loader) before they are assigned
- a direct permission never duplicates a permission the principal gets through a role
- "already assigned" is detected by the unique constraint, not by a prior check
- every operation commits once; the cache is cleared only after the commit
"""
from collections.abc import Iterable
from contextlib import asynccontextmanager
from enum import Enum
from sqlalchemy.ext.asyncio import AsyncSession

from rbac.features.permissions.cache import AccessCache
from rbac.features.permissions.events import MutationKind, MutationResult
from rbac.features.permissions.exceptions import (
    AccessError,
    PermissionAlreadyAssignedError,
    PermissionGrantedByRoleError,
    PermissionNotAssignedError,
    PermissionNotSyncedError,
    RoleAlreadyAssignedError,
    RoleNotAssignedError,
    RoleNotSyncedError,
)
from rbac.features.permissions.models import Permission, Role
from rbac.features.permissions.naming import RoleRef, normalize_name, normalize_names, resolve_role_name
from rbac.features.permissions.resolver import Principal, principal_id
from rbac.features.permissions.store import AccessStore
from rbac.utils import get_logger


log = get_logger(__name__)


def _names(rows: Iterable[Role | Permission]) -> tuple[str, ...]:
    return tuple(sorted(row.name for row in rows))


class AccessManager:
    """
    Assigns roles and permissions to principals.

    Args:
        session: Database session; the manager commits it after each operation
        cache: Request-scoped cache shared with the resolver
        role_enum: Closed role enumeration roles are validated against
    """

    def __init__(
        self,
        session: AsyncSession,
        cache: AccessCache | None = None,
        role_enum: type[Enum] | None = None,
    ):
        self.session = session
        self.store = AccessStore(session)
        self.cache = cache if cache is not None else AccessCache()
        self.role_enum = role_enum

    @asynccontextmanager
    async def _transaction(self):
        try:
            yield
        except AccessError:
            # Refusals happen before any write, or after their savepoint was
            # rolled back; end the transaction without expiring loaded objects.
            await self.session.commit()
            raise
        except Exception:
            await self.session.rollback()
            raise
        else:
            await self.session.commit()

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def add_role(self, principal: Principal | str, role: RoleRef) -> MutationResult:
        """
        Grant a role.

        Direct permissions that the role now grants are dropped so they are
        never held twice.

        Raises:
            RoleNotSyncedError: the role has no row
            RoleAlreadyAssignedError: the principal already holds the role
        """
        pid = principal_id(principal)
        name = resolve_role_name(role, self.role_enum)

        async with self._transaction():
            db_role = await self._role_or_fail(name)
            if not await self.store.attach_role(pid, db_role.id):
                raise RoleAlreadyAssignedError(name)
            absorbed = await self._absorb_direct_permissions(pid)

        self.cache.forget(pid)
        log.info(f"Role '{name}' added to principal {pid}")
        return MutationResult(
            kind=MutationKind.ROLE_ADDED,
            subject_id=pid,
            applied=(name,),
            attached=(name,),
            absorbed=absorbed,
        )

    async def remove_role(self, principal: Principal | str, role: RoleRef) -> MutationResult:
        """
        Revoke a role.

        Raises:
            RoleNotSyncedError: the role has no row
            RoleNotAssignedError: the principal does not hold the role
        """
        pid = principal_id(principal)
        name = resolve_role_name(role, self.role_enum)

        async with self._transaction():
            db_role = await self._role_or_fail(name)
            if await self.store.detach_role(pid, db_role.id) == 0:
                raise RoleNotAssignedError(name)

        self.cache.forget(pid)
        log.info(f"Role '{name}' removed from principal {pid}")
        return MutationResult(kind=MutationKind.ROLE_REMOVED, subject_id=pid, applied=(name,), detached=(name,))

    async def sync_roles(self, principal: Principal | str, roles: Iterable[RoleRef]) -> MutationResult:
        """
        Replace every role of the principal with ``roles``.

        An empty list removes all roles. Either all roles exist and the whole
        replacement is committed, or nothing changes.

        Raises:
            RoleNotSyncedError: listing every role without a row
        """
        pid = principal_id(principal)
        names = list(dict.fromkeys(resolve_role_name(role, self.role_enum) for role in roles))

        async with self._transaction():
            found, missing = await self.store.find_roles_by_name(names)
            if missing:
                raise RoleNotSyncedError(missing)

            previous = set(_names(await self.store.roles_for(pid)))
            await self.store.detach_all_roles(pid)
            await self.store.attach_roles(pid, [db_role.id for db_role in found])
            absorbed = await self._absorb_direct_permissions(pid)

        self.cache.forget(pid)
        synced = set(names)
        log.info(f"Roles of principal {pid} synced to {sorted(synced)}")
        return MutationResult(
            kind=MutationKind.ROLES_SYNCED,
            subject_id=pid,
            applied=tuple(sorted(synced)),
            previous=tuple(sorted(previous)),
            attached=tuple(sorted(synced - previous)),
            detached=tuple(sorted(previous - synced)),
            absorbed=absorbed,
        )

    # ------------------------------------------------------------------
    # Direct permissions
    # ------------------------------------------------------------------

    async def add_permission(self, principal: Principal | str, permission: str) -> MutationResult:
        """
        Grant a direct permission.

        Raises:
            PermissionNotSyncedError: the permission has no row
            PermissionGrantedByRoleError: one of the principal's roles grants it already
            PermissionAlreadyAssignedError: it is already a direct permission
        """
        pid = principal_id(principal)
        name = normalize_name(permission)

        async with self._transaction():
            db_permission = await self._permission_or_fail(name)
            if db_permission.id in await self.store.role_permission_ids_for(pid):
                raise PermissionGrantedByRoleError(name)
            if not await self.store.attach_permission(pid, db_permission.id):
                raise PermissionAlreadyAssignedError(name)

        self.cache.forget_permissions(pid)
        log.info(f"Permission '{name}' added to principal {pid}")
        return MutationResult(kind=MutationKind.PERMISSION_ADDED, subject_id=pid, applied=(name,), attached=(name,))

    async def remove_permission(self, principal: Principal | str, permission: str) -> MutationResult:
        """
        Revoke a direct permission.

        Permissions granted through a role are only removed by removing the role.

        Raises:
            PermissionNotSyncedError: the permission has no row
            PermissionNotAssignedError: it is not a direct permission of the principal
        """
        pid = principal_id(principal)
        name = normalize_name(permission)

        async with self._transaction():
            db_permission = await self._permission_or_fail(name)
            if await self.store.detach_permission(pid, db_permission.id) == 0:
                raise PermissionNotAssignedError(name)

        self.cache.forget_permissions(pid)
        log.info(f"Permission '{name}' removed from principal {pid}")
        return MutationResult(kind=MutationKind.PERMISSION_REMOVED, subject_id=pid, applied=(name,), detached=(name,))

    async def sync_permissions(self, principal: Principal | str, permissions: Iterable[str]) -> MutationResult:
        """
        Replace every direct permission of the principal with ``permissions``.

        Permissions already granted through the principal's roles are left
        out instead of rejected, so the call is idempotent.

        Raises:
            PermissionNotSyncedError: listing every permission without a row
        """
        pid = principal_id(principal)
        names = normalize_names(permissions)

        async with self._transaction():
            found, missing = await self.store.find_permissions_by_name(names)
            if missing:
                raise PermissionNotSyncedError(missing)

            via_roles = await self.store.role_permission_ids_for(pid)
            keep = [db_permission for db_permission in found if db_permission.id not in via_roles]
            skipped = [db_permission for db_permission in found if db_permission.id in via_roles]

            previous = set(_names(await self.store.direct_permissions_for(pid)))
            await self.store.detach_all_permissions(pid)
            await self.store.attach_permissions(pid, [db_permission.id for db_permission in keep])

        self.cache.forget_permissions(pid)
        synced = set(_names(keep))
        log.info(f"Direct permissions of principal {pid} synced to {sorted(synced)}")
        return MutationResult(
            kind=MutationKind.PERMISSIONS_SYNCED,
            subject_id=pid,
            applied=tuple(sorted(synced)),
            previous=tuple(sorted(previous)),
            attached=tuple(sorted(synced - previous)),
            detached=tuple(sorted(previous - synced)),
            absorbed=_names(skipped),
        )

    # ------------------------------------------------------------------
    # Role permissions and cascades
    # ------------------------------------------------------------------

    async def sync_role_permissions(self, role: RoleRef, permissions: Iterable[str]) -> MutationResult:
        """
        Replace the permissions a role grants.

        Holders of the role lose direct grants of permissions the role now
        carries. Every principal may be affected, so the whole cache is cleared.

        Raises:
            RoleNotSyncedError: the role has no row
            PermissionNotSyncedError: listing every permission without a row
        """
        role_name = resolve_role_name(role, self.role_enum)
        names = normalize_names(permissions)

        async with self._transaction():
            db_role = await self._role_or_fail(role_name)
            found, missing = await self.store.find_permissions_by_name(names)
            if missing:
                raise PermissionNotSyncedError(missing)

            previous = set(_names(await self.store.permissions_for_role(db_role.id)))
            await self.store.detach_all_role_permissions(db_role.id)
            await self.store.attach_role_permissions(db_role.id, [db_permission.id for db_permission in found])
            pruned = await self.store.prune_direct_permissions_of_role_holders(db_role.id)

        self.cache.clear()
        synced = set(names)
        log.info(f"Permissions of role '{role_name}' synced; {pruned} redundant direct grants removed")
        return MutationResult(
            kind=MutationKind.ROLE_PERMISSIONS_SYNCED,
            subject_id=db_role.id,
            applied=tuple(sorted(synced)),
            previous=tuple(sorted(previous)),
            attached=tuple(sorted(synced - previous)),
            detached=tuple(sorted(previous - synced)),
        )

    async def revoke_all(self, principal: Principal | str) -> MutationResult:
        """Detach every role and direct permission, e.g. before deleting the principal."""
        pid = principal_id(principal)

        async with self._transaction():
            roles = _names(await self.store.roles_for(pid))
            permissions = _names(await self.store.direct_permissions_for(pid))
            await self.store.detach_all_roles(pid)
            await self.store.detach_all_permissions(pid)

        self.cache.forget(pid)
        log.info(f"All access revoked from principal {pid}")
        return MutationResult(
            kind=MutationKind.ACCESS_REVOKED,
            subject_id=pid,
            detached=roles,
            detached_permissions=permissions,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _role_or_fail(self, name: str) -> Role:
        db_role = await self.store.find_role_by_name(name)
        if db_role is None:
            raise RoleNotSyncedError(name)
        return db_role

    async def _permission_or_fail(self, name: str) -> Permission:
        db_permission = await self.store.find_permission_by_name(name)
        if db_permission is None:
            raise PermissionNotSyncedError(name)
        return db_permission

    async def _absorb_direct_permissions(self, pid: str) -> tuple[str, ...]:
        """Delete direct grants covered by the principal's roles. The deletion outlives the role."""
        redundant = await self.store.redundant_direct_permissions_for(pid)
        await self.store.detach_permissions(pid, [db_permission.id for db_permission in redundant])
        if redundant:
            log.info(f"Dropped direct permissions of principal {pid} now granted by roles: {_names(redundant)}")
        return _names(redundant)
