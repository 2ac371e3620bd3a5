"""
Role and permission resolution.

A principal's effective permissions are its direct permissions plus every
permission granted by the roles it holds. Roles do not inherit from each other.
Resolved sets are kept in an ``AccessCache`` so repeated checks within one
unit of work cost a single query.
"""
from collections.abc import Iterable
from enum import Enum
from typing import Protocol
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rbac.features.permissions.cache import AccessCache
from rbac.features.permissions.exceptions import AccessError
from rbac.features.permissions.models import Permission, Role
from rbac.features.permissions.naming import RoleRef, normalize_name, resolve_role_name
from rbac.features.permissions.store import AccessStore
from rbac.utils import get_logger


log = get_logger(__name__)


class Principal(Protocol):
    """Anything that can hold roles and permissions."""

    id: str


def principal_id(principal: Principal | str) -> str:
    return principal if isinstance(principal, str) else principal.id


class AccessResolver:
    """
    Read-only access checks for principals.

    Args:
        session: Database session
        cache: Request-scoped cache; a private one is created when omitted
        role_enum: Closed role enumeration roles are validated against
    """

    def __init__(
        self,
        session: AsyncSession,
        cache: AccessCache | None = None,
        role_enum: type[Enum] | None = None,
    ):
        self.store = AccessStore(session)
        self.cache = cache if cache is not None else AccessCache()
        self.role_enum = role_enum

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def effective_permissions(self, principal: Principal | str) -> list[Permission]:
        """Direct and role-derived permissions, deduplicated, ordered by name."""
        pid = principal_id(principal)
        permissions = self.cache.get_permissions(pid)
        if permissions is None:
            permissions = await self.store.effective_permissions_for(pid)
            self.cache.set_permissions(pid, permissions)
            log.debug(f"Resolved {len(permissions)} permissions for principal {pid}")
        return permissions

    async def permission_names(self, principal: Principal | str) -> frozenset[str]:
        return frozenset(permission.name for permission in await self.effective_permissions(principal))

    async def has_permission(self, principal: Principal | str, name: str) -> bool:
        """
        Check whether the principal holds the permission, directly or through a role.

        Raises:
            InvalidNameError: if ``name`` cannot be normalized
        """
        return normalize_name(name) in await self.permission_names(principal)

    async def has_any_permission(self, principal: Principal | str, names: Iterable[str]) -> bool:
        for name in names:
            if await self.has_permission(principal, name):
                return True
        return False

    async def has_all_permissions(self, principal: Principal | str, names: Iterable[str]) -> bool:
        for name in names:
            if not await self.has_permission(principal, name):
                return False
        return True

    async def direct_permissions(self, principal: Principal | str) -> list[Permission]:
        """Permissions attached straight to the principal. Not cached."""
        return await self.store.direct_permissions_for(principal_id(principal))

    async def role_permission_ids(self, principal: Principal | str) -> set[str]:
        """Ids of the permissions granted through the principal's roles. Not cached."""
        return await self.store.role_permission_ids_for(principal_id(principal))

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def effective_roles(self, principal: Principal | str) -> list[Role]:
        pid = principal_id(principal)
        roles = self.cache.get_roles(pid)
        if roles is None:
            roles = await self.store.roles_for(pid)
            self.cache.set_roles(pid, roles)
            log.debug(f"Resolved {len(roles)} roles for principal {pid}")
        return roles

    async def role_names(self, principal: Principal | str) -> frozenset[str]:
        return frozenset(role.name for role in await self.effective_roles(principal))

    async def has_role(self, principal: Principal | str, role: RoleRef) -> bool:
        return resolve_role_name(role, self.role_enum) in await self.role_names(principal)

    async def has_any_role(self, principal: Principal | str, roles: Iterable[RoleRef]) -> bool:
        for role in roles:
            if await self.has_role(principal, role):
                return True
        return False

    async def has_all_roles(self, principal: Principal | str, roles: Iterable[RoleRef]) -> bool:
        for role in roles:
            if not await self.has_role(principal, role):
                return False
        return True


async def permission_gate(resolver: AccessResolver, principal: Principal | str, ability: str) -> bool | None:
    """
    Authorization hook for a host's generic ability checks.

    Returns True when the principal holds ``ability`` as a permission and None
    ("no opinion") otherwise, so unknown abilities fall through to the host's
    own rules. Errors never grant access.
    """
    try:
        if await resolver.has_permission(principal, ability):
            return True
    except AccessError as e:
        log.debug(f"Ability {ability!r} is not a permission name: {e}")
    except SQLAlchemyError:
        log.warning(f"Permission check for {ability!r} failed", exc_info=True)
    return None
