"""
Read models for access management screens.

These queries feed listing and editing surfaces; they never go through the
resolver cache and always read committed state.
"""
import math
from itertools import groupby
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from rbac.features.permissions.models import Permission, Role, user_roles, user_permissions, role_permissions
from rbac.features.permissions.schemas import (
    MatrixPermission,
    PermissionResponse,
    PrincipalAccess,
    PrincipalPage,
    PrincipalSummary,
    ResourcePermissions,
    RolePermissionMatrix,
    RoleResponse,
    RoleSummary,
    RoleWithPermissionIds,
)
from rbac.features.users.models import User


async def list_roles(session: AsyncSession) -> list[RoleSummary]:
    """All roles ordered by name, with their permission counts."""
    stmt = (
        select(Role, func.count(role_permissions.c.permission_id))
        .outerjoin(role_permissions, role_permissions.c.role_id == Role.id)
        .group_by(Role.id)
        .order_by(Role.name)
    )
    result = await session.execute(stmt)
    return [
        RoleSummary(id=role.id, name=role.name, display_name=role.display_name, permissions_count=count)
        for role, count in result.all()
    ]


async def role_permission_matrix(session: AsyncSession, role_id: str) -> RolePermissionMatrix | None:
    """
    Every permission grouped by resource, with the ones granted by the role flagged.

    Returns:
        None if the role does not exist
    """
    role = await session.get(Role, role_id)
    if role is None:
        return None

    assigned = set(
        (await session.execute(
            select(role_permissions.c.permission_id).where(role_permissions.c.role_id == role_id)
        )).scalars().all()
    )
    permissions = (await session.execute(select(Permission))).scalars().all()

    cells = sorted(
        (
            (
                permission.resource,
                MatrixPermission(
                    id=permission.id,
                    name=permission.name,
                    display_name=permission.display_name,
                    action=permission.action,
                    assigned=permission.id in assigned,
                ),
            )
            for permission in permissions
        ),
        key=lambda cell: (cell[0], cell[1].action),
    )

    resources = [
        ResourcePermissions(resource=resource, permissions=[cell for _, cell in group])
        for resource, group in groupby(cells, key=lambda cell: cell[0])
    ]
    return RolePermissionMatrix(role=RoleResponse.model_validate(role), resources=resources)


async def list_principals(
    session: AsyncSession,
    search: str | None = None,
    page: int = 1,
    page_size: int = 50,
) -> PrincipalPage:
    """
    Principals newest first, with role display names and direct permission counts.

    Args:
        search: Case-insensitive substring of the name or email
        page: 1-based page number
        page_size: Rows per page
    """
    filters = []
    if search:
        # autoescape keeps % and _ in the search text literal
        term = search.lower()
        filters.append(or_(
            func.lower(User.name).contains(term, autoescape=True),
            func.lower(User.email).contains(term, autoescape=True),
        ))

    total = await session.scalar(select(func.count()).select_from(User).where(*filters)) or 0

    stmt = (
        select(User)
        .where(*filters)
        .order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    users = (await session.execute(stmt)).scalars().all()
    ids = [user.id for user in users]

    roles_by_user: dict[str, list[str]] = {user_id: [] for user_id in ids}
    counts: dict[str, int] = {}
    if ids:
        role_rows = await session.execute(
            select(user_roles.c.user_id, Role.display_name)
            .join(Role, Role.id == user_roles.c.role_id)
            .where(user_roles.c.user_id.in_(ids))
            .order_by(Role.name)
        )
        for user_id, display_name in role_rows.all():
            roles_by_user[user_id].append(display_name)

        count_rows = await session.execute(
            select(user_permissions.c.user_id, func.count())
            .where(user_permissions.c.user_id.in_(ids))
            .group_by(user_permissions.c.user_id)
        )
        counts = dict(count_rows.all())

    items = [
        PrincipalSummary(
            id=user.id,
            email=user.email,
            name=user.name,
            is_active=user.is_active,
            roles=roles_by_user[user.id],
            direct_permissions_count=counts.get(user.id, 0),
            created_at=user.created_at,
        )
        for user in users
    ]
    return PrincipalPage(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if page_size else 0,
    )


async def principal_access(session: AsyncSession, principal_id: str) -> PrincipalAccess:
    """Roles with their permission ids, all permissions, and what the principal holds."""
    roles = (await session.execute(select(Role).order_by(Role.name))).scalars().all()
    permissions = (await session.execute(select(Permission).order_by(Permission.name))).scalars().all()

    grants: dict[str, list[str]] = {role.id: [] for role in roles}
    rows = await session.execute(select(role_permissions.c.role_id, role_permissions.c.permission_id))
    for role_id, permission_id in rows.all():
        grants.setdefault(role_id, []).append(permission_id)

    role_ids = (await session.execute(
        select(user_roles.c.role_id).where(user_roles.c.user_id == principal_id)
    )).scalars().all()
    direct_ids = (await session.execute(
        select(user_permissions.c.permission_id).where(user_permissions.c.user_id == principal_id)
    )).scalars().all()

    return PrincipalAccess(
        principal_id=principal_id,
        roles=[
            RoleWithPermissionIds(
                id=role.id,
                name=role.name,
                display_name=role.display_name,
                permission_ids=sorted(grants[role.id]),
            )
            for role in roles
        ],
        permissions=[PermissionResponse.model_validate(permission) for permission in permissions],
        role_ids=sorted(role_ids),
        direct_permission_ids=sorted(direct_ids),
    )
