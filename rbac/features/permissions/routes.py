"""
Access management API routes.

Provides endpoints for listing roles and principals, editing role permissions,
granting and revoking roles and permissions, and checking access.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from rbac.core import config
from rbac.core.database.engine import get_db
from rbac.features.users.dependencies import get_current_user
from rbac.features.users.models import User
from rbac.features.permissions.events import MutationResult
from rbac.features.permissions.models import AccessAuditLog, Role
from rbac.features.permissions.queries import list_roles, list_principals, principal_access, role_permission_matrix
from rbac.features.permissions.resolver import AccessResolver
from rbac.features.permissions.service import AccessManager
from rbac.features.permissions.schemas import (
    AccessCheckRequest,
    AccessCheckResponse,
    AuditLogListResponse,
    AuditLogResponse,
    MutationResponse,
    PermissionAssignment,
    PrincipalAccess,
    PrincipalPage,
    RoleAssignment,
    RolePermissionMatrix,
    RoleSummary,
    SyncPermissionsRequest,
    SyncRolesRequest,
)
from rbac.features.permissions.dependencies import (
    get_access_manager,
    get_access_resolver,
    record_access_event,
    require_permission,
)
from rbac.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

require_manager = require_permission(config.ACCESS_MANAGE_PERMISSION)


def mutation_response(result: MutationResult) -> MutationResponse:
    return MutationResponse(
        kind=result.kind.value,
        subject_id=result.subject_id,
        applied=list(result.applied),
        previous=list(result.previous),
        attached=list(result.attached),
        detached=list(result.detached),
        absorbed=list(result.absorbed),
        detached_permissions=list(result.detached_permissions),
        changed=result.changed,
    )


async def _principal_or_404(db: AsyncSession, principal_id: str) -> User:
    principal = await db.get(User, principal_id)
    if principal is None:
        raise HTTPException(status_code=404, detail="Principal not found")
    return principal


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleSummary])
async def get_roles(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manager)
):
    """List roles with their permission counts."""
    return await list_roles(db)


@router.get("/roles/{role_id}/permissions", response_model=RolePermissionMatrix)
async def get_role_permissions(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manager)
):
    """Get every permission grouped by resource, flagged for this role."""
    matrix = await role_permission_matrix(db, role_id)
    if matrix is None:
        raise HTTPException(status_code=404, detail="Role not found")
    return matrix


@router.put("/roles/{role_id}/permissions", response_model=MutationResponse)
async def sync_role_permissions(
    role_id: str,
    body: SyncPermissionsRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: AccessManager = Depends(get_access_manager),
    current_user: User = Depends(require_manager)
):
    """Replace the permissions granted by a role."""
    role = await db.get(Role, role_id)
    if role is None:
        raise HTTPException(status_code=404, detail="Role not found")

    result = await manager.sync_role_permissions(role.name, body.permissions)
    await record_access_event(db, result, current_user, request)
    return mutation_response(result)


# ============================================================================
# Principal Routes
# ============================================================================

@router.get("/principals", response_model=PrincipalPage)
async def get_principals(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manager)
):
    """List principals, newest first."""
    return await list_principals(db, search=search, page=page, page_size=page_size)


@router.get("/principals/{principal_id}/access", response_model=PrincipalAccess)
async def get_principal_access(
    principal_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manager)
):
    """Get the roles and permissions available to and held by a principal."""
    await _principal_or_404(db, principal_id)
    return await principal_access(db, principal_id)


@router.put("/principals/{principal_id}/roles", response_model=MutationResponse)
async def sync_principal_roles(
    principal_id: str,
    body: SyncRolesRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: AccessManager = Depends(get_access_manager),
    current_user: User = Depends(require_manager)
):
    """Replace the roles of a principal."""
    await _principal_or_404(db, principal_id)
    result = await manager.sync_roles(principal_id, body.roles)
    await record_access_event(db, result, current_user, request)
    return mutation_response(result)


@router.put("/principals/{principal_id}/permissions", response_model=MutationResponse)
async def sync_principal_permissions(
    principal_id: str,
    body: SyncPermissionsRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: AccessManager = Depends(get_access_manager),
    current_user: User = Depends(require_manager)
):
    """Replace the direct permissions of a principal."""
    await _principal_or_404(db, principal_id)
    result = await manager.sync_permissions(principal_id, body.permissions)
    await record_access_event(db, result, current_user, request)
    return mutation_response(result)


@router.post("/principals/{principal_id}/roles", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def add_principal_role(
    principal_id: str,
    body: RoleAssignment,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: AccessManager = Depends(get_access_manager),
    current_user: User = Depends(require_manager)
):
    """Grant a role to a principal."""
    await _principal_or_404(db, principal_id)
    result = await manager.add_role(principal_id, body.role)
    await record_access_event(db, result, current_user, request)
    return mutation_response(result)


@router.delete("/principals/{principal_id}/roles/{role}", response_model=MutationResponse)
async def remove_principal_role(
    principal_id: str,
    role: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: AccessManager = Depends(get_access_manager),
    current_user: User = Depends(require_manager)
):
    """Revoke a role from a principal."""
    await _principal_or_404(db, principal_id)
    result = await manager.remove_role(principal_id, role)
    await record_access_event(db, result, current_user, request)
    return mutation_response(result)


@router.post(
    "/principals/{principal_id}/permissions",
    response_model=MutationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_principal_permission(
    principal_id: str,
    body: PermissionAssignment,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: AccessManager = Depends(get_access_manager),
    current_user: User = Depends(require_manager)
):
    """Grant a direct permission to a principal."""
    await _principal_or_404(db, principal_id)
    result = await manager.add_permission(principal_id, body.permission)
    await record_access_event(db, result, current_user, request)
    return mutation_response(result)


@router.delete("/principals/{principal_id}/permissions/{permission}", response_model=MutationResponse)
async def remove_principal_permission(
    principal_id: str,
    permission: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: AccessManager = Depends(get_access_manager),
    current_user: User = Depends(require_manager)
):
    """Revoke a direct permission from a principal."""
    await _principal_or_404(db, principal_id)
    result = await manager.remove_permission(principal_id, permission)
    await record_access_event(db, result, current_user, request)
    return mutation_response(result)


@router.delete("/principals/{principal_id}/access", response_model=MutationResponse)
async def revoke_principal_access(
    principal_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: AccessManager = Depends(get_access_manager),
    current_user: User = Depends(require_manager)
):
    """Revoke every role and direct permission of a principal."""
    await _principal_or_404(db, principal_id)
    result = await manager.revoke_all(principal_id)
    await record_access_event(db, result, current_user, request)
    return mutation_response(result)


# ============================================================================
# Access Check Routes
# ============================================================================

@router.post("/check", response_model=AccessCheckResponse)
async def check_access(
    check_request: AccessCheckRequest,
    db: AsyncSession = Depends(get_db),
    resolver: AccessResolver = Depends(get_access_resolver),
    current_user: User = Depends(get_current_user)
):
    """Check roles and permissions of the current user, or of another principal for managers."""
    principal_id = check_request.principal_id or current_user.id

    if principal_id != current_user.id:
        if not await resolver.has_permission(current_user, config.ACCESS_MANAGE_PERMISSION):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not authorized to check other principals"
            )
        await _principal_or_404(db, principal_id)

    permissions = {
        name: await resolver.has_permission(principal_id, name) for name in check_request.permissions
    }
    roles = {name: await resolver.has_role(principal_id, name) for name in check_request.roles}

    outcomes = list(permissions.values()) + list(roles.values())
    allowed = any(outcomes) if check_request.mode == "any" else all(outcomes)

    return AccessCheckResponse(principal_id=principal_id, allowed=allowed, permissions=permissions, roles=roles)


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    subject_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    action: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manager)
):
    """List access audit logs with optional filtering."""
    stmt = select(AccessAuditLog)

    if subject_id:
        stmt = stmt.where(AccessAuditLog.subject_id == subject_id)
    if actor_id:
        stmt = stmt.where(AccessAuditLog.actor_id == actor_id)
    if action:
        stmt = stmt.where(AccessAuditLog.action == action)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total = (await db.execute(count_stmt)).scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AccessAuditLog.created_at.desc(), AccessAuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
