"""
FastAPI dependencies for access checks.

Implements:
- Request-scoped resolver, manager and cache
- Route guards by permission, by role, or by either
- Audit logging of access changes
"""
from enum import Enum
from typing import Any, Dict, Optional
from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rbac.core import config
from rbac.core.database.engine import get_db
from rbac.features.users.dependencies import get_current_user
from rbac.features.users.models import User
from rbac.features.permissions.cache import AccessCache
from rbac.features.permissions.events import MutationResult, event_for
from rbac.features.permissions.exceptions import AccessError
from rbac.features.permissions.models import AccessAuditLog
from rbac.features.permissions.resolver import AccessResolver
from rbac.features.permissions.service import AccessManager
from rbac.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Request-scoped Services
# ============================================================================

def get_access_cache() -> AccessCache:
    """
    One cache per request.

    FastAPI caches dependency values within a request, so the resolver and the
    manager of one request share this instance.
    """
    return AccessCache()


def get_role_enum(request: Request) -> Optional[type[Enum]]:
    """Role enum loaded at startup, if one is configured."""
    return getattr(request.app.state, "role_enum", None)


def get_access_resolver(
    db: AsyncSession = Depends(get_db),
    cache: AccessCache = Depends(get_access_cache),
    role_enum: Optional[type[Enum]] = Depends(get_role_enum),
) -> AccessResolver:
    return AccessResolver(db, cache=cache, role_enum=role_enum)


def get_access_manager(
    db: AsyncSession = Depends(get_db),
    cache: AccessCache = Depends(get_access_cache),
    role_enum: Optional[type[Enum]] = Depends(get_role_enum),
) -> AccessManager:
    return AccessManager(db, cache=cache, role_enum=role_enum)


# ============================================================================
# Route Guards
# ============================================================================

def _split(values: tuple[str, ...]) -> list[str]:
    """Accept both require_permission("a", "b") and require_permission("a|b")."""
    names = []
    for value in values:
        names.extend(part.strip() for part in str(value).split("|") if part.strip())
    return names


async def _has_any_role(resolver: AccessResolver, user: User, names: list[str]) -> bool:
    for name in names:
        try:
            if await resolver.has_role(user, name):
                return True
        except AccessError as e:
            log.debug(f"Ignoring role {name!r} in guard: {e}")
    return False


async def _has_any_permission(resolver: AccessResolver, user: User, names: list[str]) -> bool:
    for name in names:
        try:
            if await resolver.has_permission(user, name):
                return True
        except AccessError as e:
            log.debug(f"Ignoring permission {name!r} in guard: {e}")
    return False


def require_permission(*permissions: str):
    """
    FastAPI dependency to require ANY of the given permissions.

    Usage:
        @router.post("/posts")
        async def create_post(
            user: User = Depends(require_permission("post.create|post.update"))
        ):
            pass

    Returns:
        Dependency function that returns the current user if they hold a permission

    Raises:
        HTTPException: 403 if the user holds none of them
    """
    names = _split(permissions)

    async def permission_dependency(
        current_user: User = Depends(get_current_user),
        resolver: AccessResolver = Depends(get_access_resolver),
    ) -> User:
        if not await _has_any_permission(resolver, current_user, names):
            log.info(f"User {current_user.id} denied: requires one of permissions {names}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires one of {names}",
            )
        return current_user

    return permission_dependency


def require_role(*roles: str):
    """FastAPI dependency to require ANY of the given roles."""
    names = _split(roles)

    async def role_dependency(
        current_user: User = Depends(get_current_user),
        resolver: AccessResolver = Depends(get_access_resolver),
    ) -> User:
        if not await _has_any_role(resolver, current_user, names):
            log.info(f"User {current_user.id} denied: requires one of roles {names}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role required: one of {names}",
            )
        return current_user

    return role_dependency


def require_role_or_permission(*roles_or_permissions: str):
    """FastAPI dependency passing users holding any of the names as a role or as a permission."""
    names = _split(roles_or_permissions)

    async def role_or_permission_dependency(
        current_user: User = Depends(get_current_user),
        resolver: AccessResolver = Depends(get_access_resolver),
    ) -> User:
        if not (
            await _has_any_role(resolver, current_user, names)
            or await _has_any_permission(resolver, current_user, names)
        ):
            log.info(f"User {current_user.id} denied: requires one of {names}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied: requires one of {names}",
            )
        return current_user

    return role_or_permission_dependency


# ============================================================================
# Audit Logging
# ============================================================================

async def record_access_event(
    db: AsyncSession,
    result: MutationResult,
    actor: Optional[User] = None,
    request: Optional[Request] = None,
) -> Optional[AccessAuditLog]:
    """
    Write an audit log entry for a committed access change.

    Does nothing unless EVENTS_ENABLED is set.

    Args:
        db: Database session
        result: Result returned by the access manager
        actor: User who made the change
        request: Incoming request, for client address and user agent

    Returns:
        Created AccessAuditLog object, or None when events are disabled
    """
    if not config.EVENTS_ENABLED:
        return None

    event = event_for(result)
    details: Dict[str, Any] = event.as_dict()
    audit_log = AccessAuditLog(
        actor_id=actor.id if actor else None,
        subject_id=result.subject_id,
        action=event.name,
        details=details,
        ip_address=request.client.host if request and request.client else None,
        user_agent=request.headers.get("user-agent") if request else None,
    )

    db.add(audit_log)
    await db.commit()

    log.info(f"Audit: actor={audit_log.actor_id} action={event.name} subject={result.subject_id}")

    return audit_log
