"""
Mutation results and the access events derived from them.

The access manager returns a ``MutationResult`` from every operation instead
of publishing anything itself. Outer layers turn results into events
(``event_for``) and deliver them however they like; the HTTP layer writes them
to the audit log.
"""
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, ClassVar


class MutationKind(str, Enum):
    ROLE_ADDED = "role_added"
    ROLE_REMOVED = "role_removed"
    ROLES_SYNCED = "roles_synced"
    PERMISSION_ADDED = "permission_added"
    PERMISSION_REMOVED = "permission_removed"
    PERMISSIONS_SYNCED = "permissions_synced"
    ROLE_PERMISSIONS_SYNCED = "role_permissions_synced"
    ACCESS_REVOKED = "access_revoked"


@dataclass(frozen=True)
class MutationResult:
    """
    Outcome of one committed mutation.

    Attributes:
        kind: Operation that produced the result
        subject_id: Principal id, or role id for role permission syncs
        applied: Names in effect for the operation (the added name, or the synced set)
        previous: Names held before a sync, captured before any write
        attached: Names newly assigned
        detached: Names no longer assigned (roles, for ``revoke_all``)
        absorbed: Direct permissions left out or dropped because a role grants them.
            Dropped grants are not restored when the role is later removed; callers
            that need them back must re-add them directly.
        detached_permissions: Direct permissions removed by ``revoke_all``
    """
    kind: MutationKind
    subject_id: str
    applied: tuple[str, ...] = ()
    previous: tuple[str, ...] = ()
    attached: tuple[str, ...] = ()
    detached: tuple[str, ...] = ()
    absorbed: tuple[str, ...] = ()
    detached_permissions: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.attached or self.detached or self.absorbed or self.detached_permissions)


@dataclass(frozen=True)
class AccessEvent:
    name: ClassVar[str] = "access_event"

    def as_dict(self) -> dict[str, Any]:
        return {key: list(value) if isinstance(value, tuple) else value for key, value in asdict(self).items()}


@dataclass(frozen=True)
class RoleAdded(AccessEvent):
    name: ClassVar[str] = "role_added"
    principal_id: str
    role: str
    absorbed_permissions: tuple[str, ...] = ()


@dataclass(frozen=True)
class RoleRemoved(AccessEvent):
    name: ClassVar[str] = "role_removed"
    principal_id: str
    role: str


@dataclass(frozen=True)
class PermissionAdded(AccessEvent):
    name: ClassVar[str] = "permission_added"
    principal_id: str
    permission: str


@dataclass(frozen=True)
class PermissionRemoved(AccessEvent):
    name: ClassVar[str] = "permission_removed"
    principal_id: str
    permission: str


@dataclass(frozen=True)
class SyncEvent(AccessEvent):
    synced: tuple[str, ...] = ()
    previous: tuple[str, ...] = ()
    attached: tuple[str, ...] = ()
    detached: tuple[str, ...] = ()


@dataclass(frozen=True)
class RolesSynced(SyncEvent):
    name: ClassVar[str] = "roles_synced"
    principal_id: str = ""
    absorbed_permissions: tuple[str, ...] = ()


@dataclass(frozen=True)
class PermissionsSynced(SyncEvent):
    name: ClassVar[str] = "permissions_synced"
    principal_id: str = ""
    skipped_role_permissions: tuple[str, ...] = ()


@dataclass(frozen=True)
class RolePermissionsSynced(SyncEvent):
    name: ClassVar[str] = "role_permissions_synced"
    role_id: str = ""


@dataclass(frozen=True)
class AccessRevoked(AccessEvent):
    name: ClassVar[str] = "access_revoked"
    principal_id: str
    roles: tuple[str, ...] = field(default_factory=tuple)
    permissions: tuple[str, ...] = field(default_factory=tuple)


def event_for(result: MutationResult) -> AccessEvent:
    """Build the domain event describing a mutation result."""
    subject = result.subject_id
    single = result.applied[0] if result.applied else ""
    sync = dict(synced=result.applied, previous=result.previous, attached=result.attached, detached=result.detached)

    match result.kind:
        case MutationKind.ROLE_ADDED:
            return RoleAdded(principal_id=subject, role=single, absorbed_permissions=result.absorbed)
        case MutationKind.ROLE_REMOVED:
            return RoleRemoved(principal_id=subject, role=single)
        case MutationKind.PERMISSION_ADDED:
            return PermissionAdded(principal_id=subject, permission=single)
        case MutationKind.PERMISSION_REMOVED:
            return PermissionRemoved(principal_id=subject, permission=single)
        case MutationKind.ROLES_SYNCED:
            return RolesSynced(principal_id=subject, absorbed_permissions=result.absorbed, **sync)
        case MutationKind.PERMISSIONS_SYNCED:
            return PermissionsSynced(principal_id=subject, skipped_role_permissions=result.absorbed, **sync)
        case MutationKind.ROLE_PERMISSIONS_SYNCED:
            return RolePermissionsSynced(role_id=subject, **sync)
        case MutationKind.ACCESS_REVOKED:
            return AccessRevoked(principal_id=subject, roles=result.detached, permissions=result.detached_permissions)
    raise ValueError(f"Unknown mutation kind: {result.kind}")
