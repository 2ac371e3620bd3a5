"""
Access control errors.

All errors raised by the resolver and the access manager derive from
``AccessError`` and fall in four groups:

- validation: a malformed role or permission name, rejected before any query
- not synced: the name has no row yet; the batch loader must run first
- conflict: the assignment already exists (directly or through a role)
- not assigned: a removal targets an assignment that does not exist

Unexpected integrity errors from the database are not wrapped.
"""
from collections.abc import Iterable


class AccessError(Exception):
    """Base class for role and permission errors."""


# Validation


class InvalidNameError(AccessError, ValueError):
    """A role or permission name cannot be normalized."""


class InvalidRoleError(AccessError, ValueError):
    """A role is not a member of the configured role enum."""


# Not synced


class NotSyncedError(AccessError):
    """One or more names have no matching row in the database."""

    kind = "Name"
    command = ""

    def __init__(self, names: str | Iterable[str]):
        self.names = [names] if isinstance(names, str) else list(names)
        listing = ", ".join(self.names)
        if len(self.names) > 1:
            message = f"{self.kind}s '{listing}' are not synced with the database."
        else:
            message = f"{self.kind} '{listing}' is not synced with the database."
        super().__init__(f"{message} Run `rbac {self.command}` first.")


class RoleNotSyncedError(NotSyncedError):
    kind = "Role"
    command = "sync-roles"


class PermissionNotSyncedError(NotSyncedError):
    kind = "Permission"
    command = "sync-permissions"


# Conflict


class AlreadyAssignedError(AccessError):
    """The assignment already exists."""

    kind = "Name"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{self.kind} '{name}' is already assigned to the user.")


class RoleAlreadyAssignedError(AlreadyAssignedError):
    kind = "Role"


class PermissionAlreadyAssignedError(AlreadyAssignedError):
    kind = "Permission"


class PermissionGrantedByRoleError(PermissionAlreadyAssignedError):
    """The permission is already reachable through one of the user's roles."""

    def __init__(self, name: str):
        self.name = name
        AccessError.__init__(
            self,
            f"Permission '{name}' is already granted to the user through a role. "
            "Direct permissions cannot duplicate role permissions.",
        )


# Not assigned


class NotAssignedError(AccessError):
    """A removal targets an assignment that does not exist."""

    kind = "Name"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{self.kind} '{name}' is not assigned to the user.")


class RoleNotAssignedError(NotAssignedError):
    kind = "Role"


class PermissionNotAssignedError(NotAssignedError):
    kind = "Permission"
