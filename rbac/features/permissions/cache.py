"""
Request-scoped cache of resolved roles and permissions.

One instance lives for one unit of work (an HTTP request, a CLI command).
Entries are filled lazily by the resolver and cleared by the access manager
after every committed mutation touching the principal.
"""
from rbac.features.permissions.models import Permission, Role


class AccessCache:
    """Resolved roles and permissions per principal id."""

    def __init__(self):
        self._roles: dict[str, list[Role]] = {}
        self._permissions: dict[str, list[Permission]] = {}

    def get_roles(self, principal_id: str) -> list[Role] | None:
        return self._roles.get(principal_id)

    def set_roles(self, principal_id: str, roles: list[Role]) -> None:
        self._roles[principal_id] = roles

    def get_permissions(self, principal_id: str) -> list[Permission] | None:
        return self._permissions.get(principal_id)

    def set_permissions(self, principal_id: str, permissions: list[Permission]) -> None:
        self._permissions[principal_id] = permissions

    def forget_roles(self, principal_id: str) -> None:
        self._roles.pop(principal_id, None)

    def forget_permissions(self, principal_id: str) -> None:
        self._permissions.pop(principal_id, None)

    def forget(self, principal_id: str) -> None:
        self.forget_roles(principal_id)
        self.forget_permissions(principal_id)

    def clear(self) -> None:
        self._roles.clear()
        self._permissions.clear()

    def __contains__(self, principal_id: str) -> bool:
        return principal_id in self._roles or principal_id in self._permissions
