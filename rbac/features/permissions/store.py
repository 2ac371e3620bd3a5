"""
Persistence of roles, permissions and their assignments.

The store issues queries on the session it is given and never commits;
the caller owns the transaction.
"""
from collections.abc import Iterable, Sequence
from sqlalchemy import select, insert, delete, or_, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rbac.core.database.base import generate_ulid
from rbac.features.permissions.catalog import CatalogEntry, default_display_name
from rbac.features.permissions.models import (
    Permission,
    Role,
    user_roles,
    user_permissions,
    role_permissions,
)
from rbac.features.permissions.naming import normalize_name
from rbac.utils import get_logger


log = get_logger(__name__)


def is_unique_violation(error: IntegrityError) -> bool:
    """True when the integrity error comes from a unique or primary key constraint."""
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == "23505"
    message = str(orig).lower()
    return "unique constraint" in message or "duplicate" in message


def _catalog_rows(entries: Iterable[str | CatalogEntry]) -> list[dict]:
    rows: dict[str, dict] = {}
    for entry in entries:
        if isinstance(entry, str):
            name, display_name = entry, None
        else:
            name, display_name = entry.name, entry.display_name
        name = normalize_name(name)
        # Last entry wins for a name repeated in one batch
        rows[name] = {"name": name, "display_name": display_name or default_display_name(name)}
    return list(rows.values())


def direct_permission_ids(user_id: str):
    return select(user_permissions.c.permission_id).where(user_permissions.c.user_id == user_id)


def role_permission_ids(user_id: str):
    return (
        select(role_permissions.c.permission_id)
        .join(user_roles, user_roles.c.role_id == role_permissions.c.role_id)
        .where(user_roles.c.user_id == user_id)
    )


class AccessStore:
    """Queries and writes for the role/permission schema."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_role_by_name(self, name: str) -> Role | None:
        result = await self.session.execute(select(Role).where(Role.name == name))
        return result.scalar_one_or_none()

    async def find_roles_by_name(self, names: Sequence[str]) -> tuple[list[Role], list[str]]:
        """
        Look up roles by normalized name in one query.

        Returns:
            Found roles in the order of ``names`` and the names without a row
        """
        return await self._find_by_name(Role, names)

    async def find_permission_by_name(self, name: str) -> Permission | None:
        result = await self.session.execute(select(Permission).where(Permission.name == name))
        return result.scalar_one_or_none()

    async def find_permissions_by_name(self, names: Sequence[str]) -> tuple[list[Permission], list[str]]:
        return await self._find_by_name(Permission, names)

    async def _find_by_name(self, model, names: Sequence[str]):
        if not names:
            return [], []
        result = await self.session.execute(select(model).where(model.name.in_(names)))
        by_name = {row.name: row for row in result.scalars().all()}
        found = [by_name[name] for name in names if name in by_name]
        missing = [name for name in names if name not in by_name]
        return found, missing

    # ------------------------------------------------------------------
    # Batch upserts
    # ------------------------------------------------------------------

    async def upsert_roles(self, entries: Iterable[str | CatalogEntry]) -> int:
        """Insert roles or update their display name, keyed on name."""
        return await self._upsert(Role, _catalog_rows(entries))

    async def upsert_permissions(self, entries: Iterable[str | CatalogEntry]) -> int:
        """Insert permissions or update their display name, keyed on name."""
        return await self._upsert(Permission, _catalog_rows(entries))

    async def _upsert(self, model, rows: list[dict]) -> int:
        if not rows:
            return 0

        dialect = self.session.get_bind().dialect.name
        if dialect in ("sqlite", "postgresql"):
            dialect_insert = sqlite_insert if dialect == "sqlite" else pg_insert
            stmt = dialect_insert(model.__table__).values([{"id": generate_ulid(), **row} for row in rows])
            stmt = stmt.on_conflict_do_update(
                index_elements=["name"],
                set_={"display_name": stmt.excluded.display_name, "updated_at": func.now()},
            )
            result = await self.session.execute(stmt)
            log.debug(f"Upserted {result.rowcount} rows into {model.__tablename__}")
            return result.rowcount

        # Generic fallback for dialects without ON CONFLICT
        result = await self.session.execute(select(model).where(model.name.in_([row["name"] for row in rows])))
        existing = {row.name: row for row in result.scalars().all()}
        for row in rows:
            current = existing.get(row["name"])
            if current is None:
                self.session.add(model(**row))
            else:
                current.display_name = row["display_name"]
        await self.session.flush()
        return len(rows)

    # ------------------------------------------------------------------
    # User roles
    # ------------------------------------------------------------------

    async def attach_role(self, user_id: str, role_id: str) -> bool:
        """
        Attach one role. Returns False if the assignment already exists.

        The unique constraint decides, so concurrent attaches cannot both succeed.
        """
        return await self._insert_unique(user_roles, user_id=user_id, role_id=role_id)

    async def detach_role(self, user_id: str, role_id: str) -> int:
        result = await self.session.execute(
            delete(user_roles).where(user_roles.c.user_id == user_id, user_roles.c.role_id == role_id)
        )
        return result.rowcount

    async def attach_roles(self, user_id: str, role_ids: Iterable[str]) -> None:
        rows = [{"user_id": user_id, "role_id": role_id} for role_id in role_ids]
        if rows:
            await self.session.execute(insert(user_roles), rows)

    async def detach_all_roles(self, user_id: str) -> int:
        result = await self.session.execute(delete(user_roles).where(user_roles.c.user_id == user_id))
        return result.rowcount

    async def roles_for(self, user_id: str) -> list[Role]:
        result = await self.session.execute(
            select(Role)
            .join(user_roles, user_roles.c.role_id == Role.id)
            .where(user_roles.c.user_id == user_id)
            .order_by(Role.name)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # User direct permissions
    # ------------------------------------------------------------------

    async def attach_permission(self, user_id: str, permission_id: str) -> bool:
        """Attach one direct permission. Returns False if it is already attached."""
        return await self._insert_unique(user_permissions, user_id=user_id, permission_id=permission_id)

    async def detach_permission(self, user_id: str, permission_id: str) -> int:
        result = await self.session.execute(
            delete(user_permissions).where(
                user_permissions.c.user_id == user_id,
                user_permissions.c.permission_id == permission_id,
            )
        )
        return result.rowcount

    async def attach_permissions(self, user_id: str, permission_ids: Iterable[str]) -> None:
        rows = [{"user_id": user_id, "permission_id": permission_id} for permission_id in permission_ids]
        if rows:
            await self.session.execute(insert(user_permissions), rows)

    async def detach_permissions(self, user_id: str, permission_ids: Iterable[str]) -> int:
        permission_ids = list(permission_ids)
        if not permission_ids:
            return 0
        result = await self.session.execute(
            delete(user_permissions).where(
                user_permissions.c.user_id == user_id,
                user_permissions.c.permission_id.in_(permission_ids),
            )
        )
        return result.rowcount

    async def detach_all_permissions(self, user_id: str) -> int:
        result = await self.session.execute(delete(user_permissions).where(user_permissions.c.user_id == user_id))
        return result.rowcount

    async def direct_permissions_for(self, user_id: str) -> list[Permission]:
        result = await self.session.execute(
            select(Permission).where(Permission.id.in_(direct_permission_ids(user_id))).order_by(Permission.name)
        )
        return list(result.scalars().all())

    async def redundant_direct_permissions_for(self, user_id: str) -> list[Permission]:
        """Direct permissions that are also reachable through the user's roles."""
        result = await self.session.execute(
            select(Permission)
            .where(
                Permission.id.in_(direct_permission_ids(user_id)),
                Permission.id.in_(role_permission_ids(user_id)),
            )
            .order_by(Permission.name)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Role permissions
    # ------------------------------------------------------------------

    async def permissions_for_role(self, role_id: str) -> list[Permission]:
        result = await self.session.execute(
            select(Permission)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .where(role_permissions.c.role_id == role_id)
            .order_by(Permission.name)
        )
        return list(result.scalars().all())

    async def attach_role_permissions(self, role_id: str, permission_ids: Iterable[str]) -> None:
        rows = [{"role_id": role_id, "permission_id": permission_id} for permission_id in permission_ids]
        if rows:
            await self.session.execute(insert(role_permissions), rows)

    async def detach_all_role_permissions(self, role_id: str) -> int:
        result = await self.session.execute(delete(role_permissions).where(role_permissions.c.role_id == role_id))
        return result.rowcount

    async def prune_direct_permissions_of_role_holders(self, role_id: str) -> int:
        """Remove direct grants that holders of ``role_id`` now receive from the role."""
        holders = select(user_roles.c.user_id).where(user_roles.c.role_id == role_id)
        granted = select(role_permissions.c.permission_id).where(role_permissions.c.role_id == role_id)
        result = await self.session.execute(
            delete(user_permissions).where(
                user_permissions.c.user_id.in_(holders),
                user_permissions.c.permission_id.in_(granted),
            )
        )
        return result.rowcount

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def role_permission_ids_for(self, user_id: str) -> set[str]:
        result = await self.session.execute(role_permission_ids(user_id))
        return set(result.scalars().all())

    async def effective_permissions_for(self, user_id: str) -> list[Permission]:
        """Direct and role-derived permissions of a user, in one query."""
        result = await self.session.execute(
            select(Permission)
            .where(
                or_(
                    Permission.id.in_(direct_permission_ids(user_id)),
                    Permission.id.in_(role_permission_ids(user_id)),
                )
            )
            .order_by(Permission.name)
        )
        return list(result.scalars().all())

    async def _insert_unique(self, table, **values) -> bool:
        try:
            async with self.session.begin_nested():
                await self.session.execute(insert(table).values(**values))
        except IntegrityError as e:
            if is_unique_violation(e):
                log.debug(f"Duplicate row in {table.name}: {values}")
                return False
            raise
        return True
