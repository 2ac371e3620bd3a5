"""
Orphan sweep for the assignment tables.

Foreign keys cascade on stores that enforce them. Stores that do not (SQLite
without ``PRAGMA foreign_keys``) can be left with assignment rows pointing at
deleted users, roles or permissions; ``cleanup_orphans`` finds and removes them.
It is run on demand only.
"""
from dataclasses import dataclass, field
from sqlalchemy import select, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from rbac.features.permissions.models import Permission, Role, user_roles, user_permissions, role_permissions
from rbac.features.users.models import User
from rbac.utils import get_logger


log = get_logger(__name__)


@dataclass
class OrphanReport:
    dry_run: bool
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def _missing(model, column):
    return column.not_in(select(model.id))


def _orphan_conditions():
    return {
        user_roles: or_(_missing(User, user_roles.c.user_id), _missing(Role, user_roles.c.role_id)),
        user_permissions: or_(
            _missing(User, user_permissions.c.user_id),
            _missing(Permission, user_permissions.c.permission_id),
        ),
        role_permissions: or_(
            _missing(Role, role_permissions.c.role_id),
            _missing(Permission, role_permissions.c.permission_id),
        ),
    }


async def cleanup_orphans(session: AsyncSession, dry_run: bool = False) -> OrphanReport:
    """
    Count or delete assignment rows whose user, role or permission is gone.

    Args:
        session: Database session; committed when rows are deleted
        dry_run: Only count the rows

    Returns:
        Number of orphaned rows per table
    """
    report = OrphanReport(dry_run=dry_run)

    for table, condition in _orphan_conditions().items():
        if dry_run:
            count = await session.scalar(select(func.count()).select_from(table).where(condition))
        else:
            result = await session.execute(delete(table).where(condition))
            count = result.rowcount
        report.counts[table.name] = count or 0

    if dry_run:
        log.info(f"Found {report.total} orphaned assignment rows: {report.counts}")
    else:
        await session.commit()
        log.info(f"Deleted {report.total} orphaned assignment rows: {report.counts}")

    return report
