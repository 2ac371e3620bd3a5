"""`rbac` command implementations: catalog loading and maintenance."""
import asyncio
from collections.abc import Awaitable, Callable
from typing import Annotated, NoReturn, Optional, TypeVar

import typer
from sqlalchemy.ext.asyncio import AsyncSession

from rbac.core import config
from rbac.core.database.base import Base
from rbac.core.database.engine import build_engine, build_sessionmaker, init_db
from rbac.features.permissions.catalog import (
    CatalogEntry,
    ModelAction,
    discover_resources,
    permission_entries,
    role_entries,
)
from rbac.features.permissions.exceptions import AccessError
from rbac.features.permissions.maintenance import cleanup_orphans as sweep_orphans
from rbac.features.permissions.naming import import_enum
from rbac.features.permissions.service import AccessManager
from rbac.features.permissions.store import AccessStore
from rbac.utils import get_logger


log = get_logger(__name__)

T = TypeVar("T")

# Models of the access schema itself never get CRUD permissions
INTERNAL_MODELS = ("permission", "role", "accessauditlog")

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Role and permission catalog loader and maintenance.",
)

DatabaseUrl = Annotated[
    str,
    typer.Option("--database-url", help="Database URL (defaults to DATABASE_URL)."),
]


def _run(url: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
    async def runner() -> T:
        engine = build_engine(url)
        try:
            await init_db(engine)
            async with build_sessionmaker(engine)() as session:
                return await work(session)
        finally:
            await engine.dispose()

    return asyncio.run(runner())


def _fail(message: str) -> NoReturn:
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(code=1)


@app.command(name="sync-roles", help="Create or update one role per member of the role enum.")
def sync_roles(
    role_enum: Annotated[
        Optional[str],
        typer.Option("--role-enum", help="Role enum as package.module:ClassName (defaults to ROLE_ENUM)."),
    ] = None,
    database_url: DatabaseUrl = config.SQLALCHEMY_DATABASE_URL,
) -> None:
    path = role_enum or config.ROLE_ENUM
    if not path:
        _fail("no role enum configured; pass --role-enum or set ROLE_ENUM")

    try:
        entries = role_entries(import_enum(path))
    except AccessError as e:
        _fail(str(e))

    async def work(session: AsyncSession) -> int:
        count = await AccessStore(session).upsert_roles(entries)
        await session.commit()
        return count

    try:
        _run(database_url, work)
    except AccessError as e:
        _fail(str(e))

    log.info(f"Synced roles from {path}")
    typer.echo(f"synced {len(entries)} roles")


@app.command(name="sync-permissions", help="Create or update <model>.<action> permissions.")
def sync_permissions(
    model: Annotated[
        Optional[list[str]],
        typer.Option("--model", help="Model name; repeat for several. Defaults to every mapped model."),
    ] = None,
    action: Annotated[
        Optional[list[str]],
        typer.Option("--action", help="Action; repeat for several. Defaults to the standard model actions."),
    ] = None,
    database_url: DatabaseUrl = config.SQLALCHEMY_DATABASE_URL,
) -> None:
    resources = model or discover_resources(Base, excluded=[*INTERNAL_MODELS, *config.PERMISSION_EXCLUDED_MODELS])
    actions = action or ModelAction.values()

    entries = permission_entries(resources, actions)
    # Management endpoints are guarded by this permission, so it always exists
    entries.append(CatalogEntry(config.ACCESS_MANAGE_PERMISSION))

    async def work(session: AsyncSession) -> int:
        count = await AccessStore(session).upsert_permissions(entries)
        await session.commit()
        return count

    try:
        _run(database_url, work)
    except AccessError as e:
        _fail(str(e))

    log.info(f"Synced permissions for {resources}")
    typer.echo(f"synced {len(entries)} permissions for {len(resources)} models")


@app.command(name="cleanup-orphans", help="Remove assignment rows pointing at deleted users, roles or permissions.")
def cleanup_orphans(
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Only count orphaned rows.")] = False,
    database_url: DatabaseUrl = config.SQLALCHEMY_DATABASE_URL,
) -> None:
    report = _run(database_url, lambda session: sweep_orphans(session, dry_run=dry_run))

    for table, count in report.counts.items():
        typer.echo(f"{table}: {count}")
    verb = "found" if dry_run else "deleted"
    typer.echo(f"{verb} {report.total} orphaned rows")


@app.command(name="assign-role", help="Grant a role to a principal.")
def assign_role(
    principal_id: Annotated[str, typer.Argument(help="Principal id.")],
    role: Annotated[str, typer.Argument(help="Role name.")],
    database_url: DatabaseUrl = config.SQLALCHEMY_DATABASE_URL,
) -> None:
    try:
        role_enum = import_enum(config.ROLE_ENUM) if config.ROLE_ENUM else None
        result = _run(database_url, lambda session: AccessManager(session, role_enum=role_enum).add_role(principal_id, role))
    except AccessError as e:
        _fail(str(e))

    typer.echo(f"role '{result.applied[0]}' assigned to {principal_id}")
    if result.absorbed:
        typer.echo(f"dropped direct permissions now granted by the role: {', '.join(result.absorbed)}")


if __name__ == "__main__":
    app()
