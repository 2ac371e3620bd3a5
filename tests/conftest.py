from collections.abc import AsyncIterator
from dataclasses import dataclass

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from rbac.core.database.engine import build_engine, build_sessionmaker, init_db
from rbac.features.permissions.store import AccessStore
from rbac.features.users.models import User


@dataclass(frozen=True)
class Seeded:
    alice: str
    bob: str
    manager: str
    admin_role: str
    editor_role: str


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'rbac.db'}"


@pytest_asyncio.fixture
async def engine(database_url: str) -> AsyncIterator[AsyncEngine]:
    engine = build_engine(database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_sessionmaker(engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(session_factory) -> Seeded:
    """
    admin grants post.update and post.delete; editor grants nothing.
    manager holds access.manage directly.
    """
    async with session_factory() as session:
        store = AccessStore(session)
        await store.upsert_roles(["admin", "editor"])
        await store.upsert_permissions(["post.update", "post.view", "post.delete", "user.view", "access.manage"])

        admin = await store.find_role_by_name("admin")
        editor = await store.find_role_by_name("editor")
        granted, _ = await store.find_permissions_by_name(["post.update", "post.delete"])
        await store.attach_role_permissions(admin.id, [permission.id for permission in granted])

        alice = User(email="alice@example.com", name="Alice")
        bob = User(email="bob@example.com", name="Bob")
        manager = User(email="manager@example.com", name="Manager")
        session.add_all([alice, bob, manager])
        await session.flush()

        manage = await store.find_permission_by_name("access.manage")
        await store.attach_permission(manager.id, manage.id)
        await session.commit()

        return Seeded(
            alice=alice.id,
            bob=bob.id,
            manager=manager.id,
            admin_role=admin.id,
            editor_role=editor.id,
        )


@pytest.fixture
def select_counter(engine: AsyncEngine):
    """Counts SELECT statements sent to the database."""
    statements: list[str] = []

    def record(_conn, _cursor, statement, _parameters, _context, _executemany):
        if statement.lstrip().upper().startswith("SELECT"):
            statements.append(statement)

    event.listen(engine.sync_engine, "before_cursor_execute", record)
    yield statements
    event.remove(engine.sync_engine, "before_cursor_execute", record)
