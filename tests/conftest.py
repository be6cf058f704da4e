"""
Test configuration.

Settings are read when app.core.config is imported, so the environment is
primed here before any app module loads. Every test gets its own SQLite file
driven through aiosqlite; engines use NullPool so no connection outlives the
event loop that opened it.
"""

import asyncio
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest-unused.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ENV", "test")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import app.models  # noqa: E402,F401 - register tables on SQLModel.metadata
from app.core.db import get_session  # noqa: E402
from app.main import app as fastapi_app  # noqa: E402
from app.models.slot import SlotStatus  # noqa: E402
from tests.helpers import World, add_slot, add_user  # noqa: E402


@pytest.fixture
def db_url(tmp_path) -> str:
    url = f"sqlite+aiosqlite:///{tmp_path / 'slotswap.db'}"

    async def _create_schema() -> None:
        engine = create_async_engine(url, poolclass=NullPool)
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        await engine.dispose()

    asyncio.run(_create_schema())
    return url


@pytest.fixture
def run_db(db_url):
    """Run `fn(session_maker)` to completion on a fresh engine and event loop."""

    def _run(fn):
        async def _main():
            engine = create_async_engine(db_url, poolclass=NullPool)
            maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            try:
                return await fn(maker)
            finally:
                await engine.dispose()

        return asyncio.run(_main())

    return _run


@pytest.fixture
def world(run_db) -> World:
    """Alice, Bob and Carol with one swappable slot each; Alice also has a busy one."""

    async def _seed(maker) -> World:
        alice = await add_user(maker, "alice@example.com", "Alice")
        bob = await add_user(maker, "bob@example.com", "Bob")
        carol = await add_user(maker, "carol@example.com", "Carol")
        return World(
            alice=alice,
            bob=bob,
            carol=carol,
            s1=await add_slot(maker, alice, title="Alice morning", hour=9),
            s2=await add_slot(maker, bob, title="Bob afternoon", hour=14),
            s3=await add_slot(maker, carol, title="Carol evening", hour=18),
            s4=await add_slot(maker, alice, title="Alice busy", hour=11, status=SlotStatus.BUSY),
        )

    return run_db(_seed)


@pytest.fixture
def client(db_url):
    engine = create_async_engine(db_url, poolclass=NullPool)
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _session_override():
        async with maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_session] = _session_override
    yield TestClient(fastapi_app)
    fastapi_app.dependency_overrides.clear()
