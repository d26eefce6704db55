"""Shared fixtures: a fresh SQLite database per test."""

import os

# Ensure env vars are set before importing anything that triggers app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")

import pytest
import pytest_asyncio
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles

from app.core.database import Base
import app.models  # noqa: F401  (registers every table on Base.metadata)


@compiles(UUID, "sqlite")
def _uuid_as_char(type_, compiler, **kw):
    # A column declared "UUID" gets NUMERIC affinity in SQLite, which turns
    # all-digit hex ids into numbers
    return "CHAR(32)"


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'royalties.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": os.environ["ADMIN_TOKEN"]}
