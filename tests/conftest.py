"""
Test fixtures for SiteGate.

Provides:
- Async engine on in-memory SQLite (one shared connection per test)
- Session factory and a per-test session
- A fixed clock
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from sitegate.db.engine import Base
import sitegate.db.models  # noqa: F401  register all models
from tests.factories import FIXED_NOW

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    """Fresh schema per test."""
    eng = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()

@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """One session per test, rolled back at the end."""
    async with session_factory() as session:
        yield session
        await session.rollback()

@pytest.fixture
def clock():
    return lambda: FIXED_NOW
