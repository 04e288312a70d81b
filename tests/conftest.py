"""Shared test fixtures for the encore test suite."""

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from encore.idempotency import (
    Coordinator,
    MemoryStore,
    Policy,
    SQLAlchemyStore,
    sqlite_begin_immediate,
)
from tests.models import Base, IdempotentRequestTable

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def policy(clock: FrozenClock) -> Policy:
    return Policy().with_clock(clock)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def coordinator(memory_store: MemoryStore, policy: Policy) -> Coordinator:
    return Coordinator(memory_store, policy)


@pytest.fixture(params=["deferred", "immediate"])
async def session_factory(
    request: pytest.FixtureRequest, tmp_path: Path
) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """
    File-backed SQLite so every session gets its own connection.

    Runs each test with the driver's deferred BEGIN and with BEGIN IMMEDIATE.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'encore.db'}")
    if request.param == "immediate":
        sqlite_begin_immediate(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def sql_store(
    session_factory: async_sessionmaker[AsyncSession],
) -> SQLAlchemyStore[IdempotentRequestTable]:
    return SQLAlchemyStore(session_factory, model=IdempotentRequestTable)


@pytest.fixture
def sql_coordinator(
    sql_store: SQLAlchemyStore[IdempotentRequestTable], policy: Policy
) -> Coordinator:
    return Coordinator(sql_store, policy)
