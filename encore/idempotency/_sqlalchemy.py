"""
SQLAlchemy integration — request record store over any async engine.

Usage:
    1. Add IdempotentRequestMixin to a model:

        class IdempotentRequestTable(Base, IdempotentRequestMixin):
            __tablename__ = "idempotent_requests"
            id: Mapped[int] = mapped_column(primary_key=True)

    2. Create the store:

        store = SQLAlchemyStore(session_factory, model=IdempotentRequestTable)

    3. Use:

        coordinator = Coordinator(store)
        result = await coordinator.start(key, Fingerprint(path=..., body=...))

Side writes inside Coordinator.success go through ``tx.session``; they commit
or roll back together with the stored response.

SQLite: pysqlite and aiosqlite defer BEGIN until the first write, so reads
run outside the transaction. Install ``sqlite_begin_immediate(engine)`` to
start every transaction with BEGIN IMMEDIATE. The acquire step is correct
without it (its lock write is conditional on a null lock token), but then a
losing acquirer may see a "database is locked" error mapped to IN_PROGRESS.

Timestamps: naive datetimes read back (SQLite, MySQL DATETIME) are taken as
UTC. Use a UTC clock in Policy when the column drops the timezone.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar, cast

from returns.result import Failure, Result, Success
from sqlalchemy import DateTime, String, Text, event, select, update
from sqlalchemy.engine import Connection, CursorResult
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from encore._types import Changes
from encore.idempotency._record import RequestRecord
from encore.idempotency._store import (
    Conflict,
    Created,
    CreateOutcome,
    Isolation,
    SerializationFailure,
)

# SQLSTATE codes and driver messages.
UNIQUE_VIOLATION_CODES = frozenset({"23505"})
UNIQUE_VIOLATION_MESSAGES = ("UNIQUE constraint failed", "Duplicate entry")
SERIALIZATION_FAILURE_CODES = frozenset({"40001", "40P01"})
SERIALIZATION_FAILURE_MESSAGES = ("database is locked", "Deadlock found")

ISOLATION_LEVELS: dict[Isolation, str | None] = {
    Isolation.DEFAULT: None,
    Isolation.SERIALIZABLE: "SERIALIZABLE",
}


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotent Request Mixin — add to your SQLAlchemy model
# ═══════════════════════════════════════════════════════════════════════════════


class IdempotentRequestMixin:
    """
    Mixin for SQLAlchemy models that store idempotent requests.

    Adds columns:
    - idempotency_key: unique key
    - locked_at: lock token, null when idle or finished
    - request_path / request_body: fingerprint of the first request
    - response_code / response_body: stored response
    - created_at / updated_at: bookkeeping

    Example:
        class IdempotentRequestTable(Base, IdempotentRequestMixin):
            __tablename__ = "idempotent_requests"
            id: Mapped[int] = mapped_column(primary_key=True)
    """

    idempotency_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
    )

    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    request_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )


M = TypeVar("M", bound=IdempotentRequestMixin)
T = TypeVar("T")


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_unique_violation(exc: IntegrityError) -> bool:
    if _sqlstate(exc) in UNIQUE_VIOLATION_CODES:
        return True
    message = str(exc.orig)
    return any(marker in message for marker in UNIQUE_VIOLATION_MESSAGES)


def is_serialization_failure(exc: DBAPIError) -> bool:
    if _sqlstate(exc) in SERIALIZATION_FAILURE_CODES:
        return True
    message = str(exc.orig)
    return any(marker in message for marker in SERIALIZATION_FAILURE_MESSAGES)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def to_record(row: IdempotentRequestMixin) -> RequestRecord:
    return RequestRecord(
        idempotency_key=row.idempotency_key,
        locked_at=_as_utc(row.locked_at),
        request_path=row.request_path,
        request_body=row.request_body,
        response_code=row.response_code,
        response_body=row.response_body,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def sqlite_begin_immediate(engine: AsyncEngine) -> AsyncEngine:
    """
    Start every SQLite transaction with BEGIN IMMEDIATE.

    The driver's own BEGIN is disabled and SQLAlchemy's ``begin`` event emits
    ours, as the SQLAlchemy pysqlite docs describe. A second writer then waits
    for the first to commit instead of reading a row the first is locking.

    Example:
        engine = sqlite_begin_immediate(create_async_engine("sqlite+aiosqlite:///app.db"))
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


# ═══════════════════════════════════════════════════════════════════════════════
# Transaction handle
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SQLAlchemyTransaction(Generic[M]):
    """Transaction handle; ``session`` is open inside ``session.begin()``."""

    session: AsyncSession
    model: type[M]

    async def find_one(
        self, key: str, *, unlocked: bool = False
    ) -> RequestRecord | None:
        stmt = select(self.model).where(self.model.idempotency_key == key)
        if unlocked:
            stmt = stmt.where(self.model.locked_at.is_(None))
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return to_record(row) if row is not None else None

    async def update(
        self, record: RequestRecord, changes: Changes, *, unlocked: bool = False
    ) -> bool:
        stmt = (
            update(self.model)
            .where(self.model.idempotency_key == record.idempotency_key)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if unlocked:
            stmt = stmt.where(self.model.locked_at.is_(None))
        cursor = cast(CursorResult[Any], await self.session.execute(stmt))
        return cursor.rowcount > 0


# ═══════════════════════════════════════════════════════════════════════════════
# Generic SQLAlchemy Store
# ═══════════════════════════════════════════════════════════════════════════════


class SQLAlchemyStore(Generic[M]):
    """
    Request record store for SQLAlchemy models with IdempotentRequestMixin.

    Type parameters:
        M: Model type (e.g., IdempotentRequestTable)

    Note: Each operation opens its own session from ``session_factory``.
    Naive timestamps read back are returned as UTC, so a Policy clock must
    produce UTC when the column drops the timezone (SQLite, MySQL DATETIME).
    On SQLite, wrap the engine with ``sqlite_begin_immediate``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        model: type[M],
    ) -> None:
        """
        Args:
            session_factory: SQLAlchemy async session factory
            model: Model class with IdempotentRequestMixin
        """
        self._session_factory = session_factory
        self._model = model

    @property
    def model(self) -> type[M]:
        return self._model

    async def create(self, record: RequestRecord) -> CreateOutcome:
        """INSERT; a unique violation on idempotency_key is a Conflict."""
        row = self._model(
            idempotency_key=record.idempotency_key,
            locked_at=record.locked_at,
            request_path=record.request_path,
            request_body=record.request_body,
            response_code=record.response_code,
            response_body=record.response_body,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(row)
        except IntegrityError as e:
            if is_unique_violation(e):
                return Conflict(record.idempotency_key)
            raise
        return Created(record)

    async def get(self, key: str) -> RequestRecord | None:
        async with self._session_factory() as session:
            stmt = select(self._model).where(self._model.idempotency_key == key)
            row = (await session.execute(stmt)).scalar_one_or_none()
            return to_record(row) if row is not None else None

    async def update(self, record: RequestRecord, changes: Changes) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await SQLAlchemyTransaction(session, self._model).update(record, changes)

    async def transaction(
        self,
        isolation: Isolation,
        body: Callable[[SQLAlchemyTransaction[M]], Awaitable[T]],
    ) -> Result[T, SerializationFailure]:
        level = ISOLATION_LEVELS[isolation]
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    if level is not None:
                        # Must be the first use of the connection in this transaction.
                        await session.connection(
                            execution_options={"isolation_level": level}
                        )
                    value = await body(SQLAlchemyTransaction(session, self._model))
        except DBAPIError as e:
            if is_serialization_failure(e):
                return Failure(SerializationFailure(f"Transaction aborted: {e.orig}", e))
            raise
        return Success(value)

    async def release_locks(self, locked_before: datetime) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                cursor = cast(
                    CursorResult[Any],
                    await session.execute(
                        update(self._model)
                        .where(self._model.locked_at.is_not(None))
                        .where(self._model.locked_at < locked_before)
                        .values(locked_at=None)
                    ),
                )
                return cursor.rowcount


__all__ = (
    "IdempotentRequestMixin",
    "SQLAlchemyTransaction",
    "SQLAlchemyStore",
    "is_unique_violation",
    "is_serialization_failure",
    "to_record",
    "sqlite_begin_immediate",
)
