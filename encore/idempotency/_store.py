"""
Record store — the transactional storage protocol the coordinator needs.

Store[Tx] — create, read and update request records, and run a body inside
a transaction of the requested isolation level. Tx is the store-specific
transaction handle handed to that body.

Outcomes the coordinator branches on are explicit values:
    create()      → Created | Conflict
    transaction() → Success(body result) | Failure(SerializationFailure)
Anything else is a fault and propagates as an exception.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, auto
from typing import Any, Protocol, TypeAlias, TypeVar

from returns.result import Result, Success

from encore._types import Changes
from encore.idempotency._record import RequestRecord


T = TypeVar("T")
Tx_co = TypeVar("Tx_co", covariant=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Store Outcomes
# ═══════════════════════════════════════════════════════════════════════════════


class Isolation(Enum):
    """Transaction isolation levels the coordinator asks for."""

    DEFAULT = auto()
    SERIALIZABLE = auto()


@dataclass(frozen=True, slots=True)
class Created:
    """The record was inserted."""

    record: RequestRecord


@dataclass(frozen=True, slots=True)
class Conflict:
    """A record with this key already exists (unique constraint)."""

    key: str


CreateOutcome: TypeAlias = "Created | Conflict"


@dataclass(frozen=True, slots=True)
class SerializationFailure:
    """The store aborted a transaction because of a concurrent one."""

    message: str
    cause: Exception | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Store Protocol
# ═══════════════════════════════════════════════════════════════════════════════


class Transaction(Protocol):
    """Operations available inside ``Store.transaction``."""

    async def find_one(
        self, key: str, *, unlocked: bool = False
    ) -> RequestRecord | None:
        """Find by key; with ``unlocked=True`` only if the lock token is null."""
        ...

    async def update(
        self, record: RequestRecord, changes: Changes, *, unlocked: bool = False
    ) -> bool:
        """
        Partial update of the record's row.

        With ``unlocked=True`` the row is written only if its lock token is
        null. Returns whether a row was written.
        """
        ...


class Store(Protocol[Tx_co]):
    """
    Request record store protocol.

    Note: Uniqueness of idempotency_key is the store's job, not the
    coordinator's. Reads return fresh RequestRecord instances.

    Example — a custom backend:

        class DynamoStore:
            async def create(self, record: RequestRecord) -> Created | Conflict:
                try:
                    await self.table.put_item(
                        Item=to_item(record),
                        ConditionExpression="attribute_not_exists(pk)",
                    )
                except self.client.exceptions.ConditionalCheckFailedException:
                    return Conflict(record.idempotency_key)
                return Created(record)

            # ... other methods
    """

    async def create(self, record: RequestRecord) -> CreateOutcome:
        """Insert a new record. Conflict if the key already exists."""
        ...

    async def get(self, key: str) -> RequestRecord | None:
        """Read a record outside of any coordinator transaction."""
        ...

    async def update(self, record: RequestRecord, changes: Changes) -> None:
        """Partial update, committed on its own."""
        ...

    async def transaction(
        self,
        isolation: Isolation,
        body: Callable[[Tx_co], Awaitable[T]],
    ) -> Result[T, SerializationFailure]:
        """
        Run ``body`` in a transaction.

        Commits when body returns, rolls back and re-raises when it raises.
        Returns Failure(SerializationFailure) on a serialization conflict.
        """
        ...

    async def release_locks(self, locked_before: datetime) -> int:
        """Clear lock tokens older than ``locked_before``. Returns the count."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Store — For Testing
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class _StoredRecord:
    """Internal mutable row for MemoryStore."""

    idempotency_key: str
    locked_at: datetime | None
    request_path: str | None
    request_body: str | None
    response_code: str | None
    response_body: str | None
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_record(cls, record: RequestRecord) -> _StoredRecord:
        return cls(
            idempotency_key=record.idempotency_key,
            locked_at=record.locked_at,
            request_path=record.request_path,
            request_body=record.request_body,
            response_code=record.response_code,
            response_body=record.response_body,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def to_record(self) -> RequestRecord:
        return RequestRecord(
            idempotency_key=self.idempotency_key,
            locked_at=self.locked_at,
            request_path=self.request_path,
            request_body=self.request_body,
            response_code=self.response_code,
            response_body=self.response_body,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def apply(self, changes: Changes) -> None:
        for name, value in changes.items():
            setattr(self, name, value)


@dataclass
class MemoryTransaction:
    """
    Transaction over a private copy of the MemoryStore state.

    ``data`` is free-form side storage that commits and rolls back together
    with the records.
    """

    rows: dict[str, _StoredRecord]
    data: dict[str, Any] = field(default_factory=dict)

    async def find_one(
        self, key: str, *, unlocked: bool = False
    ) -> RequestRecord | None:
        row = self.rows.get(key)
        if row is None:
            return None
        if unlocked and row.locked_at is not None:
            return None
        return row.to_record()

    async def update(
        self, record: RequestRecord, changes: Changes, *, unlocked: bool = False
    ) -> bool:
        row = self.rows.get(record.idempotency_key)
        if row is None:
            raise LookupError(f"No record for key: {record.idempotency_key}")
        if unlocked and row.locked_at is not None:
            return False
        row.apply(changes)
        return True


class MemoryStore:
    """
    In-memory request record store.

    Note: Single process only. One asyncio.Lock is held for each whole
    transaction, so transactions never conflict; they queue.
    Do not call store methods from inside a transaction body, use the
    transaction handle instead.
    """

    def __init__(self) -> None:
        self._rows: dict[str, _StoredRecord] = {}
        self._data: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    @property
    def data(self) -> dict[str, Any]:
        """Committed side storage."""
        return self._data

    async def create(self, record: RequestRecord) -> CreateOutcome:
        async with self._lock:
            if record.idempotency_key in self._rows:
                return Conflict(record.idempotency_key)
            self._rows[record.idempotency_key] = _StoredRecord.from_record(record)
            return Created(record)

    async def get(self, key: str) -> RequestRecord | None:
        async with self._lock:
            row = self._rows.get(key)
            return row.to_record() if row is not None else None

    async def update(self, record: RequestRecord, changes: Changes) -> None:
        async with self._lock:
            row = self._rows.get(record.idempotency_key)
            if row is None:
                raise LookupError(f"No record for key: {record.idempotency_key}")
            row.apply(changes)

    async def transaction(
        self,
        isolation: Isolation,
        body: Callable[[MemoryTransaction], Awaitable[T]],
    ) -> Result[T, SerializationFailure]:
        async with self._lock:
            tx = MemoryTransaction(
                rows={key: replace(row) for key, row in self._rows.items()},
                data=dict(self._data),
            )
            value = await body(tx)
            self._rows = tx.rows
            self._data = tx.data
            return Success(value)

    async def release_locks(self, locked_before: datetime) -> int:
        async with self._lock:
            released = 0
            for row in self._rows.values():
                if row.locked_at is not None and row.locked_at < locked_before:
                    row.locked_at = None
                    released += 1
            return released

    def __len__(self) -> int:
        return len(self._rows)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Isolation",
    "Created",
    "Conflict",
    "CreateOutcome",
    "SerializationFailure",
    "Transaction",
    "Store",
    "MemoryTransaction",
    "MemoryStore",
)
