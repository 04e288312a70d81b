"""
Idempotency builder — fluent API over the coordinator.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any, Generic, TypeVar

from returns.result import Failure, Result, Success

from encore.idempotency._coordinator import Coordinator
from encore.idempotency._policy import Policy
from encore.idempotency._record import (
    FailureAttributesFn,
    RequestRecord,
    SavedResponseFn,
    SuccessAttributesFn,
)
from encore.idempotency._store import Store
from encore.idempotency._types import (
    Executed,
    Fingerprint,
    IdempotencyError,
    Replayed,
)

K = TypeVar("K")
T = TypeVar("T")

KeyFn = Callable[[K], str]
FingerprintFn = Callable[[K], Fingerprint]
Operation = Callable[[K, Any], Awaitable[T]]


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotent Builder
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, frozen=True)
class Idempotent(Generic[K, T]):
    """
    Fluent idempotency builder.
    """

    _operation: Operation[K, T]
    _key_fn: KeyFn[K] | None = None
    _fingerprint_fn: FingerprintFn[K] | None = None
    _store: Store[Any] | None = None
    _policy: Policy = field(default_factory=Policy)
    _success_attributes: SuccessAttributesFn | None = None
    _failure_attributes: FailureAttributesFn | None = None
    _saved_response: SavedResponseFn | None = None

    def key(self, fn: KeyFn[K]) -> Idempotent[K, T]:
        """Set key extraction function."""
        return replace(self, _key_fn=fn)

    def fingerprint(self, fn: FingerprintFn[K]) -> Idempotent[K, T]:
        """Set request fingerprint extraction function."""
        return replace(self, _fingerprint_fn=fn)

    def store(self, s: Store[Any]) -> Idempotent[K, T]:
        """Set storage backend."""
        return replace(self, _store=s)

    def policy(self, p: Policy) -> Idempotent[K, T]:
        """Set coordinator policy."""
        return replace(self, _policy=p)

    def success_attributes(self, fn: SuccessAttributesFn) -> Idempotent[K, T]:
        """Map the operation result to the stored response."""
        return replace(self, _success_attributes=fn)

    def failure_attributes(self, fn: FailureAttributesFn) -> Idempotent[K, T]:
        """Map an operation failure to the stored response."""
        return replace(self, _failure_attributes=fn)

    def saved_response(self, fn: SavedResponseFn) -> Idempotent[K, T]:
        """Build the replayed response from a finished record."""
        return replace(self, _saved_response=fn)

    def build(self) -> IdempotentExecutor[K, T]:
        """Build executable."""
        if self._key_fn is None:
            raise ValueError("key() is required")
        if self._store is None:
            raise ValueError("store() is required")

        return IdempotentExecutor(
            operation=self._operation,
            key_fn=self._key_fn,
            fingerprint_fn=self._fingerprint_fn,
            coordinator=Coordinator(self._store, self._policy),
            success_attributes=self._success_attributes,
            failure_attributes=self._failure_attributes,
            saved_response=self._saved_response,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotent Executor
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, frozen=True)
class IdempotentExecutor(Generic[K, T]):
    """
    Compiled idempotent executor.

    Note: Thin wrapper — start, register callbacks, execute(success(...)).
    Any exception from the operation, or a returned Failure, is final: it is
    stored through the failure callback and replayed on later calls.
    """

    operation: Operation[K, T]
    key_fn: KeyFn[K]
    fingerprint_fn: FingerprintFn[K] | None
    coordinator: Coordinator[Any]
    success_attributes: SuccessAttributesFn | None = None
    failure_attributes: FailureAttributesFn | None = None
    saved_response: SavedResponseFn | None = None

    async def run(
        self, input_val: K
    ) -> Result[Executed[T] | Replayed, IdempotencyError]:
        """Execute with idempotency."""
        key = self.key_fn(input_val)
        fingerprint = (
            self.fingerprint_fn(input_val) if self.fingerprint_fn is not None else None
        )

        match await self.coordinator.start(key, fingerprint):
            case Success(record):
                return await self._execute(record, input_val)
            case Failure(error):
                return Failure(error)

    async def _execute(
        self, record: RequestRecord, input_val: K
    ) -> Result[Executed[T] | Replayed, Any]:
        if self.success_attributes is not None:
            record.success_attributes(self.success_attributes)
        if self.failure_attributes is not None:
            record.failure_attributes(self.failure_attributes)
        if self.saved_response is not None:
            record.saved_response(self.saved_response)

        operation = self.operation
        coordinator = self.coordinator

        async def work() -> Result[T, Any]:
            return await coordinator.success(record, lambda tx: operation(input_val, tx))

        return await coordinator.execute(record, work)


# ═══════════════════════════════════════════════════════════════════════════════
# idempotent() — Entry Point
# ═══════════════════════════════════════════════════════════════════════════════


def idempotent(operation: Operation[K, T]) -> Idempotent[K, T]:
    """
    Create idempotent wrapper for an operation.

    The operation receives the input and the store's transaction handle.

    Example:
        executor = (
            I.idempotent(create_order)
            .key(lambda req: req.idempotency_key)
            .fingerprint(lambda req: I.Fingerprint(path="POST /orders", body=req.json()))
            .success_attributes(lambda order: I.ResponseAttributes("201", order.id))
            .failure_attributes(lambda exc: I.ResponseAttributes("422", str(exc)))
            .store(I.MemoryStore())
            .build()
        )

        result = await executor.run(request)
    """
    return Idempotent(_operation=operation)


__all__ = (
    "Idempotent",
    "IdempotentExecutor",
    "idempotent",
)
