"""
Coordinator — the lock/unlock/finish protocol over a record store.

    start(key, fingerprint)
         │
         ▼
    store.create ──── Created ───────────────────────────┐
         │                                               │
      Conflict                                           │
         │                                               │
         ▼                                               │
    SERIALIZABLE transaction                             │
      find unlocked ── none ──→ IN_PROGRESS              │
      fingerprint ──── differs ─→ MISMATCH               │
      lock unless finished                               │
         │                                               │
    SerializationFailure ──→ IN_PROGRESS                 │
         │                                               │
         └──────────────────────┬────────────────────────┘
                                ▼
    execute(record, work)
      finished ───────────────→ Replayed (work skipped)
      work → success(record, fn) ─ commit ─→ Executed
                                 └ rollback → failure() ─→ PermanentFailure ─→ Replayed
      work raises / returns other Failure ─→ unlock, propagate

Note: No in-process locks. Mutual exclusion comes from the store's unique
key and serializable isolation only.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, Generic, TypeVar

from returns.result import Failure, Result, Success

from encore.idempotency._policy import Policy
from encore.idempotency._record import RequestRecord
from encore.idempotency._store import (
    Conflict,
    Created,
    Isolation,
    Store,
    Transaction,
)
from encore.idempotency._types import (
    Executed,
    Fingerprint,
    IdempotencyError,
    PermanentFailure,
    Replayed,
    ResponseAttributes,
    WorkFailed,
)
from encore.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
E = TypeVar("E")
Tx = TypeVar("Tx", bound=Transaction)


class Coordinator(Generic[Tx]):
    """
    Idempotency coordinator.

    Example:
        coordinator = Coordinator(MemoryStore())

        match await coordinator.start("order-42", Fingerprint(path="POST /orders")):
            case Success(record):
                record.success_attributes(lambda order: ResponseAttributes("201", order.id))
                outcome = await coordinator.execute(
                    record,
                    lambda: coordinator.success(record, lambda tx: place_order(tx)),
                )
            case Failure(error):
                ...  # IN_PROGRESS → retry later, MISMATCH → caller bug
    """

    def __init__(self, store: Store[Tx], policy: Policy | None = None) -> None:
        self._store = store
        self._policy = policy if policy is not None else Policy()

    @property
    def store(self) -> Store[Tx]:
        return self._store

    @property
    def policy(self) -> Policy:
        return self._policy

    # ═══════════════════════════════════════════════════════════════════════════
    # Start — create or acquire
    # ═══════════════════════════════════════════════════════════════════════════

    async def start(
        self,
        key: str,
        fingerprint: Fingerprint | None = None,
    ) -> Result[RequestRecord, IdempotencyError]:
        """
        Create a locked record for ``key``, or acquire the existing one.

        A finished record is returned as is, without locking, so its response
        can be replayed.
        """
        incoming = fingerprint if fingerprint is not None else Fingerprint()
        now = self._policy.now()
        candidate = RequestRecord(
            idempotency_key=key,
            locked_at=now,
            request_path=incoming.path,
            request_body=incoming.body,
            created_at=now,
            updated_at=now,
        )

        match await self._store.create(candidate):
            case Created(record):
                logger.debug("idempotent_request_created", key=key)
                return Success(record)
            case Conflict():
                return await self._acquire(key, incoming)

    async def _acquire(
        self,
        key: str,
        incoming: Fingerprint,
    ) -> Result[RequestRecord, IdempotencyError]:
        # Read, validate and lock in one SERIALIZABLE transaction.
        async def lock_existing(tx: Tx) -> Result[RequestRecord, IdempotencyError]:
            record = await tx.find_one(key, unlocked=True)
            if record is None:
                return Failure(IdempotencyError.in_progress(key))
            if record.mismatches(incoming):
                return Failure(IdempotencyError.mismatch(key))
            if record.is_finished:
                return Success(record)
            # Conditional on a null lock token: a concurrent acquirer that read
            # the same idle row writes nothing.
            if not await tx.update(record, record.lock(self._policy.now()), unlocked=True):
                return Failure(IdempotencyError.in_progress(key))
            return Success(record)

        match await self._store.transaction(Isolation.SERIALIZABLE, lock_existing):
            case Success(acquired):
                self._log_acquired(key, acquired)
                return acquired
            case Failure(conflict):
                logger.info(
                    "idempotent_request_in_progress",
                    key=key,
                    reason="serialization_failure",
                    detail=conflict.message,
                )
                return Failure(IdempotencyError.in_progress(key, conflict.cause))

    def _log_acquired(
        self, key: str, acquired: Result[RequestRecord, IdempotencyError]
    ) -> None:
        match acquired:
            case Success(record) if record.is_finished:
                logger.debug("idempotent_request_found_finished", key=key)
            case Success(_):
                logger.debug("idempotent_request_reacquired", key=key)
            case Failure(error):
                logger.info(
                    f"idempotent_request_{error.kind.name.lower()}",
                    key=key,
                )

    # ═══════════════════════════════════════════════════════════════════════════
    # Execute — scope around side-effecting work
    # ═══════════════════════════════════════════════════════════════════════════

    async def execute(
        self,
        record: RequestRecord,
        work: Callable[[], Awaitable[Result[T, E]]],
    ) -> Result[Executed[T] | Replayed, E]:
        """
        Run ``work`` unless the record already has a response.

        Returns:
            Success(Replayed) — record finished, or work returned the
                terminal PermanentFailure (outcome already persisted)
            Success(Executed) — work returned Success
            Failure(e) — work returned any other Failure; record unlocked

        Exceptions raised by work unlock the record and are re-raised.
        """
        if record.is_finished:
            logger.info("idempotent_request_replayed", key=record.idempotency_key)
            return Success(Replayed(record=record, response=record.replay()))

        try:
            result = await work()
        except Exception:
            await self.unlock(record)
            raise

        match result:
            case Success(value):
                return Success(Executed(value))
            case Failure(PermanentFailure()):
                return Success(Replayed(record=record, response=record.replay()))
            case Failure(_):
                await self.unlock(record)
                return result
            case _:
                # Plain return values count as success.
                return Success(Executed(result))

    async def unlock(self, record: RequestRecord) -> None:
        """Release the lock, leaving the response fields untouched."""
        await self._store.update(record, record.unlock(at=self._policy.now()))
        logger.info("idempotent_request_unlocked", key=record.idempotency_key)

    # ═══════════════════════════════════════════════════════════════════════════
    # Finalize — success / failure
    # ═══════════════════════════════════════════════════════════════════════════

    async def success(
        self,
        record: RequestRecord,
        work: Callable[[Tx], Awaitable[T | Result[T, Any]]],
    ) -> Result[T, PermanentFailure]:
        """
        Run ``work(tx)`` and store its response in one local transaction.

        ``tx`` is the store's transaction handle; side writes made through it
        commit or roll back together with the response. Any failure rolls
        everything back and goes through ``failure`` with the cause.

        ``work`` may return a plain value or a Result. ``Failure(error)`` is a
        failure like a raise: the cause handed to ``failure`` is ``error`` when
        it is an exception, otherwise a WorkFailed wrapping it.
        """
        checkpoint = record.checkpoint()

        async def finish(tx: Tx) -> Any:
            value = await work(tx)
            match value:
                case Failure(error):
                    raise WorkFailed(error)
                case Success(inner):
                    value = inner
            attributes = None
            if record.hooks.success_attributes is not None:
                attributes = record.hooks.success_attributes(value)
            await tx.update(record, record.unlock(attributes, at=self._policy.now()))
            return value

        try:
            committed = await self._store.transaction(Isolation.DEFAULT, finish)
        except Exception as exc:
            record.restore(checkpoint)
            logger.warning(
                "idempotent_request_rolled_back",
                key=record.idempotency_key,
                error=repr(exc),
            )
            if isinstance(exc, WorkFailed) and isinstance(exc.error, Exception):
                return await self.failure(record, exc.error)
            return await self.failure(record, exc)

        match committed:
            case Success(value):
                logger.info(
                    "idempotent_request_succeeded",
                    key=record.idempotency_key,
                    response_code=record.response_code,
                )
                return Success(value)
            case Failure(conflict):
                record.restore(checkpoint)
                logger.warning(
                    "idempotent_request_rolled_back",
                    key=record.idempotency_key,
                    error=conflict.message,
                )
                return await self.failure(record, conflict.cause)

    async def failure(
        self,
        record: RequestRecord,
        exception: Exception | None = None,
        override: ResponseAttributes | None = None,
    ) -> Result[Any, PermanentFailure]:
        """
        Persist a final response, unlock, and return the terminal signal.

        Response fields come from the failure_attributes callback, with the
        present fields of ``override`` winning. Return the result out of the
        execute work to short-circuit it.
        """
        attributes = ResponseAttributes()
        if record.hooks.failure_attributes is not None:
            attributes = record.hooks.failure_attributes(exception) or attributes
        attributes = attributes.merged_with(override)

        try:
            await self._store.update(record, record.unlock(attributes, at=self._policy.now()))
        except Exception as persist_error:
            logger.error(
                "idempotent_request_failure_not_persisted",
                key=record.idempotency_key,
                error=repr(exception) if exception is not None else None,
                persist_error=repr(persist_error),
            )
            raise

        logger.info(
            "idempotent_request_failed",
            key=record.idempotency_key,
            response_code=record.response_code,
            error=repr(exception) if exception is not None else None,
        )
        if not record.is_finished:
            logger.warning(
                "idempotent_request_failed_without_response",
                key=record.idempotency_key,
            )
        return Failure(PermanentFailure(record=record, cause=exception))

    # ═══════════════════════════════════════════════════════════════════════════
    # Maintenance
    # ═══════════════════════════════════════════════════════════════════════════

    async def release_stale(self, older_than: timedelta | None = None) -> int:
        """
        Release locks held longer than ``older_than`` (or policy.stale_after).

        For a periodic sweep after worker crashes. Response fields are not
        touched, so finished records stay finished.
        """
        age = older_than if older_than is not None else self._policy.stale_after
        if age is None:
            raise ValueError("older_than is required when policy.stale_after is not set")

        released = await self._store.release_locks(self._policy.now() - age)
        logger.info("stale_locks_released", count=released, older_than=str(age))
        return released


__all__ = ("Coordinator",)
