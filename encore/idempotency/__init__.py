"""
Idempotency — exactly-once effect for at-least-once calls.

    from encore import idempotency as I

    # Coordinator API
    coordinator = I.Coordinator(I.MemoryStore())

    match await coordinator.start(key, I.Fingerprint(path="POST /payments", body=payload)):
        case Success(record):
            record.success_attributes(lambda p: I.ResponseAttributes("201", p.id))
            outcome = await coordinator.execute(
                record,
                lambda: coordinator.success(record, lambda tx: charge(tx, payload)),
            )
        case Failure(error):
            ...  # IdempotencyErrorKind.IN_PROGRESS / MISMATCH

    # Builder API
    executor = (
        I.idempotent(charge)
        .key(lambda req: req.idempotency_key)
        .fingerprint(lambda req: I.Fingerprint(path=req.path, body=req.body))
        .success_attributes(lambda p: I.ResponseAttributes("201", p.id))
        .store(I.MemoryStore())
        .build()
    )
    result = await executor.run(request)

Record lifecycle:

    start ──→ LOCKED ──── success ────→ FINISHED (response stored, replayed)
                │  ╲
                │   ╲── failure ─────→ FINISHED (failure response stored)
                │
                └─ work raises ───────→ IDLE (unlocked, next start retries)
"""

from encore.idempotency._types import (
    RecordState,
    Fingerprint,
    ResponseAttributes,
    IdempotencyError,
    IdempotencyErrorKind,
    WorkFailed,
    PermanentFailure,
    Executed,
    Replayed,
    Execution,
)
from encore.idempotency._record import (
    Hooks,
    Checkpoint,
    RequestRecord,
)
from encore.idempotency._store import (
    Isolation,
    Created,
    Conflict,
    CreateOutcome,
    SerializationFailure,
    Transaction,
    Store,
    MemoryTransaction,
    MemoryStore,
)
from encore.idempotency._policy import Policy
from encore.idempotency._coordinator import Coordinator
from encore.idempotency._builder import (
    idempotent,
    Idempotent,
    IdempotentExecutor,
)
from encore.idempotency._sqlalchemy import (
    IdempotentRequestMixin,
    SQLAlchemyTransaction,
    SQLAlchemyStore,
    sqlite_begin_immediate,
)

__all__ = (
    # Types
    "RecordState",
    "Fingerprint",
    "ResponseAttributes",
    "IdempotencyError",
    "IdempotencyErrorKind",
    "WorkFailed",
    "PermanentFailure",
    "Executed",
    "Replayed",
    "Execution",
    # Record
    "Hooks",
    "Checkpoint",
    "RequestRecord",
    # Store
    "Isolation",
    "Created",
    "Conflict",
    "CreateOutcome",
    "SerializationFailure",
    "Transaction",
    "Store",
    "MemoryTransaction",
    "MemoryStore",
    # Policy
    "Policy",
    # Coordinator
    "Coordinator",
    # Builder
    "idempotent",
    "Idempotent",
    "IdempotentExecutor",
    # SQLAlchemy
    "IdempotentRequestMixin",
    "SQLAlchemyTransaction",
    "SQLAlchemyStore",
    "sqlite_begin_immediate",
)
