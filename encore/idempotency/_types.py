"""
Idempotency types — value objects, errors and outcome variants.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Generic, TypeAlias, TypeVar

if TYPE_CHECKING:
    from encore.idempotency._record import RequestRecord

T = TypeVar("T")


def is_present(value: object) -> bool:
    """None, empty and whitespace-only strings are blank."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


# ═══════════════════════════════════════════════════════════════════════════════
# Record State — Lock Lifecycle
# ═══════════════════════════════════════════════════════════════════════════════


class RecordState(Enum):
    """
    Logical state of a request record.

    Lifecycle:
        IDLE → LOCKED → FINISHED
                 │
                 └──→ IDLE (failed without an outcome, may be retried)

    Note: FINISHED is terminal. The lock token of a finished record is ignored.
    """

    IDLE = auto()
    LOCKED = auto()
    FINISHED = auto()


# ═══════════════════════════════════════════════════════════════════════════════
# Fingerprint & Response Attributes
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Fingerprint:
    """
    Snapshot of the original request, used to detect key reuse.

    Blank dimensions mean "not specified" and never cause a mismatch.
    """

    path: str | None = None
    body: str | None = None


@dataclass(frozen=True, slots=True)
class ResponseAttributes:
    """Outcome fields produced by success/failure callbacks."""

    code: str | None = None
    body: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (is_present(self.code) or is_present(self.body))

    def merged_with(self, override: ResponseAttributes | None) -> ResponseAttributes:
        """Present fields of ``override`` win."""
        if override is None:
            return self
        return ResponseAttributes(
            code=override.code if is_present(override.code) else self.code,
            body=override.body if is_present(override.body) else self.body,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════


class IdempotencyErrorKind(Enum):
    """Kinds of start failures."""

    IN_PROGRESS = auto()  # Locked by another execution, or serialization conflict
    MISMATCH = auto()  # Same key, different fingerprint


@dataclass(frozen=True, slots=True)
class IdempotencyError:
    """
    Start failure.

    IN_PROGRESS is recoverable by the caller (retry later).
    MISMATCH is a caller bug: the key was reused for a different request.
    """

    kind: IdempotencyErrorKind
    key: str
    message: str
    cause: Exception | None = None

    @classmethod
    def in_progress(cls, key: str, cause: Exception | None = None) -> IdempotencyError:
        return cls(
            kind=IdempotencyErrorKind.IN_PROGRESS,
            key=key,
            message=f"Request in progress: {key}",
            cause=cause,
        )

    @classmethod
    def mismatch(cls, key: str) -> IdempotencyError:
        return cls(
            kind=IdempotencyErrorKind.MISMATCH,
            key=key,
            message=f"Request mismatch: {key} was first used for a different request",
        )


class WorkFailed(Exception):
    """
    Work returned ``Failure(error)`` inside Coordinator.success.

    Raised to roll the transaction back; ``error`` is the failure value.
    """

    def __init__(self, error: Any) -> None:
        super().__init__(error)
        self.error = error


@dataclass(frozen=True, slots=True)
class PermanentFailure:
    """
    Terminal signal — the outcome is persisted and the record unlocked.

    Returned by ``Coordinator.failure``. An execute scope that receives it
    replays the stored response instead of propagating an error.
    """

    record: RequestRecord
    cause: Exception | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Execution Variants
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Executed(Generic[T]):
    """Work ran in this call."""

    value: T


@dataclass(frozen=True, slots=True)
class Replayed:
    """
    Work was skipped; ``response`` is the saved response.

    Note: Produced for finished records and after a PermanentFailure.
    """

    record: RequestRecord
    response: Any


Execution: TypeAlias = "Executed[Any] | Replayed"


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "is_present",
    "RecordState",
    "Fingerprint",
    "ResponseAttributes",
    "IdempotencyErrorKind",
    "IdempotencyError",
    "WorkFailed",
    "PermanentFailure",
    "Executed",
    "Replayed",
    "Execution",
)
