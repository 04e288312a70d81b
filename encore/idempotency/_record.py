"""
Request record — the persisted unit of idempotency.

One record per idempotency key: lock token, request fingerprint and the
stored response. Stores build fresh instances on every read; callbacks
registered on an instance live and die with it.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, NamedTuple

from encore._types import Changes
from encore.idempotency._types import (
    Fingerprint,
    RecordState,
    ResponseAttributes,
    is_present,
)


SuccessAttributesFn = Callable[[Any], ResponseAttributes | None]
FailureAttributesFn = Callable[[Exception | None], ResponseAttributes | None]
SavedResponseFn = Callable[["RequestRecord"], Any]


# ═══════════════════════════════════════════════════════════════════════════════
# Hooks — per-instance callbacks
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class Hooks:
    """Callbacks registered on a single record instance."""

    success_attributes: SuccessAttributesFn | None = None
    failure_attributes: FailureAttributesFn | None = None
    saved_response: SavedResponseFn | None = None


class Checkpoint(NamedTuple):
    """Mutable fields of a record, captured before a transaction."""

    locked_at: datetime | None
    response_code: str | None
    response_body: str | None
    updated_at: datetime | None


# ═══════════════════════════════════════════════════════════════════════════════
# Request Record
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class RequestRecord:
    """
    A stored idempotent request.

    States:
        IDLE     — locked_at is None, no response code
        LOCKED   — locked_at set, no response code
        FINISHED — response code present (lock token ignored)

    Note: lock()/unlock() change the instance and return the changes; the
    coordinator hands those changes to the store.
    """

    idempotency_key: str
    locked_at: datetime | None = None
    request_path: str | None = None
    request_body: str | None = None
    response_code: str | None = None
    response_body: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    hooks: Hooks = field(default_factory=Hooks, repr=False, compare=False)

    # ─── State ───────────────────────────────────────────────────────────────

    @property
    def is_finished(self) -> bool:
        """Has a stored response. The response code is authoritative."""
        return is_present(self.response_code)

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    @property
    def state(self) -> RecordState:
        if self.is_finished:
            return RecordState.FINISHED
        if self.is_locked:
            return RecordState.LOCKED
        return RecordState.IDLE

    @property
    def fingerprint(self) -> Fingerprint:
        return Fingerprint(path=self.request_path, body=self.request_body)

    @property
    def response(self) -> ResponseAttributes:
        return ResponseAttributes(code=self.response_code, body=self.response_body)

    def mismatches(self, incoming: Fingerprint) -> bool:
        """
        Stored and incoming values are both present and differ.

        Blank values on either side mean "not specified".
        """
        pairs = (
            (self.request_path, incoming.path),
            (self.request_body, incoming.body),
        )
        return any(
            is_present(stored) and is_present(given) and stored != given
            for stored, given in pairs
        )

    # ─── Transitions ─────────────────────────────────────────────────────────

    def lock(self, at: datetime) -> Changes:
        """Caller guarantees the record is currently unlocked."""
        changes = {"locked_at": at, "updated_at": at}
        self._apply(changes)
        return changes

    def unlock(
        self,
        attributes: ResponseAttributes | None = None,
        *,
        at: datetime,
    ) -> Changes:
        """Clear the lock, merging each present response field."""
        changes: dict[str, Any] = {"locked_at": None, "updated_at": at}
        if attributes is not None:
            if is_present(attributes.code):
                changes["response_code"] = attributes.code
            if is_present(attributes.body):
                changes["response_body"] = attributes.body
        self._apply(changes)
        return changes

    def checkpoint(self) -> Checkpoint:
        return Checkpoint(
            locked_at=self.locked_at,
            response_code=self.response_code,
            response_body=self.response_body,
            updated_at=self.updated_at,
        )

    def restore(self, checkpoint: Checkpoint) -> None:
        self._apply(checkpoint._asdict())

    def _apply(self, changes: Changes) -> None:
        for name, value in changes.items():
            setattr(self, name, value)

    # ─── Callbacks ───────────────────────────────────────────────────────────

    def success_attributes(self, fn: SuccessAttributesFn) -> RequestRecord:
        """Register ``fn(work_result) -> ResponseAttributes | None``."""
        self.hooks.success_attributes = fn
        return self

    def failure_attributes(self, fn: FailureAttributesFn) -> RequestRecord:
        """Register ``fn(exception | None) -> ResponseAttributes | None``."""
        self.hooks.failure_attributes = fn
        return self

    def saved_response(self, fn: SavedResponseFn) -> RequestRecord:
        """Register ``fn(record) -> response`` used when replaying."""
        self.hooks.saved_response = fn
        return self

    def replay(self) -> Any:
        if self.hooks.saved_response is not None:
            return self.hooks.saved_response(self)
        return self.response


__all__ = (
    "Hooks",
    "Checkpoint",
    "RequestRecord",
)
