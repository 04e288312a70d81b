"""
Coordinator policy — behavior configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

from encore._types import Clock


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# Policy — Full Configuration
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Policy:
    """
    Coordinator configuration.

    Fluent builder pattern — chain methods to configure.

    Example:
        policy = (
            Policy()
            .with_clock(lambda: datetime.now(timezone.utc))
            .with_stale_after(minutes=15)
        )

    Note: Immutable — each method returns a new Policy.

    clock: source of lock tokens and updated_at timestamps. Keep it in UTC:
    SQLAlchemyStore reads naive timestamps back as UTC.
    stale_after: default age for Coordinator.release_stale(). None means
    locks are never considered stale unless an age is passed explicitly.
    """

    clock: Clock = field(default=utc_now)
    stale_after: timedelta | None = None

    def now(self) -> datetime:
        return self.clock()

    def with_clock(self, clock: Clock) -> Policy:
        """
        Set the time source.

        Example:
            .with_clock(lambda: FROZEN_NOW)
        """
        return replace(self, clock=clock)

    def with_stale_after(
        self,
        *,
        seconds: float | None = None,
        minutes: float | None = None,
        hours: float | None = None,
        delta: timedelta | None = None,
    ) -> Policy:
        """
        Set the age after which a held lock counts as orphaned.

        Example:
            .with_stale_after(minutes=15)
            .with_stale_after(delta=timedelta(hours=1))
        """
        if delta is not None:
            stale = delta
        else:
            total_seconds = (seconds or 0) + (minutes or 0) * 60 + (hours or 0) * 3600
            stale = timedelta(seconds=total_seconds) if total_seconds > 0 else None

        return replace(self, stale_after=stale)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "utc_now",
    "Policy",
)
