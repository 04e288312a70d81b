"""
Core types for encore.

Re-exports from returns + custom type aliases.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, TypeAlias

# Re-export from returns
from returns.result import Failure, Result, Success

# ═══════════════════════════════════════════════════════════════════════════════
# Aliases
# ═══════════════════════════════════════════════════════════════════════════════

Clock: TypeAlias = Callable[[], datetime]
"""Source of "now" for lock tokens and bookkeeping timestamps."""

Changes: TypeAlias = Mapping[str, Any]
"""Column name → new value, as persisted by a store update."""

# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from returns
    "Result",
    "Success",
    "Failure",
    # Aliases
    "Clock",
    "Changes",
)
