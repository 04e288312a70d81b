"""
encore — idempotent request coordination for Python backends.

    from encore import idempotency as I   # Start / execute / finalize

A retried request returns the stored response instead of running twice,
concurrent attempts for one key are rejected, and a key reused for a
different request is reported as a mismatch.
"""

from encore import idempotency
from encore._types import (
    Result,
    Success,
    Failure,
)

__version__ = "0.1.0"

__all__ = (
    "idempotency",
    "Result",
    "Success",
    "Failure",
)
