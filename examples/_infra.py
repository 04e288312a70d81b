"""Shared infrastructure for examples."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine

from encore.logging import setup_logging


# Helpers
def banner(title: str) -> None:
    print(f"\n{'─' * 50}\n{title}\n{'─' * 50}")


def run(main: Callable[[], Coroutine[object, object, None]], log_level: str = "INFO") -> None:
    setup_logging(level=log_level, format="console")
    asyncio.run(main())
