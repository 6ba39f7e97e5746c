"""Clock abstraction so retry timers can be driven without wall-clock delays."""

from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def monotonic(self) -> float:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Real clock backed by time.monotonic() and asyncio.sleep()."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


def backoff_ms(index: int, initial_ms: int, max_ms: int) -> int:
    """Exponential backoff for the index-th consecutive retry (0-based), capped."""
    return min(initial_ms * (2 ** index), max_ms)
