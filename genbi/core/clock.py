"""
Clock abstraction for the upload pipeline.

Everything that waits or measures elapsed time (retry delays, the progress
ticker, deadlines, cache expiry, path timestamps) goes through a Clock so
tests can drive time deterministically.
"""

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def time(self) -> float:
        """Wall-clock seconds since the epoch."""

    def monotonic(self) -> float:
        """Monotonic seconds, for elapsed-time measurement."""

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    def time(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


system_clock = SystemClock()
