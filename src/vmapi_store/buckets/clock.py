"""
Clock capability used by the backoff engine.

Production code sleeps on the event loop; tests inject VirtualClock so that
backoff schedules can be asserted without waiting on wall-clock time.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class AsyncioClock:
    """Real clock backed by asyncio.sleep."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class VirtualClock:
    """Clock that advances instantly and records every requested sleep.

    Each sleep still yields to the event loop once, so other tasks get to run
    between scheduled attempts.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += seconds
        await asyncio.sleep(0)

    @property
    def sleeps_ms(self) -> list[float]:
        return [round(s * 1000.0, 6) for s in self.sleeps]
