"""
Initialization signals.

Provides in-process pub/sub for the signals a BucketsInitializer emits:
BACKOFF (observability only), DONE and ERROR (terminal, emitted once).
Multiple subscribers can react (startup sequencing, logging, metrics).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from loguru import logger


class InitEventKind(str, Enum):
    """Kinds of initializer signals."""

    BACKOFF = "backoff"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class InitEvent:
    """Immutable initializer signal.

    Attributes:
        kind: BACKOFF, DONE or ERROR
        initializer_id: Identifies the emitting initializer
        process: Backed-off process the event belongs to (e.g. "buckets setup")
        attempt: Attempt number (BACKOFF only, 1-based)
        delay_ms: Scheduled delay before the attempt (BACKOFF only)
        error: Wrapped cause (ERROR only)
    """

    kind: InitEventKind
    initializer_id: str
    process: Optional[str] = None
    attempt: Optional[int] = None
    delay_ms: Optional[float] = None
    error: Optional[BaseException] = None

    @property
    def terminal(self) -> bool:
        return self.kind in (InitEventKind.DONE, InitEventKind.ERROR)

    def describe(self) -> str:
        """One-line summary for logs, e.g. "backoff buckets setup attempt=2 delay=20ms"."""
        parts = [self.kind.value]
        if self.process:
            parts.append(self.process)
        if self.attempt is not None:
            parts.append(f"attempt={self.attempt}")
        if self.delay_ms is not None:
            parts.append(f"delay={self.delay_ms:.0f}ms")
        if self.error is not None:
            parts.append(f"error={type(self.error).__name__}")
        return " ".join(parts)


class InitEventSubscriber(Protocol):
    """Async callable accepting InitEvent.

    Exceptions are caught and logged so one subscriber cannot break the
    initializer or other subscribers.
    """

    async def __call__(self, event: InitEvent) -> None: ...


class EventBus:
    """In-process pub/sub bus for initializer signals.

    Best-effort delivery with error isolation, in registration order.

    Example:
        bus = EventBus()

        async def on_event(event: InitEvent):
            if event.kind is InitEventKind.DONE:
                await start_migrations()

        bus.subscribe(on_event)
    """

    def __init__(self) -> None:
        self._subs: list[InitEventSubscriber] = []

    def subscribe(self, callback: InitEventSubscriber) -> None:
        """Add a subscriber. Subscribing the same callable twice is a no-op."""
        if callback in self._subs:
            return
        self._subs.append(callback)
        logger.debug(f"Init event subscriber {_name(callback)} added ({len(self._subs)} total)")

    def unsubscribe(self, callback: InitEventSubscriber) -> None:
        """Remove a subscriber. No-op if it was never added."""
        if callback not in self._subs:
            return
        self._subs.remove(callback)
        logger.debug(f"Init event subscriber {_name(callback)} removed ({len(self._subs)} total)")

    async def publish(self, event: InitEvent) -> None:
        if not self._subs:
            return

        log = logger.bind(initializer=event.initializer_id, kind=event.kind.value)
        log.debug(f"Publishing init event: {event.describe()}")

        # Snapshot: subscribers may unsubscribe themselves while handling
        subscribers = tuple(self._subs)
        for callback in subscribers:
            try:
                await callback(event)
            except Exception as exc:
                log.warning(
                    f"Init event subscriber {_name(callback)} failed on {event.kind.value} "
                    f"(ignored): {type(exc).__name__}: {exc}"
                )

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)


def _name(callback: InitEventSubscriber) -> str:
    return getattr(callback, "__qualname__", None) or type(callback).__name__
