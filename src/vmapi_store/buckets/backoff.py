from __future__ import annotations

from typing import Awaitable, Callable, Optional

from .clock import AsyncioClock, Clock

BackoffCallback = Callable[[int, float], Awaitable[None]]

DEFAULT_INITIAL_DELAY_MS = 10
DEFAULT_MAX_DELAY_MS = 5000
DEFAULT_FACTOR = 2.0


class BackoffExhaustedError(Exception):
    """Raised by BackoffPolicy.backoff() once the attempt ceiling is reached."""

    def __init__(self, attempts: int):
        super().__init__(f"backoff exhausted after {attempts} attempts")
        self.attempts = attempts


class BackoffPolicy:
    """Exponential backoff engine with an optional attempt ceiling.

    Each call to ``backoff()`` is one "ready" signal: it reports the attempt
    number and delay to ``on_backoff``, waits for the delay on the injected
    clock, then grows the delay by ``factor`` (capped at ``max_delay_ms``).

    Attempts are numbered from 1. With ``max_attempts=N`` the (N+1)th call
    raises BackoffExhaustedError instead of waiting; ``None`` never exhausts.

    Example:
        policy = BackoffPolicy(initial_delay_ms=10, max_delay_ms=5000, max_attempts=5)
        while True:
            attempt, delay_ms = await policy.backoff()
            try:
                await do_work()
                break
            except TimeoutError:
                continue
    """

    def __init__(
        self,
        initial_delay_ms: float = DEFAULT_INITIAL_DELAY_MS,
        max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
        factor: float = DEFAULT_FACTOR,
        max_attempts: Optional[int] = None,
        *,
        clock: Optional[Clock] = None,
        on_backoff: Optional[BackoffCallback] = None,
    ):
        if initial_delay_ms < 0 or max_delay_ms < 0:
            raise ValueError("backoff delays must be >= 0")
        if factor < 1.0:
            raise ValueError("factor must be >= 1.0")
        if max_attempts is not None and max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")

        self._initial_ms = min(float(initial_delay_ms), float(max_delay_ms))
        self._max_ms = float(max_delay_ms)
        self._factor = factor
        self._max_attempts = max_attempts
        self._clock: Clock = clock or AsyncioClock()
        self._on_backoff = on_backoff

        self._attempt = 0
        self._delay_ms = self._initial_ms

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def current_delay_ms(self) -> float:
        return self._delay_ms

    @property
    def initial_delay_ms(self) -> float:
        return self._initial_ms

    @property
    def max_delay_ms(self) -> float:
        return self._max_ms

    @property
    def max_attempts(self) -> Optional[int]:
        return self._max_attempts

    def next_backoff_ms(self, attempt: int) -> float:
        """Delay used for a given 1-based attempt, independent of state."""
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        return min(self._initial_ms * (self._factor ** (attempt - 1)), self._max_ms)

    async def backoff(self) -> tuple[int, float]:
        """Wait for the next ready signal. Returns (attempt, delay_ms)."""
        if self._max_attempts is not None and self._attempt >= self._max_attempts:
            attempts = self._attempt
            self.reset()
            raise BackoffExhaustedError(attempts)

        self._attempt += 1
        delay_ms = self._delay_ms
        if self._on_backoff:
            await self._on_backoff(self._attempt, delay_ms)

        await self._clock.sleep(delay_ms / 1000.0)
        self._delay_ms = min(self._delay_ms * self._factor, self._max_ms)
        return self._attempt, delay_ms

    def reset(self) -> None:
        self._attempt = 0
        self._delay_ms = self._initial_ms
