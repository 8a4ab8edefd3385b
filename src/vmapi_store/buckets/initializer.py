"""
BucketsInitializer drives the process that sets up (and optionally reindexes)
the storage buckets VMAPI needs before it can serve requests.

Each backed-off process repeatedly applies an operation against the storage
adapter, waiting on an exponential backoff between attempts. Transient errors
are retried until the attempt ceiling (if any) is reached; permanent and
unclassifiable errors stop the process immediately.

Completion is signaled exactly once, either as DONE or as ERROR carrying a
BucketsInitError, both through ``wait()`` and through the event bus.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from ..errors import (
    BucketsInitError,
    BucketsSetupError,
    InitializationCancelledError,
    InitializerStateError,
    RetriesExhaustedError,
)
from ..metrics.registry import (
    BUCKETS_INIT_ATTEMPTS_TOTAL,
    BUCKETS_INIT_BACKOFF_DELAY_MS,
    BUCKETS_INIT_TERMINAL_TOTAL,
)
from .backoff import (
    DEFAULT_FACTOR,
    DEFAULT_INITIAL_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    BackoffExhaustedError,
    BackoffPolicy,
)
from .classifier import TransientPredicate, always_transient, classify
from .clock import Clock
from .events import EventBus, InitEvent, InitEventKind
from .types import (
    BucketsConfig,
    BucketStorage,
    Classification,
    InitializerHealth,
    InitializerState,
    ReindexableStorage,
)

SETUP_PROCESS = "buckets setup"
REINDEX_PROCESS = "buckets reindex"


class BucketsInitializer:
    """Retrying, single-shot buckets initializer.

    Args:
        max_attempts: Attempts for buckets setup before giving up. ``None``
            retries indefinitely on transient errors.
        max_reindex_attempts: Same, for the reindex process.
        initial_delay_ms / max_delay_ms / factor: exponential schedule bounds.
        reindex: Run ``storage.reindex_buckets`` after a successful setup.
        clock: Clock used for backoff waits (VirtualClock in tests).
        log: loguru logger; defaults to one bound to this component.
        bus: EventBus receiving BACKOFF/DONE/ERROR events.

    Example:
        init = BucketsInitializer(max_attempts=10)
        init.start(storage, DEFAULT_BUCKETS_CONFIG)
        await init.wait()  # raises BucketsInitError on failure
    """

    def __init__(
        self,
        *,
        max_attempts: Optional[int] = None,
        max_reindex_attempts: Optional[int] = None,
        initial_delay_ms: float = DEFAULT_INITIAL_DELAY_MS,
        max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
        factor: float = DEFAULT_FACTOR,
        reindex: bool = False,
        clock: Optional[Clock] = None,
        log: Any = None,
        bus: Optional[EventBus] = None,
        initializer_id: str = "buckets-init",
    ):
        if max_attempts is not None and max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if max_reindex_attempts is not None and max_reindex_attempts < 0:
            raise ValueError("max_reindex_attempts must be >= 0")

        self._max_attempts = max_attempts
        self._max_reindex_attempts = max_reindex_attempts
        self._initial_delay_ms = initial_delay_ms
        self._max_delay_ms = max_delay_ms
        self._factor = factor
        self._reindex = reindex
        self._clock = clock
        self._log = log or logger.bind(component="buckets-initializer")
        self.bus = bus or EventBus()
        self.initializer_id = initializer_id

        self._state = InitializerState.IDLE
        self._phase: Optional[str] = None
        self._attempts = 0
        self._last_error: Optional[BaseException] = None
        self._cancel_requested = False
        self._task: Optional[asyncio.Task] = None
        self._outcome: Optional[asyncio.Future] = None

    # ---------- public API ----------

    @property
    def state(self) -> InitializerState:
        return self._state

    @property
    def last_error(self) -> Optional[BaseException]:
        """Latest error seen by any attempt, cleared when a process succeeds."""
        return self._last_error

    def health(self) -> InitializerHealth:
        return InitializerHealth(
            state=self._state,
            phase=self._phase,
            attempts=self._attempts,
            last_error=(
                f"{type(self._last_error).__name__}: {self._last_error}"
                if self._last_error is not None
                else None
            ),
        )

    def start(self, storage: BucketStorage, buckets_config: BucketsConfig) -> None:
        """Start initializing buckets in the background. Requires a running loop."""
        if self._state is not InitializerState.IDLE:
            raise InitializerStateError(
                f"initializer {self.initializer_id} cannot be started from state "
                f"{self._state.value}; create a new instance"
            )
        if storage is None:
            raise ValueError("storage required")
        if buckets_config is None:
            raise ValueError("buckets_config required")
        if self._reindex and not isinstance(storage, ReindexableStorage):
            raise ValueError("reindex requested but storage has no reindex_buckets()")

        loop = asyncio.get_running_loop()
        self._outcome = loop.create_future()
        self._state = InitializerState.RUNNING
        self._log.info(f"Starting buckets initialization ({len(buckets_config)} buckets)")
        self._task = loop.create_task(
            self._run(storage, buckets_config), name=f"{self.initializer_id}-run"
        )

    async def wait(self, timeout: Optional[float] = None) -> None:
        """Wait for the terminal signal. Raises the wrapped error on failure."""
        if self._outcome is None:
            raise InitializerStateError("initializer has not been started")
        outcome = asyncio.shield(self._outcome)
        error = await (asyncio.wait_for(outcome, timeout) if timeout is not None else outcome)
        if error is not None:
            raise error

    async def cancel(self) -> None:
        """Request cancellation; takes effect before the next scheduled attempt."""
        if self._state is not InitializerState.RUNNING:
            return
        self._cancel_requested = True
        self._log.info("Cancellation requested")
        # Called from a subscriber running inside the run task: the token is
        # picked up after the current backoff wait.
        if self._task is None or asyncio.current_task() is self._task:
            return
        await asyncio.shield(self._task)

    # ---------- internals ----------

    async def _run(self, storage: BucketStorage, buckets_config: BucketsConfig) -> None:
        try:
            await self._perform_backed_off_process(
                SETUP_PROCESS,
                partial(storage.apply_schema, buckets_config),
                storage.is_transient_error,
                self._max_attempts,
            )
            if self._reindex:
                # Reindexing errors are always transient.
                await self._perform_backed_off_process(
                    REINDEX_PROCESS,
                    partial(storage.reindex_buckets, buckets_config),  # type: ignore[attr-defined]
                    always_transient,
                    self._max_reindex_attempts,
                )
        except InitializationCancelledError as err:
            await self._finish(InitializerState.CANCELLED, err)
            return
        except BucketsInitError as err:
            self._log.error(f"Error when initializing buckets: {err}")
            await self._finish(InitializerState.FAILED, err)
            return
        except asyncio.CancelledError:
            await self._finish(
                InitializerState.CANCELLED,
                InitializationCancelledError("initializer task was cancelled"),
            )
            raise
        except Exception as err:
            # Failures outside the storage operation (clock, logger, adapter
            # wiring) still end the run with a single error signal.
            wrapped = BucketsSetupError(self._phase or SETUP_PROCESS, err)
            logger.bind(component="buckets-initializer").exception(
                f"Unexpected error when initializing buckets: {err!r}"
            )
            await self._finish(InitializerState.FAILED, wrapped)
            return

        self._log.info("Buckets initialization done!")
        await self._finish(InitializerState.DONE, None)

    async def _perform_backed_off_process(
        self,
        process: str,
        operation: Callable[[], Awaitable[None]],
        is_transient_error: TransientPredicate,
        max_attempts: Optional[int],
    ) -> None:
        log = self._log.bind(process=process)
        policy = BackoffPolicy(
            self._initial_delay_ms,
            self._max_delay_ms,
            self._factor,
            max_attempts,
            clock=self._clock,
            on_backoff=partial(self._on_backoff, process),
        )
        last_error: Optional[BaseException] = None
        self._phase = process
        log.info(f"Starting {process}")

        while True:
            self._check_cancelled(process)
            try:
                attempt, _ = await policy.backoff()
            except BackoffExhaustedError as exc:
                log.bind(attempts=exc.attempts).error(
                    f"Maximum number of tries reached when performing {process}"
                )
                raise RetriesExhaustedError(process, exc.attempts, last_error)
            self._check_cancelled(process)

            self._attempts += 1
            try:
                await operation()
            except Exception as err:
                self._last_error = last_error = err
                verdict = classify(is_transient_error, err)
                if verdict is Classification.PERMANENT:
                    BUCKETS_INIT_ATTEMPTS_TOTAL.labels(process=process, outcome="permanent").inc()
                    log.bind(attempt=attempt, error=repr(err)).error(
                        f"Non transient error when performing {process}, stopping backoff"
                    )
                    policy.reset()
                    raise BucketsSetupError(process, err)

                BUCKETS_INIT_ATTEMPTS_TOTAL.labels(process=process, outcome="transient").inc()
                log.bind(
                    attempt=attempt, delay_ms=policy.current_delay_ms, error=repr(err)
                ).warning(
                    f"Transient error encountered on {process} attempt {attempt}, "
                    f"backing off {policy.current_delay_ms:.0f}ms"
                )
                continue

            BUCKETS_INIT_ATTEMPTS_TOTAL.labels(process=process, outcome="success").inc()
            self._last_error = None
            log.bind(attempt=attempt).info(f"{process} done after {attempt} attempt(s)")
            policy.reset()
            return

    def _check_cancelled(self, process: str) -> None:
        if self._cancel_requested:
            raise InitializationCancelledError(f"{process} cancelled")

    async def _on_backoff(self, process: str, attempt: int, delay_ms: float) -> None:
        BUCKETS_INIT_BACKOFF_DELAY_MS.labels(process=process).observe(delay_ms)
        log = self._log.bind(process=process, attempt=attempt, delay_ms=delay_ms)
        if attempt == 1:
            log.debug(f"{process} attempt scheduled in {delay_ms:.0f}ms")
        else:
            log.warning(f"{process} backed off, attempt {attempt} in {delay_ms:.0f}ms")
        await self.bus.publish(
            InitEvent(
                kind=InitEventKind.BACKOFF,
                initializer_id=self.initializer_id,
                process=process,
                attempt=attempt,
                delay_ms=delay_ms,
            )
        )

    def _settle(self, state: InitializerState) -> bool:
        """Move to a terminal state once. Returns False if already terminal."""
        if self._state.terminal:
            return False
        self._state = state
        BUCKETS_INIT_TERMINAL_TOTAL.labels(initializer=self.initializer_id, state=state.value).inc()
        return True

    def _resolve(self, error: Optional[BucketsInitError]) -> None:
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(error)

    async def _finish(self, state: InitializerState, error: Optional[BucketsInitError]) -> None:
        if not self._settle(state):
            return
        if error is None:
            event = InitEvent(kind=InitEventKind.DONE, initializer_id=self.initializer_id)
        else:
            event = InitEvent(
                kind=InitEventKind.ERROR,
                initializer_id=self.initializer_id,
                process=getattr(error, "process", self._phase),
                error=error,
            )
        # subscribers see the terminal event before wait() returns
        try:
            await self.bus.publish(event)
        finally:
            self._resolve(error)
