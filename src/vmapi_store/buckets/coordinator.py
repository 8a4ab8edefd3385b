"""
Initialization sequencing.

InitializationCoordinator runs a BucketsInitializer to completion and only
then starts a dependent step (typically data migrations). If buckets
initialization fails, the dependent step never starts and the error is
re-raised to the caller, which is expected to abort process startup.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from loguru import logger

from ..errors import InitializerStateError
from .initializer import BucketsInitializer
from .settings import BucketsInitSettings
from .types import BucketsConfig, BucketStorage

DependentAction = Callable[[], Union[Awaitable[Any], Any]]


class InitializationCoordinator:
    """Gate a dependent action on successful buckets initialization.

    Args:
        initializer: BucketsInitializer in the idle state
        storage: Storage adapter passed to ``initializer.start``
        buckets_config: Schema descriptor passed to ``initializer.start``
        dependent: Sync or async callable, invoked at most once after DONE

    Example:
        coord = InitializationCoordinator(init, storage, config, migrations.run)
        await coord.run()
    """

    def __init__(
        self,
        initializer: BucketsInitializer,
        storage: BucketStorage,
        buckets_config: BucketsConfig,
        dependent: DependentAction,
        *,
        log: Any = None,
    ):
        self._initializer = initializer
        self._storage = storage
        self._buckets_config = buckets_config
        self._dependent = dependent
        self._log = log or logger.bind(component="init-coordinator")
        self._ran = False
        self.dependent_result: Any = None

    @property
    def initializer(self) -> BucketsInitializer:
        return self._initializer

    async def run(self) -> Any:
        """Initialize buckets, then run the dependent action once.

        Returns the dependent action's result. Raises the initializer's
        BucketsInitError if buckets initialization fails.
        """
        if self._ran:
            raise InitializerStateError("coordinator has already run")
        self._ran = True

        self._initializer.start(self._storage, self._buckets_config)
        try:
            await self._initializer.wait()
        except Exception as err:
            self._log.error(f"Buckets initialization failed, not starting dependent step: {err}")
            raise

        self._log.info("Buckets ready, starting dependent step")
        result = self._dependent()
        if inspect.isawaitable(result):
            result = await result
        self.dependent_result = result
        return result


@dataclass
class StorageInit:
    """Objects wired together by start_storage_init()."""

    initializer: BucketsInitializer
    storage: BucketStorage
    buckets_config: BucketsConfig


def start_storage_init(
    settings: Optional[BucketsInitSettings] = None,
    *,
    storage: Optional[BucketStorage] = None,
    buckets_config: Optional[BucketsConfig] = None,
    log: Any = None,
    **initializer_kwargs: Any,
) -> StorageInit:
    """Build a storage adapter and an initializer from settings and start it.

    The returned initializer is already running; await
    ``result.initializer.wait()`` or subscribe to ``result.initializer.bus``.
    """
    from ..storage import create_storage
    from .config import DEFAULT_BUCKETS_CONFIG

    settings = settings or BucketsInitSettings()
    log = log or logger.bind(component="storage-init")
    storage = storage if storage is not None else create_storage(settings)
    buckets_config = buckets_config if buckets_config is not None else DEFAULT_BUCKETS_CONFIG

    initializer = BucketsInitializer(
        max_attempts=settings.max_attempts,
        max_reindex_attempts=settings.max_reindex_attempts,
        initial_delay_ms=settings.initial_delay_ms,
        max_delay_ms=settings.max_delay_ms,
        factor=settings.backoff_factor,
        reindex=settings.reindex,
        log=log.bind(component="buckets-initializer"),
        **initializer_kwargs,
    )
    initializer.start(storage, buckets_config)
    return StorageInit(initializer=initializer, storage=storage, buckets_config=buckets_config)
