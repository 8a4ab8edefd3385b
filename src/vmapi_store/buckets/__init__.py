"""Buckets initialization

Retrying setup of storage buckets with:
- BackoffPolicy (exponential, capped, optional attempt ceiling)
- Transient/permanent error classification (fail-closed)
- BucketsInitializer state machine (idle -> running -> done/failed/cancelled)
- InitializationCoordinator gating dependent startup steps
- EventBus for backoff/done/error signals
- Environment-based settings
"""

from .types import (
    BucketConfig,
    BucketsConfig,
    BucketStorage,
    ReindexableStorage,
    MigrationStorage,
    Record,
    Classification,
    InitializerState,
    InitializerHealth,
)
from .clock import Clock, AsyncioClock, VirtualClock
from .backoff import BackoffPolicy, BackoffExhaustedError
from .classifier import classify, is_transient, data_migration_error_transient
from .events import EventBus, InitEvent, InitEventKind
from .initializer import BucketsInitializer
from .coordinator import InitializationCoordinator, StorageInit, start_storage_init
from .config import DEFAULT_BUCKETS_CONFIG
from .settings import BucketsInitSettings, get_settings

__all__ = [
    # types
    "BucketConfig",
    "BucketsConfig",
    "BucketStorage",
    "ReindexableStorage",
    "MigrationStorage",
    "Record",
    "Classification",
    "InitializerState",
    "InitializerHealth",
    # policies
    "Clock",
    "AsyncioClock",
    "VirtualClock",
    "BackoffPolicy",
    "BackoffExhaustedError",
    "classify",
    "is_transient",
    "data_migration_error_transient",
    # signals
    "EventBus",
    "InitEvent",
    "InitEventKind",
    # runtime
    "BucketsInitializer",
    "InitializationCoordinator",
    "StorageInit",
    "start_storage_init",
    "BucketsInitSettings",
    "get_settings",
    "DEFAULT_BUCKETS_CONFIG",
]
