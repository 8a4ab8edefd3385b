"""
Unit tests for storage initialization metrics (light sanity checks).
"""

import pytest
from prometheus_client import REGISTRY

from vmapi_store.buckets import BucketsInitializer
from vmapi_store.errors import TransientStorageError
from vmapi_store.metrics import metrics_registry


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_registry_exposes_metrics():
    assert metrics_registry.buckets_init_attempts_total is not None
    assert metrics_registry.buckets_init_backoff_delay_ms is not None
    assert metrics_registry.data_migrations_latest_version is not None


@pytest.mark.asyncio
async def test_attempt_outcomes_recorded(clock, buckets_config, memory_storage):
    class FlakyOnce:
        def __init__(self):
            self.failed = False

        async def apply_schema(self, cfg):
            if not self.failed:
                self.failed = True
                raise TransientStorageError("blip")
            await memory_storage.apply_schema(cfg)

        def is_transient_error(self, error):
            return memory_storage.is_transient_error(error)

    before_transient = sample(
        "buckets_init_attempts_total", process="buckets setup", outcome="transient"
    )
    before_success = sample("buckets_init_attempts_total", process="buckets setup", outcome="success")
    before_delays = sample("buckets_init_backoff_delay_ms_count", process="buckets setup")

    init = BucketsInitializer(clock=clock)
    init.start(FlakyOnce(), buckets_config)
    await init.wait()

    assert (
        sample("buckets_init_attempts_total", process="buckets setup", outcome="transient")
        == before_transient + 1
    )
    assert (
        sample("buckets_init_attempts_total", process="buckets setup", outcome="success")
        == before_success + 1
    )
    assert sample("buckets_init_backoff_delay_ms_count", process="buckets setup") == before_delays + 2
