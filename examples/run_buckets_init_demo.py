"""
Demo script for BucketsInitializer.

Simulates a storage backend that is unreachable for the first few attempts,
shows backoff signals on the event bus, then runs data migrations once
buckets are ready.
"""

import asyncio

from loguru import logger

from vmapi_store.buckets import (
    DEFAULT_BUCKETS_CONFIG,
    BucketsInitializer,
    InitEvent,
    InitEventKind,
    InitializationCoordinator,
)
from vmapi_store.errors import TransientStorageError
from vmapi_store.migrations import DataMigrationsController, load_migrations
from vmapi_store.storage import InMemoryBucketStorage


class UnreachableAtFirstStorage(InMemoryBucketStorage):
    """In-memory storage that refuses connections for the first N attempts."""

    def __init__(self, fail_first_n: int = 3):
        super().__init__()
        self._fail = fail_first_n

    async def apply_schema(self, buckets_config):
        if self._fail > 0:
            self._fail -= 1
            raise TransientStorageError("connect ECONNREFUSED")
        await super().apply_schema(buckets_config)


async def on_event(event: InitEvent):
    if event.kind is InitEventKind.BACKOFF:
        logger.info(f"⏳ {event.process}: attempt {event.attempt} in {event.delay_ms:.0f}ms")
    elif event.kind is InitEventKind.DONE:
        logger.info("✅ Buckets initialized")
    else:
        logger.error(f"❌ Buckets initialization failed: {event.error}")


async def main():
    storage = UnreachableAtFirstStorage(fail_first_n=3)
    initializer = BucketsInitializer(max_attempts=10, initial_delay_ms=50, max_delay_ms=500)
    initializer.bus.subscribe(on_event)

    async def seed_and_migrate():
        for i in range(5):
            await storage.put("vms", f"vm-{i}", {"uuid": f"vm-{i}", "internal_metadata": {"n": i}})
        controller = DataMigrationsController(storage, load_migrations())
        await controller.start()
        return controller.latest_completed_migrations()

    coord = InitializationCoordinator(
        initializer, storage, DEFAULT_BUCKETS_CONFIG, seed_and_migrate
    )
    completed = await coord.run()

    logger.info(f"📊 Health: {initializer.health()}")
    logger.info(f"📦 Data versions: {completed}")
    logger.info(f"🔎 vm-0: {await storage.get('vms', 'vm-0')}")


if __name__ == "__main__":
    asyncio.run(main())
