"""
Unit tests for DataMigrationsController.
"""

import pytest

from vmapi_store.buckets import DEFAULT_BUCKETS_CONFIG, BucketsConfig
from vmapi_store.errors import (
    BucketsSetupError,
    DataMigrationError,
    NotIndexedError,
    RetriesExhaustedError,
    TransientStorageError,
)
from vmapi_store.migrations import (
    DataMigration,
    DataMigrationsController,
    NoopDataMigrationsController,
    load_migrations,
    validate_data_migrations,
)
from vmapi_store.storage import InMemoryBucketStorage


def set_version(version):
    def migrate_record(record, log=None):
        if (record.value.get("data_version") or 0) >= version:
            return None
        record.value["data_version"] = version
        return record

    return migrate_record


class FlakyMigrationStorage(InMemoryBucketStorage):
    """Fails the first N record lookups with a transient error."""

    def __init__(self, fail_first_n=1, error=None):
        super().__init__()
        self._fail = fail_first_n
        self._error = error or TransientStorageError("connection reset")
        self.lookups = 0

    async def find_records_to_migrate(self, model, version, limit=1000):
        self.lookups += 1
        if self._fail > 0:
            self._fail -= 1
            raise self._error
        return await super().find_records_to_migrate(model, version, limit)


@pytest.mark.asyncio
async def test_builtin_migrations_applied(clock):
    storage = InMemoryBucketStorage()
    await storage.apply_schema(DEFAULT_BUCKETS_CONFIG)
    await storage.put("vms", "vm1", {"uuid": "vm1", "internal_metadata": {"role": "db"}})
    await storage.put("vms", "vm2", {"uuid": "vm2"})

    controller = DataMigrationsController(storage, load_migrations(), clock=clock)
    await controller.start()

    vm1 = await storage.get("vms", "vm1")
    assert vm1["internal_metadata_search_array"] == ["role=db"]
    assert vm1["data_version"] == 1
    assert (await storage.get("vms", "vm2"))["data_version"] == 1
    assert controller.latest_completed_migrations() == {"vms": 1}
    assert controller.latest_completed_migration_for_model("vms") == 1
    assert controller.latest_errors() is None


@pytest.mark.asyncio
async def test_migrations_processed_in_chunks(clock, buckets_config):
    storage = InMemoryBucketStorage()
    await storage.apply_schema(buckets_config)
    for i in range(5):
        await storage.put("vms", f"vm{i}", {"uuid": f"vm{i}"})

    migrations = {
        "vms": [
            DataMigration(model="vms", name="001-one", version=1, migrate_record=set_version(1)),
            DataMigration(model="vms", name="002-two", version=2, migrate_record=set_version(2)),
        ]
    }
    controller = DataMigrationsController(storage, migrations, chunk_size=2, clock=clock)
    await controller.start()

    for i in range(5):
        assert (await storage.get("vms", f"vm{i}"))["data_version"] == 2
    assert controller.latest_completed_migrations() == {"vms": 2}


@pytest.mark.asyncio
async def test_migration_that_rewrites_nothing_stops(clock, buckets_config):
    storage = InMemoryBucketStorage()
    await storage.apply_schema(buckets_config)
    await storage.put("vms", "vm1", {"uuid": "vm1"})

    migrations = {
        "vms": [
            DataMigration(model="vms", name="001-noop", version=1, migrate_record=lambda r, log=None: None)
        ]
    }
    controller = DataMigrationsController(storage, migrations, clock=clock)
    await controller.start()

    assert "data_version" not in await storage.get("vms", "vm1")
    assert controller.latest_completed_migrations() == {"vms": 1}


@pytest.mark.asyncio
async def test_transient_error_retried(clock, buckets_config):
    storage = FlakyMigrationStorage(fail_first_n=2)
    await storage.apply_schema(buckets_config)
    await storage.put("vms", "vm1", {"uuid": "vm1"})

    migrations = {
        "vms": [DataMigration(model="vms", name="001-one", version=1, migrate_record=set_version(1))]
    }
    controller = DataMigrationsController(storage, migrations, clock=clock)
    await controller.start()

    assert (await storage.get("vms", "vm1"))["data_version"] == 1
    assert clock.sleeps_ms == [10, 20, 40]
    assert controller.latest_errors() is None


@pytest.mark.asyncio
async def test_not_indexed_error_is_permanent(clock):
    storage = InMemoryBucketStorage()
    await storage.apply_schema(BucketsConfig({"vms": {"name": "unindexed_vms"}}))
    migrations = {
        "vms": [DataMigration(model="vms", name="001-one", version=1, migrate_record=set_version(1))]
    }
    controller = DataMigrationsController(storage, migrations, max_attempts=5, clock=clock)

    with pytest.raises(BucketsSetupError) as exc_info:
        await controller.start()

    cause = exc_info.value.__cause__
    assert isinstance(cause, DataMigrationError)
    assert isinstance(cause.__cause__, NotIndexedError)
    assert len(clock.sleeps) == 1
    errors = controller.latest_errors()
    assert isinstance(errors["vms"], NotIndexedError)
    assert controller.latest_completed_migrations() == {}


@pytest.mark.asyncio
async def test_retries_exhausted(clock, buckets_config):
    storage = FlakyMigrationStorage(fail_first_n=100)
    await storage.apply_schema(buckets_config)
    migrations = {
        "vms": [DataMigration(model="vms", name="001-one", version=1, migrate_record=set_version(1))]
    }
    controller = DataMigrationsController(storage, migrations, max_attempts=3, clock=clock)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        await controller.start()

    assert exc_info.value.attempts == 3
    assert storage.lookups == 3
    assert isinstance(exc_info.value.last_error, DataMigrationError)


@pytest.mark.asyncio
async def test_models_migrated_independently(clock, buckets_config):
    """A failing model does not stop other models from completing."""
    storage = InMemoryBucketStorage()
    await storage.apply_schema(buckets_config)
    await storage.put("vms", "vm1", {"uuid": "vm1"})

    migrations = {
        "vms": [DataMigration(model="vms", name="001-one", version=1, migrate_record=set_version(1))],
        "server_vms": [
            DataMigration(model="server_vms", name="001-one", version=1, migrate_record=set_version(1))
        ],
    }
    controller = DataMigrationsController(storage, migrations, clock=clock)
    with pytest.raises(BucketsSetupError):
        await controller.start()

    assert controller.latest_completed_migrations() == {"vms": 1}
    assert set(controller.latest_errors()) == {"server_vms"}


def test_validate_versions():
    fn = set_version(1)
    validate_data_migrations(
        {"vms": [DataMigration("vms", "001-a", 1, fn), DataMigration("vms", "002-b", 2, fn)]}
    )
    with pytest.raises(ValueError):
        validate_data_migrations(
            {"vms": [DataMigration("vms", "001-a", 2, fn), DataMigration("vms", "002-b", 2, fn)]}
        )


def test_chunk_size_must_be_positive():
    with pytest.raises(ValueError):
        DataMigrationsController(InMemoryBucketStorage(), {}, chunk_size=0)


@pytest.mark.asyncio
async def test_noop_controller():
    controller = NoopDataMigrationsController()
    await controller.start()
    assert controller.latest_completed_migrations() == {}
    assert controller.latest_completed_migration_for_model("vms") is None
    assert controller.latest_errors() is None
