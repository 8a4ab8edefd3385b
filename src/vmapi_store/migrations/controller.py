"""
Data migrations controller.

Runs after buckets initialization completes. Migrations for different models
run in parallel (the number of records per model varies widely); migrations
for a given model run sequentially, in chunks of ``chunk_size`` records.
Failed runs are retried with exponential backoff unless the error is one
retrying cannot fix.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional, Sequence

from loguru import logger

from ..buckets.backoff import BackoffExhaustedError, BackoffPolicy
from ..buckets.classifier import data_migration_error_transient
from ..buckets.clock import Clock
from ..buckets.types import MigrationStorage
from ..errors import BucketsSetupError, DataMigrationError, RetriesExhaustedError
from ..metrics.registry import DATA_MIGRATIONS_LATEST_VERSION, DATA_MIGRATIONS_RECORDS_TOTAL
from .loader import DataMigration

PROCESS = "data migrations"


def validate_data_migrations(migrations: Mapping[str, Sequence[DataMigration]]) -> None:
    """Versions must start at >= 1 and strictly increase per model."""
    for model, model_migrations in migrations.items():
        previous = 0
        for migration in model_migrations:
            if migration.version <= previous:
                raise ValueError(
                    f"data migration {model}/{migration.name} has version "
                    f"{migration.version}, expected > {previous}"
                )
            previous = migration.version


class DataMigrationsController:
    def __init__(
        self,
        storage: MigrationStorage,
        migrations: Mapping[str, Sequence[DataMigration]],
        *,
        max_attempts: Optional[int] = None,
        initial_delay_ms: float = 10,
        max_delay_ms: float = 5000,
        chunk_size: int = 1000,
        clock: Optional[Clock] = None,
        log: Any = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        self._storage = storage
        self._migrations = {m: list(v) for m, v in migrations.items()}
        self._max_attempts = max_attempts
        self._initial_delay_ms = initial_delay_ms
        self._max_delay_ms = max_delay_ms
        self._chunk_size = chunk_size
        self._clock = clock
        self._log = log or logger.bind(component="data-migrations")

        self._latest_completed: dict[str, int] = {}
        self._latest_errors: dict[str, BaseException] = {}

    def latest_completed_migrations(self) -> dict[str, int]:
        return dict(self._latest_completed)

    def latest_completed_migration_for_model(self, model: str) -> Optional[int]:
        return self._latest_completed.get(model)

    def latest_errors(self) -> Optional[dict[str, BaseException]]:
        """Errors of the latest run per model, or None if there were none."""
        return dict(self._latest_errors) or None

    async def start(self) -> None:
        """Run all migrations, retrying transient failures.

        Raises BucketsSetupError wrapping a non-transient error, or
        RetriesExhaustedError when the attempt ceiling is reached.
        """
        validate_data_migrations(self._migrations)
        self._latest_errors = {}

        policy = BackoffPolicy(
            self._initial_delay_ms,
            self._max_delay_ms,
            max_attempts=self._max_attempts,
            clock=self._clock,
        )
        last_error: Optional[BaseException] = None
        while True:
            try:
                attempt, delay_ms = await policy.backoff()
            except BackoffExhaustedError as exc:
                raise RetriesExhaustedError(PROCESS, exc.attempts, last_error)

            try:
                await self.run_migrations()
            except Exception as err:
                last_error = err
                self._log.bind(attempt=attempt, delay_ms=delay_ms).error(
                    f"Error when running data migrations: {err}"
                )
                if data_migration_error_transient(err):
                    self._log.info("Error is transient, backing off")
                    continue
                self._log.error("Error is not transient, giving up")
                raise BucketsSetupError(PROCESS, err)

            self._log.info("All data migrations ran successfully")
            return

    async def run_migrations(self) -> None:
        self._log.info(f"Running data migrations for models: {sorted(self._migrations)}")
        results = await asyncio.gather(
            *(
                self._run_migrations_for_model(model, migrations)
                for model, migrations in self._migrations.items()
            ),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _run_migrations_for_model(
        self, model: str, migrations: Sequence[DataMigration]
    ) -> None:
        self._log.info(f"Starting data migrations for model {model}")
        for migration in migrations:
            try:
                await self._run_single_migration(model, migration)
            except Exception as err:
                self._latest_errors[model] = err
                raise DataMigrationError(model, migration.version, err) from err

            self._latest_completed[model] = migration.version
            self._latest_errors.pop(model, None)
            DATA_MIGRATIONS_LATEST_VERSION.labels(model=model).set(migration.version)
            self._log.info(f"Data migration {model} to data version {migration.version} done")

    async def _run_single_migration(self, model: str, migration: DataMigration) -> None:
        version = migration.version
        self._log.info(f"Running migration for model {model} to data version {version}")

        while True:
            records = await self._storage.find_records_to_migrate(model, version, self._chunk_size)
            if not records:
                self._log.info(f"No more records at version {version}, migration done")
                return

            migrated = [
                r for r in (migration.migrate_record(rec, log=self._log) for rec in records) if r
            ]
            if not migrated:
                self._log.warning(
                    f"{len(records)} records below version {version} were not rewritten "
                    f"by {migration.name}, stopping"
                )
                return

            await self._storage.put_batch(model, migrated)
            DATA_MIGRATIONS_RECORDS_TOTAL.labels(model=model, version=str(version)).inc(
                len(migrated)
            )
            self._log.debug(f"Processed {len(migrated)} records, scheduling next chunk")
            await asyncio.sleep(0)
