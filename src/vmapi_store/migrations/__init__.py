"""Data migrations run once buckets initialization is done."""

from .loader import (
    DataMigration,
    load_migrations,
    DEFAULT_MIGRATIONS_ROOT,
    MIGRATION_FILE_RE,
)
from .controller import DataMigrationsController, validate_data_migrations
from .noop import NoopDataMigrationsController

__all__ = [
    "DataMigration",
    "load_migrations",
    "DEFAULT_MIGRATIONS_ROOT",
    "MIGRATION_FILE_RE",
    "DataMigrationsController",
    "NoopDataMigrationsController",
    "validate_data_migrations",
]
