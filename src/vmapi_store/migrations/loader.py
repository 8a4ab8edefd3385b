"""
Loads data migration modules from a directory tree of the form:

    migrations-root/
      vms/
        001-some-data-migration.py
        002-some-other-data-migration.py
      vm_role_tags/
        001-some-data-migration.py

Each sub-directory is named after a model (a key of the buckets config).
Files must match ``NNN-name.py`` and are run in lexical order. Each module
defines ``DATA_VERSION`` (int >= 1) and ``migrate_record(record, log)``.
"""

from __future__ import annotations

import importlib.util
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger

from ..buckets.types import Record
from ..errors import InvalidDataMigrationFileNamesError

DEFAULT_MIGRATIONS_ROOT = Path(__file__).parent / "builtin"
MIGRATION_FILE_RE = re.compile(r"^\d{3}-.*\.py$")

MigrateRecord = Callable[..., Optional[Record]]


@dataclass(frozen=True)
class DataMigration:
    model: str
    name: str
    version: int
    migrate_record: MigrateRecord


def _ignored(path: Path) -> bool:
    return path.name.startswith("__") or path.name.startswith(".")


def _load_module(model: str, path: Path) -> DataMigration:
    module_name = f"vmapi_data_migrations.{model}.{path.stem.replace('-', '_')}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot load data migration {path}")
    module: Any = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    version = getattr(module, "DATA_VERSION", None)
    migrate_record = getattr(module, "migrate_record", None)
    if not isinstance(version, int) or version < 1:
        raise ValueError(f"{path}: DATA_VERSION must be an int >= 1")
    if not callable(migrate_record):
        raise ValueError(f"{path}: migrate_record must be callable")

    return DataMigration(model=model, name=path.stem, version=version, migrate_record=migrate_record)


def load_migrations(root: str | Path | None = None) -> dict[str, list[DataMigration]]:
    """Load all data migrations under ``root`` (defaults to the bundled ones)."""
    root = Path(root) if root is not None else DEFAULT_MIGRATIONS_ROOT
    logger.info(f"Loading data migrations from root directory {root}")

    migrations: dict[str, list[DataMigration]] = {}
    for model_dir in sorted(p for p in root.iterdir() if not _ignored(p)):
        if not model_dir.is_dir():
            raise NotADirectoryError(f"{model_dir} is not a directory")

        files = sorted(p for p in model_dir.iterdir() if not _ignored(p))
        invalid = [p.name for p in files if not MIGRATION_FILE_RE.match(p.name)]
        if invalid:
            raise InvalidDataMigrationFileNamesError(invalid)

        migrations[model_dir.name] = [_load_module(model_dir.name, p) for p in files]
        logger.debug(f"Loaded {len(files)} data migrations for model {model_dir.name}")

    logger.info("Data migrations loaded successfully")
    return migrations
