import asyncio
import json
import sys
from typing import Any, Optional

import typer
from loguru import logger

from vmapi_store.buckets import (
    DEFAULT_BUCKETS_CONFIG,
    BucketsInitializer,
    BucketsInitSettings,
    InitializationCoordinator,
    get_settings,
)
from vmapi_store.buckets.classifier import iter_causes
from vmapi_store.errors import BucketsInitError
from vmapi_store.migrations import (
    DataMigrationsController,
    NoopDataMigrationsController,
    load_migrations,
)
from vmapi_store.storage import create_storage

app = typer.Typer(help="VMAPI storage CLI (buckets setup, data migrations)")


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def _root_cause(err: BaseException) -> BaseException:
    causes = list(iter_causes(err))
    return causes[-1]


async def _initialize(settings: BucketsInitSettings, run_migrations: bool) -> dict[str, int]:
    storage = create_storage(settings)
    initializer = BucketsInitializer(
        max_attempts=settings.max_attempts,
        max_reindex_attempts=settings.max_reindex_attempts,
        initial_delay_ms=settings.initial_delay_ms,
        max_delay_ms=settings.max_delay_ms,
        factor=settings.backoff_factor,
        reindex=settings.reindex,
    )

    async def start_data_migrations() -> dict[str, int]:
        if run_migrations:
            controller: Any = DataMigrationsController(
                storage,  # type: ignore[arg-type]
                load_migrations(settings.migrations_path),
                max_attempts=settings.migrations_max_attempts,
                initial_delay_ms=settings.initial_delay_ms,
                max_delay_ms=settings.max_delay_ms,
            )
        else:
            controller = NoopDataMigrationsController()
        await controller.start()
        return controller.latest_completed_migrations()

    coord = InitializationCoordinator(
        initializer, storage, DEFAULT_BUCKETS_CONFIG, start_data_migrations
    )
    try:
        return await coord.run()
    finally:
        aclose = getattr(storage, "aclose", None)
        if aclose is not None:
            await aclose()


@app.command()
def init(
    backend: Optional[str] = typer.Option(None, help="Storage backend: memory or postgres"),
    database_url: Optional[str] = typer.Option(None, help="PostgreSQL DSN"),
    max_attempts: Optional[int] = typer.Option(None, help="Buckets setup attempts (default: unbounded)"),
    migrations_path: Optional[str] = typer.Option(None, help="Data migrations root directory"),
    migrations: bool = typer.Option(True, help="Run data migrations after buckets setup"),
    reindex: Optional[bool] = typer.Option(
        None, "--reindex/--no-reindex", help="Backfill added indexes after setup (default: on)"
    ),
):
    """Set up storage buckets, then run data migrations."""
    overrides = {
        "storage_backend": backend,
        "database_url": database_url,
        "max_attempts": max_attempts,
        "migrations_path": migrations_path,
        "reindex": reindex,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    try:
        settings = BucketsInitSettings(**overrides) if overrides else get_settings()
    except ValueError as e:
        logger.error(f"Invalid settings: {e}")
        sys.exit(2)

    _configure_logging(settings.log_level)
    logger.info(f"Initializing storage (backend={settings.storage_backend})")

    try:
        completed = asyncio.run(_initialize(settings, migrations))
    except BucketsInitError as e:
        cause = _root_cause(e)
        logger.error(f"Storage initialization failed: {e}")
        if cause is not e:
            logger.error(f"Root cause: {type(cause).__name__}: {cause}")
        sys.exit(1)

    logger.success(f"Storage ready (data versions: {completed or 'none'})")


@app.command()
def buckets():
    """Print the default buckets configuration as JSON."""
    typer.echo(json.dumps(DEFAULT_BUCKETS_CONFIG.to_dict(), indent=2, sort_keys=True))


@app.command(name="migrations")
def list_migrations(path: Optional[str] = typer.Option(None, help="Data migrations root directory")):
    """List data migrations that would run, per model."""
    try:
        loaded = load_migrations(path)
    except Exception as e:
        logger.error(f"Failed to load data migrations: {e}")
        sys.exit(1)

    for model, model_migrations in sorted(loaded.items()):
        for migration in model_migrations:
            typer.echo(f"{model}\t{migration.version}\t{migration.name}")


if __name__ == "__main__":
    app()
