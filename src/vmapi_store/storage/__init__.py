"""Storage adapters implementing the buckets setup contract."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .memory import InMemoryBucketStorage, validate_bucket_config, VALID_INDEX_TYPES

if TYPE_CHECKING:
    from ..buckets.settings import BucketsInitSettings
    from ..buckets.types import BucketStorage


def create_storage(settings: "BucketsInitSettings") -> "BucketStorage":
    """Build the storage adapter selected by ``settings.storage_backend``."""
    if settings.storage_backend == "postgres":
        from .postgres import PostgresBucketStorage

        return PostgresBucketStorage(settings.database_url or "", pool_max=settings.pool_max)
    return InMemoryBucketStorage()


__all__ = [
    "InMemoryBucketStorage",
    "validate_bucket_config",
    "VALID_INDEX_TYPES",
    "create_storage",
]
