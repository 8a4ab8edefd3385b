"""
In-memory bucket storage.

Implements the buckets setup contract and the data migration capability on
top of plain dicts. Used for local development and as the default backend
in tests; it validates bucket schemas the same way a real backend would, so
bad configurations surface as permanent errors.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Sequence

from loguru import logger

from ..buckets.types import BucketConfig, BucketsConfig, Record
from ..errors import (
    BucketNotFoundError,
    InvalidBucketConfigError,
    InvalidIndexesRemovalError,
    NotIndexedError,
    StorageError,
    TransientStorageError,
)

SCALAR_INDEX_TYPES = frozenset({"string", "number", "boolean", "ip", "subnet"})
VALID_INDEX_TYPES = SCALAR_INDEX_TYPES | frozenset(f"[{t}]" for t in SCALAR_INDEX_TYPES)


def validate_bucket_config(bucket: BucketConfig) -> None:
    """Raise InvalidBucketConfigError if any index declares an unknown type."""
    for field_name, spec in bucket.index.items():
        index_type = spec.get("type")
        if index_type not in VALID_INDEX_TYPES:
            raise InvalidBucketConfigError(f"{field_name}.type is invalid")


class InMemoryBucketStorage:
    """Dict-backed storage adapter.

    Buckets are versioned: an existing bucket is only updated when the new
    config carries a higher ``options.version``, and an update may not remove
    existing indexes.
    """

    def __init__(self) -> None:
        self._buckets: dict[str, BucketConfig] = {}
        self._objects: dict[str, dict[str, dict[str, Any]]] = {}
        self._models: dict[str, str] = {}
        self._reindexed: set[str] = set()
        self._lock = asyncio.Lock()

    # ---------- buckets setup ----------

    async def apply_schema(self, buckets_config: BucketsConfig) -> None:
        async with self._lock:
            for bucket in buckets_config.values():
                validate_bucket_config(bucket)

            for model, bucket in buckets_config.items():
                self._models[model] = bucket.name
                existing = self._buckets.get(bucket.name)
                if existing is None:
                    logger.info(f"Creating bucket {bucket.name} (version {bucket.version})")
                    self._buckets[bucket.name] = bucket
                    self._objects.setdefault(bucket.name, {})
                    self._reindexed.add(bucket.name)
                    continue

                if bucket.version <= existing.version:
                    logger.debug(
                        f"Bucket {bucket.name} at version {existing.version}, "
                        f"not updating to {bucket.version}"
                    )
                    continue

                removed = sorted(set(existing.index) - set(bucket.index))
                if removed:
                    raise InvalidIndexesRemovalError(removed)

                logger.info(
                    f"Updating bucket {bucket.name} from version {existing.version} "
                    f"to {bucket.version}"
                )
                self._buckets[bucket.name] = bucket
                self._reindexed.discard(bucket.name)

    def is_transient_error(self, error: BaseException) -> bool:
        if isinstance(error, StorageError):
            return isinstance(error, TransientStorageError)
        return isinstance(error, (TimeoutError, ConnectionError))

    async def reindex_buckets(self, buckets_config: BucketsConfig) -> None:
        async with self._lock:
            for bucket in buckets_config.values():
                if bucket.name not in self._buckets:
                    raise BucketNotFoundError(f"bucket {bucket.name} does not exist")
                self._reindexed.add(bucket.name)

    def bucket(self, name: str) -> BucketConfig | None:
        return self._buckets.get(name)

    def is_reindexed(self, name: str) -> bool:
        return name in self._reindexed

    # ---------- objects / data migrations ----------

    def _bucket_for(self, model: str) -> str:
        name = self._models.get(model)
        if name is None or name not in self._buckets:
            raise BucketNotFoundError(f"no bucket for model {model}")
        return name

    async def put(self, model: str, key: str, value: dict[str, Any]) -> None:
        name = self._bucket_for(model)
        self._objects[name][key] = copy.deepcopy(value)

    async def get(self, model: str, key: str) -> dict[str, Any] | None:
        name = self._bucket_for(model)
        value = self._objects[name].get(key)
        return copy.deepcopy(value) if value is not None else None

    async def find_records_to_migrate(
        self, model: str, version: int, limit: int = 1000
    ) -> list[Record]:
        name = self._bucket_for(model)
        if "data_version" not in self._buckets[name].index:
            raise NotIndexedError(f"data_version is not indexed in bucket {name}")

        records: list[Record] = []
        for key, value in self._objects[name].items():
            data_version = value.get("data_version")
            if data_version is None or data_version < version:
                records.append(Record(key=key, value=copy.deepcopy(value)))
                if len(records) >= limit:
                    break
        return records

    async def put_batch(self, model: str, records: Sequence[Record]) -> None:
        name = self._bucket_for(model)
        for record in records:
            self._objects[name][record.key] = copy.deepcopy(record.value)
