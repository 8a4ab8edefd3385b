from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Protocol, Sequence, runtime_checkable


class InitializerState(str, Enum):
    """Lifecycle of a BucketsInitializer. All but IDLE/RUNNING are terminal."""

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (InitializerState.DONE, InitializerState.FAILED, InitializerState.CANCELLED)


class Classification(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class BucketConfig:
    """Desired configuration of a single storage bucket.

    Attributes:
        name: Bucket name in the backend (e.g. "vmapi_vms")
        schema: {"index": {field: {"type": ..., "unique": ...}}, "options": {"version": N}}
    """

    name: str
    schema: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("bucket name required")
        object.__setattr__(self, "schema", _freeze(self.schema))

    @property
    def index(self) -> Mapping[str, Mapping[str, Any]]:
        return self.schema.get("index", MappingProxyType({}))

    @property
    def version(self) -> int:
        return int(self.schema.get("options", {}).get("version", 0))

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "schema": _thaw(self.schema)}


class BucketsConfig(Mapping[str, BucketConfig]):
    """Immutable mapping of model name -> BucketConfig."""

    def __init__(self, buckets: Mapping[str, BucketConfig | Mapping[str, Any]]):
        parsed: dict[str, BucketConfig] = {}
        for model, cfg in buckets.items():
            if isinstance(cfg, BucketConfig):
                parsed[model] = cfg
            else:
                parsed[model] = BucketConfig(name=cfg["name"], schema=cfg.get("schema", {}))
        self._buckets = MappingProxyType(parsed)

    def __getitem__(self, model: str) -> BucketConfig:
        return self._buckets[model]

    def __iter__(self):
        return iter(self._buckets)

    def __len__(self) -> int:
        return len(self._buckets)

    def __repr__(self) -> str:
        return f"BucketsConfig({', '.join(f'{m}={b.name}' for m, b in self._buckets.items())})"

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {model: cfg.to_dict() for model, cfg in self._buckets.items()}


@runtime_checkable
class BucketStorage(Protocol):
    """Contract a storage backend implements for buckets initialization."""

    async def apply_schema(self, buckets_config: BucketsConfig) -> None:
        """Create or update all buckets. Must be idempotent."""
        ...

    def is_transient_error(self, error: BaseException) -> bool:
        """True if ``error`` raised by apply_schema is worth retrying."""
        ...


@runtime_checkable
class ReindexableStorage(Protocol):
    async def reindex_buckets(self, buckets_config: BucketsConfig) -> None: ...


@dataclass
class Record:
    """A stored object: key + JSON-compatible value."""

    key: str
    value: dict[str, Any]


@runtime_checkable
class MigrationStorage(Protocol):
    """Storage capability needed by data migrations."""

    async def find_records_to_migrate(
        self, model: str, version: int, limit: int = 1000
    ) -> list[Record]: ...

    async def put_batch(self, model: str, records: Sequence[Record]) -> None: ...


@dataclass(frozen=True)
class InitializerHealth:
    """Point-in-time view of an initializer, suitable for a ping endpoint."""

    state: InitializerState
    phase: Optional[str]
    attempts: int
    last_error: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.state is InitializerState.DONE
