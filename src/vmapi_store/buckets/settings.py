from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BucketsInitSettings(BaseSettings):
    """Environment-driven settings for storage initialization.

    Every field can be set via a ``VMAPI_``-prefixed env var, e.g.
    ``VMAPI_MAX_ATTEMPTS=20`` or ``VMAPI_STORAGE_BACKEND=postgres``.
    """

    max_attempts: Optional[int] = Field(default=None, ge=0)
    max_reindex_attempts: Optional[int] = Field(default=None, ge=0)
    initial_delay_ms: float = Field(default=10, ge=0)
    max_delay_ms: float = Field(default=5000, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    # Columns added by a bucket version bump stay empty until reindexed
    reindex: bool = True

    storage_backend: Literal["memory", "postgres"] = "memory"
    database_url: Optional[str] = None
    pool_max: int = Field(default=5, gt=0)

    migrations_path: Optional[str] = None
    migrations_max_attempts: Optional[int] = Field(default=None, ge=0)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="VMAPI_", env_file=".env", extra="ignore")

    @model_validator(mode="after")
    def _postgres_needs_url(self) -> "BucketsInitSettings":
        if self.storage_backend == "postgres" and not self.database_url:
            raise ValueError("database_url is required when storage_backend is 'postgres'")
        return self


@lru_cache()
def get_settings() -> BucketsInitSettings:
    return BucketsInitSettings()
