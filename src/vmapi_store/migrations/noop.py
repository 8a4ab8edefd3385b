"""
Data migrations controller that completes immediately. Used when storage
initialization must be wired up but data migrations are irrelevant.
"""

from __future__ import annotations

from typing import Optional


class NoopDataMigrationsController:
    async def start(self) -> None:
        return None

    def latest_completed_migrations(self) -> dict[str, int]:
        return {}

    def latest_completed_migration_for_model(self, model: str) -> Optional[int]:
        return None

    def latest_errors(self) -> None:
        return None
