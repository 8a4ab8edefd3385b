"""
Fixtures for buckets initialization unit tests.
"""

import asyncio

import pytest

from vmapi_store.errors import PermanentStorageError, TransientStorageError


class ScriptedStorage:
    """Storage whose apply_schema follows a script of outcomes.

    Each entry is None (success) or an exception to raise. Once the script
    runs out, the last entry repeats. Tracks call count and concurrency.
    """

    def __init__(self, outcomes, is_transient=None):
        self._outcomes = list(outcomes) or [None]
        self._is_transient = is_transient
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.applied = []

    async def apply_schema(self, buckets_config):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            idx = min(self.calls - 1, len(self._outcomes) - 1)
            outcome = self._outcomes[idx]
            if outcome is not None:
                raise outcome
            self.applied.append(buckets_config)
        finally:
            self.in_flight -= 1

    def is_transient_error(self, error):
        if self._is_transient is not None:
            return self._is_transient(error)
        return isinstance(error, TransientStorageError)


@pytest.fixture
def scripted_storage():
    """Factory for ScriptedStorage."""
    return ScriptedStorage


@pytest.fixture
def transient_error():
    return TransientStorageError("connection refused")


@pytest.fixture
def permanent_error():
    return PermanentStorageError("InvalidBucketConfigError: docker.type is invalid")


@pytest.fixture
def recorder():
    """Async subscriber that records every event it receives."""
    events = []

    async def _on_event(event):
        events.append(event)

    _on_event.events = events
    return _on_event
