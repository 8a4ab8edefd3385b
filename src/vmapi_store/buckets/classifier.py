"""
Transient vs permanent classification of storage failures.

The core has no built-in rules for buckets setup: the storage adapter owns
that knowledge. Whatever the adapter cannot classify is treated as permanent
so that unknown conditions stop the retry loop instead of spinning forever.
"""

from __future__ import annotations

from typing import Callable, Iterable

from loguru import logger

from .types import Classification

TransientPredicate = Callable[[BaseException], bool]

# Error class names that retrying data migrations cannot fix.
NON_TRANSIENT_MIGRATION_ERRORS = (
    "BucketNotFoundError",
    "InvalidIndexTypeError",
    "InvalidQueryError",
    "NotIndexedError",
    "UniqueAttributeError",
)


def classify(is_transient_error: TransientPredicate, error: BaseException) -> Classification:
    try:
        verdict = is_transient_error(error)
    except Exception as exc:
        logger.warning(
            f"Error classifier raised {type(exc).__name__}: {exc}; "
            f"treating {type(error).__name__} as permanent"
        )
        return Classification.PERMANENT

    if not isinstance(verdict, bool):
        logger.warning(
            f"Error classifier returned non-boolean {verdict!r}; "
            f"treating {type(error).__name__} as permanent"
        )
        return Classification.PERMANENT

    return Classification.TRANSIENT if verdict else Classification.PERMANENT


def is_transient(is_transient_error: TransientPredicate, error: BaseException) -> bool:
    return classify(is_transient_error, error) is Classification.TRANSIENT


def iter_causes(error: BaseException) -> Iterable[BaseException]:
    """Yield ``error`` and every exception in its cause/context chain."""
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def has_cause_with_name(error: BaseException, name: str) -> bool:
    return any(type(exc).__name__ == name for exc in iter_causes(error))


def data_migration_error_transient(error: BaseException) -> bool:
    """Data migration errors are transient unless caused by a known permanent error."""
    return not any(has_cause_with_name(error, name) for name in NON_TRANSIENT_MIGRATION_ERRORS)


def always_transient(error: BaseException) -> bool:
    return True
