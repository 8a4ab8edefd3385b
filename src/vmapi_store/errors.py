"""
Exceptions for VM storage initialization.

Storage adapters raise StorageError subclasses; the buckets initializer
surfaces BucketsInitError subclasses through its error signal.
"""

from __future__ import annotations


class StorageError(Exception):
    """Base error raised by storage adapters."""

    pass


class TransientStorageError(StorageError):
    """Connectivity loss, timeouts or an overloaded backend. Safe to retry."""

    pass


class PermanentStorageError(StorageError):
    """The backend rejected the request and will keep rejecting it."""

    pass


class InvalidBucketConfigError(PermanentStorageError):
    """Bucket schema is structurally invalid (e.g. unknown index type)."""

    pass


class InvalidIndexesRemovalError(PermanentStorageError):
    """A bucket update would drop existing indexes."""

    def __init__(self, indexes: list[str]):
        super().__init__(f"Invalid removal of indexes: {', '.join(indexes)}")
        self.indexes = indexes


class BucketNotFoundError(PermanentStorageError):
    """Operation targeted a bucket that does not exist."""

    pass


class NotIndexedError(PermanentStorageError):
    """Query used a field that is not indexed in the bucket."""

    pass


class BucketsInitError(Exception):
    """Base class for errors carried by an initializer's error signal."""

    pass


class BucketsSetupError(BucketsInitError):
    """Non-transient error encountered when setting up buckets.

    The backend error is available as ``__cause__``.
    """

    def __init__(self, process: str, cause: BaseException):
        super().__init__(
            f"Non transient error encountered when performing {process}: "
            f"{type(cause).__name__}: {cause}"
        )
        self.process = process
        self.__cause__ = cause


class RetriesExhaustedError(BucketsInitError):
    """Maximum number of attempts reached without success.

    ``last_error`` holds the last transient error seen, if any attempt ran.
    """

    def __init__(self, process: str, attempts: int, last_error: BaseException | None = None):
        super().__init__(f"Maximum number of tries ({attempts}) reached when performing {process}")
        self.process = process
        self.attempts = attempts
        self.last_error = last_error
        self.__cause__ = last_error


class InitializationCancelledError(BucketsInitError):
    """Initializer was cancelled before reaching done or failed."""

    pass


class InitializerStateError(RuntimeError):
    """Operation not allowed in the initializer's current state."""

    pass


class DataMigrationError(Exception):
    """A data migration failed for a given model."""

    def __init__(self, model: str, version: int, cause: BaseException):
        super().__init__(f"Failed to run data migration {model}@{version}: {cause}")
        self.model = model
        self.version = version
        self.__cause__ = cause


class InvalidDataMigrationFileNamesError(Exception):
    """Migration directory contains files not matching NNN-name.py."""

    def __init__(self, file_names: list[str]):
        super().__init__(f"Invalid data migration file names: {', '.join(file_names)}")
        self.file_names = file_names


def map_pg_error(e: Exception) -> StorageError:
    """Map a psycopg exception onto the storage error taxonomy."""
    import psycopg
    import psycopg.errors as E

    if isinstance(e, StorageError):
        return e
    if isinstance(
        e,
        (
            E.SerializationFailure,
            E.DeadlockDetected,
            E.QueryCanceled,
            E.LockNotAvailable,
            E.AdminShutdown,
            E.CannotConnectNow,
            psycopg.OperationalError,
        ),
    ):
        return TransientStorageError(str(e))
    if isinstance(e, (E.UndefinedObject, E.DatatypeMismatch, E.InvalidTextRepresentation)):
        return InvalidBucketConfigError(str(e))
    if isinstance(e, E.UndefinedTable):
        return BucketNotFoundError(str(e))
    if isinstance(e, psycopg.InterfaceError):
        return TransientStorageError(str(e))
    return PermanentStorageError(str(e))
