"""
Unit tests for transient/permanent error classification.
"""

import pytest

from vmapi_store.buckets import Classification, classify, data_migration_error_transient
from vmapi_store.buckets.classifier import always_transient, has_cause_with_name, iter_causes
from vmapi_store.errors import (
    BucketNotFoundError,
    DataMigrationError,
    NotIndexedError,
    TransientStorageError,
)


def test_predicate_verdict_is_used():
    err = TimeoutError("slow")
    assert classify(lambda e: True, err) is Classification.TRANSIENT
    assert classify(lambda e: False, err) is Classification.PERMANENT


def test_raising_predicate_is_permanent():
    """A classifier that blows up must not cause a retry."""

    def broken(error):
        raise KeyError("boom")

    assert classify(broken, TransientStorageError("x")) is Classification.PERMANENT


@pytest.mark.parametrize("verdict", [None, "yes", 1, object()])
def test_non_boolean_verdict_is_permanent(verdict):
    assert classify(lambda e: verdict, TimeoutError()) is Classification.PERMANENT


def test_iter_causes_follows_chain_and_stops_on_cycles():
    root = NotIndexedError("data_version is not indexed")
    wrapped = DataMigrationError("vms", 1, root)
    causes = list(iter_causes(wrapped))
    assert causes == [wrapped, root]

    a = ValueError("a")
    b = ValueError("b")
    a.__cause__ = b
    b.__cause__ = a
    assert list(iter_causes(a)) == [a, b]


def test_has_cause_with_name():
    err = DataMigrationError("vms", 1, BucketNotFoundError("gone"))
    assert has_cause_with_name(err, "BucketNotFoundError")
    assert not has_cause_with_name(err, "NotIndexedError")


def test_data_migration_errors_transient_unless_known_permanent_cause():
    assert data_migration_error_transient(DataMigrationError("vms", 1, TimeoutError()))
    assert not data_migration_error_transient(
        DataMigrationError("vms", 1, NotIndexedError("data_version"))
    )
    assert not data_migration_error_transient(BucketNotFoundError("vmapi_vms"))


def test_always_transient():
    assert always_transient(ValueError()) is True
