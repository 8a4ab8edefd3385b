"""
Unit tests for loading data migrations from disk.
"""

import pytest

from vmapi_store.buckets.types import Record
from vmapi_store.errors import InvalidDataMigrationFileNamesError
from vmapi_store.migrations import DEFAULT_MIGRATIONS_ROOT, MIGRATION_FILE_RE, load_migrations

MIGRATION_SOURCE = """
DATA_VERSION = {version}


def migrate_record(record, log=None):
    record.value["data_version"] = DATA_VERSION
    return record
"""


def write_migration(root, model, file_name, version):
    model_dir = root / model
    model_dir.mkdir(parents=True, exist_ok=True)
    (model_dir / file_name).write_text(MIGRATION_SOURCE.format(version=version))


def test_builtin_migrations():
    migrations = load_migrations()
    assert list(migrations) == ["vms"]

    (first,) = migrations["vms"]
    assert first.model == "vms"
    assert first.version == 1
    assert first.name == "001-internal-metadata-search"
    assert DEFAULT_MIGRATIONS_ROOT.is_dir()


def test_builtin_vms_migration_builds_search_array():
    (migration,) = load_migrations()["vms"]
    record = Record(
        key="vm1",
        value={"uuid": "vm1", "internal_metadata": {"role": "db", "cores": 4, "hvm": True, "nested": {}}},
    )

    migrated = migration.migrate_record(record)
    assert migrated.value["internal_metadata_search_array"] == ["role=db", "cores=4", "hvm=true"]
    assert migrated.value["data_version"] == 1

    # Already migrated records are left alone
    assert migration.migrate_record(migrated) is None


def test_builtin_vms_migration_parses_json_metadata():
    (migration,) = load_migrations()["vms"]
    record = Record(key="vm2", value={"internal_metadata": '{"a": "b"}'})
    assert migration.migrate_record(record).value["internal_metadata_search_array"] == ["a=b"]


def test_load_from_directory_in_order(tmp_path):
    write_migration(tmp_path, "vms", "002-second.py", 2)
    write_migration(tmp_path, "vms", "001-first.py", 1)
    write_migration(tmp_path, "vm_role_tags", "001-tags.py", 1)
    (tmp_path / "vms" / "__pycache__").mkdir()
    (tmp_path / ".hidden").mkdir()

    migrations = load_migrations(tmp_path)

    assert sorted(migrations) == ["vm_role_tags", "vms"]
    assert [m.name for m in migrations["vms"]] == ["001-first", "002-second"]
    assert [m.version for m in migrations["vms"]] == [1, 2]


def test_invalid_file_names(tmp_path):
    write_migration(tmp_path, "vms", "001-ok.py", 1)
    write_migration(tmp_path, "vms", "foo.py", 2)
    write_migration(tmp_path, "vms", "02-short.py", 3)

    with pytest.raises(InvalidDataMigrationFileNamesError) as exc_info:
        load_migrations(tmp_path)
    assert sorted(exc_info.value.file_names) == ["02-short.py", "foo.py"]


def test_file_at_model_level_rejected(tmp_path):
    (tmp_path / "vms").write_text("not a directory")
    with pytest.raises(NotADirectoryError):
        load_migrations(tmp_path)


def test_missing_data_version_rejected(tmp_path):
    model_dir = tmp_path / "vms"
    model_dir.mkdir()
    (model_dir / "001-broken.py").write_text("def migrate_record(record, log=None):\n    return record\n")

    with pytest.raises(ValueError, match="DATA_VERSION"):
        load_migrations(tmp_path)


@pytest.mark.parametrize(
    "name,ok",
    [("001-foo.py", True), ("123-a-b.py", True), ("1-foo.py", False), ("001-foo.js", False)],
)
def test_file_name_pattern(name, ok):
    assert bool(MIGRATION_FILE_RE.match(name)) is ok
