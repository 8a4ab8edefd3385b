"""
Makes VM internal_metadata searchable: writes every scalar key/value pair of
``internal_metadata`` into the indexed ``internal_metadata_search_array``
property as "key=value" strings.
"""

import json

DATA_VERSION = 1


def internal_metadata_to_search_array(internal_metadata):
    search_array = []
    if not isinstance(internal_metadata, dict):
        return search_array

    for key, value in internal_metadata.items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif not isinstance(value, (str, int, float)):
            continue
        search_array.append(f"{key}={value}")
    return search_array


def migrate_record(record, log=None):
    value = record.value
    if value.get("data_version") is not None:
        return None

    internal_metadata = value.get("internal_metadata")
    if isinstance(internal_metadata, str):
        internal_metadata = json.loads(internal_metadata)

    value["internal_metadata_search_array"] = internal_metadata_to_search_array(internal_metadata)
    value["data_version"] = DATA_VERSION
    return record
