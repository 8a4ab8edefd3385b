"""
Default buckets configuration used by VMAPI for normal operation.
"""

from .types import BucketConfig, BucketsConfig

VMS_BUCKET_CONFIG = BucketConfig(
    name="vmapi_vms",
    schema={
        "index": {
            "uuid": {"type": "string", "unique": True},
            "owner_uuid": {"type": "string"},
            "image_uuid": {"type": "string"},
            "billing_id": {"type": "string"},
            "server_uuid": {"type": "string"},
            "package_name": {"type": "string"},
            "package_version": {"type": "string"},
            "tags": {"type": "string"},
            "brand": {"type": "string"},
            "state": {"type": "string"},
            "alias": {"type": "string"},
            "max_physical_memory": {"type": "number"},
            "create_timestamp": {"type": "number"},
            "docker": {"type": "boolean"},
            "internal_metadata_search_array": {"type": "[string]"},
            "data_version": {"type": "number"},
        },
        "options": {"version": 2},
    },
)

SERVER_VMS_BUCKET_CONFIG = BucketConfig(name="vmapi_server_vms", schema={})

ROLE_TAGS_BUCKET_CONFIG = BucketConfig(
    name="vmapi_vm_role_tags",
    schema={"index": {"role_tags": {"type": "[string]"}}},
)

DEFAULT_BUCKETS_CONFIG = BucketsConfig(
    {
        "vms": VMS_BUCKET_CONFIG,
        "server_vms": SERVER_VMS_BUCKET_CONFIG,
        "vm_role_tags": ROLE_TAGS_BUCKET_CONFIG,
    }
)
