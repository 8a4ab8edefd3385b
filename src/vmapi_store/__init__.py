"""
VMAPI storage layer

Brings VMAPI's storage buckets into existence against an unreliable
key/value backend, then runs data migrations once the buckets are ready.

Usage:
    from vmapi_store.buckets import BucketsInitializer, DEFAULT_BUCKETS_CONFIG
    from vmapi_store.storage import InMemoryBucketStorage

    init = BucketsInitializer(max_attempts=5)
    init.start(InMemoryBucketStorage(), DEFAULT_BUCKETS_CONFIG)
    await init.wait()
"""

__version__ = "1.0.0"
