"""
Prometheus metrics for storage initialization.
Import this module at app startup to make them visible in the global REGISTRY.
"""

from prometheus_client import Counter, Gauge, Histogram

BUCKETS_INIT_ATTEMPTS_TOTAL = Counter(
    "buckets_init_attempts_total",
    "Backed-off storage initialization attempts",
    ["process", "outcome"],
)

BUCKETS_INIT_BACKOFF_DELAY_MS = Histogram(
    "buckets_init_backoff_delay_ms",
    "Delay scheduled before each storage initialization attempt, in milliseconds",
    ["process"],
    buckets=[10, 20, 40, 80, 160, 320, 640, 1280, 2560, 5000, 10000],
)

BUCKETS_INIT_TERMINAL_TOTAL = Counter(
    "buckets_init_terminal_total",
    "Initializers reaching a terminal state",
    ["initializer", "state"],
)

DATA_MIGRATIONS_RECORDS_TOTAL = Counter(
    "data_migrations_records_total",
    "Records rewritten by data migrations",
    ["model", "version"],
)

DATA_MIGRATIONS_LATEST_VERSION = Gauge(
    "data_migrations_latest_version",
    "Latest data version fully migrated per model",
    ["model"],
)


class MetricsRegistry:
    """Structured access to the storage initialization metrics."""

    buckets_init_attempts_total = BUCKETS_INIT_ATTEMPTS_TOTAL
    buckets_init_backoff_delay_ms = BUCKETS_INIT_BACKOFF_DELAY_MS
    buckets_init_terminal_total = BUCKETS_INIT_TERMINAL_TOTAL
    data_migrations_records_total = DATA_MIGRATIONS_RECORDS_TOTAL
    data_migrations_latest_version = DATA_MIGRATIONS_LATEST_VERSION


# Singleton instance
metrics_registry = MetricsRegistry()
