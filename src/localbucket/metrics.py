"""Prometheus metrics definitions for localbucket.

All metrics use the ``localbucket_`` prefix. Counters reset on restart;
the bucket and object gauges are seeded from disk when the store starts.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Gauge

_initialized: bool = False

# ---------------------------------------------------------------------------
# Operation counter  (labels: operation, status)
# ---------------------------------------------------------------------------
operations_total: Counter | None = None

# ---------------------------------------------------------------------------
# Object, bucket & upload gauges
# ---------------------------------------------------------------------------
objects_total: Gauge | None = None
buckets_total: Gauge | None = None
multipart_uploads_active: Gauge | None = None

# ---------------------------------------------------------------------------
# Byte counters
# ---------------------------------------------------------------------------
bytes_received_total: Counter | None = None
bytes_sent_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Must be called once when metrics are enabled. While disabled the
    module-level references stay ``None`` and nothing is registered in
    the global registry.
    """
    global _initialized
    global operations_total, objects_total, buckets_total, multipart_uploads_active
    global bytes_received_total, bytes_sent_total

    if _initialized:
        return

    operations_total = Counter(
        "localbucket_operations_total",
        "Total store operations by type and outcome",
        ["operation", "status"],
    )

    objects_total = Gauge(
        "localbucket_objects_total",
        "Total number of registered keys across all buckets",
    )

    buckets_total = Gauge(
        "localbucket_buckets_total",
        "Total number of buckets",
    )

    multipart_uploads_active = Gauge(
        "localbucket_multipart_uploads_active",
        "Multipart uploads initiated but not yet completed or aborted",
    )

    bytes_received_total = Counter(
        "localbucket_bytes_received_total",
        "Total decoded bytes written into the store",
    )

    bytes_sent_total = Counter(
        "localbucket_bytes_sent_total",
        "Total bytes streamed out of the store",
    )

    _initialized = True


def record_operation(operation: str, status: str = "ok") -> None:
    """Count one operation outcome if metrics are enabled."""
    if operations_total is not None:
        operations_total.labels(operation=operation, status=status).inc()


@contextmanager
def track_operation(operation: str) -> Iterator[None]:
    """Count the enclosed operation as ``ok`` or, if it raises, ``error``."""
    try:
        yield
    except Exception:
        record_operation(operation, "error")
        raise
    record_operation(operation)


def adjust(gauge: Gauge | None, delta: int) -> None:
    """Move a gauge by ``delta`` if metrics are enabled."""
    if gauge is not None:
        gauge.inc(delta)


def count_bytes(counter: Counter | None, amount: int) -> None:
    if counter is not None and amount > 0:
        counter.inc(amount)
