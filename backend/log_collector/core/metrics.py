"""Prometheus metrics instrumentation."""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)

REGISTRY = CollectorRegistry()

RECORDS_EMITTED = Counter(
    "logc_records_total",
    "Records handed to the record sink",
    labelnames=("input",),
    registry=REGISTRY,
)

BYTES_READ = Counter(
    "logc_bytes_read_total",
    "Bytes read from tailed files",
    labelnames=("input",),
    registry=REGISTRY,
)

READ_ERRORS = Counter(
    "logc_read_errors_total",
    "I/O errors while opening or reading tailed files",
    labelnames=("input",),
    registry=REGISTRY,
)

ROTATIONS = Counter(
    "logc_rotations_total",
    "Detected rotations and truncations",
    labelnames=("input", "kind"),
    registry=REGISTRY,
)

WATCH_EVENTS_DROPPED = Counter(
    "logc_watch_events_dropped_total",
    "Watch events dropped because the event queue was full",
    registry=REGISTRY,
)

RESCANS = Counter(
    "logc_rescans_total",
    "Forced re-resolutions of all inputs",
    labelnames=("reason",),
    registry=REGISTRY,
)

TAILERS = Gauge(
    "logc_tailers",
    "Number of registered file tailers",
    registry=REGISTRY,
)


def metrics_payload() -> tuple[bytes, str]:
    """Return Prometheus exposition bytes and their content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


__all__ = [
    "REGISTRY",
    "RECORDS_EMITTED",
    "BYTES_READ",
    "READ_ERRORS",
    "ROTATIONS",
    "WATCH_EVENTS_DROPPED",
    "RESCANS",
    "TAILERS",
    "metrics_payload",
]
