"""
Prometheus metrics for the LDT ingestion pipeline.

All collectors live in a dedicated REGISTRY (exposed by the API at
/metrics) so tests and embedded uses never clash with the default
process collectors.
"""
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()


# =======================
# INGESTION METRICS
# =======================

# Outcome per inbound delivery
messages_ingested_total = Counter(
    name="ldt_messages_ingested_total",
    documentation="Total number of LDT deliveries by final outcome",
    labelnames=["status"],  # status: stored, quarantined, duplicate, permanently_failed
    registry=REGISTRY,
)

# Records decoded per message
records_per_message = Histogram(
    name="ldt_records_per_message",
    documentation="Number of decoded records per LDT message",
    buckets=[1, 5, 10, 25, 50, 100, 250, 500],
    registry=REGISTRY,
)

# End-to-end processing latency
processing_duration_seconds = Histogram(
    name="ldt_processing_duration_seconds",
    documentation="Time spent processing one LDT message in seconds",
    labelnames=["mode"],  # mode: ingest, retry, forced
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0],
    registry=REGISTRY,
)

# =======================
# DATA QUALITY METRICS
# =======================

decode_failures_total = Counter(
    name="ldt_decode_failures_total",
    documentation="Total number of messages rejected by the record decoder",
    labelnames=["reason", "field_name"],
    registry=REGISTRY,
)

decode_warnings_total = Counter(
    name="ldt_decode_warnings_total",
    documentation="Total number of non-blocking decode warnings (e.g. declared length mismatch)",
    labelnames=["warning"],
    registry=REGISTRY,
)

identifier_resolution_total = Counter(
    name="ldt_identifier_resolution_total",
    documentation="Identifier resolution by identifier and tier",
    labelnames=["identifier", "tier"],  # tier: positional, hint, pattern_scan, none
    registry=REGISTRY,
)

owner_match_total = Counter(
    name="ldt_owner_match_total",
    documentation="Owner lookups by result",
    labelnames=["result"],  # result: matched, unmatched, incomplete_identifiers, forced
    registry=REGISTRY,
)

# =======================
# QUARANTINE METRICS
# =======================

quarantine_size = Gauge(
    name="ldt_quarantine_size",
    documentation="Current number of quarantine entries by status",
    labelnames=["status"],
    registry=REGISTRY,
)

retries_total = Counter(
    name="ldt_retries_total",
    documentation="Total number of quarantine retry attempts",
    labelnames=["trigger", "status"],  # trigger: scheduled, manual; status: stored, failed, permanently_failed
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

errors_total = Counter(
    name="ldt_errors_total",
    documentation="Total number of unexpected errors",
    labelnames=["error_type", "component"],
    registry=REGISTRY,
)


# =======================
# EXPOSITION
# =======================

def generate_metrics() -> bytes:
    """Render REGISTRY in the Prometheus text exposition format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Serve REGISTRY on its own port.

    The API exposes /metrics itself; this is for the standalone retry
    worker, which has no HTTP server of its own.

    Args:
        port: Listen port (default: $METRICS_PORT or 9100)
    """
    from prometheus_client import start_http_server

    start_http_server(port or int(os.getenv("METRICS_PORT", "9100")), registry=REGISTRY)


# =======================
# RECORDING HELPERS
# =======================

@contextmanager
def track_duration(histogram: Histogram, **labels) -> Iterator[None]:
    """
    Observe the wall time of the enclosed block, even when it raises.

    Usage:
        with track_duration(processing_duration_seconds, mode="retry"):
            manager.retry_entry(entry_id)
    """
    with histogram.labels(**labels).time():
        yield


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    target = counter.labels(**labels) if labels else counter
    target.inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    gauge.labels(**labels).set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    target = histogram.labels(**labels) if labels else histogram
    target.observe(value)


def record_outcome(status: str) -> None:
    """Count one delivery (or retry) by its final status."""
    increment_counter(messages_ingested_total, status=status)


def record_decode_failure(reason: str, field_name: str | None = None) -> None:
    """
    Count a decoder rejection.

    Args:
        reason: DecodeFailureReason value
        field_name: Positional part that failed its format check ("-" if none)
    """
    increment_counter(decode_failures_total, reason=reason, field_name=field_name or "-")


def record_identifier_resolution(identifier: str, tier: str) -> None:
    increment_counter(identifier_resolution_total, identifier=identifier, tier=tier)


def record_quarantine_sizes(counts: dict[str, int]) -> None:
    """Publish the number of quarantine entries per status."""
    for status, count in counts.items():
        set_gauge(quarantine_size, count, status=status)
