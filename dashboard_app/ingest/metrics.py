"""Prometheus metrics helpers for the ingest pipeline."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_runs_counter = Counter(
    "ingest_runs_total",
    "Ingest runs finished, by source and terminal status.",
    ["source", "status"],
)
_records_counter = Counter(
    "ingest_records_total",
    "Fact rows written by ingest runs, by source and outcome.",
    ["source", "outcome"],
)
_run_duration = Histogram(
    "ingest_run_duration_seconds",
    "Wall-clock duration of ingest runs in seconds.",
    ["source"],
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)
_stubs_counter = Counter(
    "ingest_stub_entities_total",
    "Reference entities minted as stubs during ingestion.",
    ["kind"],
)


def record_run(
    source: str,
    *,
    status: Literal["completed", "failed", "no_changes"],
    duration_seconds: float,
) -> None:
    """Count a finished run and observe its duration."""

    _runs_counter.labels(source=source, status=status).inc()
    _run_duration.labels(source=source).observe(max(duration_seconds, 0.0))


def record_records(source: str, *, inserted: int = 0, updated: int = 0, skipped: int = 0) -> None:
    for outcome, count in (("inserted", inserted), ("updated", updated), ("skipped", skipped)):
        if count:
            _records_counter.labels(source=source, outcome=outcome).inc(count)


def record_stub_created(kind: Literal["local_authority", "nationality"]) -> None:
    _stubs_counter.labels(kind=kind).inc()
