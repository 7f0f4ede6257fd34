"""
Ingest ledger models: source descriptors and the append-only run log.
"""

from .schema import (
    ALLOWED_RUN_TRANSITIONS,
    TERMINAL_RUN_STATUSES,
    DataSource,
    DataSourceStatus,
    IngestRun,
    IngestRunStatus,
    InvalidRunTransition,
    UpdateFrequency,
)

__all__ = [
    "ALLOWED_RUN_TRANSITIONS",
    "TERMINAL_RUN_STATUSES",
    "DataSource",
    "DataSourceStatus",
    "IngestRun",
    "IngestRunStatus",
    "InvalidRunTransition",
    "UpdateFrequency",
]
