"""
Error taxonomy for the ingest pipeline.

Run-level failures derive from ``IngestError``; row-level problems never raise
and are reported as ``Skipped`` coercion results instead.
"""

from __future__ import annotations

from dashboard_app.models.ingest.schema import InvalidRunTransition

__all__ = [
    "IngestError",
    "SourceNotFound",
    "AdapterNotImplemented",
    "FetchFailure",
    "DecodeFailure",
    "LoadFailure",
    "CoercionError",
    "InvalidRunTransition",
]


class IngestError(RuntimeError):
    """Base class for failures that abort an ingest run."""


class SourceNotFound(IngestError):
    """Raised before a run is created when the source code is not registered."""

    def __init__(self, code: str) -> None:
        super().__init__(f"Data source '{code}' is not registered.")
        self.code = code


class AdapterNotImplemented(IngestError):
    """Raised when a registered source has no adapter able to process it."""

    def __init__(self, code: str) -> None:
        super().__init__(f"No ingest adapter is implemented for source '{code}'.")
        self.code = code


class FetchFailure(IngestError):
    """Raised when the upstream payload cannot be retrieved."""

    def __init__(self, url: str, reason: str, *, status_code: int | None = None) -> None:
        message = f"Failed to fetch {url}: {reason}"
        super().__init__(message)
        self.url = url
        self.reason = reason
        self.status_code = status_code


class DecodeFailure(IngestError):
    """Raised when a payload is unparseable or lacks the expected sheet or table."""


class LoadFailure(IngestError):
    """Raised when the datastore rejects a batch write."""

    def __init__(self, table: str, reason: str) -> None:
        super().__init__(f"Failed to load rows into {table}: {reason}")
        self.table = table
        self.reason = reason


class CoercionError(ValueError):
    """Raised by strict-mode coercion instead of defaulting or skipping."""

    def __init__(self, value, reason: str) -> None:
        super().__init__(f"Cannot coerce {value!r}: {reason}")
        self.value = value
        self.reason = reason
