"""
Statistical release ingest package.

``init_ingest`` registers the ``flask ingest`` CLI (or a stub group when the
feature flag is off) and prepares the Celery worker when enabled.
"""

from __future__ import annotations

from flask import Flask

from dashboard_app.utils.ingest import is_ingest_enabled, is_worker_enabled

from .celery_app import EXTENSION_KEY, ensure_celery_app, get_celery_app
from .cli import get_disabled_ingest_group, ingest_cli
from .errors import (
    AdapterNotImplemented,
    DecodeFailure,
    FetchFailure,
    IngestError,
    InvalidRunTransition,
    LoadFailure,
    SourceNotFound,
)
from .pipeline import BatchResult, RunResult, SourceIngestor, run_batch, run_source
from .registry import get_adapter_registry
from .run_ledger import RunLedger

__all__ = [
    "init_ingest",
    "EXTENSION_KEY",
    "get_celery_app",
    "run_source",
    "run_batch",
    "RunResult",
    "BatchResult",
    "SourceIngestor",
    "RunLedger",
    "IngestError",
    "SourceNotFound",
    "AdapterNotImplemented",
    "FetchFailure",
    "DecodeFailure",
    "LoadFailure",
    "InvalidRunTransition",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        EXTENSION_KEY,
        {
            "enabled": False,
            "worker_enabled": False,
            "adapters": (),
            "celery_app": None,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the real or disabled CLI group, replacing any earlier registration."""
    command_name = ingest_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(ingest_cli)
    else:
        app.cli.add_command(get_disabled_ingest_group())


def init_ingest(app: Flask) -> None:
    """
    Wire the ingest CLI and worker according to ``INGEST_ENABLED``.

    State is kept in ``app.extensions['ingest']`` for the CLI and tasks.
    """
    enabled = is_ingest_enabled(app)
    state = _ensure_extension_state(app)
    state.update({"enabled": enabled, "worker_enabled": is_worker_enabled(app)})

    if not enabled:
        state["adapters"] = ()
        _set_cli(app, enabled=False)
        app.logger.info("Ingest disabled via INGEST_ENABLED flag; skipping registration.")
        return

    state["adapters"] = tuple(get_adapter_registry())
    ensure_celery_app(app, state)
    _set_cli(app, enabled=True)
    app.logger.info("Ingest enabled with adapters: %s", ", ".join(state["adapters"]) or "none")
