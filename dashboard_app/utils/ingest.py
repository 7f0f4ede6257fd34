"""
Utility helpers for ingest feature flag checks.
"""

from __future__ import annotations

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_ingest_enabled(app=None) -> bool:
    """Return True when the ingest feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("INGEST_ENABLED", False))


def is_worker_enabled(app=None) -> bool:
    config = _get_config(app)
    return bool(config.get("INGEST_WORKER_ENABLED", False))
