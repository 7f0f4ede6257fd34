"""
Application logging setup.

``setup_logging`` attaches console and rotating file handlers to the Flask app
logger and to the ``dashboard_app`` package logger, so module loggers created
with ``logging.getLogger(__name__)`` share the same output. Structured fields
passed through ``extra={...}`` are emitted as JSON keys when
``LOG_FORMAT=json``.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from flask import Flask

from config.monitoring import DevelopmentMonitoringConfig, ProductionMonitoringConfig, TestingMonitoringConfig

PACKAGE_LOGGER = "dashboard_app"
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Attributes present on every LogRecord; anything else came from ``extra``.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line with the standard fields plus any ``extra`` keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _monitoring_config(app: Flask):
    if app.config.get("TESTING"):
        return TestingMonitoringConfig
    if app.config.get("DEBUG"):
        return DevelopmentMonitoringConfig
    return ProductionMonitoringConfig


def _setting(app: Flask, monitoring, name: str):
    return app.config.get(name, getattr(monitoring, name))


def _build_formatter(log_format: str) -> logging.Formatter:
    if str(log_format).lower() == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(app: Flask) -> None:
    """Configure handlers for ``app.logger`` and the package logger from monitoring settings."""
    monitoring = _monitoring_config(app)
    level_name = str(_setting(app, monitoring, "LOG_LEVEL")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    formatter = _build_formatter(_setting(app, monitoring, "LOG_FORMAT"))

    handlers: list[logging.Handler] = []
    if _setting(app, monitoring, "ENABLE_CONSOLE_LOGGING"):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        handlers.append(console)

    if _setting(app, monitoring, "ENABLE_FILE_LOGGING"):
        log_dir = _setting(app, monitoring, "LOG_DIR")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "ingest.log"),
            maxBytes=int(_setting(app, monitoring, "LOG_FILE_MAX_BYTES")),
            backupCount=int(_setting(app, monitoring, "LOG_FILE_BACKUP_COUNT")),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for logger in (app.logger, logging.getLogger(PACKAGE_LOGGER)):
        for handler in list(logger.handlers):
            if getattr(handler, "_dashboard_handler", False):
                logger.removeHandler(handler)
                handler.close()
        for handler in handlers:
            handler._dashboard_handler = True  # type: ignore[attr-defined]
            logger.addHandler(handler)
        logger.setLevel(level)

    app.logger.debug(
        "Logging configured",
        extra={"log_level": level_name, "log_handlers": [type(handler).__name__ for handler in handlers]},
    )
