import json
import logging
import os
import sys

from dashboard_app.utils.logging_config import PACKAGE_LOGGER, JSONFormatter, setup_logging


def _record(**extra):
    record = logging.LogRecord("dashboard_app.ingest.pipeline", logging.INFO, __file__, 10, "Run %s done", (4,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields():
    payload = json.loads(JSONFormatter().format(_record(ingest_source="ASY_D11", ingest_run_id=4)))

    assert payload["message"] == "Run 4 done"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "dashboard_app.ingest.pipeline"
    assert payload["ingest_source"] == "ASY_D11"
    assert payload["ingest_run_id"] == 4
    assert "lineno" not in payload


def test_json_formatter_serializes_exceptions():
    try:
        raise ValueError("bad cell")
    except ValueError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), None)
        record.exc_info = sys.exc_info()

    payload = json.loads(JSONFormatter().format(record))

    assert "ValueError: bad cell" in payload["exception"]


def test_setup_logging_attaches_file_handler(app, tmp_path):
    app.config.update(
        ENABLE_FILE_LOGGING=True,
        ENABLE_CONSOLE_LOGGING=False,
        LOG_DIR=str(tmp_path),
        LOG_FORMAT="json",
        LOG_LEVEL="INFO",
    )

    setup_logging(app)
    try:
        logging.getLogger("dashboard_app.ingest.pipeline").info("hello", extra={"ingest_source": "SBA_DAILY"})
        for handler in logging.getLogger(PACKAGE_LOGGER).handlers:
            handler.flush()

        lines = (tmp_path / "ingest.log").read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[-1])["ingest_source"] == "SBA_DAILY"
        assert logging.getLogger(PACKAGE_LOGGER).level == logging.INFO
    finally:
        app.config.update(ENABLE_FILE_LOGGING=False, LOG_LEVEL="WARNING")
        setup_logging(app)

    assert not [h for h in logging.getLogger(PACKAGE_LOGGER).handlers if getattr(h, "_dashboard_handler", False)]
    assert os.path.exists(tmp_path / "ingest.log")
