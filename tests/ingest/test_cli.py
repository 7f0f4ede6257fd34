from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from flask import Flask

from dashboard_app.ingest import init_ingest
from dashboard_app.ingest.pipeline import BatchFailure, BatchResult, RunResult
from dashboard_app.models import DataSource, DataSourceStatus, IngestRun, IngestRunStatus, db


def _completed_run(source, *, minutes_ago=10, **fields):
    started = datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
    run = IngestRun(
        source=source,
        status=IngestRunStatus.COMPLETED,
        started_at=started,
        completed_at=started + timedelta(seconds=30),
        triggered_by="cli",
        **fields,
    )
    db.session.add(run)
    db.session.commit()
    return run


def test_group_lists_adapters(runner):
    result = runner.invoke(args=["ingest"])

    assert result.exit_code == 0, result.output
    assert "SBA_DAILY (SmallBoatsDailyIngestor)" in result.output
    assert "ASY_D11 (AsylumSupportLAIngestor)" in result.output


def test_register_sources_then_list(runner):
    result = runner.invoke(args=["ingest", "register-sources"])

    assert result.exit_code == 0, result.output
    assert "(17 new, 0 updated)" in result.output
    assert db.session.query(DataSource).count() == 17

    listing = runner.invoke(args=["ingest", "sources", "--tier", "a"])
    assert listing.exit_code == 0, listing.output
    assert "SBA_DAILY" in listing.output
    assert "adapter=yes" in listing.output
    assert "ASY_D11" not in listing.output


def test_sources_reports_empty_registry(runner):
    result = runner.invoke(args=["ingest", "sources"])

    assert result.exit_code == 0
    assert "No sources registered" in result.output


def test_run_unknown_source_fails(runner):
    result = runner.invoke(args=["ingest", "run", "nope"])

    assert result.exit_code != 0
    assert "'NOPE' is not registered" in result.output


def test_run_reports_result(runner, monkeypatch):
    calls = {}

    def fake_run_source(code, *, triggered_by):
        calls["args"] = (code, triggered_by)
        return RunResult(run_id=7, source_code=code, status="completed", records_processed=3, records_inserted=2)

    monkeypatch.setattr("dashboard_app.ingest.cli.run_source", fake_run_source)

    result = runner.invoke(args=["ingest", "run", "asy_d11", "--summary-json"])

    assert result.exit_code == 0, result.output
    assert calls["args"] == ("ASY_D11", "cli")
    assert "Run 7 for ASY_D11 finished with status completed." in result.output
    assert '"records_inserted": 2' in result.output


def test_run_failure_exits_non_zero(runner, monkeypatch):
    def failing_run_source(code, *, triggered_by):
        raise RuntimeError("boom")

    monkeypatch.setattr("dashboard_app.ingest.cli.run_source", failing_run_source)

    result = runner.invoke(args=["ingest", "run", "ASY_D11"])

    assert result.exit_code != 0
    assert "Ingest run for ASY_D11 failed: boom" in result.output


def test_run_all_exits_one_when_any_source_fails(runner, monkeypatch):
    batch = BatchResult(
        results=[
            RunResult(run_id=1, source_code="ASY_D02", status="failed", error_message="HTTP 500"),
            RunResult(run_id=2, source_code="ASY_D11", status="completed", no_changes=True),
        ],
        failures=[BatchFailure(source_code="ASY_D02", error="HTTP 500", run_id=1)],
        unsupported=["FRENCH_PREV"],
    )
    captured = {}

    def fake_run_batch(**kwargs):
        captured.update(kwargs)
        return batch

    monkeypatch.setattr("dashboard_app.ingest.cli.run_batch", fake_run_batch)

    result = runner.invoke(args=["ingest", "run-all", "--tier", "b"])

    assert result.exit_code == 1
    assert captured == {"tier": "B", "status": "active", "triggered_by": "cli"}
    assert "FAILED ASY_D02 (run 1): HTTP 500" in result.output
    assert "Skipped (no adapter): FRENCH_PREV" in result.output
    assert "Batch finished: 1 succeeded, 1 failed." in result.output


def test_run_all_succeeds_without_failures(runner, monkeypatch):
    monkeypatch.setattr("dashboard_app.ingest.cli.run_batch", lambda **kwargs: BatchResult())

    result = runner.invoke(args=["ingest", "run-all"])

    assert result.exit_code == 0, result.output
    assert "Batch finished: 0 succeeded, 0 failed." in result.output


def test_runs_json_lists_newest_first(runner, make_source):
    source = make_source("ASY_D11")
    older = _completed_run(source, minutes_ago=60, records_inserted=4)
    newer = _completed_run(source, minutes_ago=5, metadata_json={"no_changes": True})

    result = runner.invoke(args=["ingest", "runs", "--source", "asy_d11", "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert [run["id"] for run in payload] == [newer.id, older.id]
    assert payload[0]["no_changes"] is True
    assert payload[1]["duration_seconds"] == 30.0


def test_runs_text_output(runner, make_source):
    source = make_source("ASY_D11")
    _completed_run(source, records_inserted=4)

    result = runner.invoke(args=["ingest", "runs"])

    assert result.exit_code == 0, result.output
    assert "ASY_D11" in result.output
    assert "inserted=4" in result.output


def test_status_reports_last_success(runner, make_source):
    source = make_source("ASY_D11")
    run = _completed_run(source, content_hash="c" * 64)

    result = runner.invoke(args=["ingest", "status", "asy_d11"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["code"] == "ASY_D11"
    assert payload["last_success"]["id"] == run.id
    assert payload["recent_errors"] == []


def test_status_unknown_source(runner):
    result = runner.invoke(args=["ingest", "status", "NOPE"])

    assert result.exit_code != 0
    assert "not registered" in result.output


def test_deprecate_marks_source(runner, make_source):
    source = make_source("ASY_D06")

    result = runner.invoke(args=["ingest", "deprecate", "asy_d06"])

    assert result.exit_code == 0, result.output
    db.session.refresh(source)
    assert source.status == DataSourceStatus.DEPRECATED


def test_disabled_flag_registers_stub_group():
    app = Flask(__name__)
    app.config.update(TESTING=True, INGEST_ENABLED=False)

    init_ingest(app)

    assert app.extensions["ingest"]["enabled"] is False
    assert app.extensions["ingest"]["celery_app"] is None
    result = app.test_cli_runner().invoke(args=["ingest"])
    assert result.exit_code != 0
    assert "Ingest commands are unavailable" in result.output
