from __future__ import annotations

import pytest

from dashboard_app.ingest.errors import InvalidRunTransition
from dashboard_app.ingest.run_ledger import RunLedger
from dashboard_app.models import DataSourceStatus, IngestRun, IngestRunStatus, db


@pytest.mark.parametrize(
    "path",
    [
        (IngestRunStatus.RUNNING, IngestRunStatus.COMPLETED),
        (IngestRunStatus.RUNNING, IngestRunStatus.FAILED),
        (IngestRunStatus.FAILED,),
    ],
)
def test_allowed_run_transitions(path):
    run = IngestRun(status=IngestRunStatus.PENDING)
    for target in path:
        run.transition_to(target)

    assert run.status == path[-1]
    assert run.completed_at is not None


@pytest.mark.parametrize(
    "setup, target",
    [
        ((), IngestRunStatus.COMPLETED),
        ((IngestRunStatus.RUNNING, IngestRunStatus.COMPLETED), IngestRunStatus.RUNNING),
        ((IngestRunStatus.RUNNING, IngestRunStatus.COMPLETED), IngestRunStatus.FAILED),
        ((IngestRunStatus.FAILED,), IngestRunStatus.RUNNING),
        ((IngestRunStatus.RUNNING,), IngestRunStatus.PENDING),
    ],
)
def test_forbidden_run_transitions_raise(setup, target):
    run = IngestRun(status=IngestRunStatus.PENDING)
    for step in setup:
        run.transition_to(step)

    with pytest.raises(InvalidRunTransition):
        run.transition_to(target)


def test_running_stamps_started_at():
    run = IngestRun(status=IngestRunStatus.PENDING)
    run.transition_to(IngestRunStatus.RUNNING)

    assert run.started_at is not None
    assert run.completed_at is None


def test_start_and_complete_run_updates_source_fingerprint(make_source):
    source = make_source("ASY_D11")
    ledger = RunLedger()

    run = ledger.start_run(source, triggered_by="test")
    assert run.status == IngestRunStatus.RUNNING

    ledger.complete_run(
        run,
        content_hash="a" * 64,
        records_processed=3,
        records_inserted=2,
        records_updated=1,
        records_skipped=4,
        metadata={"skip_reasons": {"reserved label": 4}},
    )

    assert run.status == IngestRunStatus.COMPLETED
    assert run.no_changes is False
    assert run.metadata_json["skip_reasons"] == {"reserved label": 4}
    assert source.content_hash == "a" * 64
    assert source.last_updated is not None


def test_no_changes_run_leaves_last_updated(make_source):
    source = make_source("ASY_D11")
    ledger = RunLedger()

    run = ledger.complete_no_changes(ledger.start_run(source), content_hash="b" * 64)

    assert run.no_changes is True
    assert run.content_hash == "b" * 64
    assert source.last_checked is not None
    assert source.last_updated is None


def test_fail_run_keeps_fingerprint_and_records_error(make_source):
    source = make_source("ASY_D11")
    source.content_hash = "c" * 64
    db.session.commit()
    ledger = RunLedger()
    run = ledger.start_run(source)

    failed = ledger.fail_run(run.id, "HTTP 503", metadata={"error_type": "FetchFailure"})

    assert failed.status == IngestRunStatus.FAILED
    assert failed.error_message == "HTTP 503"
    assert failed.metadata_json == {"error_type": "FetchFailure"}
    assert source.content_hash == "c" * 64


def test_fail_run_for_missing_run_returns_none():
    assert RunLedger().fail_run(9999, "gone") is None


def test_runs_are_append_only_and_listed_newest_first(make_source):
    source = make_source("ASY_D11")
    ledger = RunLedger()
    first = ledger.start_run(source)
    ledger.fail_run(first.id, "boom")
    second = ledger.start_run(source)
    ledger.complete_no_changes(second, content_hash="d" * 64)

    runs = ledger.list_runs(source_code="ASY_D11")

    assert [run.id for run in runs] == [second.id, first.id]
    assert [run.status for run in runs] == ["completed", "failed"]
    assert runs[1].error_message == "boom"
    assert [run.id for run in ledger.list_runs(statuses=["failed"])] == [first.id]
    assert len(ledger.list_runs(limit=1)) == 1


def test_list_runs_rejects_unknown_status():
    with pytest.raises(ValueError):
        RunLedger().list_runs(statuses=["exploded"])


def test_source_status_summarizes_history(make_source):
    source = make_source("ASY_D11")
    ledger = RunLedger()
    failed = ledger.start_run(source)
    ledger.fail_run(failed.id, "decode error")
    ok = ledger.start_run(source)
    ledger.complete_run(
        ok,
        content_hash="e" * 64,
        records_processed=1,
        records_inserted=1,
        records_updated=0,
        records_skipped=0,
    )

    status = ledger.source_status("ASY_D11")
    payload = status.as_dict()

    assert payload["last_success"]["id"] == ok.id
    assert payload["content_hash"] == "e" * 64
    assert [run["id"] for run in payload["recent_errors"]] == [failed.id]
    assert payload["run_counts"] == {"completed": 1, "failed": 1}
    assert ledger.source_status("NOPE") is None


def test_list_sources_filters(make_source):
    make_source("SBA_DAILY", tier="A")
    make_source("ASY_D11", tier="B")
    make_source("ASY_D06", tier="B", status=DataSourceStatus.DEPRECATED)
    ledger = RunLedger()

    assert [source.code for source in ledger.list_sources(tier="b")] == ["ASY_D06", "ASY_D11"]
    assert [source.code for source in ledger.list_sources(status="active")] == ["ASY_D11", "SBA_DAILY"]
    assert [source.code for source in ledger.list_sources(codes=["SBA_DAILY"])] == ["SBA_DAILY"]
