from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select

from dashboard_app.ingest.errors import LoadFailure
from dashboard_app.ingest.loader import ConflictPolicy, LoadSummary, dedupe_rows, upsert_facts
from dashboard_app.models import AsylumBacklog, AsylumClaim, db


def _backlog_rows(total_june=90000, total_sept=75000):
    return [
        {"snapshot_date": date(2024, 6, 30), "total_awaiting": total_june},
        {"snapshot_date": date(2024, 9, 30), "total_awaiting": total_sept},
    ]


def _claim(nationality, total, quarter_end=date(2024, 9, 30)):
    return {
        "quarter_end": quarter_end,
        "year": quarter_end.year,
        "quarter": (quarter_end.month - 1) // 3 + 1,
        "nationality_name": nationality,
        "claims_total": total,
    }


def test_replace_inserts_then_updates_by_natural_key():
    first = upsert_facts(AsylumBacklog, _backlog_rows(), policy=ConflictPolicy.REPLACE)
    second = upsert_facts(AsylumBacklog, _backlog_rows(total_sept=76000), policy=ConflictPolicy.REPLACE)

    assert first.as_dict() == {"inserted": 2, "updated": 0, "ignored": 0}
    assert second.as_dict() == {"inserted": 0, "updated": 2, "ignored": 0}

    rows = db.session.execute(select(AsylumBacklog).order_by(AsylumBacklog.snapshot_date)).scalars().all()
    assert [row.total_awaiting for row in rows] == [90000, 76000]


def test_ignore_keeps_first_written_values():
    upsert_facts(AsylumClaim, [_claim("Iran", 500)], policy=ConflictPolicy.IGNORE)
    summary = upsert_facts(AsylumClaim, [_claim("Iran", 999), _claim("Syria", 10)], policy=ConflictPolicy.IGNORE)

    assert summary.inserted == 1
    assert summary.ignored == 1
    iran = db.session.execute(select(AsylumClaim).where(AsylumClaim.nationality_name == "Iran")).scalar_one()
    assert iran.claims_total == 500


def test_reload_never_duplicates_natural_keys():
    for _ in range(3):
        upsert_facts(AsylumBacklog, _backlog_rows(), policy=ConflictPolicy.REPLACE)

    assert len(db.session.execute(select(AsylumBacklog)).scalars().all()) == 2


def test_duplicate_keys_in_one_call_collapse_by_policy():
    rows = [_claim("Iran", 1), _claim("Iran", 2)]

    assert dedupe_rows(rows, AsylumClaim.NATURAL_KEY, ConflictPolicy.REPLACE)[0]["claims_total"] == 2
    assert dedupe_rows(rows, AsylumClaim.NATURAL_KEY, ConflictPolicy.IGNORE)[0]["claims_total"] == 1

    summary = upsert_facts(AsylumClaim, rows, policy=ConflictPolicy.REPLACE)
    assert summary.inserted == 1


def test_small_chunks_are_committed_independently():
    rows = [
        {"snapshot_date": date(2024, month, 1), "total_awaiting": month * 100}
        for month in range(1, 8)
    ]

    summary = upsert_facts(AsylumBacklog, rows, policy=ConflictPolicy.REPLACE, chunk_size=3)

    assert summary.inserted == 7
    assert len(db.session.execute(select(AsylumBacklog)).scalars().all()) == 7


def test_chunk_size_defaults_to_config(app):
    app.config["INGEST_UPSERT_CHUNK_SIZE"] = 1
    summary = upsert_facts(AsylumBacklog, _backlog_rows(), policy=ConflictPolicy.REPLACE)

    assert summary.inserted == 2


def test_missing_natural_key_raises_load_failure():
    with pytest.raises(LoadFailure) as excinfo:
        upsert_facts(AsylumBacklog, [{"total_awaiting": 10}], policy=ConflictPolicy.REPLACE)

    assert excinfo.value.table == "asylum_backlog"


def test_database_rejection_raises_load_failure():
    # total_awaiting is NOT NULL
    with pytest.raises(LoadFailure):
        upsert_facts(AsylumBacklog, [{"snapshot_date": date(2024, 9, 30), "total_awaiting": None}])


def test_empty_input_is_a_noop():
    assert upsert_facts(AsylumBacklog, []) == LoadSummary()


def test_load_summary_addition():
    total = LoadSummary(inserted=1, updated=2) + LoadSummary(inserted=3, ignored=4)

    assert total.as_dict() == {"inserted": 4, "updated": 2, "ignored": 4}
    assert total.total == 10
