"""
ASY_D03: cases awaiting an initial decision or further review (national totals).
"""

from __future__ import annotations

import logging
from typing import Any

from dashboard_app.models import AsylumBacklog

from ..errors import DecodeFailure
from ..loader import ConflictPolicy, LoadSummary
from ..pipeline import SourceIngestor
from ..schema_mapper import (
    FieldRule,
    Parsed,
    all_of,
    coerce_date,
    contains,
    contains_all,
    excludes,
    to_int,
)

logger = logging.getLogger(__name__)

BACKLOG_SHEET = contains("asy_d03", "backlog", "awaiting", "work_in_progress", "wip")

BACKLOG_RULES = (
    FieldRule("snapshot_date", contains("date", "quarter", "period", "as_at")),
    FieldRule("total_awaiting", all_of(contains("total"), excludes("sub"))),
    FieldRule("awaiting_initial", contains("initial")),
    FieldRule("awaiting_further_review", contains("further", "review")),
    FieldRule("awaiting_less_6_months", all_of(contains("6"), contains("less", "under"))),
    FieldRule("awaiting_6_12_months", contains_all("6", "12")),
    FieldRule("awaiting_1_3_years", all_of(contains("1", "one"), contains("3"))),
    FieldRule("awaiting_3_plus_years", all_of(contains("3"), contains("plus", "more", "+"))),
    FieldRule("legacy_cases", contains("legacy", "pre")),
)

COUNT_FIELDS = tuple(rule.field for rule in BACKLOG_RULES if rule.field != "snapshot_date")


class AsylumBacklogIngestor(SourceIngestor):
    source_code = "ASY_D03"
    download_url = (
        "https://assets.publishing.service.gov.uk/media/6714906d30536cb9274830b3/"
        "asylum-applications-datasets-sep-2024.ods"
    )

    def parse(self, payload: bytes) -> list[dict[str, Any]]:
        workbook = self.open_workbook(payload)
        sheet = self.require_sheet(workbook, BACKLOG_SHEET, "backlog")
        mapping = self.map_sheet(sheet, BACKLOG_RULES)
        if not mapping.has("snapshot_date"):
            raise DecodeFailure(f"Sheet '{sheet.name}' has no snapshot date column")

        records: list[dict[str, Any]] = []
        for row in sheet:
            coerced = coerce_date(mapping.value(row, "snapshot_date"))
            if not isinstance(coerced, Parsed):
                self.skip(coerced.reason)
                continue
            record: dict[str, Any] = {"snapshot_date": coerced.value}
            for name in COUNT_FIELDS:
                record[name] = to_int(mapping.value(row, name))
            if record["total_awaiting"] == 0:
                record["total_awaiting"] = record["awaiting_initial"] + record["awaiting_further_review"]
            if record["total_awaiting"] <= 0:
                self.skip("no cases awaiting")
                continue
            records.append(record)

        records.sort(key=lambda record: record["snapshot_date"], reverse=True)
        return records

    def load(self, records: list[dict[str, Any]]) -> LoadSummary:
        summary = self.upsert(AsylumBacklog, records, policy=ConflictPolicy.REPLACE)
        if records:
            latest = records[0]
            self.metadata["latest_snapshot"] = latest["snapshot_date"].isoformat()
            logger.info(
                "Latest backlog snapshot %s: %s awaiting",
                latest["snapshot_date"].isoformat(),
                latest["total_awaiting"],
                extra={
                    "ingest_source": self.source_code,
                    "ingest_backlog_total": latest["total_awaiting"],
                    "ingest_backlog_less_6m": latest["awaiting_less_6_months"],
                    "ingest_backlog_6_12m": latest["awaiting_6_12_months"],
                    "ingest_backlog_1_3y": latest["awaiting_1_3_years"],
                    "ingest_backlog_3y_plus": latest["awaiting_3_plus_years"],
                },
            )
        return summary
