"""
ASY_D11: asylum seekers in receipt of support, by local authority.
"""

from __future__ import annotations

import logging
from typing import Any

from dashboard_app.models import AsylumSupportLA

from ..decoders import Sheet, Workbook
from ..derived import recompute_la_support_metrics
from ..errors import DecodeFailure
from ..loader import ConflictPolicy, LoadSummary
from ..pipeline import SourceIngestor
from ..schema_mapper import (
    FieldRule,
    Parsed,
    all_of,
    any_of,
    coerce_date,
    contains,
    contains_all,
    equals,
    excludes,
    is_reserved_label,
    latest_quarter_end,
    to_int,
)

logger = logging.getLogger(__name__)

LA_SHEET = contains("asy_d11", "local_authority", "la_level", "la ")
LA_COLUMN = contains("authority", "council")

LA_SUPPORT_RULES = (
    FieldRule("la_name", any_of(contains("authority", "council", "la_name"), equals("la"))),
    FieldRule("region", contains("region", "area")),
    FieldRule("total_supported", all_of(contains("total"), excludes("sub"))),
    FieldRule("section_95", any_of(contains("section_95", "s95"), contains_all("95", "section"))),
    FieldRule("section_4", any_of(contains("section_4", "s4"), contains_all("4", "section"))),
    FieldRule("dispersed", contains("dispersed")),
    FieldRule("initial_accommodation", contains("initial")),
    FieldRule("hotel", contains("hotel", "contingency")),
    FieldRule("subsistence_only", contains("subsistence")),
    FieldRule("main_applicants", contains("main", "applicant")),
    FieldRule("dependants", contains("dependant")),
    FieldRule("snapshot_date", contains("date", "quarter", "period")),
)

COUNT_FIELDS = (
    "total_supported",
    "section_95",
    "section_4",
    "dispersed",
    "initial_accommodation",
    "hotel",
    "subsistence_only",
    "main_applicants",
    "dependants",
)


class AsylumSupportLAIngestor(SourceIngestor):
    source_code = "ASY_D11"
    download_url = (
        "https://assets.publishing.service.gov.uk/media/67148c4930536cb927482c15/"
        "asylum-support-datasets-sep-2024.ods"
    )

    def parse(self, payload: bytes) -> list[dict[str, Any]]:
        workbook = self.open_workbook(payload)
        sheet = self._find_la_sheet(workbook)
        mapping = self.map_sheet(sheet, LA_SUPPORT_RULES)
        if not mapping.has("la_name"):
            raise DecodeFailure(f"Sheet '{sheet.name}' has no local authority column")

        default_snapshot = None if mapping.has("snapshot_date") else latest_quarter_end(self.run_date)
        records: list[dict[str, Any]] = []
        for row in sheet:
            label = mapping.value(row, "la_name")
            if label is None:
                self.skip("missing local authority")
                continue
            la_name = " ".join(str(label).split())
            if is_reserved_label(la_name):
                self.skip("reserved label")
                continue

            snapshot_date = default_snapshot
            if snapshot_date is None:
                coerced = coerce_date(mapping.value(row, "snapshot_date"))
                if not isinstance(coerced, Parsed):
                    self.skip(coerced.reason)
                    continue
                snapshot_date = coerced.value

            region = mapping.value(row, "region")
            record: dict[str, Any] = {
                "snapshot_date": snapshot_date,
                "la_name": la_name,
                "region": str(region).strip() if region is not None else None,
                # Section 98 is not broken out in the published tables.
                "section_98": 0,
            }
            for name in COUNT_FIELDS:
                record[name] = to_int(mapping.value(row, name))

            if record["total_supported"] == 0:
                record["total_supported"] = record["section_95"] + record["section_4"] + record["section_98"]
            if record["total_supported"] <= 0 and record["dispersed"] <= 0 and record["hotel"] <= 0:
                self.skip("no supported population")
                continue
            records.append(record)

        logger.info(
            "Parsed %s LA support records from %s",
            len(records),
            sheet.name,
            extra={"ingest_source": self.source_code, "ingest_sheet": sheet.name, "ingest_records": len(records)},
        )
        return records

    def _find_la_sheet(self, workbook: Workbook) -> Sheet:
        for name in workbook.sheet_names:
            if LA_SHEET(name.lower()):
                return workbook.sheet(name)
        for sheet in workbook.sheets():
            if any(LA_COLUMN(column.lower()) for column in sheet.columns):
                return sheet
        raise DecodeFailure("Could not find LA-level sheet in asylum support data")

    def load(self, records: list[dict[str, Any]]) -> LoadSummary:
        rows = []
        for record in records:
            resolution = self.resolver.resolve_local_authority(record["la_name"], region=record["region"])
            if not resolution.resolved:
                self.skip("unresolved local authority")
                continue
            rows.append({**record, "la_id": resolution.entity_id})

        summary = self.upsert(AsylumSupportLA, rows, policy=ConflictPolicy.REPLACE)
        snapshots = sorted({row["snapshot_date"] for row in rows})
        for snapshot_date in snapshots:
            recompute_la_support_metrics(snapshot_date)
        self.metadata["snapshot_dates"] = [value.isoformat() for value in snapshots]
        return summary
