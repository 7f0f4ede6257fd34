"""
SBA_WEEKLY: small boat arrivals time series and nationality breakdown.

Both tables come from one workbook, so parsed records carry a ``table`` tag
(``weekly`` or ``nationality``) that ``load`` uses to route them.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Any

from dashboard_app.models import SmallBoatArrivalWeekly, SmallBoatNationality

from ..decoders import Sheet, Workbook
from ..derived import recompute_share_of_total
from ..errors import DecodeFailure
from ..loader import ConflictPolicy, LoadSummary
from ..pipeline import SourceIngestor
from ..schema_mapper import (
    FieldRule,
    Parsed,
    all_of,
    coerce_date,
    coerce_int,
    contains,
    excludes,
    find_sheet,
    is_reserved_label,
    to_int,
)

logger = logging.getLogger(__name__)

WEEKLY_TABLE = "weekly"
NATIONALITY_TABLE = "nationality"
PERIOD_TYPE_YEAR = "year"

WEEKLY_SHEET = contains("weekly", "irr_01", "time_series")
NATIONALITY_SHEET = contains("nationality", "irr_02")

WEEKLY_RULES = (
    FieldRule("week_ending", contains("week", "date", "period")),
    FieldRule("arrivals", contains("arrival", "people", "detected")),
    FieldRule("boats", all_of(contains("boat"), excludes("per"))),
)

NATIONALITY_RULES = (
    FieldRule("nationality_name", contains("nationality", "country")),
    FieldRule("arrivals", contains("arrival", "total")),
    FieldRule("year", contains("year", "period")),
)


def accumulate_year_to_date(weeks: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Sort weeks ascending and fill running ``ytd_arrivals``/``ytd_boats`` per calendar year."""
    weeks = sorted(weeks, key=lambda week: week["week_ending"])
    current_year = None
    ytd_arrivals = ytd_boats = 0
    for week in weeks:
        if week["year"] != current_year:
            current_year = week["year"]
            ytd_arrivals = ytd_boats = 0
        ytd_arrivals += week["arrivals"]
        ytd_boats += week["boats"]
        week["ytd_arrivals"] = ytd_arrivals
        week["ytd_boats"] = ytd_boats
    return weeks


class SmallBoatsWeeklyIngestor(SourceIngestor):
    source_code = "SBA_WEEKLY"
    download_url = (
        "https://assets.publishing.service.gov.uk/media/683d9157d23a62e5d32680aa/"
        "small-boat-arrivals-and-crossing-days-data-tables.ods"
    )

    def parse(self, payload: bytes) -> list[dict[str, Any]]:
        workbook = self.open_workbook(payload)
        weekly_sheet = self._optional_sheet(workbook, WEEKLY_SHEET)
        nationality_sheet = self._optional_sheet(workbook, NATIONALITY_SHEET)
        if weekly_sheet is None and nationality_sheet is None:
            raise DecodeFailure("Could not find weekly or nationality sheet in small boats data")

        records: list[dict[str, Any]] = []
        if weekly_sheet is not None:
            records.extend({**week, "table": WEEKLY_TABLE} for week in self._parse_weekly(weekly_sheet))
        if nationality_sheet is not None:
            records.extend(
                {**row, "table": NATIONALITY_TABLE} for row in self._parse_nationality(nationality_sheet)
            )
        return records

    @staticmethod
    def _optional_sheet(workbook: Workbook, predicate) -> Sheet | None:
        name = find_sheet(workbook.sheet_names, predicate)
        return workbook.sheet(name) if name is not None else None

    def _parse_weekly(self, sheet: Sheet) -> list[dict[str, Any]]:
        mapping = self.map_sheet(sheet, WEEKLY_RULES)
        if not mapping.has("week_ending") or not mapping.has("arrivals"):
            raise DecodeFailure(f"Sheet '{sheet.name}' has no week ending or arrivals column")

        weeks = []
        for row in sheet:
            week_ending = coerce_date(mapping.value(row, "week_ending"))
            arrivals = coerce_int(mapping.value(row, "arrivals"))
            if not isinstance(week_ending, Parsed) or not isinstance(arrivals, Parsed):
                self.skip("unparseable weekly row")
                continue
            weeks.append(
                {
                    "week_ending": week_ending.value,
                    "year": week_ending.value.year,
                    "week_number": week_ending.value.isocalendar()[1],
                    "arrivals": arrivals.value,
                    "boats": to_int(mapping.value(row, "boats")),
                }
            )
        return accumulate_year_to_date(weeks)

    def _parse_nationality(self, sheet: Sheet) -> list[dict[str, Any]]:
        mapping = self.map_sheet(sheet, NATIONALITY_RULES)
        if not mapping.has("nationality_name") or not mapping.has("arrivals"):
            raise DecodeFailure(f"Sheet '{sheet.name}' has no nationality or arrivals column")

        rows = []
        for row in sheet:
            label = mapping.value(row, "nationality_name")
            if label is None or is_reserved_label(label, min_length=2):
                self.skip("reserved label")
                continue
            arrivals = coerce_int(mapping.value(row, "arrivals"))
            if not isinstance(arrivals, Parsed):
                self.skip("unparseable arrivals")
                continue
            year = to_int(mapping.value(row, "year")) or self.run_date.year
            if not 1900 <= year <= 2100:
                self.skip("invalid period")
                continue
            rows.append(
                {
                    "period_start": date(year, 1, 1),
                    "period_end": date(year, 12, 31),
                    "period_type": PERIOD_TYPE_YEAR,
                    "nationality_name": " ".join(str(label).split()),
                    "arrivals": arrivals.value,
                }
            )
        return rows

    def load(self, records: list[dict[str, Any]]) -> LoadSummary:
        tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for record in records:
            record = dict(record)
            tables[record.pop("table")].append(record)

        summary = LoadSummary()
        if tables[WEEKLY_TABLE]:
            summary += self.upsert(SmallBoatArrivalWeekly, tables[WEEKLY_TABLE], policy=ConflictPolicy.REPLACE)

        nationality_rows = []
        for row in tables[NATIONALITY_TABLE]:
            resolution = self.resolver.resolve_nationality(row["nationality_name"])
            nationality_rows.append({**row, "nationality_id": resolution.entity_id})
        if nationality_rows:
            summary += self.upsert(SmallBoatNationality, nationality_rows, policy=ConflictPolicy.IGNORE)
            for period_end in sorted({row["period_end"] for row in nationality_rows}):
                recompute_share_of_total(
                    SmallBoatNationality,
                    value_column="arrivals",
                    share_column="share_pct",
                    filters={"period_end": period_end, "period_type": PERIOD_TYPE_YEAR},
                    precision=1,
                )
        return summary
