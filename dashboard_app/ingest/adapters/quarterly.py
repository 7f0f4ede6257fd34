"""
Shared parsing for quarterly immigration tables broken down by nationality.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Mapping, Sequence

from ..errors import DecodeFailure
from ..pipeline import SourceIngestor
from ..schema_mapper import (
    ColumnMapping,
    FieldRule,
    Predicate,
    any_of,
    contains,
    equals,
    is_reserved_label,
    parse_quarter,
    quarter_end,
    to_int,
)

logger = logging.getLogger(__name__)

MIN_YEAR = 1900
MAX_YEAR = 2100

PERIOD_RULES = (
    FieldRule("nationality_name", contains("nationality", "country")),
    FieldRule("year", equals("year")),
    FieldRule("quarter", any_of(contains("quarter"), equals("q"))),
)


class QuarterlyNationalityIngestor(SourceIngestor):
    """
    Base for sheets with one row per nationality and quarter.

    Subclasses provide ``sheet_predicate`` and ``rules`` and turn each row into
    a record with ``build_record``; period columns and label filtering are
    handled here.
    """

    sheet_predicate: ClassVar[Predicate]
    sheet_description: ClassVar[str] = "nationality"
    rules: ClassVar[Sequence[FieldRule]] = ()

    def parse(self, payload: bytes) -> list[dict[str, Any]]:
        workbook = self.open_workbook(payload)
        sheet = self.require_sheet(workbook, self.sheet_predicate, self.sheet_description)
        mapping = self.map_sheet(sheet, (*PERIOD_RULES, *self.rules))
        if not mapping.has("nationality_name"):
            raise DecodeFailure(f"Sheet '{sheet.name}' has no nationality column")

        records: list[dict[str, Any]] = []
        for row in sheet:
            label = mapping.value(row, "nationality_name")
            if label is None:
                self.skip("missing nationality")
                continue
            nationality = " ".join(str(label).split())
            if is_reserved_label(nationality, min_length=2):
                self.skip("reserved label")
                continue
            period = self._period(mapping, row)
            if period is None:
                self.skip("invalid period")
                continue
            record = self.build_record(mapping, row)
            if record is None:
                continue
            records.append({**period, "nationality_name": nationality, **record})

        logger.info(
            "Parsed %s %s records from %s",
            len(records),
            self.source_code,
            sheet.name,
            extra={"ingest_source": self.source_code, "ingest_sheet": sheet.name, "ingest_records": len(records)},
        )
        return records

    def _period(self, mapping: ColumnMapping, row: Mapping[str, Any]) -> dict[str, Any] | None:
        label_year, quarter = parse_quarter(mapping.value(row, "quarter"))
        if mapping.has("quarter") and mapping.value(row, "quarter") is not None and quarter is None:
            return None
        year = label_year or to_int(mapping.value(row, "year")) or self.run_date.year
        if not MIN_YEAR <= year <= MAX_YEAR:
            return None
        quarter = quarter or 1
        return {"quarter_end": quarter_end(year, quarter), "year": year, "quarter": quarter}

    def build_record(self, mapping: ColumnMapping, row: Mapping[str, Any]) -> dict[str, Any] | None:
        """Return the measure columns for ``row``, or ``None`` after calling ``skip``."""
        raise NotImplementedError

    def resolve_nationalities(self, records: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        resolved = []
        for record in records:
            resolution = self.resolver.resolve_nationality(record["nationality_name"])
            resolved.append({**record, "nationality_id": resolution.entity_id})
        return resolved
