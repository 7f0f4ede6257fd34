"""
SBA_DAILY: migrants detected crossing the Channel in small boats, last 7 days.

The page is HTML. Figures are read from its tables; when the page carries no
usable table, sentences of the form "On 12 October 2024, 123 people ..." are
used instead.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from dashboard_app.models import SmallBoatArrivalDaily

from ..decoders import html_text, parse_html, read_html_tables
from ..loader import ConflictPolicy, LoadSummary
from ..pipeline import SourceIngestor
from ..schema_mapper import Parsed, coerce_date, coerce_int

logger = logging.getLogger(__name__)

CONTENT_SELECTOR = ".govuk-body, .gem-c-govspeak"
SUMMARY_SELECTOR = ".gem-c-govspeak, .govuk-body-l"
PROSE_PATTERN = re.compile(r"On\s+(\d{1,2}\s+\w+\s+\d{4})[,.]?\s*(\d+(?:,\d{3})*)\s+people", re.IGNORECASE)
YTD_PATTERN = re.compile(r"(\d{1,3}(?:,\d{3})*)\s+people.*?this year", re.IGNORECASE)


def people_per_boat(arrivals: int, boats: int | None) -> float | None:
    if not boats or boats <= 0:
        return None
    return round(arrivals / boats, 1)


class SmallBoatsDailyIngestor(SourceIngestor):
    source_code = "SBA_DAILY"
    parser_type = "html"

    def parse(self, payload: bytes) -> list[dict[str, Any]]:
        records = self._parse_tables(payload)
        if not records:
            records = self._parse_prose(payload)

        summary = " ".join(element.get_text(" ", strip=True) for element in parse_html(payload).select(SUMMARY_SELECTOR))
        ytd = YTD_PATTERN.search(summary)
        if ytd:
            self.metadata["ytd_arrivals"] = int(ytd.group(1).replace(",", ""))
            logger.info("Found YTD total %s", ytd.group(1), extra={"ingest_source": self.source_code})
        return records

    def _parse_tables(self, payload: bytes) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        for table in read_html_tables(payload):
            for cells in table.rows:
                if len(cells) < 2:
                    self.skip("short table row")
                    continue
                day = coerce_date(cells[0])
                arrivals = coerce_int(cells[1])
                if not isinstance(day, Parsed) or not isinstance(arrivals, Parsed):
                    self.skip("unparseable table row")
                    continue
                record: dict[str, Any] = {"date": day.value, "arrivals": arrivals.value}
                if len(cells) >= 3:
                    boats = coerce_int(cells[2])
                    if isinstance(boats, Parsed):
                        record["boats"] = boats.value
                        record["people_per_boat"] = people_per_boat(arrivals.value, boats.value)
                records.append(record)
        return records

    def _parse_prose(self, payload: bytes) -> list[dict[str, Any]]:
        text = html_text(payload, selector=CONTENT_SELECTOR)

        records: list[dict[str, Any]] = []
        for match in PROSE_PATTERN.finditer(text):
            day = coerce_date(match.group(1))
            if not isinstance(day, Parsed):
                self.skip(day.reason)
                continue
            records.append({"date": day.value, "arrivals": int(match.group(2).replace(",", ""))})
        if records:
            self.metadata["parsed_from"] = "prose"
        return records

    def load(self, records: list[dict[str, Any]]) -> LoadSummary:
        scraped_at = datetime.now(timezone.utc)
        rows = [{**record, "source_url": self.url, "scraped_at": scraped_at} for record in records]
        return self.upsert(SmallBoatArrivalDaily, rows, policy=ConflictPolicy.REPLACE)
