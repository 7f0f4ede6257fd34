"""
ASY_D01: asylum applications by nationality and quarter.
"""

from __future__ import annotations

from typing import Any, Mapping

from dashboard_app.models import AsylumClaim

from ..derived import recompute_share_of_total
from ..loader import ConflictPolicy, LoadSummary
from ..schema_mapper import ColumnMapping, FieldRule, contains, contains_all, equals, to_int
from .quarterly import QuarterlyNationalityIngestor

CLAIM_FIELDS = (
    "claims_total",
    "claims_main_applicant",
    "claims_dependants",
    "claims_in_country",
    "claims_at_port",
)

CLAIM_RULES = (
    FieldRule("claims_total", contains_all("total", "application")),
    FieldRule("claims_total", equals("total")),
    FieldRule("claims_main_applicant", contains("main", "principal")),
    FieldRule("claims_dependants", contains("dependant")),
    FieldRule("claims_in_country", contains("in_country", "after_entry")),
    FieldRule("claims_at_port", contains("port", "on_entry")),
)


class AsylumClaimsIngestor(QuarterlyNationalityIngestor):
    source_code = "ASY_D01"
    download_url = (
        "https://assets.publishing.service.gov.uk/media/6714906d30536cb9274830b3/"
        "asylum-applications-datasets-sep-2024.ods"
    )
    sheet_predicate = staticmethod(contains("asy_d01", "application", "claim"))
    sheet_description = "claims"
    rules = CLAIM_RULES

    def build_record(self, mapping: ColumnMapping, row: Mapping[str, Any]) -> dict[str, Any] | None:
        record = {field: to_int(mapping.value(row, field)) for field in CLAIM_FIELDS}
        if record["claims_total"] == 0:
            record["claims_total"] = record["claims_main_applicant"] + record["claims_dependants"]
        if record["claims_total"] <= 0:
            self.skip("no claims")
            return None
        return record

    def load(self, records: list[dict[str, Any]]) -> LoadSummary:
        rows = self.resolve_nationalities(records)
        summary = self.upsert(AsylumClaim, rows, policy=ConflictPolicy.IGNORE)
        for quarter in sorted({row["quarter_end"] for row in rows}):
            recompute_share_of_total(
                AsylumClaim,
                value_column="claims_total",
                share_column="national_share_pct",
                filters={"quarter_end": quarter},
            )
        return summary
