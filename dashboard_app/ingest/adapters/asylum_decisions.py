"""
ASY_D02: initial asylum decisions by nationality and quarter.
"""

from __future__ import annotations

from typing import Any, Mapping

from dashboard_app.models import AsylumDecision

from ..derived import percentage
from ..loader import ConflictPolicy, LoadSummary
from ..schema_mapper import ColumnMapping, FieldRule, any_of, contains, contains_all, to_int
from .quarterly import QuarterlyNationalityIngestor

DECISION_RULES = (
    FieldRule("decisions_total", contains_all("total", "decision")),
    FieldRule("granted_asylum", any_of(contains("refugee"), contains_all("grant", "asylum"))),
    FieldRule("granted_hp", contains("humanitarian", "hp")),
    FieldRule("granted_dl", contains("discretionary", "dl")),
    FieldRule("granted_uasc_leave", contains("uasc")),
    FieldRule("grants_total", contains_all("total", "grant")),
    FieldRule("refused", contains("refus")),
    FieldRule("withdrawn", contains("withdraw")),
)

GRANT_FIELDS = ("granted_asylum", "granted_hp", "granted_dl", "granted_uasc_leave")


def grant_rate(grants: int, refused: int) -> float | None:
    """Grants as a share of substantive decisions; withdrawals are not in the denominator."""
    return percentage(grants, grants + refused, precision=1)


class AsylumDecisionsIngestor(QuarterlyNationalityIngestor):
    source_code = "ASY_D02"
    download_url = (
        "https://assets.publishing.service.gov.uk/media/67149071d23a62e5d32680c3/"
        "asylum-outcomes-datasets-sep-2024.ods"
    )
    sheet_predicate = staticmethod(contains("asy_d02", "decision", "outcome"))
    sheet_description = "decisions"
    rules = DECISION_RULES

    def build_record(self, mapping: ColumnMapping, row: Mapping[str, Any]) -> dict[str, Any] | None:
        record = {rule.field: to_int(mapping.value(row, rule.field)) for rule in DECISION_RULES}
        if record["grants_total"] == 0:
            record["grants_total"] = sum(record[field] for field in GRANT_FIELDS)
        if record["decisions_total"] == 0:
            record["decisions_total"] = record["grants_total"] + record["refused"] + record["withdrawn"]
        if record["decisions_total"] <= 0:
            self.skip("no decisions")
            return None
        record["grant_rate_pct"] = grant_rate(record["grants_total"], record["refused"])
        return record

    def load(self, records: list[dict[str, Any]]) -> LoadSummary:
        return self.upsert(AsylumDecision, self.resolve_nationalities(records), policy=ConflictPolicy.IGNORE)
