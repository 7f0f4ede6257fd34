from __future__ import annotations

from datetime import date, datetime

import pytest

from dashboard_app.ingest.adapters.asylum_claims import CLAIM_RULES
from dashboard_app.ingest.adapters.asylum_support_la import LA_SUPPORT_RULES
from dashboard_app.ingest.errors import CoercionError
from dashboard_app.ingest.schema_mapper import (
    Defaulted,
    FieldRule,
    Parsed,
    Skipped,
    all_of,
    coerce_date,
    coerce_int,
    contains,
    excludes,
    find_sheet,
    is_reserved_label,
    latest_quarter_end,
    map_columns,
    normalize_header,
    parse_quarter,
    quarter_end,
    to_int,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        (45000, Parsed(45000)),
        (3844.0, Parsed(3844)),
        ("1,234", Parsed(1234)),
        (" 12 ", Parsed(12)),
        ("-5", Parsed(-5)),
        (None, Defaulted(0, "empty")),
        ("", Defaulted(0, "empty")),
        (float("nan"), Defaulted(0, "empty")),
        ("TBD", Defaulted(0, "unparseable")),
        ("..", Defaulted(0, "unparseable")),
    ],
)
def test_coerce_int(value, expected):
    assert coerce_int(value) == expected


def test_coerce_int_strict_raises_instead_of_defaulting():
    with pytest.raises(CoercionError):
        coerce_int("TBD", strict=True)
    with pytest.raises(CoercionError):
        coerce_int(None, strict=True)
    assert coerce_int("7", strict=True) == Parsed(7)


def test_to_int_returns_plain_value():
    assert to_int("2,500") == 2500
    assert to_int("x") == 0


@pytest.mark.parametrize(
    "value, expected",
    [
        (45000, date(2023, 3, 15)),
        ("2023-03-15", date(2023, 3, 15)),
        ("15/03/2023", date(2023, 3, 15)),
        (datetime(2023, 3, 15, 10, 30), date(2023, 3, 15)),
        (date(2023, 3, 15), date(2023, 3, 15)),
        ("2024 Q3", date(2024, 9, 30)),
        ("12 October 2024", date(2024, 10, 12)),
    ],
)
def test_coerce_date_parses_supported_forms(value, expected):
    assert coerce_date(value) == Parsed(expected)


@pytest.mark.parametrize("value", ["TBD", None, "", -3, "June", "1", "Monday", "12-", "March 2024", "12 October"])
def test_coerce_date_skips_unreadable_values(value):
    result = coerce_date(value)
    assert isinstance(result, Skipped)
    assert result.reason


def test_coerce_date_strict_raises():
    with pytest.raises(CoercionError):
        coerce_date("TBD", strict=True)


def test_quarter_helpers():
    assert quarter_end(2024, 1) == date(2024, 3, 31)
    assert quarter_end(2024, 2) == date(2024, 6, 30)
    assert quarter_end(2023, 4) == date(2023, 12, 31)
    with pytest.raises(ValueError):
        quarter_end(2024, 5)

    assert latest_quarter_end(date(2024, 11, 1)) == date(2024, 9, 30)
    assert latest_quarter_end(date(2024, 9, 30)) == date(2024, 9, 30)
    assert latest_quarter_end(date(2024, 2, 10)) == date(2023, 12, 31)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024 Q3", (2024, 3)),
        ("Q2", (None, 2)),
        (4, (None, 4)),
        ("1", (None, 1)),
        (7, (None, None)),
        ("Quarter", (None, None)),
        (None, (None, None)),
    ],
)
def test_parse_quarter(value, expected):
    assert parse_quarter(value) == expected


def test_normalize_header_collapses_whitespace_and_case():
    assert normalize_header("  Total\nSupported ") == "total supported"
    assert normalize_header(None) == ""


def test_map_columns_picks_first_matching_header_per_field():
    mapping = map_columns(["Local Authority", "Total Supported", "Hotel"], LA_SUPPORT_RULES)

    assert mapping["la_name"] == "Local Authority"
    assert mapping["total_supported"] == "Total Supported"
    assert mapping["hotel"] == "Hotel"
    assert mapping["snapshot_date"] is None
    assert "section_95" in mapping.unmatched


def test_map_columns_is_order_independent_for_renamed_headers():
    mapping = map_columns(["Contingency accommodation", "LA name", "Total in receipt of support"], LA_SUPPORT_RULES)

    assert mapping["la_name"] == "LA name"
    assert mapping["hotel"] == "Contingency accommodation"
    assert mapping["total_supported"] == "Total in receipt of support"


def test_map_columns_excludes_subtotals():
    rules = (FieldRule("total", all_of(contains("total"), excludes("sub"))),)
    mapping = map_columns(["Subtotal", "Grand total"], rules)

    assert mapping["total"] == "Grand total"


def test_map_columns_uses_repeated_rule_as_fallback():
    preferred = map_columns(["Nationality", "Total applications", "Total"], CLAIM_RULES)
    fallback = map_columns(["Nationality", "Total"], CLAIM_RULES)

    assert preferred["claims_total"] == "Total applications"
    assert fallback["claims_total"] == "Total"


def test_mapping_value_reads_row_by_matched_header():
    mapping = map_columns(["Local Authority", "Hotel"], LA_SUPPORT_RULES)
    row = {"Local Authority": "Leeds", "Hotel": 40}

    assert mapping.value(row, "hotel") == 40
    assert mapping.value(row, "dispersed") is None


def test_find_sheet_is_case_insensitive():
    names = ["Contents", "Notes", "Asy_D11"]

    assert find_sheet(names, contains("asy_d11")) == "Asy_D11"
    assert find_sheet(names, contains("asy_d02")) is None


@pytest.mark.parametrize(
    "label, expected",
    [
        ("Total", True),
        ("Grand total", True),
        ("Unknown", True),
        ("Local Authority", True),
        ("LA", True),
        ("", True),
        (None, True),
        ("Leeds", False),
        ("Glasgow City", False),
    ],
)
def test_is_reserved_label(label, expected):
    assert is_reserved_label(label) is expected


def test_is_reserved_label_respects_min_length():
    assert is_reserved_label("UK", min_length=2) is False
    assert is_reserved_label("UK") is True


def test_coerce_date_reports_incomplete_text():
    assert coerce_date("June") == Skipped("incomplete date", "June")
