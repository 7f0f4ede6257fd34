"""
Header matching and cell coercion for schema-unstable releases.

Publishers rename and reorder columns between releases, so adapters describe
the columns they need as an ordered list of ``FieldRule`` entries and let
``map_columns`` pick the first observed header satisfying each rule. Cell
values are coerced through ``coerce_int`` / ``coerce_date`` which return a
``Parsed`` / ``Defaulted`` / ``Skipped`` variant instead of silently
substituting values; callers that want the plain value use ``to_int``.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Sequence, Union

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from .errors import CoercionError

Predicate = Callable[[str], bool]

# Spreadsheet serial day 25569 is 1970-01-01 (serial epoch 1899-12-30).
SERIAL_UNIX_EPOCH = 25569
UNIX_EPOCH = date(1970, 1, 1)

HEADER_ECHOES = frozenset({"la", "local authority", "nationality"})

_NON_NUMERIC = re.compile(r"[^0-9-]")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})")
_UK_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_QUARTER_LABEL = re.compile(r"^(\d{4})\s*q([1-4])$", re.IGNORECASE)
_BARE_QUARTER = re.compile(r"^q?([1-4])$", re.IGNORECASE)
# Two fill-in dates that differ in every component; a parse that changes with
# the fill-in was missing a year, month or day.
_FILL_DATES = (datetime(2000, 1, 1), datetime(2001, 2, 2))


# ---------------------------------------------------------------------------
# Header predicates
# ---------------------------------------------------------------------------


def normalize_header(value: object) -> str:
    """Lowercase a header cell and collapse whitespace and line breaks."""
    if value is None:
        return ""
    return " ".join(str(value).split()).lower()


def _header_forms(header: str) -> tuple[str, str]:
    snake = re.sub(r"[^a-z0-9]+", "_", header).strip("_")
    return header, snake


def contains(*tokens: str) -> Predicate:
    """Match headers containing any of ``tokens`` (either as text or snake_case)."""
    lowered = tuple(token.lower() for token in tokens)

    def predicate(header: str) -> bool:
        forms = _header_forms(header)
        return any(token in form for token in lowered for form in forms)

    return predicate


def contains_all(*tokens: str) -> Predicate:
    lowered = tuple(token.lower() for token in tokens)

    def predicate(header: str) -> bool:
        forms = _header_forms(header)
        return all(any(token in form for form in forms) for token in lowered)

    return predicate


def equals(*names: str) -> Predicate:
    lowered = frozenset(name.lower() for name in names)

    def predicate(header: str) -> bool:
        return header in lowered

    return predicate


def excludes(*tokens: str) -> Predicate:
    """Match headers containing none of ``tokens``."""
    matcher = contains(*tokens)

    def predicate(header: str) -> bool:
        return not matcher(header)

    return predicate


def all_of(*predicates: Predicate) -> Predicate:
    def predicate(header: str) -> bool:
        return all(check(header) for check in predicates)

    return predicate


def any_of(*predicates: Predicate) -> Predicate:
    def predicate(header: str) -> bool:
        return any(check(header) for check in predicates)

    return predicate


@dataclass(frozen=True)
class FieldRule:
    """Canonical field name paired with the header predicate that identifies it."""

    field: str
    predicate: Predicate


@dataclass(frozen=True)
class ColumnMapping:
    """Resolved canonical field -> observed column header (``None`` when unmatched)."""

    columns: Mapping[str, str | None]

    def __getitem__(self, field_name: str) -> str | None:
        return self.columns[field_name]

    def get(self, field_name: str) -> str | None:
        return self.columns.get(field_name)

    def has(self, field_name: str) -> bool:
        return self.columns.get(field_name) is not None

    def value(self, row: Mapping[str, Any], field_name: str) -> Any:
        column = self.columns.get(field_name)
        if column is None:
            return None
        return row.get(column)

    @property
    def unmatched(self) -> tuple[str, ...]:
        return tuple(name for name, column in self.columns.items() if column is None)

    def as_dict(self) -> dict[str, str | None]:
        return dict(self.columns)


def map_columns(columns: Iterable[object], rules: Sequence[FieldRule]) -> ColumnMapping:
    """
    Resolve each rule to the first observed column whose header satisfies it.

    Rules are independent: one column may satisfy several fields, and later
    matching columns never replace an earlier match. A field may appear in
    several rules; later ones are fallbacks tried only while it is unmatched.
    """
    observed = [(column, normalize_header(column)) for column in columns]
    resolved: dict[str, str | None] = {}
    for rule in rules:
        if resolved.get(rule.field) is not None:
            continue
        resolved[rule.field] = next(
            (str(column) for column, header in observed if header and rule.predicate(header)),
            None,
        )
    return ColumnMapping(columns=resolved)


def find_sheet(names: Iterable[str], predicate: Predicate) -> str | None:
    """Return the first sheet name (case-insensitively) matching ``predicate``."""
    for name in names:
        if predicate(normalize_header(name)):
            return name
    return None


def is_reserved_label(label: object, *, min_length: int = 3, extra: Iterable[str] = ()) -> bool:
    """
    Return True for row labels that are aggregates, placeholders or header echoes.
    """
    if label is None:
        return True
    lowered = str(label).strip().lower()
    if len(lowered) < min_length:
        return True
    if "total" in lowered or "unknown" in lowered:
        return True
    return lowered in HEADER_ECHOES or lowered in {value.lower() for value in extra}


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Parsed:
    value: Any


@dataclass(frozen=True)
class Defaulted:
    value: Any
    reason: str = "empty"


@dataclass(frozen=True)
class Skipped:
    reason: str
    value: Any = field(default=None)


Coerced = Union[Parsed, Defaulted, Skipped]


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def coerce_int(value: Any, *, strict: bool = False) -> Coerced:
    """
    Coerce a cell to an integer count.

    Numbers pass through (floats truncated). Strings keep only digits and ``-``
    before parsing, so ``"1,234"`` becomes 1234. Blank and unparseable values
    default to 0, or raise ``CoercionError`` when ``strict`` is set.
    """
    if _is_blank(value):
        if strict:
            raise CoercionError(value, "empty value")
        return Defaulted(0, "empty")
    if isinstance(value, bool):
        if strict:
            raise CoercionError(value, "boolean is not a count")
        return Defaulted(0, "unparseable")
    if isinstance(value, int):
        return Parsed(value)
    if isinstance(value, (float, Decimal)):
        if isinstance(value, float) and math.isinf(value):
            if strict:
                raise CoercionError(value, "infinite value")
            return Defaulted(0, "unparseable")
        return Parsed(int(value))

    digits = _NON_NUMERIC.sub("", str(value))
    try:
        return Parsed(int(digits))
    except ValueError:
        if strict:
            raise CoercionError(value, "no numeric content") from None
        return Defaulted(0, "unparseable")


def to_int(value: Any) -> int:
    return coerce_int(value).value


def coerce_date(value: Any, *, strict: bool = False) -> Coerced:
    """
    Coerce a cell to a calendar date.

    Accepts ``date``/``datetime`` objects, spreadsheet serial numbers,
    ``YYYY-MM-DD``, ``DD/MM/YYYY``, ``2024 Q3`` style quarter labels and other
    day-first free text. Anything else, including free text missing a year,
    month or day, is ``Skipped``.
    """
    result = _coerce_date(value)
    if strict and isinstance(result, Skipped):
        raise CoercionError(value, result.reason)
    return result


def _coerce_date(value: Any) -> Coerced:
    if _is_blank(value):
        return Skipped("empty date")
    if isinstance(value, datetime):
        return Parsed(value.date())
    if isinstance(value, date):
        return Parsed(value)
    if isinstance(value, bool):
        return Skipped("unparseable date", value)
    if isinstance(value, (int, float, Decimal)):
        serial = float(value)
        if math.isinf(serial) or serial <= 0:
            return Skipped("serial out of range", value)
        try:
            return Parsed(UNIX_EPOCH + timedelta(days=int(serial) - SERIAL_UNIX_EPOCH))
        except OverflowError:
            return Skipped("serial out of range", value)

    text = str(value).strip()
    try:
        match = _ISO_DATE.match(text)
        if match:
            year, month, day = (int(part) for part in match.groups())
            return Parsed(date(year, month, day))
        match = _UK_DATE.match(text)
        if match:
            day, month, year = (int(part) for part in match.groups())
            return Parsed(date(year, month, day))
        match = _QUARTER_LABEL.match(text)
        if match:
            return Parsed(quarter_end(int(match.group(1)), int(match.group(2))))
        first, second = (date_parser.parse(text, dayfirst=True, default=fill).date() for fill in _FILL_DATES)
        if first != second:
            return Skipped("incomplete date", value)
        return Parsed(first)
    except (ValueError, OverflowError):
        return Skipped("unparseable date", value)


def parse_quarter(value: Any) -> tuple[int | None, int | None]:
    """
    Split a quarter cell into ``(year, quarter)``.

    ``"2024 Q3"`` yields both parts, ``3`` / ``"Q3"`` only the quarter. Parts
    that cannot be read are ``None``.
    """
    if _is_blank(value) or isinstance(value, bool):
        return None, None
    if isinstance(value, (int, float, Decimal)):
        quarter = int(value)
        return None, quarter if 1 <= quarter <= 4 else None
    text = str(value).strip()
    match = _QUARTER_LABEL.match(text)
    if match:
        return int(match.group(1)), int(match.group(2))
    match = _BARE_QUARTER.match(text)
    if match:
        return None, int(match.group(1))
    return None, None


def quarter_end(year: int, quarter: int) -> date:
    """Return the last calendar day of ``quarter`` (1-4) in ``year``."""
    if quarter not in (1, 2, 3, 4):
        raise ValueError(f"Quarter must be between 1 and 4, got {quarter}.")
    return date(year, quarter * 3, 1) + relativedelta(months=1, days=-1)


def latest_quarter_end(on_or_before: date) -> date:
    """Most recent quarter end that is not after ``on_or_before``."""
    quarter = (on_or_before.month - 1) // 3 + 1
    current = quarter_end(on_or_before.year, quarter)
    if current == on_or_before:
        return current
    if quarter == 1:
        return quarter_end(on_or_before.year - 1, 4)
    return quarter_end(on_or_before.year, quarter - 1)
