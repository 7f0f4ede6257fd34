"""
Tabular decoders turning raw payload bytes into header-keyed rows.

Spreadsheets (ODS via ``odfpy``, XLSX via ``openpyxl``) and CSV files are read
through pandas with ``header=None`` and the real header row is located by
scanning past title and notes blocks. HTML payloads are parsed with
BeautifulSoup. Every decoder raises ``DecodeFailure`` for unreadable payloads.
"""

from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Sequence

import pandas as pd
from bs4 import BeautifulSoup

from .errors import DecodeFailure

logger = logging.getLogger(__name__)

EXCEL_ENGINES = {
    "ods": "odf",
    "xlsx": "openpyxl",
    "xlsm": "openpyxl",
}

DEFAULT_MAX_SCAN_ROWS = 30
DEFAULT_MIN_HEADER_LABELS = 2


@dataclass
class Sheet:
    """One decoded table: ordered column headers plus rows keyed by header."""

    name: str
    columns: tuple[str, ...]
    rows: list[dict[str, Any]] = field(default_factory=list)
    header_row: int = 0

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self.rows)


def clean_cell(value: Any) -> Any:
    """Normalize a raw cell: blanks become ``None``, pandas/numpy scalars become builtins."""
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value.to_pydatetime()
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if hasattr(value, "item") and not isinstance(value, (datetime, bytes)):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def _is_label(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        float(value.replace(",", ""))
    except ValueError:
        return True
    return False


def find_header_row(
    rows: Sequence[Sequence[Any]],
    *,
    max_scan_rows: int = DEFAULT_MAX_SCAN_ROWS,
    min_labels: int = DEFAULT_MIN_HEADER_LABELS,
) -> int:
    """
    Return the index of the first row that looks like a header.

    Release tables open with title and notes rows holding a single text cell;
    the header is the first row where at least ``min_labels`` cells are text
    and text makes up at least half of the populated cells.
    """
    for index, row in enumerate(rows[:max_scan_rows]):
        populated = [cell for cell in row if cell is not None]
        labels = [cell for cell in populated if _is_label(cell)]
        if len(labels) >= min_labels and len(labels) * 2 >= len(populated):
            return index
    return 0


def _dedupe_columns(header: Sequence[Any]) -> tuple[str, ...]:
    seen: dict[str, int] = {}
    columns: list[str] = []
    for index, raw in enumerate(header):
        name = " ".join(str(raw).split()) if raw is not None else ""
        if not name:
            name = f"column_{index}"
        count = seen.get(name, 0)
        seen[name] = count + 1
        columns.append(name if count == 0 else f"{name}.{count}")
    return tuple(columns)


def build_sheet(name: str, raw_rows: Sequence[Sequence[Any]], *, header_row: int | None = None) -> Sheet:
    """Build a ``Sheet`` from raw cell rows, detecting the header row when not given."""
    cleaned = [[clean_cell(cell) for cell in row] for row in raw_rows]
    if not cleaned:
        return Sheet(name=name, columns=(), rows=[], header_row=0)
    if header_row is None:
        header_row = find_header_row(cleaned)
    columns = _dedupe_columns(cleaned[header_row])
    rows: list[dict[str, Any]] = []
    for row in cleaned[header_row + 1 :]:
        if all(cell is None for cell in row):
            continue
        padded = list(row) + [None] * (len(columns) - len(row))
        rows.append(dict(zip(columns, padded)))
    return Sheet(name=name, columns=columns, rows=rows, header_row=header_row)


def _frame_rows(frame: pd.DataFrame) -> list[list[Any]]:
    return frame.astype(object).values.tolist()


class Workbook:
    """Lazy multi-sheet reader over an in-memory ODS or XLSX payload."""

    def __init__(self, payload: bytes, kind: str = "ods") -> None:
        engine = EXCEL_ENGINES.get(kind.lower())
        if engine is None:
            raise DecodeFailure(f"Unsupported spreadsheet format '{kind}'.")
        self.kind = kind.lower()
        try:
            self._excel = pd.ExcelFile(io.BytesIO(payload), engine=engine)
        except Exception as exc:
            raise DecodeFailure(f"Could not open {self.kind} workbook: {exc}") from exc
        self._cache: dict[str, Sheet] = {}

    @property
    def sheet_names(self) -> list[str]:
        return [str(name) for name in self._excel.sheet_names]

    def sheet(self, name: str) -> Sheet:
        if name in self._cache:
            return self._cache[name]
        if name not in self.sheet_names:
            raise DecodeFailure(f"Sheet '{name}' not found; available sheets: {', '.join(self.sheet_names)}")
        try:
            frame = self._excel.parse(name, header=None)
        except Exception as exc:
            raise DecodeFailure(f"Could not read sheet '{name}': {exc}") from exc
        sheet = build_sheet(name, _frame_rows(frame))
        logger.debug(
            "Decoded sheet %s",
            name,
            extra={"ingest_sheet": name, "ingest_sheet_rows": len(sheet), "ingest_header_row": sheet.header_row},
        )
        self._cache[name] = sheet
        return sheet

    def sheets(self) -> Iterator[Sheet]:
        for name in self.sheet_names:
            yield self.sheet(name)


_ODS_MIMETYPE = b"mimetypeapplication/vnd.oasis.opendocument.spreadsheet"
_ZIP_MAGIC = b"PK\x03\x04"


def sniff_spreadsheet_kind(payload: bytes, default: str = "ods") -> str:
    """Guess ``ods`` or ``xlsx`` from the zip container; non-zip payloads get ``default``."""
    if not payload.startswith(_ZIP_MAGIC):
        return default
    # ODS stores an uncompressed ``mimetype`` entry first, right after the 30-byte local header.
    if payload[30 : 30 + len(_ODS_MIMETYPE)] == _ODS_MIMETYPE:
        return "ods"
    return "xlsx"


def open_workbook(payload: bytes, kind: str | None = None) -> Workbook:
    return Workbook(payload, kind or sniff_spreadsheet_kind(payload))


def read_csv_table(payload: bytes, *, name: str = "csv") -> Sheet:
    """Decode a CSV payload (UTF-8, optional BOM) into a ``Sheet``."""
    try:
        frame = pd.read_csv(io.BytesIO(payload), header=None, dtype=object, encoding="utf-8-sig")
    except pd.errors.EmptyDataError:
        return Sheet(name=name, columns=(), rows=[], header_row=0)
    except (pd.errors.ParserError, UnicodeDecodeError) as exc:
        raise DecodeFailure(f"Could not parse CSV payload: {exc}") from exc
    return build_sheet(name, _frame_rows(frame))


@dataclass
class HtmlTable:
    """Plain-text cells of one ``<table>``; ``header`` holds the ``<th>`` row if any."""

    header: list[str]
    rows: list[list[str]]


def parse_html(payload: bytes | str) -> BeautifulSoup:
    try:
        return BeautifulSoup(payload, "html.parser")
    except Exception as exc:
        raise DecodeFailure(f"Could not parse HTML payload: {exc}") from exc


def read_html_tables(payload: bytes | str) -> list[HtmlTable]:
    """Extract every table in the document as header plus data rows of cell text."""
    soup = parse_html(payload)
    tables: list[HtmlTable] = []
    for table in soup.find_all("table"):
        header: list[str] = []
        rows: list[list[str]] = []
        for tr in table.find_all("tr"):
            header_cells = tr.find_all("th")
            data_cells = tr.find_all("td")
            if header_cells and not data_cells:
                if not header:
                    header = [cell.get_text(" ", strip=True) for cell in header_cells]
                continue
            cells = [cell.get_text(" ", strip=True) for cell in tr.find_all(["th", "td"])]
            if any(cells):
                rows.append(cells)
        tables.append(HtmlTable(header=header, rows=rows))
    return tables


def html_text(payload: bytes | str, selector: str | None = None) -> str:
    """
    Visible document text with whitespace collapsed.

    With ``selector``, only matching elements are read; the whole document is
    used when nothing matches.
    """
    soup = parse_html(payload)
    for element in soup(["script", "style"]):
        element.decompose()
    blocks = soup.select(selector) if selector else []
    text = " ".join(block.get_text(" ", strip=True) for block in blocks) if blocks else soup.get_text(" ", strip=True)
    return " ".join(text.split())
