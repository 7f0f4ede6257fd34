from __future__ import annotations

import io
from typing import Any, Mapping, Sequence

import pytest
from openpyxl import Workbook


def build_xlsx(sheets: Mapping[str, Sequence[Sequence[Any]]]) -> bytes:
    """Serialize ``{sheet name: rows}`` into an in-memory XLSX payload."""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for name, rows in sheets.items():
        worksheet = workbook.create_sheet(title=name)
        for row in rows:
            worksheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class StaticFetcher:
    """Fetcher double returning canned payloads by URL, or one payload for every URL."""

    def __init__(self, payloads: Mapping[str, Any] | bytes) -> None:
        self.payloads = payloads
        self.calls: list[str] = []

    def fetch(self, url: str) -> bytes:
        self.calls.append(url)
        payload = self.payloads if isinstance(self.payloads, bytes) else self.payloads[url]
        if isinstance(payload, Exception):
            raise payload
        return payload


@pytest.fixture
def xlsx():
    return build_xlsx


@pytest.fixture
def static_fetcher():
    return StaticFetcher


@pytest.fixture
def la_payload() -> bytes:
    return build_xlsx(
        {
            "Asy_D11": [
                ["Local Authority", "Total Supported", "Hotel"],
                ["Glasgow City", 3844, 1200],
                ["Total", 3844, 1200],
            ]
        }
    )
