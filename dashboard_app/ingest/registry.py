"""
Source registry: YAML source descriptors plus the code -> adapter map.

Descriptors are loaded from ``INGEST_SOURCES_PATH`` and upserted into
``data_sources``. Adapter classes are resolved lazily so importing the
registry never pulls in the pandas/BeautifulSoup decoders.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

import yaml
from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm import Session

from dashboard_app.models import DataSource, DataSourceStatus, UpdateFrequency, db

if TYPE_CHECKING:  # pragma: no cover
    from .pipeline import SourceIngestor

logger = logging.getLogger(__name__)

VALID_TIERS = ("A", "B", "C")
DEFAULT_SOURCES_PATH = Path(__file__).resolve().parents[2] / "config" / "sources.yaml"


class SourceRegistryError(RuntimeError):
    """Raised when the source descriptor file cannot be loaded or validated."""


@dataclass(frozen=True)
class SourceDescriptor:
    """One upstream publication as declared in the registry file."""

    code: str
    name: str
    tier: str
    frequency: UpdateFrequency
    parser_type: str | None = None
    url: str | None = None
    file_pattern: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class SourceCatalog:
    version: int
    sources: Sequence[SourceDescriptor]
    checksum: str
    path: Path


@dataclass(frozen=True)
class RegistrationSummary:
    created: tuple[str, ...]
    updated: tuple[str, ...]

    def as_dict(self) -> dict[str, list[str]]:
        return {"created": list(self.created), "updated": list(self.updated)}


def _compute_checksum(payload: Mapping[str, Any]) -> str:
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def _parse_descriptor(entry: Any) -> SourceDescriptor:
    if not isinstance(entry, Mapping):
        raise SourceRegistryError(f"Source definition must be a mapping, got {entry!r}")
    try:
        code = str(entry["code"]).strip().upper()
        name = str(entry["name"]).strip()
    except KeyError as exc:
        raise SourceRegistryError(f"Source entry missing required attribute {exc}: {entry!r}") from exc
    if not code or not name:
        raise SourceRegistryError(f"Source entry requires non-empty code and name: {entry!r}")

    tier = str(entry.get("tier", "")).strip().upper()
    if tier not in VALID_TIERS:
        raise SourceRegistryError(f"Source '{code}' has invalid tier '{tier}'; expected one of A, B, C.")
    try:
        frequency = UpdateFrequency(str(entry.get("frequency", "quarterly")).strip().lower())
    except ValueError as exc:
        raise SourceRegistryError(f"Source '{code}' has invalid frequency: {exc}") from exc

    def _optional(key: str) -> str | None:
        value = entry.get(key)
        return str(value).strip() if value else None

    return SourceDescriptor(
        code=code,
        name=name,
        tier=tier,
        frequency=frequency,
        parser_type=(_optional("parser_type") or "").lower() or None,
        url=_optional("url"),
        file_pattern=_optional("file_pattern"),
        description=_optional("description"),
    )


def load_source_catalog(path: str | Path | None = None) -> SourceCatalog:
    """Load and validate the YAML source registry."""
    path = Path(path) if path else Path(current_app.config.get("INGEST_SOURCES_PATH") or DEFAULT_SOURCES_PATH)
    if not path.exists():
        raise SourceRegistryError(f"Source registry file not found at {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - YAML parser errors
        raise SourceRegistryError(f"Failed to parse source registry YAML at {path}: {exc}") from exc

    try:
        version = int(raw.get("version", 1))
        entries = raw["sources"]
    except KeyError as exc:
        raise SourceRegistryError(f"Missing required registry attribute: {exc}") from exc
    except (TypeError, ValueError, AttributeError) as exc:
        raise SourceRegistryError(f"Invalid registry attribute: {exc}") from exc

    descriptors: list[SourceDescriptor] = []
    seen: set[str] = set()
    for entry in entries or ():
        descriptor = _parse_descriptor(entry)
        if descriptor.code in seen:
            raise SourceRegistryError(f"Duplicate source code '{descriptor.code}' in registry.")
        seen.add(descriptor.code)
        descriptors.append(descriptor)

    return SourceCatalog(version=version, sources=tuple(descriptors), checksum=_compute_checksum(raw), path=path)


def register_sources(descriptors: Iterable[SourceDescriptor], *, session: Session | None = None) -> RegistrationSummary:
    """
    Upsert descriptors into ``data_sources`` by code.

    Existing rows keep their status, fingerprint and timestamps; sources missing
    from the file are left alone.
    """
    session = session or db.session
    created: list[str] = []
    updated: list[str] = []
    for descriptor in descriptors:
        source = session.execute(select(DataSource).where(DataSource.code == descriptor.code)).scalar_one_or_none()
        if source is None:
            source = DataSource(code=descriptor.code, status=DataSourceStatus.ACTIVE)
            session.add(source)
            created.append(descriptor.code)
        else:
            updated.append(descriptor.code)
        source.name = descriptor.name
        source.tier = descriptor.tier
        source.frequency = descriptor.frequency
        source.parser_type = descriptor.parser_type
        source.url = descriptor.url
        source.file_pattern = descriptor.file_pattern
        source.description = descriptor.description
    session.commit()
    logger.info(
        "Registered %s sources (%s new)",
        len(created) + len(updated),
        len(created),
        extra={"ingest_sources_created": created, "ingest_sources_updated": updated},
    )
    return RegistrationSummary(created=tuple(created), updated=tuple(updated))


def get_adapter_registry() -> Mapping[str, type["SourceIngestor"]]:
    """Return the ordered map of source code to adapter class."""
    from .adapters import (
        AsylumBacklogIngestor,
        AsylumClaimsIngestor,
        AsylumDecisionsIngestor,
        AsylumSupportLAIngestor,
        SmallBoatsDailyIngestor,
        SmallBoatsWeeklyIngestor,
    )

    return OrderedDict(
        (adapter.source_code, adapter)
        for adapter in (
            SmallBoatsDailyIngestor,
            SmallBoatsWeeklyIngestor,
            AsylumClaimsIngestor,
            AsylumDecisionsIngestor,
            AsylumBacklogIngestor,
            AsylumSupportLAIngestor,
        )
    )


def get_adapter_class(code: str) -> type["SourceIngestor"] | None:
    return get_adapter_registry().get(code)
