"""
Resolution of free-text labels to reference entities.

Labels are matched exactly (raw or normalized), then fuzzily for local
authorities, and finally minted as stub entities so facts are never dropped
for an unseen label. Stubs are flagged ``is_stub`` for operator review; near
miss spellings across releases can therefore mint duplicate stubs, which are
not merged automatically.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field

from flask import current_app, has_app_context
from rapidfuzz import fuzz, process
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from dashboard_app.models import LocalAuthority, Nationality, db

from .metrics import record_stub_created

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_MIN_SCORE = 85
STUB_CODE_PREFIX = "STUB_"
STUB_CODE_LABEL_LENGTH = 20

_LA_PLACEHOLDERS = frozenset({"unknown"})
_NATIONALITY_PLACEHOLDERS = frozenset({"unknown", "other"})
_LA_SUFFIXES = re.compile(r"\b(city|county|borough|district|council)\b")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def normalize_text(value: object | None) -> str:
    """Case-fold, strip diacritics and punctuation, collapse whitespace."""
    if value is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(value).lower())
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return " ".join(_NON_ALNUM.sub("", stripped).split())


def normalize_la_name(value: object | None) -> str:
    """``normalize_text`` with administrative suffixes (city, council, ...) removed."""
    return " ".join(_LA_SUFFIXES.sub("", normalize_text(value)).split())


def stub_code(label: str) -> str:
    return STUB_CODE_PREFIX + label[:STUB_CODE_LABEL_LENGTH].replace(" ", "_").upper()


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one label: the entity id and whether it was minted now."""

    entity_id: int | None
    created: bool = False
    method: str | None = None

    @property
    def resolved(self) -> bool:
        return self.entity_id is not None


UNRESOLVED = Resolution(entity_id=None, created=False, method=None)


@dataclass
class _ResolverCache:
    local_authorities: dict[str, Resolution] = field(default_factory=dict)
    nationalities: dict[str, Resolution] = field(default_factory=dict)
    la_choices: dict[int, str] | None = None


class EntityResolver:
    """
    Per-run label resolver.

    The cache guarantees that one label resolves to the same id for the whole
    run and that a stub is minted at most once; create one resolver per run.
    """

    def __init__(self, session: Session | None = None, *, fuzzy_min_score: float | None = None) -> None:
        self.session = session or db.session
        if fuzzy_min_score is None:
            config = current_app.config if has_app_context() else {}
            fuzzy_min_score = config.get("INGEST_FUZZY_MIN_SCORE", DEFAULT_FUZZY_MIN_SCORE)
        if fuzzy_min_score <= 0 or fuzzy_min_score > 100:
            raise ValueError(f"fuzzy_min_score must be in (0, 100], got {fuzzy_min_score}.")
        self.fuzzy_min_score = float(fuzzy_min_score)
        self._cache = _ResolverCache()
        self.created_entities: dict[str, list[int]] = {"local_authority": [], "nationality": []}

    # ------------------------------------------------------------------
    # Local authorities
    # ------------------------------------------------------------------
    def resolve_local_authority(self, name: object | None, *, region: str | None = None) -> Resolution:
        label = _clean_label(name)
        if not label or label.lower() in _LA_PLACEHOLDERS:
            return UNRESOLVED

        key = normalize_la_name(label) or normalize_text(label)
        cached = self._cache.local_authorities.get(key)
        if cached is not None:
            return Resolution(cached.entity_id, created=False, method="cache")

        resolution = self._match_local_authority(label, key)
        if resolution is None:
            resolution = self._create_local_authority_stub(label, key, region=region)
        self._cache.local_authorities[key] = resolution
        return resolution

    def _match_local_authority(self, label: str, key: str) -> Resolution | None:
        entity_id = self.session.execute(
            select(LocalAuthority.id)
            .where(
                or_(
                    LocalAuthority.name == label,
                    func.lower(LocalAuthority.name) == label.lower(),
                    LocalAuthority.name_normalized.in_([key, normalize_text(label)]),
                )
            )
            .order_by(LocalAuthority.is_stub, LocalAuthority.id)
            .limit(1)
        ).scalar()
        if entity_id is not None:
            return Resolution(entity_id, created=False, method="exact")

        choices = self._local_authority_choices()
        if not choices:
            return None
        best = process.extractOne(
            key,
            choices,
            scorer=fuzz.token_sort_ratio,
            score_cutoff=self.fuzzy_min_score,
        )
        if best is None:
            return None
        _, score, entity_id = best
        logger.info(
            "Fuzzy matched local authority '%s' (score %.1f)",
            label,
            score,
            extra={"ingest_entity_label": label, "ingest_entity_id": entity_id, "ingest_fuzzy_score": score},
        )
        return Resolution(entity_id, created=False, method="fuzzy")

    def _local_authority_choices(self) -> dict[int, str]:
        if self._cache.la_choices is None:
            rows = self.session.execute(select(LocalAuthority.id, LocalAuthority.name)).all()
            self._cache.la_choices = {row.id: normalize_la_name(row.name) for row in rows}
        return self._cache.la_choices

    def _create_local_authority_stub(self, label: str, key: str, *, region: str | None) -> Resolution:
        code = self._unique_stub_code(label)
        authority = LocalAuthority(
            ons_code=code,
            name=label,
            name_normalized=key,
            region=region or None,
            is_stub=True,
        )
        self.session.add(authority)
        self.session.flush()
        if self._cache.la_choices is not None:
            self._cache.la_choices[authority.id] = key
        self.created_entities["local_authority"].append(authority.id)
        record_stub_created("local_authority")
        logger.warning(
            "Created stub local authority '%s' (%s)",
            label,
            code,
            extra={"ingest_entity_label": label, "ingest_entity_id": authority.id, "ingest_stub_code": code},
        )
        return Resolution(authority.id, created=True, method="stub")

    def _unique_stub_code(self, label: str) -> str:
        base = stub_code(label)
        candidate = base
        suffix = 2
        while self.session.execute(
            select(LocalAuthority.id).where(LocalAuthority.ons_code == candidate)
        ).first():
            candidate = f"{base}_{suffix}"
            suffix += 1
        return candidate

    # ------------------------------------------------------------------
    # Nationalities
    # ------------------------------------------------------------------
    def resolve_nationality(self, name: object | None) -> Resolution:
        label = _clean_label(name)
        if not label or label.lower() in _NATIONALITY_PLACEHOLDERS:
            return UNRESOLVED

        key = normalize_text(label)
        cached = self._cache.nationalities.get(key)
        if cached is not None:
            return Resolution(cached.entity_id, created=False, method="cache")

        entity_id = self.session.execute(
            select(Nationality.id)
            .where(
                or_(
                    Nationality.name == label,
                    func.lower(Nationality.name) == label.lower(),
                    Nationality.name_normalized == key,
                )
            )
            .order_by(Nationality.is_stub, Nationality.id)
            .limit(1)
        ).scalar()
        if entity_id is not None:
            resolution = Resolution(entity_id, created=False, method="exact")
        else:
            nationality = Nationality(name=label, name_normalized=key, is_stub=True)
            self.session.add(nationality)
            self.session.flush()
            self.created_entities["nationality"].append(nationality.id)
            record_stub_created("nationality")
            logger.info(
                "Created stub nationality '%s'",
                label,
                extra={"ingest_entity_label": label, "ingest_entity_id": nationality.id},
            )
            resolution = Resolution(nationality.id, created=True, method="stub")

        self._cache.nationalities[key] = resolution
        return resolution

    def summary(self) -> dict[str, list[int]]:
        return {kind: list(ids) for kind, ids in self.created_entities.items() if ids}


def _clean_label(value: object | None) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())
