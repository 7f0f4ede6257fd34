"""
Derived metrics computed from sibling fact rows after a load.

Metrics are recomputed for a whole snapshot or period at once because shares
and period-over-period deltas depend on rows other than the one being loaded.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Mapping

from dateutil.relativedelta import relativedelta
from flask import current_app, has_app_context
from sqlalchemy import select
from sqlalchemy.orm import Session

from dashboard_app.models import AsylumSupportLA, LocalAuthority, db

logger = logging.getLogger(__name__)

LOOKBACK_EXACT = "exact"
LOOKBACK_NEAREST = "nearest"
LOOKBACK_CHOICES = (LOOKBACK_EXACT, LOOKBACK_NEAREST)


def percentage(part: float | None, whole: float | None, *, precision: int = 2) -> float | None:
    """``part / whole * 100`` rounded, or ``None`` when either side is missing or ``whole`` is not positive."""
    if part is None or whole is None or whole <= 0:
        return None
    return round(part / whole * 100, precision)


def percent_change(current: float | None, previous: float | None, *, precision: int = 2) -> float | None:
    if current is None or previous is None or previous <= 0:
        return None
    return round((current - previous) / previous * 100, precision)


def _resolve_lookback(lookback: str | None) -> str:
    if lookback is None:
        config = current_app.config if has_app_context() else {}
        lookback = config.get("INGEST_DELTA_LOOKBACK", LOOKBACK_EXACT)
    if lookback not in LOOKBACK_CHOICES:
        raise ValueError(f"Unsupported delta lookback '{lookback}'; expected one of {', '.join(LOOKBACK_CHOICES)}.")
    return lookback


def _prior_total(session: Session, la_id: int, target: date, lookback: str) -> int | None:
    query = select(AsylumSupportLA.total_supported).where(AsylumSupportLA.la_id == la_id)
    if lookback == LOOKBACK_EXACT:
        query = query.where(AsylumSupportLA.snapshot_date == target)
    else:
        query = query.where(AsylumSupportLA.snapshot_date <= target).order_by(AsylumSupportLA.snapshot_date.desc())
    return session.execute(query.limit(1)).scalar()


def recompute_la_support_metrics(
    snapshot_date: date,
    *,
    lookback: str | None = None,
    session: Session | None = None,
) -> int:
    """
    Recompute per-capita, share and delta columns for every LA row at ``snapshot_date``.

    ``lookback="exact"`` compares against the same LA exactly 3 and 12 calendar
    months earlier; ``"nearest"`` takes the closest earlier snapshot on or before
    those dates. Returns the number of rows updated.
    """
    session = session or db.session
    lookback = _resolve_lookback(lookback)

    rows = session.execute(
        select(AsylumSupportLA, LocalAuthority.population)
        .join(LocalAuthority, LocalAuthority.id == AsylumSupportLA.la_id)
        .where(AsylumSupportLA.snapshot_date == snapshot_date)
    ).all()
    if not rows:
        return 0

    national_total = sum(fact.total_supported or 0 for fact, _ in rows)
    quarter_ago = snapshot_date - relativedelta(months=3)
    year_ago = snapshot_date - relativedelta(years=1)

    for fact, population in rows:
        total = fact.total_supported or 0
        fact.per_10k_population = round(total / population * 10000, 2) if population and population > 0 else None
        fact.national_share_pct = percentage(total, national_total)
        fact.hotel_share_pct = percentage(fact.hotel, total) if total > 0 else None
        fact.qoq_change_pct = percent_change(total, _prior_total(session, fact.la_id, quarter_ago, lookback))
        fact.yoy_change_pct = percent_change(total, _prior_total(session, fact.la_id, year_ago, lookback))

    session.commit()
    logger.info(
        "Recomputed LA support metrics for %s",
        snapshot_date.isoformat(),
        extra={"ingest_snapshot_date": snapshot_date.isoformat(), "ingest_rows": len(rows), "ingest_lookback": lookback},
    )
    return len(rows)


def recompute_share_of_total(
    model,
    *,
    value_column: str,
    share_column: str,
    filters: Mapping[str, Any],
    precision: int = 2,
    session: Session | None = None,
) -> int:
    """
    Set ``share_column`` to each row's percentage of the summed ``value_column``.

    ``filters`` selects the group sharing one denominator, for example one
    quarter of claims or one period of small boat nationalities.
    """
    session = session or db.session
    query = select(model)
    for column, value in filters.items():
        query = query.where(getattr(model, column) == value)
    facts = session.execute(query).scalars().all()
    if not facts:
        return 0

    group_total = sum(getattr(fact, value_column) or 0 for fact in facts)
    for fact in facts:
        setattr(fact, share_column, percentage(getattr(fact, value_column) or 0, group_total, precision=precision))
    session.commit()
    return len(facts)
