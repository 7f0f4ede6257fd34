"""
Idempotent batch upserts keyed on each fact table's natural key.

Uniqueness is enforced by the database constraint plus ``INSERT ... ON
CONFLICT``; the loader never locks. Each chunk is committed on its own, so a
failure part way through leaves earlier chunks in place and a retry converges
on the same rows.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Sequence

from flask import current_app, has_app_context
from sqlalchemy import and_, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dashboard_app.models import db

from .errors import LoadFailure

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}
_AUDIT_COLUMNS = ("created_at", "updated_at")


class ConflictPolicy(str, enum.Enum):
    """What happens when a row's natural key already exists."""

    REPLACE = "replace"
    IGNORE = "ignore"


@dataclass(slots=True)
class LoadSummary:
    """Per-call outcome counts of an upsert."""

    inserted: int = 0
    updated: int = 0
    ignored: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.ignored

    def __add__(self, other: "LoadSummary") -> "LoadSummary":
        return LoadSummary(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            ignored=self.ignored + other.ignored,
        )

    def as_dict(self) -> dict[str, int]:
        return {"inserted": self.inserted, "updated": self.updated, "ignored": self.ignored}


def _configured_chunk_size() -> int:
    if has_app_context():
        return int(current_app.config.get("INGEST_UPSERT_CHUNK_SIZE", DEFAULT_CHUNK_SIZE))
    return DEFAULT_CHUNK_SIZE


def dedupe_rows(
    rows: Iterable[Mapping[str, Any]],
    conflict_columns: Sequence[str],
    policy: ConflictPolicy,
) -> list[dict[str, Any]]:
    """
    Collapse rows sharing a natural key: last wins for replace, first for ignore.

    A single statement cannot touch the same key twice, so this runs before chunking.
    """
    unique: dict[tuple, dict[str, Any]] = {}
    for row in rows:
        missing = [column for column in conflict_columns if row.get(column) is None]
        if missing:
            raise ValueError(f"Row is missing natural key column(s): {', '.join(missing)}")
        key = tuple(row[column] for column in conflict_columns)
        if policy == ConflictPolicy.REPLACE:
            unique[key] = dict(row)
        else:
            unique.setdefault(key, dict(row))
    return list(unique.values())


def _existing_keys(session: Session, model, conflict_columns: Sequence[str], keys: list[tuple]) -> set[tuple]:
    columns = [getattr(model, name) for name in conflict_columns]
    clauses = [and_(*(column == value for column, value in zip(columns, key))) for key in keys]
    result = session.execute(select(*columns).where(or_(*clauses)))
    return {tuple(row) for row in result}


def upsert_facts(
    model,
    rows: Iterable[Mapping[str, Any]],
    *,
    conflict_columns: Sequence[str] | None = None,
    policy: ConflictPolicy = ConflictPolicy.REPLACE,
    update_columns: Sequence[str] | None = None,
    chunk_size: int | None = None,
    session: Session | None = None,
) -> LoadSummary:
    """
    Insert ``rows`` into ``model``'s table, resolving natural-key conflicts by ``policy``.

    ``conflict_columns`` defaults to ``model.NATURAL_KEY``. For ``REPLACE`` the
    updated columns default to every non-key column present in the rows. Keys
    already present are looked up per chunk so the summary can split inserts from
    updates (or ignores).
    """
    session = session or db.session
    policy = ConflictPolicy(policy)
    conflict_columns = tuple(conflict_columns or model.NATURAL_KEY)
    chunk_size = chunk_size or _configured_chunk_size()
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1.")
    table_name = model.__tablename__

    try:
        prepared = dedupe_rows(rows, conflict_columns, policy)
    except ValueError as exc:
        raise LoadFailure(table_name, str(exc)) from exc
    if not prepared:
        return LoadSummary()

    dialect = session.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise LoadFailure(table_name, f"dialect '{dialect}' does not support ON CONFLICT upserts")

    column_names = sorted({name for row in prepared for name in row})
    if update_columns is None:
        update_columns = [name for name in column_names if name not in conflict_columns and name != "id"]
    else:
        update_columns = list(update_columns)

    summary = LoadSummary()
    for start in range(0, len(prepared), chunk_size):
        chunk = prepared[start : start + chunk_size]
        now = datetime.now(timezone.utc)
        values = []
        for row in chunk:
            payload = {name: row.get(name) for name in column_names}
            payload["created_at"] = row.get("created_at") or now
            payload["updated_at"] = now
            values.append(payload)
        keys = [tuple(row[column] for column in conflict_columns) for row in chunk]

        try:
            existing = _existing_keys(session, model, conflict_columns, keys)
            statement = insert(model).values(values)
            if policy == ConflictPolicy.REPLACE and update_columns:
                set_ = {name: statement.excluded[name] for name in update_columns if name not in _AUDIT_COLUMNS}
                set_["updated_at"] = statement.excluded.updated_at
                statement = statement.on_conflict_do_update(index_elements=list(conflict_columns), set_=set_)
            else:
                statement = statement.on_conflict_do_nothing(index_elements=list(conflict_columns))
            session.execute(statement)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            reason = str(getattr(exc, "orig", None) or exc)
            logger.error(
                "Upsert into %s failed at chunk starting %s",
                table_name,
                start,
                extra={"ingest_table": table_name, "ingest_chunk_start": start, "ingest_chunk_size": len(chunk)},
            )
            raise LoadFailure(table_name, reason) from exc

        matched = sum(1 for key in keys if key in existing)
        summary.inserted += len(chunk) - matched
        if policy == ConflictPolicy.REPLACE and update_columns:
            summary.updated += matched
        else:
            summary.ignored += matched

    logger.debug(
        "Upserted %s rows into %s",
        len(prepared),
        table_name,
        extra={"ingest_table": table_name, **summary.as_dict()},
    )
    return summary
