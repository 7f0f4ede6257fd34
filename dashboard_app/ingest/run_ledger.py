"""
Run ledger: lifecycle writes and status queries over ``IngestRun``/``DataSource``.

Every pipeline attempt appends one ``IngestRun`` row; a later run never edits
an earlier one. Status transitions go through ``IngestRun.transition_to`` so
leaving a terminal state raises ``InvalidRunTransition``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dashboard_app.models import DataSource, DataSourceStatus, IngestRun, IngestRunStatus, db

DEFAULT_RUN_LIMIT = 20
MAX_RUN_LIMIT = 500
DEFAULT_ERROR_HISTORY = 5


def _coerce_status(value: IngestRunStatus | str) -> IngestRunStatus:
    if isinstance(value, IngestRunStatus):
        return value
    try:
        return IngestRunStatus(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported run status '{value}'.") from exc


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(slots=True)
class RunSummary:
    """Serializable view of one ingest run."""

    id: int
    source_code: str
    status: str
    triggered_by: str | None
    started_at: datetime | None
    completed_at: datetime | None
    duration_seconds: float | None
    records_processed: int
    records_inserted: int
    records_updated: int
    records_skipped: int
    no_changes: bool
    content_hash: str | None
    error_message: str | None

    @classmethod
    def from_run(cls, run: IngestRun) -> "RunSummary":
        duration = None
        if run.started_at and run.completed_at:
            duration = max((run.completed_at - run.started_at).total_seconds(), 0.0)
        return cls(
            id=run.id,
            source_code=run.source.code if run.source else "",
            status=run.status.value,
            triggered_by=run.triggered_by,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_seconds=duration,
            records_processed=run.records_processed or 0,
            records_inserted=run.records_inserted or 0,
            records_updated=run.records_updated or 0,
            records_skipped=run.records_skipped or 0,
            no_changes=run.no_changes,
            content_hash=run.content_hash,
            error_message=run.error_message,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_code": self.source_code,
            "status": self.status,
            "triggered_by": self.triggered_by,
            "started_at": _isoformat(self.started_at),
            "completed_at": _isoformat(self.completed_at),
            "duration_seconds": self.duration_seconds,
            "records_processed": self.records_processed,
            "records_inserted": self.records_inserted,
            "records_updated": self.records_updated,
            "records_skipped": self.records_skipped,
            "no_changes": self.no_changes,
            "content_hash": self.content_hash,
            "error_message": self.error_message,
        }


@dataclass(slots=True)
class SourceStatus:
    """Current health of one source: fingerprint, last success, recent failures."""

    code: str
    name: str
    status: str
    tier: str | None
    frequency: str
    content_hash: str | None
    last_checked: datetime | None
    last_updated: datetime | None
    last_success: RunSummary | None
    recent_errors: list[RunSummary] = field(default_factory=list)
    run_counts: Mapping[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "status": self.status,
            "tier": self.tier,
            "frequency": self.frequency,
            "content_hash": self.content_hash,
            "last_checked": _isoformat(self.last_checked),
            "last_updated": _isoformat(self.last_updated),
            "last_success": self.last_success.as_dict() if self.last_success else None,
            "recent_errors": [run.as_dict() for run in self.recent_errors],
            "run_counts": dict(self.run_counts),
        }


class RunLedger:
    """Lifecycle writes and read helpers for the ingest run log."""

    def __init__(self, session: Session | None = None) -> None:
        self.session = session or db.session

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------
    def get_source(self, code: str) -> DataSource | None:
        return self.session.execute(select(DataSource).where(DataSource.code == code)).scalar_one_or_none()

    def list_sources(
        self,
        *,
        tier: str | None = None,
        status: DataSourceStatus | str | None = None,
        codes: Iterable[str] | None = None,
    ) -> list[DataSource]:
        query = select(DataSource).order_by(DataSource.code)
        if tier:
            query = query.where(DataSource.tier == tier.upper())
        if status:
            query = query.where(DataSource.status == DataSourceStatus(status))
        if codes:
            query = query.where(DataSource.code.in_(list(codes)))
        return list(self.session.execute(query).scalars())

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------
    def start_run(self, source: DataSource, *, triggered_by: str | None = None) -> IngestRun:
        """Append a ``pending`` run and move it to ``running``, committing both steps."""
        run = IngestRun(source=source, status=IngestRunStatus.PENDING, triggered_by=triggered_by)
        self.session.add(run)
        self.session.commit()
        run.transition_to(IngestRunStatus.RUNNING)
        self.session.commit()
        return run

    def complete_no_changes(self, run: IngestRun, *, content_hash: str) -> IngestRun:
        now = datetime.now(timezone.utc)
        run.content_hash = content_hash
        run.merge_metadata(no_changes=True)
        run.transition_to(IngestRunStatus.COMPLETED)
        run.source.last_checked = now
        self.session.commit()
        return run

    def complete_run(
        self,
        run: IngestRun,
        *,
        content_hash: str,
        records_processed: int,
        records_inserted: int,
        records_updated: int,
        records_skipped: int,
        metadata: Mapping[str, Any] | None = None,
    ) -> IngestRun:
        """Record counts, advance the source fingerprint and mark the run completed."""
        now = datetime.now(timezone.utc)
        run.content_hash = content_hash
        run.records_processed = records_processed
        run.records_inserted = records_inserted
        run.records_updated = records_updated
        run.records_skipped = records_skipped
        run.merge_metadata(no_changes=False, **dict(metadata or {}))
        run.transition_to(IngestRunStatus.COMPLETED)
        source = run.source
        source.content_hash = content_hash
        source.last_updated = now
        source.last_checked = now
        self.session.commit()
        return run

    def fail_run(
        self,
        run_id: int,
        message: str,
        *,
        metadata: Mapping[str, Any] | None = None,
    ) -> IngestRun | None:
        """
        Roll back the open transaction and mark the run failed.

        The source fingerprint is left untouched so the next attempt reprocesses
        the payload. Returns ``None`` when the run row itself cannot be found.
        """
        self.session.rollback()
        run = self.session.get(IngestRun, run_id)
        if run is None:
            return None
        run.error_message = message
        if metadata:
            run.merge_metadata(**dict(metadata))
        run.transition_to(IngestRunStatus.FAILED)
        if run.source is not None:
            run.source.last_checked = datetime.now(timezone.utc)
        self.session.commit()
        return run

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_runs(
        self,
        *,
        source_code: str | None = None,
        statuses: Iterable[IngestRunStatus | str] | None = None,
        limit: int = DEFAULT_RUN_LIMIT,
    ) -> list[RunSummary]:
        limit = max(1, min(int(limit), MAX_RUN_LIMIT))
        query = select(IngestRun).join(DataSource, DataSource.id == IngestRun.source_id)
        if source_code:
            query = query.where(DataSource.code == source_code)
        resolved = [_coerce_status(value) for value in statuses or () if value]
        if resolved:
            query = query.where(IngestRun.status.in_(resolved))
        query = query.order_by(IngestRun.id.desc()).limit(limit)
        return [RunSummary.from_run(run) for run in self.session.execute(query).scalars()]

    def last_successful_run(self, source_code: str) -> IngestRun | None:
        return self.session.execute(
            select(IngestRun)
            .join(DataSource, DataSource.id == IngestRun.source_id)
            .where(DataSource.code == source_code, IngestRun.status == IngestRunStatus.COMPLETED)
            .order_by(IngestRun.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def error_history(self, source_code: str, *, limit: int = DEFAULT_ERROR_HISTORY) -> list[IngestRun]:
        return list(
            self.session.execute(
                select(IngestRun)
                .join(DataSource, DataSource.id == IngestRun.source_id)
                .where(DataSource.code == source_code, IngestRun.status == IngestRunStatus.FAILED)
                .order_by(IngestRun.id.desc())
                .limit(limit)
            ).scalars()
        )

    def run_counts(self, source: DataSource) -> dict[str, int]:
        rows = self.session.execute(
            select(IngestRun.status, func.count(IngestRun.id))
            .where(IngestRun.source_id == source.id)
            .group_by(IngestRun.status)
        ).all()
        return {status.value: count for status, count in rows}

    def source_status(self, source_code: str) -> SourceStatus | None:
        source = self.get_source(source_code)
        if source is None:
            return None
        last_success = self.last_successful_run(source_code)
        return SourceStatus(
            code=source.code,
            name=source.name,
            status=source.status.value,
            tier=source.tier,
            frequency=source.frequency.value,
            content_hash=source.content_hash,
            last_checked=source.last_checked,
            last_updated=source.last_updated,
            last_success=RunSummary.from_run(last_success) if last_success else None,
            recent_errors=[RunSummary.from_run(run) for run in self.error_history(source_code)],
            run_counts=self.run_counts(source),
        )
