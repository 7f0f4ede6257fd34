"""
SQLAlchemy models for the ingestion ledger.

``DataSource`` rows describe one upstream publication and the fingerprint last
seen for it; ``IngestRun`` rows form an append-only audit log with one row per
pipeline attempt.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class DataSourceStatus(str, enum.Enum):
    """Lifecycle status of a source descriptor."""

    ACTIVE = "active"
    DEPRECATED = "deprecated"
    ERROR = "error"


class UpdateFrequency(str, enum.Enum):
    """Expected release cadence of a publication."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"
    STATIC = "static"


class IngestRunStatus(str, enum.Enum):
    """Lifecycle states for an ingest run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_RUN_STATUSES


TERMINAL_RUN_STATUSES = frozenset({IngestRunStatus.COMPLETED, IngestRunStatus.FAILED})

ALLOWED_RUN_TRANSITIONS: dict[IngestRunStatus, frozenset[IngestRunStatus]] = {
    IngestRunStatus.PENDING: frozenset({IngestRunStatus.RUNNING, IngestRunStatus.FAILED}),
    IngestRunStatus.RUNNING: frozenset({IngestRunStatus.COMPLETED, IngestRunStatus.FAILED}),
    IngestRunStatus.COMPLETED: frozenset(),
    IngestRunStatus.FAILED: frozenset(),
}


class InvalidRunTransition(RuntimeError):
    """Raised when a run is moved along an edge the state machine does not allow."""

    def __init__(self, run_id: int | None, current: IngestRunStatus, target: IngestRunStatus) -> None:
        super().__init__(
            f"Ingest run {run_id} cannot move from '{current.value}' to '{target.value}'."
        )
        self.run_id = run_id
        self.current = current
        self.target = target


class DataSource(BaseModel):
    """Registry entry for one upstream publication."""

    __tablename__ = "data_sources"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(db.String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    url: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    file_pattern: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    frequency: Mapped[UpdateFrequency] = mapped_column(
        Enum(UpdateFrequency, name="update_frequency_enum"),
        nullable=False,
        default=UpdateFrequency.QUARTERLY,
    )
    tier: Mapped[str | None] = mapped_column(db.String(10), nullable=True, index=True)
    parser_type: Mapped[str | None] = mapped_column(
        db.String(50),
        nullable=True,
        comment="Decoder kind used for the payload: ods, xlsx, html, csv.",
    )
    status: Mapped[DataSourceStatus] = mapped_column(
        Enum(DataSourceStatus, name="data_source_status_enum"),
        nullable=False,
        default=DataSourceStatus.ACTIVE,
        index=True,
    )
    content_hash: Mapped[str | None] = mapped_column(
        db.String(64),
        nullable=True,
        comment="SHA-256 of the last payload that was fully loaded.",
    )
    last_checked: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_updated: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)

    runs = relationship(
        "IngestRun",
        back_populates="source",
        order_by="IngestRun.id",
        passive_deletes=True,
    )

    __table_args__ = (CheckConstraint("tier IN ('A', 'B', 'C')", name="ck_data_sources_tier"),)

    def __repr__(self):
        return f"<DataSource {self.code} status={self.status.value}>"


class IngestRun(BaseModel):
    """One execution attempt of the pipeline for one source."""

    __tablename__ = "ingest_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    source_id: Mapped[int] = mapped_column(ForeignKey("data_sources.id"), nullable=False, index=True)
    status: Mapped[IngestRunStatus] = mapped_column(
        Enum(IngestRunStatus, name="ingest_run_status_enum"),
        nullable=False,
        default=IngestRunStatus.PENDING,
        index=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    records_processed: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_inserted: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_skipped: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    content_hash: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    triggered_by: Mapped[str | None] = mapped_column(db.String(50), nullable=True)

    source = relationship("DataSource", back_populates="runs")

    __table_args__ = (Index("idx_ingest_runs_source_status", "source_id", "status"),)

    def __repr__(self):
        return f"<IngestRun {self.id} source={self.source_id} status={self.status.value}>"

    @property
    def no_changes(self) -> bool:
        return bool((self.metadata_json or {}).get("no_changes"))

    def transition_to(self, target: IngestRunStatus) -> None:
        """
        Move the run to ``target``, stamping lifecycle timestamps.

        Raises ``InvalidRunTransition`` for edges outside the state machine, which
        includes every edge leaving a terminal state.
        """
        current = self.status or IngestRunStatus.PENDING
        if target not in ALLOWED_RUN_TRANSITIONS[current]:
            raise InvalidRunTransition(self.id, current, target)
        now = datetime.now(timezone.utc)
        if target == IngestRunStatus.RUNNING:
            self.started_at = now
        if target.is_terminal:
            self.completed_at = now
        self.status = target

    def merge_metadata(self, **values) -> None:
        metadata = dict(self.metadata_json or {})
        metadata.update(values)
        self.metadata_json = metadata
