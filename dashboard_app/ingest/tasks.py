"""
Ingest Celery tasks.

Tasks wrap the same ``run_source`` / ``run_batch`` entry points as the CLI and
return their serialized results.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

from celery import shared_task
from flask import current_app

from .pipeline import run_batch, run_source


@shared_task(name="ingest.healthcheck", bind=True)
def ingest_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by ``flask ingest worker ping``."""
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="ingest.run_source", bind=True)
def ingest_run_source(self, *, source_code: str, triggered_by: str = "worker") -> dict[str, Any]:
    """Run one ingest attempt; failures are recorded on the run and re-raised to Celery."""
    result = run_source(source_code, triggered_by=triggered_by)
    current_app.logger.info(
        "Worker ingest run finished",
        extra={
            "ingest_source": source_code,
            "ingest_run_id": result.run_id,
            "ingest_status": result.status,
            "ingest_no_changes": result.no_changes,
            "ingest_task_id": self.request.id,
        },
    )
    return result.as_dict()


@shared_task(name="ingest.run_batch", bind=True)
def ingest_run_batch(
    self,
    *,
    tier: str | None = None,
    status: str | None = "active",
    codes: Sequence[str] | None = None,
    triggered_by: str = "worker",
) -> dict[str, Any]:
    batch = run_batch(tier=tier, status=status, codes=codes, triggered_by=triggered_by)
    current_app.logger.info(
        "Worker ingest batch finished",
        extra={
            "ingest_tier": tier,
            "ingest_batch_succeeded": batch.succeeded,
            "ingest_batch_failed": batch.failed,
            "ingest_task_id": self.request.id,
        },
    )
    return batch.as_dict()
