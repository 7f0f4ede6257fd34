"""
Pipeline orchestrator and batch runner.

``run_source`` executes exactly one attempt for one source:

    pending -> running -> fetch -> fingerprint
        -> unchanged: completed (no_changes)
        -> changed:   parse -> transform -> load -> completed
    any error after the run exists: failed (re-raised to the caller)

``run_batch`` applies ``run_source`` sequentially to every selected source,
isolating failures so one broken publication never blocks the others.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Any, ClassVar, Iterable, Iterator, Mapping, Sequence

from dashboard_app.models import DataSource, DataSourceStatus, IngestRun

from .decoders import Sheet, Workbook, open_workbook
from .entities import EntityResolver
from .errors import AdapterNotImplemented, DecodeFailure, FetchFailure, SourceNotFound
from .fetch import FetchedPayload, HttpFetcher, compute_fingerprint
from .loader import ConflictPolicy, LoadSummary, upsert_facts
from .metrics import record_records, record_run
from .registry import get_adapter_class, get_adapter_registry
from .run_ledger import RunLedger
from .schema_mapper import ColumnMapping, FieldRule, Predicate, find_sheet, map_columns

logger = logging.getLogger(__name__)


class SourceIngestor:
    """
    Base class for source adapters.

    Subclasses set ``source_code`` and implement ``parse`` and ``load``;
    ``fetch`` downloads ``download_url`` (or the source's registered URL) and
    ``transform`` defaults to the identity.
    """

    source_code: ClassVar[str]
    parser_type: ClassVar[str] = "ods"
    download_url: ClassVar[str | None] = None

    def __init__(
        self,
        source: DataSource,
        run: IngestRun,
        *,
        fetcher: Any | None = None,
        resolver: EntityResolver | None = None,
        run_date: date | None = None,
    ) -> None:
        self.source = source
        self.run = run
        self.fetcher = fetcher or HttpFetcher.from_config()
        self.resolver = resolver or EntityResolver()
        self.run_date = run_date or date.today()
        self.skipped: Counter[str] = Counter()
        self.column_mappings: dict[str, dict[str, str | None]] = {}
        self.load_summary = LoadSummary()
        self.metadata: dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------
    @property
    def url(self) -> str | None:
        return self.download_url or self.source.url

    def fetch(self) -> bytes:
        url = self.url
        if not url:
            raise FetchFailure(self.source.code, "no download URL is configured")
        fetch = getattr(self.fetcher, "fetch", self.fetcher)
        payload = fetch(url)
        if isinstance(payload, FetchedPayload):
            return payload.content
        return payload

    def parse(self, payload: bytes) -> list[dict[str, Any]]:  # pragma: no cover - abstract
        raise NotImplementedError

    def transform(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return records

    def load(self, records: list[dict[str, Any]]) -> LoadSummary:  # pragma: no cover - abstract
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------
    def skip(self, reason: str, count: int = 1) -> None:
        """Record a row excluded from the output, keyed by reason."""
        self.skipped[reason] += count

    @property
    def records_skipped(self) -> int:
        return sum(self.skipped.values())

    def record_mapping(self, sheet_name: str, mapping: ColumnMapping) -> None:
        self.column_mappings[sheet_name] = mapping.as_dict()

    def open_workbook(self, payload: bytes) -> Workbook:
        workbook = open_workbook(payload)
        logger.info(
            "Found %s sheets in %s payload",
            len(workbook.sheet_names),
            self.source_code,
            extra={"ingest_source": self.source_code, "ingest_sheets": workbook.sheet_names},
        )
        return workbook

    def require_sheet(self, workbook: Workbook, predicate: Predicate, description: str) -> Sheet:
        """Return the first sheet whose name matches ``predicate`` or raise ``DecodeFailure``."""
        name = find_sheet(workbook.sheet_names, predicate)
        if name is None:
            raise DecodeFailure(f"Could not find {description} sheet in {self.source_code} payload")
        return workbook.sheet(name)

    def map_sheet(self, sheet: Sheet, rules: Sequence[FieldRule]) -> ColumnMapping:
        mapping = map_columns(sheet.columns, rules)
        self.record_mapping(sheet.name, mapping)
        logger.info(
            "Column mappings for sheet %s",
            sheet.name,
            extra={"ingest_source": self.source_code, "ingest_column_map": mapping.as_dict()},
        )
        return mapping

    def upsert(
        self,
        model,
        rows: Sequence[Mapping[str, Any]],
        *,
        policy: ConflictPolicy,
        conflict_columns: Sequence[str] | None = None,
    ) -> LoadSummary:
        """Stamp ``ingest_run_id`` on each row, upsert, and accumulate the summary."""
        stamped = [{**row, "ingest_run_id": self.run.id} for row in rows]
        summary = upsert_facts(model, stamped, conflict_columns=conflict_columns, policy=policy)
        self.load_summary = self.load_summary + summary
        return summary

    def run_metadata(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "url": self.url,
            "column_mappings": self.column_mappings,
            "skip_reasons": dict(self.skipped),
        }
        stubs = self.resolver.summary()
        if stubs:
            metadata["stub_entities"] = stubs
        metadata.update(self.metadata)
        return metadata


@dataclass(slots=True)
class RunResult:
    """Outbound result of one ingest attempt."""

    run_id: int
    source_code: str
    status: str
    records_processed: int = 0
    records_inserted: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    no_changes: bool = False
    error_message: str | None = None
    content_hash: str | None = None

    @classmethod
    def from_run(cls, run: IngestRun, source_code: str) -> "RunResult":
        return cls(
            run_id=run.id,
            source_code=source_code,
            status=run.status.value,
            records_processed=run.records_processed or 0,
            records_inserted=run.records_inserted or 0,
            records_updated=run.records_updated or 0,
            records_skipped=run.records_skipped or 0,
            no_changes=run.no_changes,
            error_message=run.error_message,
            content_hash=run.content_hash,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "source_code": self.source_code,
            "status": self.status,
            "records_processed": self.records_processed,
            "records_inserted": self.records_inserted,
            "records_updated": self.records_updated,
            "records_skipped": self.records_skipped,
            "no_changes": self.no_changes,
            "error_message": self.error_message,
            "content_hash": self.content_hash,
        }


@dataclass(slots=True)
class BatchFailure:
    source_code: str
    error: str
    run_id: int | None = None


@dataclass(slots=True)
class BatchResult:
    """Per-source outcomes of one batch invocation."""

    results: list[RunResult] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)
    unsupported: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.status == "completed")

    @property
    def failed(self) -> int:
        return len(self.failures)

    def as_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [result.as_dict() for result in self.results],
            "failures": [
                {"source_code": failure.source_code, "error": failure.error, "run_id": failure.run_id}
                for failure in self.failures
            ],
            "unsupported": list(self.unsupported),
        }


@contextmanager
def _fetcher_scope(fetcher: Any | None) -> Iterator[Any]:
    """Yield the caller's fetcher, or a configured ``HttpFetcher`` closed on exit."""
    if fetcher is not None:
        yield fetcher
        return
    with HttpFetcher.from_config() as owned:
        yield owned


def _execute(
    code: str,
    *,
    fetcher: Any | None,
    triggered_by: str | None,
    run_date: date | None,
    ledger: RunLedger,
) -> tuple[RunResult, Exception | None]:
    source = ledger.get_source(code)
    if source is None:
        raise SourceNotFound(code)
    adapter_cls = get_adapter_class(code)
    if adapter_cls is None:
        raise AdapterNotImplemented(code)

    run = ledger.start_run(source, triggered_by=triggered_by)
    run_id = run.id
    log_extra = {"ingest_source": code, "ingest_run_id": run_id}
    started = time.monotonic()
    logger.info("Ingest run %s started for %s", run_id, code, extra=log_extra)

    try:
        ingestor = adapter_cls(source, run, fetcher=fetcher, run_date=run_date)
        payload = ingestor.fetch()
        fingerprint = compute_fingerprint(payload)

        if source.content_hash == fingerprint:
            ledger.complete_no_changes(run, content_hash=fingerprint)
            record_run(code, status="no_changes", duration_seconds=time.monotonic() - started)
            logger.info("No changes detected for %s; run %s completed", code, run_id, extra=log_extra)
            return RunResult.from_run(run, code), None

        records = ingestor.parse(payload)
        logger.info(
            "Parsed %s candidate records for %s",
            len(records),
            code,
            extra={**log_extra, "ingest_records": len(records), "ingest_skipped": ingestor.records_skipped},
        )
        records = ingestor.transform(records)
        summary = ingestor.load(records)
        ledger.complete_run(
            run,
            content_hash=fingerprint,
            records_processed=len(records),
            records_inserted=summary.inserted,
            records_updated=summary.updated,
            records_skipped=ingestor.records_skipped,
            metadata=ingestor.run_metadata(),
        )
    except Exception as exc:
        failed_run = ledger.fail_run(
            run_id,
            str(exc) or exc.__class__.__name__,
            metadata={"error_type": exc.__class__.__name__},
        )
        record_run(code, status="failed", duration_seconds=time.monotonic() - started)
        logger.error("Ingest run %s failed for %s: %s", run_id, code, exc, exc_info=True, extra=log_extra)
        if failed_run is None:
            return RunResult(run_id=run_id, source_code=code, status="failed", error_message=str(exc)), exc
        return RunResult.from_run(failed_run, code), exc

    record_run(code, status="completed", duration_seconds=time.monotonic() - started)
    record_records(code, inserted=summary.inserted, updated=summary.updated, skipped=ingestor.records_skipped)
    logger.info(
        "Ingest run %s completed for %s",
        run_id,
        code,
        extra={
            **log_extra,
            "ingest_records_processed": run.records_processed,
            "ingest_records_inserted": run.records_inserted,
            "ingest_records_updated": run.records_updated,
            "ingest_records_skipped": run.records_skipped,
        },
    )
    return RunResult.from_run(run, code), None


def run_source(
    code: str,
    *,
    fetcher: Any | None = None,
    triggered_by: str | None = "cli",
    run_date: date | None = None,
) -> RunResult:
    """
    Execute one ingest attempt for ``code``.

    Raises ``SourceNotFound``/``AdapterNotImplemented`` before any run is
    created; any later failure is recorded on the run and re-raised.
    """
    with _fetcher_scope(fetcher) as active:
        result, error = _execute(code, fetcher=active, triggered_by=triggered_by, run_date=run_date, ledger=RunLedger())
    if error is not None:
        raise error
    return result


def run_batch(
    *,
    tier: str | None = None,
    status: DataSourceStatus | str | None = DataSourceStatus.ACTIVE,
    codes: Iterable[str] | None = None,
    fetcher: Any | None = None,
    triggered_by: str | None = "batch",
    run_date: date | None = None,
) -> BatchResult:
    """Run every selected source with a registered adapter, continuing past failures."""
    ledger = RunLedger()
    registry = get_adapter_registry()
    batch = BatchResult()
    with _fetcher_scope(fetcher) as active:
        for source in ledger.list_sources(tier=tier, status=status, codes=codes):
            code = source.code
            if code not in registry:
                batch.unsupported.append(code)
                logger.debug("Skipping %s: no adapter implemented", code, extra={"ingest_source": code})
                continue
            result, error = _execute(code, fetcher=active, triggered_by=triggered_by, run_date=run_date, ledger=ledger)
            batch.results.append(result)
            if error is not None:
                batch.failures.append(BatchFailure(source_code=code, error=str(error), run_id=result.run_id))
    logger.info(
        "Batch finished: %s succeeded, %s failed",
        batch.succeeded,
        batch.failed,
        extra={"ingest_batch_succeeded": batch.succeeded, "ingest_batch_failed": batch.failed, "ingest_tier": tier},
    )
    return batch
