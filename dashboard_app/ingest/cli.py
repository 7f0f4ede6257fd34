"""
``flask ingest`` commands: run sources, inspect the run ledger, manage the worker.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from dashboard_app.models import DataSourceStatus, IngestRunStatus, db
from dashboard_app.utils.ingest import is_ingest_enabled, is_worker_enabled

from .celery_app import DEFAULT_QUEUE_NAME, EXTENSION_KEY, get_celery_app
from .errors import AdapterNotImplemented, SourceNotFound
from .pipeline import RunResult, run_batch, run_source
from .registry import SourceRegistryError, get_adapter_registry, load_source_catalog, register_sources
from .run_ledger import RunLedger, RunSummary


@click.group(name="ingest", invoke_without_command=True)
@click.pass_context
def ingest_cli(ctx):
    """
    Statistical release ingest commands.

    Lists the implemented source adapters when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_ingest_enabled(app):
        raise click.ClickException("Ingest is disabled via INGEST_ENABLED=false. Enable it to run ingest commands.")
    if ctx.invoked_subcommand is None:
        click.echo("Implemented source adapters:")
        for code, adapter in get_adapter_registry().items():
            click.echo(f"  - {code} ({adapter.__name__})")


def get_disabled_ingest_group() -> click.Group:
    """Return a stub group that tells the operator ingest is disabled."""

    @click.group(name="ingest", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Ingest commands are unavailable because INGEST_ENABLED=false.")

    return disabled_group


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Ingest Celery app is unavailable. Ensure INGEST_ENABLED=true and the "
            "ingest package initialises before running worker commands."
        )
    return celery_app


def _format_result(result: RunResult) -> str:
    if result.no_changes:
        return f"Run {result.run_id} for {result.source_code} completed: no changes since the last fingerprint."
    return (
        f"Run {result.run_id} for {result.source_code} finished with status {result.status}.\n"
        f"  records_processed: {result.records_processed}\n"
        f"  records_inserted : {result.records_inserted}\n"
        f"  records_updated  : {result.records_updated}\n"
        f"  records_skipped  : {result.records_skipped}"
    )


def _format_run(run: RunSummary) -> str:
    duration = f"{run.duration_seconds:.1f}s" if run.duration_seconds is not None else "-"
    started = run.started_at.isoformat(timespec="seconds") if run.started_at else "-"
    line = (
        f"{run.id:>6}  {run.source_code:<12} {run.status:<10} {started:<25} {duration:>8}  "
        f"processed={run.records_processed} inserted={run.records_inserted} "
        f"updated={run.records_updated} skipped={run.records_skipped}"
    )
    if run.no_changes:
        line += "  (no changes)"
    if run.error_message:
        line += f"\n        error: {run.error_message}"
    return line


@ingest_cli.command("run")
@click.argument("code")
@click.option("--summary-json", is_flag=True, help="Emit the run result as JSON.")
@click.option("--queue", is_flag=True, help="Send the run to the background worker instead of running inline.")
@click.pass_context
def ingest_run(ctx, code: str, summary_json: bool, queue: bool):
    """Run one ingest attempt for source CODE."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    code = code.strip().upper()

    if queue:
        celery_app = _resolve_celery(app)
        try:
            async_result = celery_app.send_task(
                "ingest.run_source",
                kwargs={"source_code": code, "triggered_by": "queue"},
            )
        except Exception as exc:  # pragma: no cover - broker errors
            raise click.ClickException(f"Failed to enqueue ingest run for {code}: {exc}") from exc
        app.logger.info(
            "Ingest run queued via CLI",
            extra={"ingest_source": code, "ingest_task_id": async_result.id},
        )
        click.echo(json.dumps({"source_code": code, "task_id": async_result.id, "status": "queued"}))
        return

    try:
        result = run_source(code, triggered_by="cli")
    except (SourceNotFound, AdapterNotImplemented) as exc:
        raise click.ClickException(str(exc)) from exc
    except Exception as exc:
        raise click.ClickException(f"Ingest run for {code} failed: {exc}") from exc

    click.echo(_format_result(result))
    if summary_json:
        click.echo(json.dumps(result.as_dict(), indent=2, sort_keys=True))


@ingest_cli.command("run-all")
@click.option("--tier", type=click.Choice(["A", "B", "C"], case_sensitive=False), help="Only run sources in this tier.")
@click.option(
    "--status",
    "status",
    type=click.Choice([status.value for status in DataSourceStatus]),
    default=DataSourceStatus.ACTIVE.value,
    show_default=True,
)
@click.option("--summary-json", is_flag=True, help="Emit the batch result as JSON.")
@click.pass_context
def ingest_run_all(ctx, tier: Optional[str], status: str, summary_json: bool):
    """Run every selected source with an implemented adapter; exit 1 if any failed."""
    info = ctx.ensure_object(ScriptInfo)
    info.load_app()
    batch = run_batch(tier=tier.upper() if tier else None, status=status, triggered_by="cli")

    for result in batch.results:
        click.echo(_format_result(result))
    for failure in batch.failures:
        click.echo(f"FAILED {failure.source_code} (run {failure.run_id}): {failure.error}", err=True)
    if batch.unsupported:
        click.echo(f"Skipped (no adapter): {', '.join(batch.unsupported)}")
    click.echo(f"Batch finished: {batch.succeeded} succeeded, {batch.failed} failed.")
    if summary_json:
        click.echo(json.dumps(batch.as_dict(), indent=2, sort_keys=True))
    if batch.failed:
        ctx.exit(1)


@ingest_cli.command("sources")
@click.option("--tier", type=click.Choice(["A", "B", "C"], case_sensitive=False))
@click.pass_context
def ingest_sources(ctx, tier: Optional[str]):
    """List registered sources with status and last fingerprint."""
    info = ctx.ensure_object(ScriptInfo)
    info.load_app()
    sources = RunLedger().list_sources(tier=tier)
    if not sources:
        click.echo("No sources registered. Run `flask ingest register-sources` first.")
        return
    registry = get_adapter_registry()
    for source in sources:
        fingerprint = source.content_hash[:12] if source.content_hash else "-"
        checked = source.last_checked.isoformat(timespec="seconds") if source.last_checked else "never"
        adapter = "yes" if source.code in registry else "no"
        click.echo(
            f"{source.code:<12} tier={source.tier or '-'} {source.status.value:<10} "
            f"{source.frequency.value:<10} adapter={adapter:<3} hash={fingerprint} checked={checked}"
        )


@ingest_cli.command("register-sources")
@click.option(
    "--path",
    "path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Source registry YAML (defaults to INGEST_SOURCES_PATH).",
)
@click.pass_context
def ingest_register_sources(ctx, path: Optional[Path]):
    """Upsert source descriptors from the YAML registry. Sources are never deleted."""
    info = ctx.ensure_object(ScriptInfo)
    info.load_app()
    try:
        catalog = load_source_catalog(path)
    except SourceRegistryError as exc:
        raise click.ClickException(str(exc)) from exc
    summary = register_sources(catalog.sources)
    click.echo(
        f"Registered {len(catalog.sources)} sources from {catalog.path} "
        f"({len(summary.created)} new, {len(summary.updated)} updated)."
    )


@ingest_cli.command("deprecate")
@click.argument("code")
@click.pass_context
def ingest_deprecate(ctx, code: str):
    """Mark source CODE as deprecated so batch runs skip it."""
    info = ctx.ensure_object(ScriptInfo)
    info.load_app()
    source = RunLedger().get_source(code.strip().upper())
    if source is None:
        raise click.ClickException(f"Source '{code}' is not registered.")
    source.status = DataSourceStatus.DEPRECATED
    db.session.commit()
    click.echo(f"Source {source.code} marked deprecated.")


@ingest_cli.command("runs")
@click.option("--source", "source_code", help="Only show runs for this source code.")
@click.option(
    "--status",
    "statuses",
    multiple=True,
    type=click.Choice([status.value for status in IngestRunStatus]),
    help="Filter by run status (repeatable).",
)
@click.option("--limit", default=20, show_default=True, type=click.IntRange(1, 500))
@click.option("--json", "as_json", is_flag=True, help="Emit runs as JSON.")
@click.pass_context
def ingest_runs(ctx, source_code: Optional[str], statuses: tuple[str, ...], limit: int, as_json: bool):
    """Show recent ingest runs, newest first."""
    info = ctx.ensure_object(ScriptInfo)
    info.load_app()
    runs = RunLedger().list_runs(
        source_code=source_code.strip().upper() if source_code else None,
        statuses=statuses,
        limit=limit,
    )
    if as_json:
        click.echo(json.dumps([run.as_dict() for run in runs], indent=2))
        return
    if not runs:
        click.echo("No ingest runs recorded.")
        return
    for run in runs:
        click.echo(_format_run(run))


@ingest_cli.command("status")
@click.argument("code")
@click.pass_context
def ingest_status(ctx, code: str):
    """Show the last successful run, fingerprint and recent errors for CODE."""
    info = ctx.ensure_object(ScriptInfo)
    info.load_app()
    status = RunLedger().source_status(code.strip().upper())
    if status is None:
        raise click.ClickException(f"Source '{code}' is not registered.")
    click.echo(json.dumps(status.as_dict(), indent=2))


@ingest_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the ingest background worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    state = app.extensions.get(EXTENSION_KEY, {})
    if not state.get("worker_enabled") and not is_worker_enabled(app):
        click.echo(
            "Warning: INGEST_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--pool", type=str, help="Celery pool implementation (e.g. 'prefork', 'solo').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, pool: Optional[str], queues: str):
    """Start the Celery worker in the current process (one task at a time)."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    state = app.extensions.get(EXTENSION_KEY)
    if state is not None:
        state["worker_enabled"] = True

    argv = ["worker", "--loglevel", loglevel, "-Q", queues, "--concurrency", "1"]
    if pool:
        argv.extend(["--pool", pool])
    click.echo(f"Starting ingest worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Validate worker connectivity by executing the heartbeat task."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("ingest.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'ingest.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    except Exception as exc:  # pragma: no cover - surfacing unexpected errors
        raise click.ClickException(f"Worker ping failed: {exc}") from exc
    click.echo(json.dumps(payload, indent=2))
