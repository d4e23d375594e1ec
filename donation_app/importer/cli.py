"""
``flask importer`` commands: payment imports, donor merges, worker control.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from donation_app.importer.celery_app import IMPORT_QUEUE, get_celery_app
from donation_app.importer.exceptions import DonorMergeError, DonorNotFoundError
from donation_app.importer.pipeline import BatchImportSummary, DonorMergeService, import_stripe_csv
from donation_app.importer.utils import cleanup_upload, resolve_upload_directory
from donation_app.models import db
from donation_app.models.importer.schema import ImportRun, ImportRunStatus
from donation_app.utils.importer import is_importer_enabled

STRIPE_SOURCE = "stripe"


@click.group(name="importer")
@click.pass_context
def importer_cli(ctx):
    """Payment import and donor identity commands."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException("Importer is disabled via IMPORTER_ENABLED=false.")


def get_disabled_importer_group() -> click.Group:
    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException("Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true.")
    return celery_app


def _format_summary(run: ImportRun, summary: BatchImportSummary) -> str:
    status_value = run.status.value if hasattr(run.status, "value") else str(run.status)
    lines = [
        f"Run {run.id} finished with status {status_value} (dry_run={summary.dry_run}).",
        f"  succeeded         : {summary.succeeded_count}",
        f"  failed            : {summary.failed_count}",
        f"  skipped (imported): {summary.skipped_count}",
        f"  ignored (status)  : {summary.ignored_count}",
        f"  donations_created : {summary.donations_created}",
        f"  donors_created    : {summary.donors_created}",
    ]
    for error in summary.errors:
        row = error["row"] if error["row"] is not None else "-"
        lines.append(f"  ! row {row}: {error['message']}")
    if summary.errors_truncated:
        lines.append(f"  ... {summary.errors_truncated} more error(s) not shown")
    return "\n".join(lines)


def _create_run(csv_path: Path, *, dry_run: bool, keep_file: bool = True) -> ImportRun:
    run = ImportRun(
        source=STRIPE_SOURCE,
        dry_run=dry_run,
        status=ImportRunStatus.PENDING,
        notes=f"CLI ingest from {csv_path}",
        counts_json={},
        ingest_params_json={"file_path": str(csv_path), "dry_run": dry_run, "keep_file": keep_file},
    )
    db.session.add(run)
    db.session.commit()
    return run


@importer_cli.command("stripe")
@click.option(
    "--file",
    "file_path",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Payment processor CSV export.",
)
@click.option("--dry-run", is_flag=True, help="Reconcile every row but roll back all writes.")
@click.option(
    "--inline/--queue",
    default=True,
    help="Run inside the CLI process (default) or hand the file to the importer worker.",
)
@click.option("--summary-json", is_flag=True, help="Print the batch summary as JSON (inline runs only).")
@click.pass_context
def importer_stripe(ctx, file_path: Path, dry_run: bool, inline: bool, summary_json: bool):
    """Import a Stripe payment export."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if summary_json and not inline:
        raise click.ClickException("--summary-json is only available for --inline runs.")

    csv_path = file_path.resolve()
    run = _create_run(csv_path, dry_run=dry_run)

    if not inline:
        celery_app = _resolve_celery(app)
        try:
            async_result = celery_app.send_task(
                "importer.pipeline.ingest_stripe_csv",
                kwargs={"run_id": run.id, "file_path": str(csv_path), "dry_run": dry_run, "keep_file": True},
            )
        except Exception as exc:
            run.status = ImportRunStatus.FAILED
            run.error_summary = str(exc)
            run.finished_at = datetime.now(timezone.utc)
            db.session.commit()
            raise click.ClickException(f"Failed to enqueue importer run {run.id}: {exc}") from exc
        app.logger.info(
            "Importer run queued via CLI",
            extra={"importer_run_id": run.id, "importer_task_id": async_result.id, "importer_dry_run": dry_run},
        )
        click.echo(json.dumps({"run_id": run.id, "task_id": async_result.id, "status": "queued", "dry_run": dry_run}))
        return

    summary = import_stripe_csv(csv_path, dry_run=dry_run, run=run)
    db.session.commit()
    click.echo(_format_summary(run, summary))
    if summary_json:
        click.echo(json.dumps({"run_id": run.id, **summary.as_dict()}, indent=2, sort_keys=True, default=str))
    if summary.fatal:
        ctx.exit(1)


@importer_cli.command("merge-donors")
@click.option("--donor-id", "donor_ids", type=int, multiple=True, required=True, help="Donor to merge (repeat).")
@click.option("--name-from", type=int, required=True, help="Donor whose name the merged donor keeps.")
@click.option("--email-from", type=int, required=True, help="Donor whose email the merged donor keeps.")
@click.option(
    "--field",
    "extra_fields",
    multiple=True,
    metavar="FIELD=DONOR_ID",
    help="Additional field selection, e.g. phone=12 (repeatable).",
)
def importer_merge_donors(donor_ids: tuple[int, ...], name_from: int, email_from: int, extra_fields: tuple[str, ...]):
    """Merge duplicate donors into a single new donor."""
    selections: dict[str, int | str] = {"name": name_from, "email": email_from}
    for item in extra_fields:
        field_name, _, donor_id = item.partition("=")
        if not field_name or not donor_id:
            raise click.BadParameter(f"Expected FIELD=DONOR_ID, got {item!r}", param_hint="--field")
        selections[field_name.strip()] = donor_id.strip()

    try:
        result = DonorMergeService().merge(list(donor_ids), selections)
    except (DonorMergeError, DonorNotFoundError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(result.as_dict()))


@importer_cli.group(name="worker")
def worker_group():
    """Manage the importer background worker."""


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--queues", default=IMPORT_QUEUE, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, queues: str):
    """Start the Celery worker in the current process (single concurrency)."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    state = app.extensions.get("importer")
    if state is not None:
        state["worker_enabled"] = True

    click.echo(f"Starting importer worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=["worker", "--loglevel", loglevel, "-Q", queues, "--concurrency", "1"])
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Run the heartbeat task and print its payload."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'importer.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    click.echo(json.dumps(payload, indent=2))


@importer_cli.command("cleanup-uploads")
@click.option("--max-age-hours", default=72, show_default=True, type=int)
@click.pass_context
def importer_cleanup_uploads(ctx, max_age_hours: int):
    """Delete stored uploads older than ``--max-age-hours``."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    uploads_dir = resolve_upload_directory(app)

    cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
    removed = 0
    for path in uploads_dir.iterdir():
        if not path.is_file():
            continue
        if datetime.fromtimestamp(path.stat().st_mtime, timezone.utc) < cutoff:
            cleanup_upload(path)
            removed += 1
    click.echo(f"Removed {removed} upload file(s) older than {max_age_hours} hours from {uploads_dir}.")
