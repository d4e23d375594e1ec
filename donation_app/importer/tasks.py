"""
Importer Celery tasks.

Queued runs execute the same batch importer as the CLI and upload endpoint;
the ``ImportRun`` row created by the caller carries the outcome.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from celery import shared_task
from flask import current_app

from donation_app.importer.pipeline import import_stripe_csv
from donation_app.importer.utils import cleanup_upload
from donation_app.models import db
from donation_app.models.importer.schema import ImportRun, ImportRunStatus


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by worker health checks."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


def _fail_run(run_id: int, message: str) -> None:
    run = db.session.get(ImportRun, run_id)
    if run is None:
        return
    run.status = ImportRunStatus.FAILED
    run.error_summary = message
    run.finished_at = datetime.now(timezone.utc)
    db.session.commit()


@shared_task(name="importer.pipeline.ingest_stripe_csv", bind=True)
def ingest_stripe_csv(
    self,
    *,
    run_id: int,
    file_path: str,
    dry_run: bool = False,
    keep_file: bool = False,
) -> dict[str, Any]:
    """Import a payment export previously saved to ``file_path``."""

    run = db.session.get(ImportRun, run_id)
    if run is None:
        raise ValueError(f"Import run {run_id} not found.")

    path = Path(file_path)
    if not path.exists():
        _fail_run(run_id, f"CSV file not found: {file_path}")
        raise FileNotFoundError(f"CSV file not found: {file_path}")

    try:
        summary = import_stripe_csv(path, dry_run=dry_run, run=run)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        _fail_run(run_id, str(exc))
        current_app.logger.exception(
            "Importer run failed",
            extra={"importer_run_id": run_id, "importer_error": str(exc)},
        )
        raise
    finally:
        if not keep_file:
            cleanup_upload(path)

    return {"run_id": run_id, "status": run.status.value, **summary.as_dict()}
