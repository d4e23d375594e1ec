"""
Importer blueprint: health checks and the payment export upload endpoint.
"""

from __future__ import annotations

import io
from http import HTTPStatus

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, current_app, jsonify, request

from donation_app.importer.pipeline import import_stripe_csv
from donation_app.models import db
from donation_app.models.importer.schema import ImportRun, ImportRunStatus
from donation_app.utils.importer import is_importer_enabled, is_worker_enabled

from .celery_app import IMPORT_QUEUE, get_celery_app
from .utils import allowed_file, cleanup_upload, max_upload_bytes, persist_upload, upload_size

importer_blueprint = Blueprint("importer", __name__, url_prefix="/importer")


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


@importer_blueprint.get("/health")
def importer_healthcheck():
    importer_state = current_app.extensions.get("importer", {})
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": importer_state.get("enabled", False),
                "worker_enabled": importer_state.get("worker_enabled", False),
                "sources": ["stripe"],
            }
        ),
        200,
    )


@importer_blueprint.get("/worker_health")
def importer_worker_health():
    """Round-trip the heartbeat task through the worker."""
    importer_state = current_app.extensions.get("importer", {})
    timeout_seconds = float(request.args.get("timeout", 5))
    payload = {
        "importer_enabled": importer_state.get("enabled", False),
        "worker_enabled": importer_state.get("worker_enabled", False),
        "queue": IMPORT_QUEUE,
        "timeout_seconds": timeout_seconds,
    }
    if not payload["worker_enabled"]:
        payload["status"] = "disabled"
        return jsonify(payload), 200

    celery_app = get_celery_app(current_app)
    task = celery_app.tasks.get("importer.healthcheck") if celery_app is not None else None
    if task is None:
        payload["status"] = "error"
        payload["error"] = "heartbeat_task_missing"
        return jsonify(payload), 500

    result = task.apply_async()
    try:
        payload["heartbeat"] = result.get(timeout=timeout_seconds)
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), 504
    payload["status"] = "ok"
    return jsonify(payload), 200


@importer_blueprint.post("/stripe/upload")
def importer_stripe_upload():
    """
    Run a payment export through the batch importer and return its summary.

    Form fields: ``file`` (CSV, required), ``dry_run`` (``true``/``1``) and
    ``mode`` (``inline`` by default, or ``queue`` to hand the stored file to the
    importer worker). A structurally broken CSV returns 422 with the same
    summary shape.
    """
    if not is_importer_enabled(current_app):
        return _json_error("Importer is disabled.", HTTPStatus.NOT_FOUND)

    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return _json_error("No file provided.", HTTPStatus.BAD_REQUEST)
    if not allowed_file(upload.filename):
        return _json_error("Only .csv files are accepted.", HTTPStatus.BAD_REQUEST)
    limit = max_upload_bytes(current_app)
    if upload_size(upload) > limit:
        return _json_error(
            f"File exceeds the {limit // (1024 * 1024)} MB upload limit.",
            HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
        )

    dry_run = request.form.get("dry_run", "").lower() in {"1", "true", "yes", "on"}
    mode = request.form.get("mode", "inline").lower()
    if mode not in {"inline", "queue"}:
        return _json_error(f"Unknown mode {mode!r}; expected inline or queue.", HTTPStatus.BAD_REQUEST)
    if mode == "queue" and not is_worker_enabled(current_app):
        return _json_error("Importer worker is disabled.", HTTPStatus.CONFLICT)

    run = ImportRun(
        source="stripe",
        dry_run=dry_run,
        status=ImportRunStatus.PENDING,
        notes=f"Upload {upload.filename}",
        counts_json={},
    )
    db.session.add(run)
    db.session.commit()

    if mode == "queue":
        return _enqueue_upload(upload, run)

    stream = io.TextIOWrapper(upload.stream, encoding="utf-8-sig", newline="")
    try:
        summary = import_stripe_csv(stream, dry_run=dry_run, run=run)
    finally:
        stream.detach()
    db.session.commit()

    status = HTTPStatus.UNPROCESSABLE_ENTITY if summary.fatal else HTTPStatus.OK
    return jsonify({"run_id": run.id, "status": run.status.value, **summary.as_dict()}), status


def _enqueue_upload(upload, run: ImportRun):
    file_path = persist_upload(upload, current_app)
    run.ingest_params_json = {"file_path": str(file_path), "dry_run": run.dry_run, "keep_file": False}
    db.session.commit()

    celery_app = get_celery_app(current_app)
    try:
        async_result = celery_app.send_task(
            "importer.pipeline.ingest_stripe_csv",
            kwargs={"run_id": run.id, "file_path": str(file_path), "dry_run": run.dry_run, "keep_file": False},
        )
    except Exception as exc:
        current_app.logger.exception("Failed to enqueue importer upload", extra={"importer_run_id": run.id})
        cleanup_upload(file_path)
        run.status = ImportRunStatus.FAILED
        run.error_summary = str(exc)
        db.session.commit()
        return _json_error(f"Failed to enqueue importer run {run.id}.", HTTPStatus.SERVICE_UNAVAILABLE)

    current_app.logger.info(
        "Importer upload queued",
        extra={"importer_run_id": run.id, "importer_task_id": async_result.id, "importer_dry_run": run.dry_run},
    )
    return (
        jsonify({"run_id": run.id, "task_id": async_result.id, "status": "queued", "dry_run": run.dry_run}),
        HTTPStatus.ACCEPTED,
    )
