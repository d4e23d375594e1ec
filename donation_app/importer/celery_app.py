"""
Celery wiring for queued payment imports.

The worker defaults to a SQLite broker/result backend under the Flask instance
folder so local runs need no Redis. Set ``CELERY_BROKER_URL`` and
``CELERY_RESULT_BACKEND`` to point at real infrastructure.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from flask import Flask
from kombu import Queue

IMPORT_QUEUE = "imports"
SQLITE_BROKER_FILENAME = "celery.sqlite"


def _sqlite_transport_path(app: Flask) -> Path:
    configured = app.config.get("CELERY_SQLITE_PATH")
    path = Path(configured) if configured else Path(SQLITE_BROKER_FILENAME)
    if not path.is_absolute():
        path = Path(app.instance_path) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def resolve_celery_urls(app: Flask) -> tuple[str, str]:
    """Return ``(broker_url, result_backend)``, filling gaps with SQLite transports."""
    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")
    if broker_url and result_backend:
        return broker_url, result_backend

    # Celery expects forward slashes even on Windows.
    sqlite_path = _sqlite_transport_path(app).as_posix()
    return (
        broker_url or f"sqla+sqlite:///{sqlite_path}",
        result_backend or f"db+sqlite:///{sqlite_path}",
    )


def _extra_celery_conf(app: Flask) -> Mapping[str, Any] | None:
    extra_conf = app.config.get("CELERY_CONFIG")
    if not isinstance(extra_conf, str):
        return extra_conf
    try:
        return json.loads(extra_conf)
    except json.JSONDecodeError:
        app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.", exc_info=True)
        return None


def create_celery_app(app: Flask) -> Celery:
    """Build a Celery instance whose tasks run inside ``app``'s context."""
    broker_url, result_backend = resolve_celery_urls(app)
    celery_app = Celery(
        app.import_name,
        broker=broker_url,
        backend=result_backend,
        include=("donation_app.importer.tasks",),
    )
    celery_app.conf.update(
        task_default_queue=IMPORT_QUEUE,
        task_queues=[Queue(IMPORT_QUEUE)],
        task_default_exchange=IMPORT_QUEUE,
        task_default_routing_key=IMPORT_QUEUE,
        # One row transaction at a time; never prefetch a second batch.
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=1,
        task_track_started=True,
        broker_connection_retry_on_startup=True,
        task_time_limit=app.config.get("IMPORTER_TASK_TIME_LIMIT", 30 * 60),
        task_soft_time_limit=app.config.get("IMPORTER_TASK_SOFT_TIME_LIMIT", 25 * 60),
        worker_hijack_root_logger=False,
    )
    extra_conf = _extra_celery_conf(app)
    if extra_conf:
        celery_app.conf.update(extra_conf)

    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    app.logger.info(
        "Importer Celery configuration resolved",
        extra={
            "importer_celery_broker_url": broker_url,
            "importer_celery_result_backend": result_backend,
            "importer_worker_enabled": app.config.get("IMPORTER_WORKER_ENABLED"),
        },
    )

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None:
        celery_app = create_celery_app(app)
        state["celery_app"] = celery_app
    return celery_app


def get_celery_app(app: Flask) -> Celery | None:
    """Celery instance for ``app``, or ``None`` when the importer is not mounted."""
    state: dict[str, Any] | None = app.extensions.get("importer")  # type: ignore[arg-type]
    if not state or not state.get("enabled"):
        return None
    return ensure_celery_app(app, state)
