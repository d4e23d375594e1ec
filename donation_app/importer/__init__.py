"""
Payment importer package.

``init_importer`` mounts the importer blueprint and CLI group (or a stub group
when the importer is disabled) and records state in
``app.extensions['importer']``.
"""

from __future__ import annotations

from typing import Any

from flask import Flask

from donation_app.utils.importer import is_importer_enabled, is_worker_enabled

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_importer_group, importer_cli
from .views import importer_blueprint

IMPORTER_EXTENSION_KEY = "importer"

__all__ = ["init_importer", "IMPORTER_EXTENSION_KEY", "get_celery_app"]


def _ensure_extension_state(app: Flask) -> dict[str, Any]:
    return app.extensions.setdefault(
        IMPORTER_EXTENSION_KEY,
        {
            "enabled": False,
            "worker_enabled": False,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    # Re-running init_importer (tests) must not stack duplicate groups.
    app.cli.commands.pop(importer_cli.name, None)
    app.cli.add_command(importer_cli if enabled else get_disabled_importer_group())


def init_importer(app: Flask) -> None:
    """Conditionally mount importer blueprint, CLI and Celery app."""
    enabled = is_importer_enabled(app)
    state = _ensure_extension_state(app)
    state.update({"enabled": enabled, "worker_enabled": is_worker_enabled(app)})

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Importer disabled via IMPORTER_ENABLED flag; skipping registration.")
        return

    if state["worker_enabled"]:
        ensure_celery_app(app, state)

    if importer_blueprint.name not in app.blueprints:
        app.register_blueprint(importer_blueprint)
    _set_cli(app, enabled=True)
    app.logger.info("Importer enabled (worker_enabled=%s)", state["worker_enabled"])
