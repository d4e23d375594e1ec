"""
Upload handling for importer endpoints and worker tasks.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable
from uuid import uuid4

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

DEFAULT_UPLOAD_SUBDIR = "import_uploads"
CSV_EXTENSIONS: tuple[str, ...] = ("csv",)
DEFAULT_MAX_UPLOAD_MB = 10


def resolve_upload_directory(app) -> Path:
    """Importer upload directory (``IMPORTER_UPLOAD_DIR``), created on demand."""

    configured = app.config.get("IMPORTER_UPLOAD_DIR")
    upload_dir = Path(configured) if configured else Path(DEFAULT_UPLOAD_SUBDIR)
    if not upload_dir.is_absolute():
        upload_dir = Path(app.instance_path) / upload_dir
    upload_dir.mkdir(parents=True, exist_ok=True)
    return upload_dir


def allowed_file(filename: str | None, allowed_extensions: Iterable[str] = CSV_EXTENSIONS) -> bool:
    if not filename or "." not in filename:
        return False
    extension = filename.rsplit(".", 1)[1].lower()
    return extension in {ext.lower() for ext in allowed_extensions}


def max_upload_bytes(app) -> int:
    return int(app.config.get("IMPORTER_MAX_UPLOAD_MB", DEFAULT_MAX_UPLOAD_MB)) * 1024 * 1024


def upload_size(file_storage: FileStorage) -> int:
    """Size of an uploaded stream in bytes; the stream position is restored."""

    stream = file_storage.stream
    position = stream.tell()
    stream.seek(0, 2)
    size = stream.tell()
    stream.seek(position)
    return size


def persist_upload(file_storage: FileStorage, app) -> Path:
    """
    Save an upload under the importer upload directory with a UUID filename.

    Queued imports read the file from disk, so the request stream cannot be
    handed to the worker directly.
    """

    original_name = secure_filename(file_storage.filename or "")
    extension = Path(original_name).suffix or ".csv"
    target_path = resolve_upload_directory(app) / f"{uuid4().hex}{extension}"
    file_storage.save(target_path)
    current_app.logger.debug("Importer upload persisted to %s", target_path)
    return target_path


def cleanup_upload(path: Path) -> None:
    """Remove a stored upload; filesystem errors are logged, not raised."""

    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        current_app.logger.warning("Failed to remove importer upload %s: %s", path, exc)
