# config/validation.py

"""
Environment variable validation, run at startup in production.
"""

import os
import sys
from typing import List, Tuple


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    if flask_env != "production":
        return True, []

    errors = []
    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in {"your-secret-key", "your_secret_key"}:
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    if os.environ.get("IMPORTER_WORKER_ENABLED", "false").lower() == "true":
        if not os.environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when IMPORTER_WORKER_ENABLED=true")
        if not os.environ.get("CELERY_RESULT_BACKEND"):
            errors.append("CELERY_RESULT_BACKEND is required when IMPORTER_WORKER_ENABLED=true")

    limit = os.environ.get("IMPORTER_ERROR_LIMIT")
    if limit is not None and (not limit.isdigit() or int(limit) < 1):
        errors.append("IMPORTER_ERROR_LIMIT must be a positive integer")

    return len(errors) == 0, errors


def validate_and_exit(flask_env: str = None) -> None:
    """Validate environment variables and exit with status 1 on failure."""
    is_valid, errors = validate_environment(flask_env)
    if is_valid:
        return

    print("=" * 80, file=sys.stderr)
    print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
    print("=" * 80, file=sys.stderr)
    for i, error in enumerate(errors, 1):
        print(f"{i}. {error}", file=sys.stderr)
    print("=" * 80, file=sys.stderr)
    sys.exit(1)
