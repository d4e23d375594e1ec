import json
import logging

from config.validation import validate_environment
from donation_app.utils.logging_config import JSONFormatter, setup_logging


def test_validation_skips_non_production():
    assert validate_environment("development") == (True, [])


def test_validation_requires_secrets_in_production(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("IMPORTER_WORKER_ENABLED", "true")
    monkeypatch.delenv("CELERY_BROKER_URL", raising=False)
    monkeypatch.delenv("CELERY_RESULT_BACKEND", raising=False)
    monkeypatch.setenv("IMPORTER_ERROR_LIMIT", "0")

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    joined = "\n".join(errors)
    for key in ("SECRET_KEY", "DATABASE_URL", "CELERY_BROKER_URL", "CELERY_RESULT_BACKEND", "IMPORTER_ERROR_LIMIT"):
        assert key in joined


def test_validation_passes_with_complete_production_env(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "a" * 64)
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/donations")
    monkeypatch.setenv("IMPORTER_WORKER_ENABLED", "false")
    monkeypatch.delenv("IMPORTER_ERROR_LIMIT", raising=False)

    assert validate_environment("production") == (True, [])


def test_json_formatter_carries_structured_extras():
    record = logging.LogRecord("donation_app", logging.WARNING, __file__, 10, "Row %s failed", (7,), None)
    record.importer_row = 7
    record.importer_invoice_id = "ch_1"

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "Row 7 failed"
    assert payload["level"] == "WARNING"
    assert payload["importer_row"] == 7
    assert payload["importer_invoice_id"] == "ch_1"


def test_setup_logging_replaces_its_own_handlers(app, tmp_path):
    app.config.update(ENABLE_CONSOLE_LOGGING=True, ENABLE_FILE_LOGGING=True, LOG_DIR=str(tmp_path / "logs"))

    setup_logging(app)
    setup_logging(app)

    managed = [handler for handler in app.logger.handlers if getattr(handler, "_donation_app_managed", False)]
    assert len(managed) == 2
    assert (tmp_path / "logs" / "app.log").exists()

    app.config.update(ENABLE_CONSOLE_LOGGING=False, ENABLE_FILE_LOGGING=False)
    setup_logging(app)


def test_metrics_endpoint_exposes_importer_counters(client, tmp_path):
    from donation_app.importer.metrics import record_row_outcome

    record_row_outcome("succeeded", donations_created=1)

    response = client.get("/metrics")

    assert response.status_code == 200
    body = response.get_data(as_text=True)
    assert "importer_payment_rows_total" in body
    assert "importer_donations_created_total" in body
