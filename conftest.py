# conftest.py

import os
from datetime import date

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from donation_app.models import (  # noqa: E402
    Child,
    Donation,
    Donor,
    PaymentMethod,
    Project,
    ProjectType,
    Sponsorship,
    db,
)


@pytest.fixture(scope="function")
def app(tmp_path):
    """Test application over a freshly created in-memory schema."""
    original_config = dict(flask_app.config)
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "LOG_LEVEL": "DEBUG",
            "EMAIL_VALIDATION_CHECK_DELIVERABILITY": False,
            "IMPORTER_ENABLED": True,
            "IMPORTER_WORKER_ENABLED": False,
            "IMPORTER_UPLOAD_DIR": str(tmp_path / "uploads"),
            "IMPORTER_PLACEHOLDER_EMAIL_DOMAIN": "mailinator.com",
            "IMPORTER_GENERAL_PROJECT_TITLE": "General Donation",
            "IMPORTER_ERROR_LIMIT": 500,
        }
    )

    from donation_app.utils.logging_config import setup_logging

    setup_logging(flask_app)

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()
    flask_app.config.clear()
    flask_app.config.update(original_config)


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def donor_factory():
    def _factory(**overrides):
        params = {"name": "Jane Donor", "email": "jane@example.org"}
        params.update(overrides)
        donor = Donor(**params)
        db.session.add(donor)
        db.session.commit()
        return donor

    return _factory


@pytest.fixture
def child_factory():
    def _factory(name="Wan", **overrides):
        child = Child(name=name, **overrides)
        db.session.add(child)
        db.session.commit()
        return child

    return _factory


@pytest.fixture
def project_factory():
    def _factory(title="Water Well", **overrides):
        params = {"project_type": ProjectType.GENERAL, "system": False}
        params.update(overrides)
        project = Project(title=title, **params)
        db.session.add(project)
        db.session.commit()
        return project

    return _factory


@pytest.fixture
def donation_factory(project_factory):
    def _factory(donor, **overrides):
        params = {
            "amount_cents": 5000,
            "date": date(2024, 1, 15),
            "payment_method": PaymentMethod.STRIPE,
        }
        if "project_id" not in overrides and "sponsorship_id" not in overrides:
            params["project_id"] = project_factory(title=f"Project for donor {donor.id}").id
        params.update(overrides)
        donation = Donation(donor_id=donor.id, **params)
        db.session.add(donation)
        db.session.commit()
        return donation

    return _factory


@pytest.fixture
def sponsorship_factory():
    def _factory(donor, child, **overrides):
        params = {"monthly_amount_cents": 5000, "start_date": date(2024, 1, 1)}
        params.update(overrides)
        sponsorship = Sponsorship(donor_id=donor.id, child_id=child.id, **params)
        db.session.add(sponsorship)
        db.session.commit()
        return sponsorship

    return _factory
