# scripts/init_database.py

"""
Database initialization script.
Creates all tables and bootstraps the singleton "General Donation" system project.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import app  # noqa: E402
from donation_app.importer.pipeline import DomainCatalog, UnitOfWork  # noqa: E402
from donation_app.models import db  # noqa: E402


def create_general_donation_project():
    """Find or create the system project that collects uncategorised donations."""
    with UnitOfWork() as uow:
        project = DomainCatalog(uow).general_donation_project()
        project_id, title = project.id, project.title
    return project_id, title


def init_database():
    """Initialize database with default data"""
    with app.app_context():
        print("Creating database tables...")
        db.create_all()
        print("Database tables created (donors, donations, external_invoices, import_runs, ...)")

        print("Bootstrapping system projects...")
        project_id, title = create_general_donation_project()
        print(f"System project ready: {title} (id={project_id})")

        print("\nDatabase initialization complete!")
        print("\nNext steps:")
        print("  1. Import a payment export: flask importer stripe --file path/to/export.csv")
        print("  2. Or POST the file to /importer/stripe/upload")


if __name__ == "__main__":
    init_database()
