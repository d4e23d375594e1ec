# donation_app/models/__init__.py
"""
Database models package
"""

from .base import ArchivableMixin, BaseModel, as_utc, db
from .child import Child
from .donation import Donation, DonationStatus, PaymentMethod
from .donor import Donor
from .external_invoice import ExternalInvoice
from .importer import DonorMergeLog, ImportRun, ImportRunStatus
from .project import Project, ProjectType
from .sponsorship import Sponsorship

__all__ = [
    "db",
    "BaseModel",
    "ArchivableMixin",
    "as_utc",
    "Donor",
    "Child",
    "Project",
    "ProjectType",
    "Sponsorship",
    "Donation",
    "DonationStatus",
    "PaymentMethod",
    "ExternalInvoice",
    # Importer models
    "ImportRun",
    "ImportRunStatus",
    "DonorMergeLog",
]
