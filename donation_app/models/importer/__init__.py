"""
Importer-specific SQLAlchemy models: run history and donor merge history.
"""

from .schema import DonorMergeLog, ImportRun, ImportRunStatus

__all__ = [
    "DonorMergeLog",
    "ImportRun",
    "ImportRunStatus",
]
