"""
SQLAlchemy models backing importer bookkeeping.

``ImportRun`` records each batch import of a payment-processor export and
``DonorMergeLog`` records each administrative identity merge.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class ImportRunStatus(str, enum.Enum):
    """Lifecycle states for an import run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


class ImportRun(BaseModel):
    """Metadata describing a single importer execution."""

    __tablename__ = "import_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    source: Mapped[str] = mapped_column(db.String(100), nullable=False, index=True)
    status: Mapped[ImportRunStatus] = mapped_column(
        Enum(ImportRunStatus, name="import_run_status_enum"),
        nullable=False,
        default=ImportRunStatus.PENDING,
        index=True,
    )
    dry_run: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    counts_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    ingest_params_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Stored parameters for retry support (file_path, keep_file)",
    )

    def __repr__(self):
        return f"<ImportRun {self.id} {self.source} {self.status.value if self.status else None}>"

    def mark_running(self, *, started_at: datetime) -> None:
        self.status = ImportRunStatus.RUNNING
        self.started_at = started_at

    def mark_finished(self, summary, *, finished_at: datetime) -> None:
        """Record a batch summary and derive the terminal status from it."""
        self.counts_json = summary.as_dict()
        self.finished_at = finished_at
        if summary.fatal:
            self.status = ImportRunStatus.FAILED
            self.error_summary = summary.errors[0]["message"] if summary.errors else None
        elif summary.failed_count:
            self.status = ImportRunStatus.PARTIALLY_FAILED
            self.error_summary = f"{summary.failed_count} row(s) failed"
        else:
            self.status = ImportRunStatus.SUCCEEDED


class DonorMergeLog(BaseModel):
    """Auditable record of donor identity merges."""

    __tablename__ = "donor_merge_log"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    merged_donor_id: Mapped[int] = mapped_column(ForeignKey("donors.id"), nullable=False, index=True)
    source_donor_ids: Mapped[list] = mapped_column(db.JSON, nullable=False)
    field_selections: Mapped[dict] = mapped_column(db.JSON, nullable=False)
    donations_reassigned: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    sponsorships_reassigned: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    snapshot_before: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    merged_donor = relationship("Donor", foreign_keys=[merged_donor_id])

    __table_args__ = (Index("idx_donor_merge_log_merged", "merged_donor_id"),)
