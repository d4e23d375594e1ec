"""
Batch import of a payment-processor CSV export.

The file is parsed up front; a structurally broken file is reported as a single
fatal error and nothing is written. Rows are then reconciled one at a time in
file order, each in its own transaction, so a bad row never blocks the rest.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import IO, Any

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from donation_app.importer.adapters.stripe_csv import CSVAdapterError, PaymentRow, StripeCSVAdapter
from donation_app.importer.metrics import record_batch, record_row_outcome
from donation_app.models import db
from donation_app.models.importer.schema import ImportRun

from .reconcile import PaymentRowImporter, RowImportResult

DEFAULT_ERROR_LIMIT = 500
FATAL_MESSAGE_PREFIX = "CSV parsing error"


@dataclass
class BatchImportSummary:
    """
    Aggregate outcome of one batch.

    ``succeeded_count`` counts rows that created at least one donation,
    ``skipped_count`` counts rows already imported earlier, ``ignored_count``
    counts rows whose payment status was not ``succeeded``.
    """

    succeeded_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    ignored_count: int = 0
    donations_created: int = 0
    donors_created: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    fatal: bool = False
    dry_run: bool = False
    errors_truncated: int = 0

    @property
    def rows_processed(self) -> int:
        return self.succeeded_count + self.failed_count + self.skipped_count + self.ignored_count

    def add_error(self, row_number: int | None, message: str, data: dict[str, Any] | None, *, limit: int) -> None:
        if len(self.errors) >= limit:
            self.errors_truncated += 1
            return
        self.errors.append({"row": row_number, "message": message, "data": data})

    def as_dict(self) -> dict[str, Any]:
        return {
            "succeeded_count": self.succeeded_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "ignored_count": self.ignored_count,
            "donations_created": self.donations_created,
            "donors_created": self.donors_created,
            "rows_processed": self.rows_processed,
            "errors": list(self.errors),
            "errors_truncated": self.errors_truncated,
            "fatal": self.fatal,
            "dry_run": self.dry_run,
        }

    @classmethod
    def fatal_error(cls, message: str, *, dry_run: bool = False) -> "BatchImportSummary":
        summary = cls(fatal=True, dry_run=dry_run)
        summary.errors.append({"row": None, "message": f"{FATAL_MESSAGE_PREFIX}: {message}", "data": None})
        return summary


def _error_limit() -> int:
    if has_app_context():
        return int(current_app.config.get("IMPORTER_ERROR_LIMIT", DEFAULT_ERROR_LIMIT))
    return DEFAULT_ERROR_LIMIT


class StripeBatchImporter:
    """Run every row of a processor export through ``PaymentRowImporter``."""

    def __init__(
        self,
        *,
        session: Session | None = None,
        dry_run: bool = False,
        row_importer: PaymentRowImporter | None = None,
    ) -> None:
        self.session = session or db.session
        self.dry_run = dry_run
        self.row_importer = row_importer or PaymentRowImporter(self.session, dry_run=dry_run)

    def import_file(self, source: str | os.PathLike[str] | IO[str], *, run: ImportRun | None = None) -> BatchImportSummary:
        """
        Import ``source`` (a path or an open text stream).

        When ``run`` is given it is committed as running, then marked finished
        with the summary; the caller commits the finished state.
        """
        started = time.monotonic()
        if run is not None:
            run.mark_running(started_at=datetime.now(timezone.utc))
            # Row transactions roll back independently; persist the running state first.
            self.session.commit()

        summary = self._run(source)

        status = "failed" if summary.fatal else ("partially_failed" if summary.failed_count else "succeeded")
        record_batch(status=status, duration_seconds=time.monotonic() - started)
        if run is not None:
            run.mark_finished(summary, finished_at=datetime.now(timezone.utc))

        log_extra = {
            "importer_run_id": run.id if run is not None else None,
            "importer_dry_run": self.dry_run,
            "importer_rows_succeeded": summary.succeeded_count,
            "importer_rows_failed": summary.failed_count,
            "importer_rows_skipped": summary.skipped_count,
            "importer_rows_ignored": summary.ignored_count,
            "importer_donations_created": summary.donations_created,
        }
        if summary.fatal:
            current_app.logger.error("Payment import aborted: %s", summary.errors[0]["message"], extra=log_extra)
        else:
            current_app.logger.info("Payment import completed", extra=log_extra)
        return summary

    def _run(self, source: str | os.PathLike[str] | IO[str]) -> BatchImportSummary:
        try:
            rows = self._read_rows(source)
        except (CSVAdapterError, OSError, UnicodeDecodeError) as exc:
            return BatchImportSummary.fatal_error(str(exc), dry_run=self.dry_run)

        summary = BatchImportSummary(dry_run=self.dry_run)
        limit = _error_limit()
        for row in rows:
            result = self.row_importer.import_row(row)
            self._tally(summary, row, result, limit=limit)
        return summary

    @staticmethod
    def _read_rows(source: str | os.PathLike[str] | IO[str]) -> list[PaymentRow]:
        if hasattr(source, "read"):
            return StripeCSVAdapter(source).read_rows()
        with open(source, "r", encoding="utf-8-sig", newline="") as handle:
            return StripeCSVAdapter(handle).read_rows()

    @staticmethod
    def _tally(summary: BatchImportSummary, row: PaymentRow, result: RowImportResult, *, limit: int) -> None:
        if not result.success:
            summary.failed_count += 1
            summary.add_error(row.row_number, result.error or "Unknown error", row.sanitized(), limit=limit)
            record_row_outcome("failed")
            return

        if result.donor_created:
            summary.donors_created += 1
        if result.ignored:
            summary.ignored_count += 1
            record_row_outcome("ignored")
        elif result.skipped:
            summary.skipped_count += 1
            record_row_outcome("skipped")
        else:
            created = len(result.donations)
            summary.succeeded_count += 1
            summary.donations_created += created
            record_row_outcome("succeeded", donations_created=created)


def import_stripe_csv(
    source: str | os.PathLike[str] | IO[str],
    *,
    dry_run: bool = False,
    run: ImportRun | None = None,
) -> BatchImportSummary:
    """Convenience wrapper used by the CLI, the upload endpoint and the worker task."""
    return StripeBatchImporter(dry_run=dry_run).import_file(source, run=run)
