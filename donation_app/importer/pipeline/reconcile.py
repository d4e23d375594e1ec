"""
Row reconciliation: turn one processor payment row into donation records.

Each succeeded row runs inside a single ``UnitOfWork``: invoice anchor, donor
resolution, child/project lookup and donation inserts commit together or not
at all. Idempotency keys are (invoice id, child) for sponsorship donations and
(invoice id, project) for everything else.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping

from flask import current_app
from sqlalchemy.orm import Session

from donation_app.importer.adapters.stripe_csv import PaymentRow
from donation_app.models import Child, Donation, DonationStatus, ExternalInvoice, PaymentMethod, Project, Sponsorship

from .catalog import DomainCatalog
from .classification import Classification, classify
from .donor_resolver import DonorResolution, DonorResolver
from .unit_of_work import UnitOfWork

REASON_ALREADY_IMPORTED = "Already imported"
REASON_NOT_SUCCEEDED = "Payment not succeeded"


@dataclass
class RowImportResult:
    """Outcome of importing one payment row."""

    success: bool
    donations: list[Donation] = field(default_factory=list)
    skipped: bool = False
    reason: str | None = None
    error: str | None = None
    donor_created: bool = False

    @property
    def ignored(self) -> bool:
        """Skipped because the payment did not succeed (not an idempotency skip)."""
        return self.skipped and self.reason == REASON_NOT_SUCCEEDED


@dataclass
class _RowContext:
    row: PaymentRow
    invoice_id: str
    amount_cents: int
    created_at: datetime
    resolution: DonorResolution

    @property
    def donor_id(self) -> int:
        return self.resolution.donor.id


class PaymentRowImporter:
    """Import individual payment rows, one transaction per row."""

    def __init__(self, session: Session | None = None, *, dry_run: bool = False) -> None:
        self.session = session
        self.dry_run = dry_run

    def import_row(self, row: PaymentRow | Mapping[str, object]) -> RowImportResult:
        if not isinstance(row, PaymentRow):
            row = PaymentRow(data=row)

        if not row.is_succeeded:
            current_app.logger.debug(
                "Skipping payment row with status %r",
                row.status,
                extra={"importer_row": row.row_number},
            )
            return RowImportResult(success=True, skipped=True, reason=REASON_NOT_SUCCEEDED)

        try:
            with UnitOfWork(self.session, dry_run=self.dry_run) as uow:
                result = self._reconcile(uow, row)
        except Exception as exc:
            current_app.logger.warning(
                "Payment row import failed: %s",
                exc,
                extra={
                    "importer_row": row.row_number,
                    "importer_invoice_id": row.get("Transaction ID"),
                },
            )
            return RowImportResult(success=False, error=str(exc))
        return result

    def _reconcile(self, uow: UnitOfWork, row: PaymentRow) -> RowImportResult:
        invoice_id = row.transaction_id
        amount_cents = row.amount_cents
        created_at = row.created_at

        self._find_or_create_invoice(uow, row, invoice_id, amount_cents, created_at)
        resolution = DonorResolver(uow).resolve(row.donor_attributes(), created_at, row.customer_id)
        context = _RowContext(
            row=row,
            invoice_id=invoice_id,
            amount_cents=amount_cents,
            created_at=created_at,
            resolution=resolution,
        )
        catalog = DomainCatalog(uow)

        children = self._resolve_children(catalog, row)
        if children:
            donations = [
                donation
                for donation in (self._create_child_donation(uow, catalog, context, child) for child in children)
                if donation is not None
            ]
        else:
            project = self._resolve_project(catalog, row)
            donation = self._create_project_donation(uow, context, project)
            donations = [donation] if donation is not None else []

        if not donations:
            current_app.logger.info(
                "Invoice %s already imported; skipping",
                invoice_id,
                extra={"importer_row": row.row_number, "importer_invoice_id": invoice_id},
            )
            return RowImportResult(
                success=True,
                skipped=True,
                reason=REASON_ALREADY_IMPORTED,
                donor_created=resolution.created,
            )
        return RowImportResult(success=True, donations=donations, donor_created=resolution.created)

    def _find_or_create_invoice(
        self,
        uow: UnitOfWork,
        row: PaymentRow,
        invoice_id: str,
        amount_cents: int,
        created_at: datetime,
    ) -> ExternalInvoice:
        invoice = uow.query(ExternalInvoice).filter(ExternalInvoice.invoice_id == invoice_id).first()
        if invoice is not None:
            return invoice
        invoice = uow.add(
            ExternalInvoice(
                invoice_id=invoice_id,
                charge_id=invoice_id,
                customer_id=row.customer_id,
                subscription_id=row.subscription_id,
                total_amount_cents=amount_cents,
                invoice_date=created_at.date(),
            )
        )
        uow.flush()
        return invoice

    def _resolve_children(self, catalog: DomainCatalog, row: PaymentRow) -> list[Child]:
        child = catalog.child_by_id(row.metadata_value("child_id"))
        if child is not None:
            return [child]
        classification = classify(row.description_text)
        if not classification.is_sponsorship:
            return []
        return [catalog.find_or_create_child(name) for name in classification.child_names]

    def _resolve_project(self, catalog: DomainCatalog, row: PaymentRow) -> Project:
        project = catalog.project_by_id(row.metadata_value("project_id"))
        if project is not None:
            return project
        return project_for_classification(catalog, classify(row.description_text))

    def _create_child_donation(
        self,
        uow: UnitOfWork,
        catalog: DomainCatalog,
        context: _RowContext,
        child: Child,
    ) -> Donation | None:
        if child_donation_exists(uow, context.invoice_id, child.id):
            return None
        donation = uow.add(self._build_donation(context, child_id=child.id))
        uow.flush()
        catalog.attach_sponsorship(donation)
        return donation

    def _create_project_donation(self, uow: UnitOfWork, context: _RowContext, project: Project) -> Donation | None:
        if project_donation_exists(uow, context.invoice_id, project.id):
            return None
        donation = uow.add(self._build_donation(context, project_id=project.id))
        uow.flush()
        return donation

    def _build_donation(self, context: _RowContext, **links) -> Donation:
        row = context.row
        return Donation(
            donor_id=context.donor_id,
            amount_cents=context.amount_cents,
            date=context.created_at.date(),
            description=row.get("Description"),
            payment_method=PaymentMethod.STRIPE,
            status=DonationStatus.SUCCEEDED,
            external_charge_id=context.invoice_id,
            external_customer_id=row.customer_id,
            external_subscription_id=row.subscription_id,
            external_invoice_id=context.invoice_id,
            **links,
        )


def project_for_classification(catalog: DomainCatalog, classification: Classification) -> Project:
    if classification.category == "campaign":
        return catalog.campaign_project(classification.campaign_id)
    if classification.category == "named_other":
        return catalog.named_project(classification.label, classification.description)
    return catalog.general_donation_project()


def child_donation_exists(uow: UnitOfWork, invoice_id: str, child_id: int) -> bool:
    return (
        uow.query(Donation.id)
        .join(Sponsorship, Donation.sponsorship_id == Sponsorship.id)
        .filter(Donation.external_invoice_id == invoice_id, Sponsorship.child_id == child_id)
        .first()
        is not None
    )


def project_donation_exists(uow: UnitOfWork, invoice_id: str, project_id: int) -> bool:
    return (
        uow.query(Donation.id)
        .filter(
            Donation.external_invoice_id == invoice_id,
            Donation.project_id == project_id,
            Donation.sponsorship_id.is_(None),
        )
        .first()
        is not None
    )
