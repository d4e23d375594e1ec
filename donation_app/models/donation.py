# donation_app/models/donation.py
"""
Donation records.

Amounts are stored as integer cents. Donations imported from the payment
processor carry the processor's charge/customer/subscription/invoice ids; the
(invoice id, child) and (invoice id, project) pairs form the import
idempotency keys.
"""

import enum
from datetime import date, datetime, timezone

from sqlalchemy import Enum, Index
from sqlalchemy.orm import validates

from .base import BaseModel, db


class PaymentMethod(str, enum.Enum):
    STRIPE = "stripe"
    CASH = "cash"
    CHECK = "check"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class DonationStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELED = "canceled"
    NEEDS_ATTENTION = "needs_attention"


class Donation(BaseModel):
    __tablename__ = "donations"

    id = db.Column(db.Integer, primary_key=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    date = db.Column(db.Date, nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    payment_method = db.Column(
        Enum(PaymentMethod, name="payment_method_enum"),
        nullable=True,
        index=True,
    )
    status = db.Column(
        Enum(DonationStatus, name="donation_status_enum"),
        nullable=False,
        default=DonationStatus.SUCCEEDED,
        index=True,
    )
    needs_attention_reason = db.Column(db.Text, nullable=True)

    donor_id = db.Column(db.Integer, db.ForeignKey("donors.id"), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=True, index=True)
    sponsorship_id = db.Column(db.Integer, db.ForeignKey("sponsorships.id"), nullable=True, index=True)
    child_id = db.Column(db.Integer, db.ForeignKey("children.id"), nullable=True, index=True)

    external_charge_id = db.Column(db.String(255), nullable=True, index=True)
    external_customer_id = db.Column(db.String(255), nullable=True, index=True)
    external_subscription_id = db.Column(db.String(255), nullable=True)
    external_invoice_id = db.Column(db.String(255), nullable=True, index=True)

    donor = db.relationship("Donor", back_populates="donations")
    project = db.relationship("Project", back_populates="donations")
    sponsorship = db.relationship("Sponsorship", back_populates="donations")
    child = db.relationship("Child")
    invoice = db.relationship(
        "ExternalInvoice",
        primaryjoin="foreign(Donation.external_invoice_id) == ExternalInvoice.invoice_id",
        back_populates="donations",
        viewonly=True,
    )

    __table_args__ = (Index("idx_donation_project_date", "project_id", "date"),)

    def __repr__(self):
        return f"<Donation {self.id} {self.amount_cents}c donor={self.donor_id}>"

    @validates("amount_cents")
    def validate_amount(self, key, value):
        if value is None:
            raise ValueError("Amount is required")
        if isinstance(value, float) or int(value) != value:
            raise ValueError("Amount must be an integer number of cents")
        if value <= 0:
            raise ValueError("Amount must be greater than 0")
        return int(value)

    @validates("date")
    def validate_date(self, key, value):
        if value is None:
            raise ValueError("Date is required")
        # Import dates are UTC; accept whichever of local or UTC "today" is later.
        if value > max(date.today(), datetime.now(timezone.utc).date()):
            raise ValueError("Date cannot be in the future")
        return value
