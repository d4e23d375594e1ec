# donation_app/models/external_invoice.py

from .base import BaseModel, db


class ExternalInvoice(BaseModel):
    """
    Payment-processor invoice used as the import dedup anchor.

    One invoice may back several donations (a shared invoice covering multiple
    sponsored children).
    """

    __tablename__ = "external_invoices"

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    charge_id = db.Column(db.String(255), nullable=False, index=True)
    customer_id = db.Column(db.String(255), nullable=True)
    subscription_id = db.Column(db.String(255), nullable=True)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    invoice_date = db.Column(db.Date, nullable=False)

    donations = db.relationship(
        "Donation",
        primaryjoin="ExternalInvoice.invoice_id == foreign(Donation.external_invoice_id)",
        back_populates="invoice",
        viewonly=True,
    )

    def __repr__(self):
        return f"<ExternalInvoice {self.invoice_id}>"
