# donation_app/models/donor.py
"""
Donor identity records.

Email is unique among non-archived donors (case-insensitive). Merged donors are
archived and point at their replacement through ``superseded_by_id``.
"""

import re

from flask import current_app, has_app_context
from sqlalchemy import Index, func, text
from sqlalchemy.orm import validates

from .base import ArchivableMixin, BaseModel, db

ANONYMOUS_NAME = "Anonymous"

# Fields that an incoming blank value must never overwrite.
PRESERVED_FIELDS = (
    "name",
    "phone",
    "address_line1",
    "address_line2",
    "city",
    "state",
    "zip_code",
    "country",
)


class Donor(ArchivableMixin, BaseModel):
    """A person or organisation that gives money."""

    __tablename__ = "donors"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(50), nullable=True)
    address_line1 = db.Column(db.String(255), nullable=True)
    address_line2 = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(100), nullable=True)
    zip_code = db.Column(db.String(20), nullable=True)
    country = db.Column(db.String(100), nullable=True, default="USA")
    last_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    superseded_by_id = db.Column(db.Integer, db.ForeignKey("donors.id"), nullable=True, index=True)

    superseded_by = db.relationship("Donor", remote_side=[id], foreign_keys=[superseded_by_id])
    donations = db.relationship("Donation", back_populates="donor", passive_deletes="all")
    sponsorships = db.relationship("Sponsorship", back_populates="donor", passive_deletes="all")

    __table_args__ = (
        Index(
            "uq_donors_email_active",
            func.lower(email),
            unique=True,
            sqlite_where=text("discarded_at IS NULL"),
            postgresql_where=text("discarded_at IS NULL"),
        ),
    )

    def __init__(self, **kwargs):
        if not (kwargs.get("name") or "").strip():
            kwargs["name"] = ANONYMOUS_NAME
        if not (kwargs.get("email") or "").strip():
            kwargs["email"] = f"{name_local_part(kwargs['name'])}@{placeholder_email_domain()}"
        super().__init__(**kwargs)

    def __repr__(self):
        return f"<Donor {self.id} {self.email}>"

    @validates("email")
    def validate_email(self, key, value):
        """Validate email format"""
        value = (value or "").strip()
        if not value:
            raise ValueError("Donor email is required")
        from email_validator import EmailNotValidError, validate_email

        check_deliverability = False
        if has_app_context():
            check_deliverability = current_app.config.get("EMAIL_VALIDATION_CHECK_DELIVERABILITY", False)
        try:
            validate_email(value, check_deliverability=check_deliverability)
        except EmailNotValidError:
            raise ValueError(f"Invalid email format: {value}")
        return value

    @validates("name")
    def validate_name(self, key, value):
        value = (value or "").strip()
        return value or ANONYMOUS_NAME

    @property
    def is_superseded(self) -> bool:
        return self.superseded_by_id is not None

    def can_be_deleted(self) -> bool:
        return not self.donations and not self.sponsorships

    def archive(self, *, at=None, force: bool = False) -> None:
        if not force and any(sponsorship.is_active for sponsorship in self.sponsorships):
            raise ValueError("Cannot archive donor with active sponsorships")
        super().archive(at=at)

    @staticmethod
    def find_by_email(email, session=None):
        """Case-insensitive lookup among non-archived donors."""
        if not email:
            return None
        query = session.query(Donor) if session is not None else Donor.query
        return (
            query.filter(Donor.discarded_at.is_(None))
            .filter(func.lower(Donor.email) == email.strip().lower())
            .first()
        )


def placeholder_email_domain() -> str:
    if has_app_context():
        return current_app.config.get("IMPORTER_PLACEHOLDER_EMAIL_DOMAIN", "mailinator.com")
    return "mailinator.com"


_LOCAL_PART_INVALID = re.compile(r"[^\w.!#$%&'*+/=?^`{|}~-]")


def name_local_part(name: str | None) -> str:
    """Whitespace-stripped name usable as an email local part."""
    token = "".join((name or "").split())
    token = _LOCAL_PART_INVALID.sub("", token)
    token = re.sub(r"\.{2,}", ".", token).strip(".")
    return token or ANONYMOUS_NAME
