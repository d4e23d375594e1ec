# donation_app/models/base.py
"""
Shared SQLAlchemy handle and declarative base for all models.
"""

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Return ``value`` as an aware UTC datetime (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BaseModel(db.Model):
    """Abstract base providing creation and modification timestamps."""

    __abstract__ = True

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class ArchivableMixin:
    """Soft-delete support: archived rows keep their history and foreign keys."""

    discarded_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    @property
    def is_archived(self) -> bool:
        return self.discarded_at is not None

    def archive(self, *, at=None) -> None:
        if self.discarded_at is None:
            self.discarded_at = at or utcnow()

    def restore(self) -> None:
        self.discarded_at = None

    @classmethod
    def kept(cls):
        return cls.query.filter(cls.discarded_at.is_(None))
