"""
Per-row transaction scope for the importer pipeline.

Every write made while reconciling one payment row (invoice, donor, child,
project, sponsorship, donation) goes through the same ``UnitOfWork`` so the
whole row commits or rolls back together.
"""

from __future__ import annotations

from typing import Any, TypeVar

from sqlalchemy.orm import Session

from donation_app.models import db

T = TypeVar("T")


class UnitOfWork:
    """
    Transaction scope wrapping a SQLAlchemy session.

    Commits on clean exit and rolls back when the block raises. With
    ``dry_run=True`` the block is always rolled back.
    """

    def __init__(self, session: Session | None = None, *, dry_run: bool = False) -> None:
        self.session = session or db.session
        self.dry_run = dry_run
        self._active = False

    def __enter__(self) -> "UnitOfWork":
        if self._active:
            raise RuntimeError("UnitOfWork is not re-entrant")
        self._active = True
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._active = False
        if exc_type is not None or self.dry_run:
            self.session.rollback()
        else:
            try:
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        return False

    def add(self, instance: T) -> T:
        self.session.add(instance)
        return instance

    def flush(self) -> None:
        self.session.flush()

    def get(self, model: type[T], ident: Any) -> T | None:
        return self.session.get(model, ident)

    def query(self, *entities):
        return self.session.query(*entities)
