# donation_app/models/sponsorship.py
"""
Recurring pledge by a donor toward a specific child.

Every sponsorship is backed by a sponsorship-type project. When none is given
the child's existing sponsorship project is reused, otherwise a new
"Sponsor <child>" project is created before insert.
"""

from sqlalchemy import Index, event
from sqlalchemy.orm import Session, object_session, validates

from .base import BaseModel, db
from .child import Child
from .project import Project, ProjectType


class Sponsorship(BaseModel):
    __tablename__ = "sponsorships"

    id = db.Column(db.Integer, primary_key=True)
    donor_id = db.Column(db.Integer, db.ForeignKey("donors.id"), nullable=False, index=True)
    child_id = db.Column(db.Integer, db.ForeignKey("children.id"), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    monthly_amount_cents = db.Column(db.Integer, nullable=False)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True, index=True)

    donor = db.relationship("Donor", back_populates="sponsorships")
    child = db.relationship("Child", back_populates="sponsorships")
    project = db.relationship("Project", back_populates="sponsorships")
    donations = db.relationship("Donation", back_populates="sponsorship")

    __table_args__ = (Index("idx_sponsorship_uniqueness", "donor_id", "child_id", "monthly_amount_cents", "end_date"),)

    def __repr__(self):
        return f"<Sponsorship donor={self.donor_id} child={self.child_id}>"

    @property
    def is_active(self) -> bool:
        return self.end_date is None

    @validates("monthly_amount_cents")
    def validate_monthly_amount(self, key, value):
        if value is None or int(value) <= 0:
            raise ValueError("Monthly amount must be greater than 0")
        return int(value)

    def ensure_project(self) -> Project:
        """Attach the child's sponsorship project, creating one when absent."""
        if self.project is not None:
            return self.project
        session = object_session(self) or db.session
        if self.project_id is not None:
            self.project = session.get(Project, self.project_id)
            return self.project
        if self.child is None and self.child_id is not None:
            self.child = session.get(Child, self.child_id)
        if self.child is None:
            raise ValueError("Sponsorship requires a child")

        with session.no_autoflush:
            existing = None
            if self.child.id is not None:
                existing = (
                    session.query(Sponsorship)
                    .filter(
                        Sponsorship.child_id == self.child.id,
                        Sponsorship.project_id.isnot(None),
                    )
                    .order_by(Sponsorship.id.asc())
                    .first()
                )
            if existing is not None and existing is not self:
                self.project = existing.project
                return self.project

        self.project = Project(
            title=f"Sponsor {self.child.name}",
            project_type=ProjectType.SPONSORSHIP,
            system=False,
        )
        session.add(self.project)
        return self.project


@event.listens_for(Session, "before_flush")
def _create_missing_sponsorship_projects(session, flush_context, instances):
    for obj in list(session.new):
        if isinstance(obj, Sponsorship) and obj.project is None and obj.project_id is None:
            obj.ensure_project()
