# donation_app/models/project.py

import enum

from sqlalchemy import Enum

from .base import ArchivableMixin, BaseModel, db


class ProjectType(str, enum.Enum):
    GENERAL = "general"
    CAMPAIGN = "campaign"
    SPONSORSHIP = "sponsorship"


class Project(ArchivableMixin, BaseModel):
    """
    Categorised donation bucket.

    System projects (the "General Donation" bucket) are protected and cannot be
    archived.
    """

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    project_type = db.Column(
        Enum(ProjectType, name="project_type_enum"),
        nullable=False,
        default=ProjectType.GENERAL,
        index=True,
    )
    system = db.Column(db.Boolean, nullable=False, default=False, index=True)

    donations = db.relationship("Donation", back_populates="project")
    sponsorships = db.relationship("Sponsorship", back_populates="project")

    def __repr__(self):
        return f"<Project {self.title} ({self.project_type.value})>"

    def archive(self, *, at=None) -> None:
        if self.system:
            raise ValueError("Cannot delete system projects")
        super().archive(at=at)
