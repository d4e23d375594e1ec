"""
Find-or-create helpers for children, projects and sponsorships.

These are the domain collaborators the reconciliation engine leans on. Every
lookup is by natural key so repeated imports converge on the same rows.
"""

from __future__ import annotations

from flask import current_app, has_app_context

from donation_app.models import Child, Donation, Project, ProjectType, Sponsorship

from .unit_of_work import UnitOfWork

DEFAULT_GENERAL_PROJECT_TITLE = "General Donation"
NAMED_PROJECT_DESCRIPTION = "Auto-created from Stripe import. Original description: {description}"


def general_project_title() -> str:
    if has_app_context():
        return current_app.config.get("IMPORTER_GENERAL_PROJECT_TITLE", DEFAULT_GENERAL_PROJECT_TITLE)
    return DEFAULT_GENERAL_PROJECT_TITLE


class DomainCatalog:
    def __init__(self, uow: UnitOfWork) -> None:
        self.uow = uow

    def find_or_create_child(self, name: str) -> Child:
        child = self.uow.query(Child).filter(Child.name == name).order_by(Child.id.asc()).first()
        if child is None:
            child = self.uow.add(Child(name=name))
            self.uow.flush()
        return child

    def _find_or_create_project(self, title: str, **defaults) -> Project:
        project = self.uow.query(Project).filter(Project.title == title).order_by(Project.id.asc()).first()
        if project is None:
            project = self.uow.add(Project(title=title, **defaults))
            self.uow.flush()
        return project

    def general_donation_project(self) -> Project:
        """The singleton system bucket for uncategorised donations."""
        return self._find_or_create_project(
            general_project_title(),
            project_type=ProjectType.GENERAL,
            system=True,
        )

    def campaign_project(self, campaign_id: str) -> Project:
        return self._find_or_create_project(
            f"Campaign {campaign_id}",
            project_type=ProjectType.CAMPAIGN,
            system=False,
        )

    def named_project(self, title: str, description: str) -> Project:
        """Ad-hoc project flagged for manual review (non-system)."""
        return self._find_or_create_project(
            title,
            project_type=ProjectType.GENERAL,
            system=False,
            description=NAMED_PROJECT_DESCRIPTION.format(description=description),
        )

    def attach_sponsorship(self, donation: Donation) -> Sponsorship:
        """
        Link a child donation to the donor's active sponsorship of that child.

        A sponsorship is created (with its project) when the donor has none; the
        donation's ``project_id`` follows the sponsorship's project.
        """
        if donation.child_id is None:
            raise ValueError("Donation has no child to sponsor")

        sponsorship = (
            self.uow.query(Sponsorship)
            .filter(
                Sponsorship.donor_id == donation.donor_id,
                Sponsorship.child_id == donation.child_id,
                Sponsorship.end_date.is_(None),
            )
            .order_by(Sponsorship.id.asc())
            .first()
        )
        if sponsorship is None:
            sponsorship = Sponsorship(
                donor_id=donation.donor_id,
                child_id=donation.child_id,
                monthly_amount_cents=donation.amount_cents,
                start_date=donation.date,
            )
            sponsorship.child = self.uow.get(Child, donation.child_id)
            self.uow.add(sponsorship)
            sponsorship.ensure_project()
            self.uow.flush()

        donation.sponsorship_id = sponsorship.id
        donation.project_id = sponsorship.project_id
        self.uow.flush()
        return sponsorship

    def child_by_id(self, child_id: str | int | None) -> Child | None:
        try:
            return self.uow.get(Child, int(child_id)) if child_id is not None else None
        except (TypeError, ValueError):
            return None

    def project_by_id(self, project_id: str | int | None) -> Project | None:
        try:
            return self.uow.get(Project, int(project_id)) if project_id is not None else None
        except (TypeError, ValueError):
            return None
