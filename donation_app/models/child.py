# donation_app/models/child.py

from .base import ArchivableMixin, BaseModel, db


class Child(ArchivableMixin, BaseModel):
    """A named sponsorship target."""

    __tablename__ = "children"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    gender = db.Column(db.String(20), nullable=True)

    sponsorships = db.relationship("Sponsorship", back_populates="child", passive_deletes="all")

    def __repr__(self):
        return f"<Child {self.name}>"

    def can_be_deleted(self) -> bool:
        return not self.sponsorships
