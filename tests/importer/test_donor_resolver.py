from datetime import datetime, timezone

import pytest

from donation_app.importer.exceptions import SupersededCycleError
from donation_app.importer.pipeline import DonorResolver, UnitOfWork, follow_superseded_chain, synthesize_email
from donation_app.models import Donor, db

OLD = datetime(2023, 1, 1, tzinfo=timezone.utc)
NEW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _resolve(attributes, as_of=NEW, customer_id=None):
    with UnitOfWork() as uow:
        resolution = DonorResolver(uow).resolve(attributes, as_of, customer_id)
    return resolution


@pytest.fixture
def existing_donor(donor_factory):
    return donor_factory(
        name="Jane Donor",
        email="jane@example.org",
        phone="555-0100",
        city="Portland",
        last_updated_at=OLD,
    )


def test_creates_donor_when_email_unknown():
    resolution = _resolve({"name": "New Person", "email": "new@example.org"})

    donor = db.session.get(Donor, resolution.donor.id)
    assert resolution.created is True
    assert resolution.redirected is False
    assert donor.email == "new@example.org"
    assert donor.last_updated_at is not None


def test_lookup_is_case_insensitive(existing_donor):
    resolution = _resolve({"email": "JANE@Example.org"})

    assert resolution.created is False
    assert resolution.donor.id == existing_donor.id
    assert Donor.query.count() == 1


def test_blank_incoming_fields_never_overwrite(existing_donor):
    resolution = _resolve({"name": "Jane Q. Donor", "email": "jane@example.org", "phone": "", "city": None})

    donor = db.session.get(Donor, existing_donor.id)
    assert resolution.updated is True
    assert donor.name == "Jane Q. Donor"
    assert donor.phone == "555-0100"
    assert donor.city == "Portland"


def test_older_rows_do_not_update(existing_donor):
    resolution = _resolve({"name": "Stale Name", "email": "jane@example.org"}, as_of=datetime(2022, 1, 1, tzinfo=timezone.utc))

    donor = db.session.get(Donor, existing_donor.id)
    assert resolution.updated is False
    assert donor.name == "Jane Donor"


def test_equal_timestamp_updates(existing_donor):
    resolution = _resolve({"name": "Same Time", "email": "jane@example.org"}, as_of=OLD)

    assert resolution.updated is True
    assert db.session.get(Donor, existing_donor.id).name == "Same Time"


def test_missing_last_updated_at_is_treated_as_very_old(donor_factory):
    donor = donor_factory(email="legacy@example.org", name="Legacy")

    _resolve({"name": "Refreshed", "email": "legacy@example.org"}, as_of=OLD)

    assert db.session.get(Donor, donor.id).name == "Refreshed"


def test_synthesized_email_priority():
    assert synthesize_email({"phone": "(555) 010-0199", "address_line1": "1 Main St", "name": "Jane"}) == (
        "5550100199@mailinator.com"
    )
    assert synthesize_email({"address_line1": "1 Main St", "city": "Portland", "name": "Jane"}) == (
        "1-main-st-portland@mailinator.com"
    )
    assert synthesize_email({"name": "Jane  Donor"}) == "JaneDonor@mailinator.com"
    assert synthesize_email({}) == "Anonymous@mailinator.com"


def test_same_synthesized_email_resolves_to_one_donor():
    first = _resolve({"name": "Walk In", "phone": "555 0101"})
    second = _resolve({"name": "Walk In", "phone": "5550101"})

    assert first.created is True
    assert second.created is False
    assert second.donor.id == first.donor.id
    assert Donor.query.count() == 1


def test_customer_id_follows_superseded_chain(donor_factory, donation_factory):
    original = donor_factory(name="Original", email="orig@example.org")
    donation_factory(original, external_customer_id="cus_123")
    middle = donor_factory(name="Middle", email="middle@example.org")
    current = donor_factory(name="Current", email="current@example.org")
    original.superseded_by_id = middle.id
    middle.superseded_by_id = current.id
    db.session.commit()

    resolution = _resolve({"name": "Ignored", "email": "other@example.org"}, customer_id="cus_123")

    assert resolution.donor.id == current.id
    assert resolution.redirected is True
    assert resolution.created is False
    # The customer-id path never touches donor fields.
    assert db.session.get(Donor, current.id).name == "Current"
    assert Donor.query.filter_by(email="other@example.org").count() == 0


def test_unknown_customer_id_falls_back_to_email(existing_donor):
    resolution = _resolve({"email": "jane@example.org"}, customer_id="cus_unknown")

    assert resolution.donor.id == existing_donor.id


def test_superseded_cycle_raises_without_repair(donor_factory):
    first = donor_factory(name="A", email="a@example.org")
    second = donor_factory(name="B", email="b@example.org")
    first.superseded_by_id = second.id
    second.superseded_by_id = first.id
    db.session.commit()

    with pytest.raises(SupersededCycleError) as excinfo:
        with UnitOfWork() as uow:
            follow_superseded_chain(uow, first)

    assert excinfo.value.chain[0] == first.id
    assert db.session.get(Donor, first.id).superseded_by_id == second.id
