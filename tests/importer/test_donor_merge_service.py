from datetime import datetime, timezone

import pytest

from donation_app.importer.exceptions import DonorMergeError, DonorNotFoundError
from donation_app.importer.pipeline import DonorMergeService, DonorResolver, UnitOfWork, validate_merge_arguments
from donation_app.models import Donation, Donor, DonorMergeLog, Sponsorship, as_utc, db


@pytest.fixture
def duplicates(donor_factory, child_factory, donation_factory, sponsorship_factory):
    first = donor_factory(
        name="Jane Donor",
        email="jane@example.org",
        phone="555-0100",
        last_updated_at=datetime(2023, 1, 1, tzinfo=timezone.utc),
    )
    second = donor_factory(
        name="Jane Q. Donor",
        email="jane.q@example.org",
        city="Portland",
        last_updated_at=datetime(2024, 2, 1, tzinfo=timezone.utc),
    )
    donation_factory(first, external_customer_id="cus_first")
    donation_factory(first)
    donation_factory(second, external_customer_id="cus_second")
    sponsorship_factory(second, child_factory(name="Wan"))
    return first, second


def test_merge_creates_new_donor_from_selected_fields(duplicates):
    first, second = duplicates

    result = DonorMergeService().merge(
        [first.id, second.id],
        {"name": second.id, "email": first.id, "phone": first.id, "city": second.id},
    )

    merged = db.session.get(Donor, result.merged_donor.id)
    assert merged.id not in (first.id, second.id)
    assert merged.name == "Jane Q. Donor"
    assert merged.email == "jane@example.org"
    assert merged.phone == "555-0100"
    assert merged.city == "Portland"
    assert as_utc(merged.last_updated_at) == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert merged.discarded_at is None


def test_merge_reassigns_donations_and_sponsorships(duplicates):
    first, second = duplicates

    result = DonorMergeService().merge([first.id, second.id], {"name": first.id, "email": first.id})

    assert result.donations_reassigned == 3
    assert result.sponsorships_reassigned == 1
    merged_id = result.merged_donor.id
    assert Donation.query.filter(Donation.donor_id != merged_id).count() == 0
    assert Sponsorship.query.one().donor_id == merged_id


def test_sources_are_archived_superseded_and_release_their_emails(duplicates):
    first, second = duplicates

    result = DonorMergeService().merge([first.id, second.id], {"name": first.id, "email": first.id})

    for source_id in (first.id, second.id):
        source = db.session.get(Donor, source_id)
        assert source.discarded_at is not None
        assert source.superseded_by_id == result.merged_donor.id
        assert source.email.startswith(f"merged_{source_id}_")
        assert source.email.endswith("@discarded.local")
    assert Donor.find_by_email("jane@example.org").id == result.merged_donor.id


def test_merge_writes_audit_log(duplicates):
    first, second = duplicates

    result = DonorMergeService().merge([first.id, second.id], {"name": first.id, "email": second.id})

    log = DonorMergeLog.query.one()
    assert log.merged_donor_id == result.merged_donor.id
    assert log.source_donor_ids == [first.id, second.id]
    assert log.field_selections == {"name": first.id, "email": second.id}
    assert log.donations_reassigned == 3
    assert log.snapshot_before[str(first.id)]["email"] == "jane@example.org"
    assert log.snapshot_before[str(first.id)]["external_customer_ids"] == ["cus_first"]
    assert log.snapshot_before[str(second.id)]["external_customer_ids"] == ["cus_second"]


def test_source_customer_ids_resolve_to_merged_donor(duplicates):
    first, second = duplicates
    result = DonorMergeService().merge([first.id, second.id], {"name": first.id, "email": first.id})

    with UnitOfWork() as uow:
        resolutions = [
            DonorResolver(uow).resolve(
                {"email": "someone-else@example.org"},
                datetime(2024, 6, 1, tzinfo=timezone.utc),
                customer_id,
            )
            for customer_id in ("cus_first", "cus_second")
        ]

    for resolution in resolutions:
        assert resolution.donor.id == result.merged_donor.id
        assert resolution.redirected is True
        assert resolution.created is False
    assert Donor.query.filter_by(email="someone-else@example.org").count() == 0


def test_merging_a_superseded_donor_is_rejected(duplicates, donor_factory):
    first, second = duplicates
    DonorMergeService().merge([first.id, second.id], {"name": first.id, "email": first.id})
    third = donor_factory(name="Other", email="other@example.org")

    with pytest.raises(DonorMergeError, match="already merged"):
        DonorMergeService().merge([first.id, third.id], {"name": third.id, "email": third.id})


def test_missing_donor_raises_not_found(donor_factory):
    donor = donor_factory()

    with pytest.raises(DonorNotFoundError) as excinfo:
        DonorMergeService().merge([donor.id, 999], {"name": donor.id, "email": donor.id})

    assert excinfo.value.donor_ids == (999,)
    assert db.session.get(Donor, donor.id).discarded_at is None


@pytest.mark.parametrize(
    ("donor_ids", "selections", "message"),
    [
        ([1], {"name": 1, "email": 1}, "at least 2 donors"),
        ([1, 1], {"name": 1, "email": 1}, "at least 2 donors"),
        ([1, 2], {"name": 1}, "Missing field selections: email"),
        ([1, 2], {"name": 1, "email": 2, "favourite_colour": 1}, "Unknown merge fields"),
        ([1, 2], {"name": 1, "email": 3}, "Invalid donor ID in field selections"),
        ([1, 2], {"name": "x", "email": 2}, "Invalid donor ID in field selections"),
        (["a", 2], {"name": 2, "email": 2}, "Invalid donor ID"),
    ],
)
def test_invalid_merge_arguments(donor_ids, selections, message):
    with pytest.raises(DonorMergeError, match=message):
        validate_merge_arguments(donor_ids, selections)


def test_validated_arguments_are_normalised():
    ids, selections = validate_merge_arguments(["3", 4, 3], {"name": "4", "email": 3})

    assert ids == [3, 4]
    assert selections == {"name": 4, "email": 3}
