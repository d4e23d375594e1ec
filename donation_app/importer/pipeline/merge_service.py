"""
Administrative merge of duplicate donor identities.

Merging N source donors creates a brand-new donor from per-field selections,
archives the sources with ``superseded_by_id`` pointing at the new donor, and
moves every donation and sponsorship across. Everything happens in one
transaction; argument errors are raised before anything is written.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from flask import current_app
from sqlalchemy import update
from sqlalchemy.orm import Session

from donation_app.importer.exceptions import DonorMergeError, DonorNotFoundError
from donation_app.importer.metrics import record_donor_merge
from donation_app.models import Donation, Donor, Sponsorship, as_utc, db
from donation_app.models.importer.schema import DonorMergeLog

REQUIRED_FIELDS = ("name", "email")
MERGEABLE_FIELDS = (
    "name",
    "email",
    "phone",
    "address_line1",
    "address_line2",
    "city",
    "state",
    "zip_code",
    "country",
)
PLACEHOLDER_EMAIL_TEMPLATE = "merged_{donor_id}_{timestamp}@discarded.local"


@dataclass
class MergeResult:
    merged_donor: Donor
    donations_reassigned: int
    sponsorships_reassigned: int
    merge_log: DonorMergeLog | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "merged_donor_id": self.merged_donor.id,
            "donations_reassigned": self.donations_reassigned,
            "sponsorships_reassigned": self.sponsorships_reassigned,
        }


def _unique_ids(donor_ids: Iterable[Any]) -> list[int]:
    seen: list[int] = []
    for raw in donor_ids:
        try:
            donor_id = int(raw)
        except (TypeError, ValueError):
            raise DonorMergeError(f"Invalid donor ID: {raw!r}") from None
        if donor_id not in seen:
            seen.append(donor_id)
    return seen


def validate_merge_arguments(donor_ids: Iterable[Any], field_selections: Mapping[str, Any]) -> tuple[list[int], dict[str, int]]:
    """
    Normalise and validate merge arguments without touching the database.

    Returns ``(donor_ids, field_selections)`` with integer ids. Raises
    ``DonorMergeError`` describing the first problem found.
    """
    ids = _unique_ids(donor_ids or ())
    if len(ids) < 2:
        raise DonorMergeError("Must provide at least 2 donors")

    selections = dict(field_selections or {})
    missing = [name for name in REQUIRED_FIELDS if name not in selections]
    if missing:
        raise DonorMergeError(f"Missing field selections: {', '.join(missing)}")

    unknown = [name for name in selections if name not in MERGEABLE_FIELDS]
    if unknown:
        raise DonorMergeError(f"Unknown merge fields: {', '.join(sorted(unknown))}")

    normalised: dict[str, int] = {}
    for field_name, selected in selections.items():
        try:
            selected_id = int(selected)
        except (TypeError, ValueError):
            raise DonorMergeError(f"Invalid donor ID in field selections: {selected!r}") from None
        if selected_id not in ids:
            raise DonorMergeError(f"Invalid donor ID in field selections: {selected}")
        normalised[field_name] = selected_id
    return ids, normalised


def _snapshot(session: Session, donor: Donor) -> dict[str, Any]:
    payload: dict[str, Any] = {field_name: getattr(donor, field_name) for field_name in MERGEABLE_FIELDS}
    last_updated = as_utc(donor.last_updated_at)
    payload["last_updated_at"] = last_updated.isoformat() if last_updated else None
    # Read by DonorResolver to flag customer-id redirects after donations move.
    customer_ids = (
        session.query(Donation.external_customer_id)
        .filter(Donation.donor_id == donor.id, Donation.external_customer_id.isnot(None))
        .distinct()
    )
    payload["external_customer_ids"] = sorted(customer_id for (customer_id,) in customer_ids)
    return payload


class DonorMergeService:
    """Merge duplicate donors into a single new identity."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    def merge(self, donor_ids: Iterable[Any], field_selections: Mapping[str, Any]) -> MergeResult:
        """
        Merge ``donor_ids`` into a new donor built from ``field_selections``.

        Args:
            donor_ids: Two or more donor ids.
            field_selections: Mapping of donor field name to the donor id whose
                value the merged donor takes. ``name`` and ``email`` are required.

        Raises:
            DonorMergeError: Invalid arguments, or a source donor was already merged.
            DonorNotFoundError: One or more donors do not exist.
        """
        ids, selections = validate_merge_arguments(donor_ids, field_selections)
        donors = self._load_donors(ids)

        try:
            result = self._merge(ids, donors, selections)
            self.session.commit()
        except Exception:
            self.session.rollback()
            record_donor_merge("failure")
            raise

        record_donor_merge("success")
        current_app.logger.info(
            "Merged donors %s into %s",
            ids,
            result.merged_donor.id,
            extra={
                "merge_source_donor_ids": ids,
                "merge_target_donor_id": result.merged_donor.id,
                "merge_donations_reassigned": result.donations_reassigned,
                "merge_sponsorships_reassigned": result.sponsorships_reassigned,
            },
        )
        return result

    def _load_donors(self, ids: list[int]) -> dict[int, Donor]:
        donors = {donor.id: donor for donor in self.session.query(Donor).filter(Donor.id.in_(ids))}
        missing = [donor_id for donor_id in ids if donor_id not in donors]
        if missing:
            raise DonorNotFoundError(missing)
        superseded = [donor_id for donor_id in ids if donors[donor_id].is_superseded]
        if superseded:
            raise DonorMergeError(f"Donors already merged: {', '.join(str(donor_id) for donor_id in superseded)}")
        return donors

    def _merge(self, ids: list[int], donors: dict[int, Donor], selections: dict[str, int]) -> MergeResult:
        merged_attributes = {field_name: getattr(donors[source_id], field_name) for field_name, source_id in selections.items()}
        snapshot_before = {str(donor_id): _snapshot(self.session, donors[donor_id]) for donor_id in ids}
        timestamps = [as_utc(donor.last_updated_at) for donor in donors.values() if donor.last_updated_at]
        now = datetime.now(timezone.utc)

        self._release_emails(ids, now)
        for donor_id in ids:
            donors[donor_id].archive(at=now, force=True)
        self.session.flush()

        merged_donor = Donor(last_updated_at=max(timestamps) if timestamps else None, **merged_attributes)
        self.session.add(merged_donor)
        self.session.flush()

        for donor_id in ids:
            donors[donor_id].superseded_by_id = merged_donor.id

        donations_reassigned = self.session.execute(
            update(Donation).where(Donation.donor_id.in_(ids)).values(donor_id=merged_donor.id)
        ).rowcount
        sponsorships_reassigned = self.session.execute(
            update(Sponsorship).where(Sponsorship.donor_id.in_(ids)).values(donor_id=merged_donor.id)
        ).rowcount

        merge_log = DonorMergeLog(
            merged_donor_id=merged_donor.id,
            source_donor_ids=ids,
            field_selections=selections,
            donations_reassigned=donations_reassigned,
            sponsorships_reassigned=sponsorships_reassigned,
            snapshot_before=snapshot_before,
        )
        self.session.add(merge_log)
        self.session.flush()
        return MergeResult(
            merged_donor=merged_donor,
            donations_reassigned=donations_reassigned,
            sponsorships_reassigned=sponsorships_reassigned,
            merge_log=merge_log,
        )

    def _release_emails(self, ids: list[int], now: datetime) -> None:
        # Bulk UPDATE bypasses the email validator; the placeholder domain is not deliverable.
        timestamp = int(now.timestamp())
        for donor_id in ids:
            self.session.execute(
                update(Donor)
                .where(Donor.id == donor_id)
                .values(email=PLACEHOLDER_EMAIL_TEMPLATE.format(donor_id=donor_id, timestamp=timestamp))
            )
