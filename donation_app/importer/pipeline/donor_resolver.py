"""
Find-or-create donor identities for imported payments.

Resolution order:

1. external customer id -> donor of an earlier donation carrying that id,
   following ``superseded_by`` to the current donor (no timestamp checks);
2. email (synthesised from phone, address or name when blank), matched
   case-insensitively among non-archived donors and updated last-writer-wins
   without letting blank incoming fields erase stored values;
3. otherwise a new donor stamped with the transaction time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping

from flask import current_app, has_app_context

from donation_app.importer.exceptions import SupersededCycleError
from donation_app.models import Donation, Donor, DonorMergeLog, as_utc
from donation_app.models.donor import PRESERVED_FIELDS, name_local_part, placeholder_email_domain

from .unit_of_work import UnitOfWork

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_ADDRESS_FIELDS = ("address_line1", "address_line2", "city", "state", "zip_code")
_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class DonorResolution:
    donor: Donor
    created: bool = False
    redirected: bool = False
    updated: bool = False


def _blank(value: object | None) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _slugify(value: str) -> str:
    return _SLUG_INVALID.sub("-", value.lower()).strip("-")


def synthesize_email(attributes: Mapping[str, object | None]) -> str:
    """
    Deterministic placeholder email for donors without one.

    Priority: phone digits, then slugified address, then the whitespace-stripped
    name.
    """
    domain = placeholder_email_domain()

    phone_digits = re.sub(r"\D", "", str(attributes.get("phone") or ""))
    if phone_digits:
        return f"{phone_digits}@{domain}"

    address_parts = [str(attributes.get(key)).strip() for key in _ADDRESS_FIELDS if not _blank(attributes.get(key))]
    address_slug = _slugify(" ".join(address_parts))
    if address_slug:
        return f"{address_slug}@{domain}"

    return f"{name_local_part(attributes.get('name'))}@{domain}"


def resolve_lookup_email(attributes: Mapping[str, object | None]) -> str:
    email = attributes.get("email")
    if _blank(email):
        return synthesize_email(attributes)
    return str(email).strip()


def follow_superseded_chain(uow: UnitOfWork, donor: Donor) -> tuple[Donor, bool]:
    """
    Walk ``superseded_by`` pointers to the current donor.

    Returns the terminal donor and whether the chain moved. A chain that revisits
    a donor raises ``SupersededCycleError``; the data is left untouched.
    """
    current = donor
    visited = [current.id]
    while current.superseded_by_id is not None:
        if current.superseded_by_id in visited:
            raise SupersededCycleError(visited + [current.superseded_by_id])
        successor = uow.get(Donor, current.superseded_by_id)
        if successor is None:
            break
        visited.append(successor.id)
        current = successor
    return current, current is not donor


class DonorResolver:
    """Resolve payment rows to a single current donor identity."""

    def __init__(self, uow: UnitOfWork) -> None:
        self.uow = uow

    def resolve(
        self,
        attributes: Mapping[str, object | None],
        as_of: datetime,
        external_customer_id: str | None = None,
    ) -> DonorResolution:
        if external_customer_id:
            by_customer = self._resolve_by_customer_id(external_customer_id)
            if by_customer is not None:
                return by_customer
        return self._resolve_by_email(attributes, as_of)

    def _resolve_by_customer_id(self, external_customer_id: str) -> DonorResolution | None:
        donation = (
            self.uow.query(Donation)
            .filter(Donation.external_customer_id == external_customer_id)
            .order_by(Donation.id.asc())
            .first()
        )
        if donation is None:
            return None
        donor = self.uow.get(Donor, donation.donor_id)
        if donor is None:
            return None
        current, redirected = follow_superseded_chain(self.uow, donor)
        redirected = redirected or self._merged_from_customer(current, external_customer_id)
        if redirected and has_app_context():
            current_app.logger.debug(
                "Customer %s redirected from donor %s to %s",
                external_customer_id,
                donor.id,
                current.id,
            )
        return DonorResolution(donor=current, redirected=redirected)

    def _merged_from_customer(self, donor: Donor, external_customer_id: str) -> bool:
        """True when a merge moved this customer's donations onto ``donor``."""
        logs = self.uow.query(DonorMergeLog).filter(DonorMergeLog.merged_donor_id == donor.id)
        return any(
            external_customer_id in (source.get("external_customer_ids") or ())
            for log in logs
            for source in (log.snapshot_before or {}).values()
        )

    def _resolve_by_email(self, attributes: Mapping[str, object | None], as_of: datetime) -> DonorResolution:
        lookup_email = resolve_lookup_email(attributes)
        existing = Donor.find_by_email(lookup_email, session=self.uow.session)

        if existing is None:
            donor = Donor(
                **{key: attributes.get(key) for key in PRESERVED_FIELDS if not _blank(attributes.get(key))},
                email=lookup_email,
                last_updated_at=as_of,
            )
            self.uow.add(donor)
            self.uow.flush()
            return DonorResolution(donor=donor, created=True)

        donor, redirected = follow_superseded_chain(self.uow, existing)
        updated = apply_donor_update(donor, attributes, as_of)
        if updated:
            self.uow.flush()
        return DonorResolution(donor=donor, redirected=redirected, updated=updated)


def apply_donor_update(donor: Donor, attributes: Mapping[str, object | None], as_of: datetime) -> bool:
    """
    Last-writer-wins update that never replaces a stored value with a blank one.

    Skipped entirely when ``as_of`` is older than the donor's ``last_updated_at``.
    """
    last_updated = as_utc(donor.last_updated_at) or EPOCH
    if as_utc(as_of) < last_updated:
        return False

    for field_name in PRESERVED_FIELDS:
        incoming = attributes.get(field_name)
        if _blank(incoming):
            continue
        setattr(donor, field_name, str(incoming).strip())
    donor.last_updated_at = as_of
    return True
