"""
Exception hierarchy for the payment ledger importer.

Row-level errors are caught by the batch importer and reported per row;
structural CSV errors abort the batch; merge argument errors propagate to the
caller.
"""

from __future__ import annotations


class ImporterError(Exception):
    """Base class for importer failures."""


class RowValidationError(ImporterError, ValueError):
    """Raised when a single payment row carries unusable data."""


class InvalidAmountError(RowValidationError):
    def __init__(self, raw_value: object | None) -> None:
        super().__init__(f"Invalid amount: {raw_value!r}")
        self.raw_value = raw_value


class InvalidDateError(RowValidationError):
    def __init__(self, raw_value: object | None) -> None:
        super().__init__(f"Invalid date: {raw_value!r}")
        self.raw_value = raw_value


class SupersededCycleError(ImporterError):
    """Raised when a donor's superseded_by chain loops back on itself."""

    def __init__(self, chain: list[int]) -> None:
        path = " -> ".join(str(donor_id) for donor_id in chain)
        super().__init__(f"Donor merge chain contains a cycle: {path}")
        self.chain = tuple(chain)


class DonorMergeError(ValueError):
    """Raised when a donor merge request is invalid."""


class DonorNotFoundError(LookupError):
    def __init__(self, donor_ids) -> None:
        ids = ", ".join(str(donor_id) for donor_id in donor_ids)
        super().__init__(f"Donor(s) not found: {ids}")
        self.donor_ids = tuple(donor_ids)
