"""CSV adapter for payment-processor (Stripe) transaction exports.

Validates the header row, parses every record up front and exposes typed
accessors over each row. Structural CSV problems (malformed quoting and the
like) surface as ``CSVStructureError`` before any row is handed to the
pipeline.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import IO, Any, Mapping, Sequence

from donation_app.importer.exceptions import ImporterError, InvalidAmountError, InvalidDateError, RowValidationError

COL_AMOUNT = "Amount"
COL_NAME = "Billing Details Name"
COL_EMAIL = "Cust Email"
COL_BILLING_EMAIL = "Billing Details Email"
COL_CREATED = "Created Formatted"
COL_DESCRIPTION = "Description"
COL_TRANSACTION_ID = "Transaction ID"
COL_CUSTOMER_ID = "Cust ID"
COL_SUBSCRIPTION_ID = "Cust Subscription Data ID"
COL_STATUS = "Status"
COL_NICKNAME = "Cust Subscription Data Plan Nickname"
COL_PHONE = "Cust Phone"
COL_ADDRESS_LINE1 = "Billing Details Address Line 1"
COL_ADDRESS_LINE2 = "Billing Details Address Line 2"
COL_CITY = "Billing Details Address City"
COL_STATE = "Billing Detail Address State"
COL_ZIP = "Billing Details Address Postal Code"
COL_COUNTRY = "Billing Details Address Country"

REQUIRED_HEADERS: tuple[str, ...] = (
    COL_AMOUNT,
    COL_NAME,
    COL_EMAIL,
    COL_CREATED,
    COL_DESCRIPTION,
    COL_TRANSACTION_ID,
    COL_CUSTOMER_ID,
    COL_SUBSCRIPTION_ID,
    COL_STATUS,
    COL_NICKNAME,
)

SUCCEEDED_STATUS = "succeeded"

_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%m/%d/%y %H:%M",
    "%m/%d/%y",
)

_CENTS = Decimal("100")


class CSVAdapterError(ImporterError):
    """Base exception for CSV adapter failures."""


class CSVHeaderError(CSVAdapterError):
    """Raised when the CSV header row does not carry the required columns."""

    def __init__(self, *, missing: Sequence[str]) -> None:
        super().__init__(f"Missing required columns: {', '.join(missing)}.")
        self.missing = tuple(missing)


class CSVStructureError(CSVAdapterError):
    """Raised when the file cannot be tokenised as CSV."""

    def __init__(self, line_number: int | None, message: str) -> None:
        prefix = f"line {line_number}: " if line_number else ""
        super().__init__(f"{prefix}{message}")
        self.line_number = line_number


def _clean(value: object | None) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


def _sanitize_header(header: str | None) -> str:
    token = (header or "").strip()
    return token.lstrip("\ufeff")


def parse_amount_cents(raw_value: object | None) -> int:
    """
    Convert a dollar amount string into integer cents.

    Uses decimal arithmetic so ``"0.10"`` is always exactly 10 cents. Sub-cent
    digits are truncated.
    """
    token = _clean(raw_value)
    if token is None:
        raise InvalidAmountError(raw_value)
    token = token.replace("$", "").replace(",", "")
    try:
        dollars = Decimal(token)
    except InvalidOperation:
        raise InvalidAmountError(raw_value) from None
    if not dollars.is_finite():
        raise InvalidAmountError(raw_value)
    return int((dollars * _CENTS).quantize(Decimal("1"), rounding=ROUND_DOWN))


def parse_created_at(raw_value: object | None) -> datetime:
    """Parse the processor's formatted creation timestamp as UTC."""
    token = _clean(raw_value)
    if token is None:
        raise InvalidDateError(raw_value)
    for fmt in _DATE_FORMATS:
        try:
            parsed = datetime.strptime(token, fmt)
        except ValueError:
            continue
        return parsed.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(token)
    except ValueError:
        raise InvalidDateError(raw_value) from None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class PaymentRow:
    """Read-only view over one processor row keyed by export column name."""

    data: Mapping[str, Any]
    row_number: int | None = None

    def get(self, column: str) -> str | None:
        return _clean(self.data.get(column))

    @property
    def status(self) -> str:
        return (self.get(COL_STATUS) or "").lower()

    @property
    def is_succeeded(self) -> bool:
        return self.status == SUCCEEDED_STATUS

    @property
    def transaction_id(self) -> str:
        value = self.get(COL_TRANSACTION_ID)
        if value is None:
            raise RowValidationError("Missing Transaction ID")
        return value

    @property
    def customer_id(self) -> str | None:
        return self.get(COL_CUSTOMER_ID)

    @property
    def subscription_id(self) -> str | None:
        return self.get(COL_SUBSCRIPTION_ID)

    @property
    def amount_cents(self) -> int:
        return parse_amount_cents(self.data.get(COL_AMOUNT))

    @property
    def created_at(self) -> datetime:
        return parse_created_at(self.data.get(COL_CREATED))

    @property
    def description_text(self) -> str:
        """Subscription nickname when present, otherwise the free-text description."""
        return self.get(COL_NICKNAME) or self.get(COL_DESCRIPTION) or ""

    @property
    def donor_email(self) -> str | None:
        return self.get(COL_EMAIL) or self.get(COL_BILLING_EMAIL)

    def donor_attributes(self) -> dict[str, str | None]:
        return {
            "name": self.get(COL_NAME),
            "email": self.donor_email,
            "phone": self.get(COL_PHONE),
            "address_line1": self.get(COL_ADDRESS_LINE1),
            "address_line2": self.get(COL_ADDRESS_LINE2),
            "city": self.get(COL_CITY),
            "state": self.get(COL_STATE),
            "zip_code": self.get(COL_ZIP),
            "country": self.get(COL_COUNTRY),
        }

    def metadata_value(self, key: str) -> str | None:
        """Metadata from a nested ``metadata`` mapping or a ``"<key> (metadata)"`` column."""
        metadata = self.data.get("metadata")
        if isinstance(metadata, Mapping):
            value = _clean(metadata.get(key))
            if value is not None:
                return value
        return self.get(f"{key} (metadata)")

    def sanitized(self) -> dict[str, str | None]:
        """Key fields only, for operator-facing error reports."""
        return {
            "amount": self.data.get(COL_AMOUNT),
            "name": self.data.get(COL_NAME),
            "email": self.data.get(COL_EMAIL),
            "description": self.data.get(COL_DESCRIPTION),
            "nickname": self.data.get(COL_NICKNAME),
            "date": self.data.get(COL_CREATED),
            "status": self.data.get(COL_STATUS),
        }


@dataclass
class StripeCSVStatistics:
    rows_read: int = 0
    rows_skipped_blank: int = 0


@dataclass
class StripeCSVAdapter:
    """CSV reader that enforces the payment export contract."""

    file_obj: IO[str]
    skip_blank_rows: bool = True
    statistics: StripeCSVStatistics = field(default_factory=StripeCSVStatistics)
    headers: tuple[str, ...] = ()

    def read_rows(self) -> list[PaymentRow]:
        """
        Parse the whole file.

        Raises ``CSVHeaderError`` or ``CSVStructureError``; nothing is returned
        unless every record tokenised cleanly.
        """
        self.file_obj.seek(0)
        reader = csv.DictReader(self.file_obj, strict=True)
        try:
            raw_headers = reader.fieldnames
        except csv.Error as exc:
            raise CSVStructureError(reader.line_num, str(exc)) from exc
        if not raw_headers:
            raise CSVHeaderError(missing=REQUIRED_HEADERS)

        sanitized = [_sanitize_header(header) for header in raw_headers]
        missing = [header for header in REQUIRED_HEADERS if header not in sanitized]
        if missing:
            raise CSVHeaderError(missing=missing)
        reader.fieldnames = sanitized
        self.headers = tuple(sanitized)

        rows: list[PaymentRow] = []
        try:
            for row_number, raw_row in enumerate(reader, start=2):
                row_data = {key: value for key, value in raw_row.items() if key is not None}
                if self.skip_blank_rows and _row_is_blank(row_data):
                    self.statistics.rows_skipped_blank += 1
                    continue
                rows.append(PaymentRow(data=row_data, row_number=row_number))
                self.statistics.rows_read += 1
        except csv.Error as exc:
            raise CSVStructureError(reader.line_num, str(exc)) from exc
        return rows


def _row_is_blank(row: Mapping[str, object | None]) -> bool:
    return all((value is None or (isinstance(value, str) and value.strip() == "")) for value in row.values())
