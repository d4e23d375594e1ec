"""Importer adapters."""

from .stripe_csv import (
    REQUIRED_HEADERS,
    CSVAdapterError,
    CSVHeaderError,
    CSVStructureError,
    PaymentRow,
    StripeCSVAdapter,
    parse_amount_cents,
    parse_created_at,
)

__all__ = [
    "REQUIRED_HEADERS",
    "CSVAdapterError",
    "CSVHeaderError",
    "CSVStructureError",
    "PaymentRow",
    "StripeCSVAdapter",
    "parse_amount_cents",
    "parse_created_at",
]
