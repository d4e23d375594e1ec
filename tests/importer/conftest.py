from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Mapping

import pytest

from donation_app.importer.adapters.stripe_csv import REQUIRED_HEADERS, PaymentRow

HEADERS = REQUIRED_HEADERS + (
    "Billing Details Email",
    "Cust Phone",
    "Billing Details Address Line 1",
    "Billing Details Address City",
    "child_id (metadata)",
    "project_id (metadata)",
)


def _row_data(overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    data = {header: "" for header in HEADERS}
    data.update(
        {
            "Amount": "50.00",
            "Billing Details Name": "Jane Donor",
            "Cust Email": "jane@example.org",
            "Created Formatted": "2024-03-01 10:00:00",
            "Transaction ID": "ch_001",
            "Status": "succeeded",
        }
    )
    data.update(overrides or {})
    return data


@pytest.fixture
def row_data():
    """Build a succeeded general-donation row dict, applying column overrides."""
    return _row_data


@pytest.fixture
def make_row():
    def _factory(overrides: Mapping[str, str] | None = None, *, row_number: int = 2) -> PaymentRow:
        return PaymentRow(data=_row_data(overrides), row_number=row_number)

    return _factory


@pytest.fixture
def render_csv():
    def _render(rows: list[Mapping[str, str]], headers=HEADERS) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=list(headers), extrasaction="ignore", lineterminator="\n")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        return buffer.getvalue()

    return _render


@pytest.fixture
def write_payment_csv(tmp_path, render_csv):
    def _writer(rows: list[Mapping[str, str]], *, name: str = "payments.csv") -> Path:
        path = tmp_path / name
        path.write_text(render_csv(rows), encoding="utf-8")
        return path

    return _writer
