"""Prometheus metrics helpers for the importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_rows_counter = Counter(
    "importer_payment_rows_total",
    "Payment rows processed by the batch importer, by outcome.",
    ["outcome"],
)
_donations_counter = Counter(
    "importer_donations_created_total",
    "Donation records created by the payment importer.",
)
_batch_counter = Counter(
    "importer_payment_batches_total",
    "Payment import batches by terminal status.",
    ["status"],
)
_batch_duration = Histogram(
    "importer_payment_batch_duration_seconds",
    "Duration of payment batch imports in seconds.",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)
_merge_counter = Counter(
    "importer_donor_merges_total",
    "Donor identity merges by outcome.",
    ["outcome"],
)

RowOutcome = Literal["succeeded", "failed", "skipped", "ignored"]


def record_row_outcome(outcome: RowOutcome, *, donations_created: int = 0) -> None:
    """Increment the row outcome counter (and donation counter when rows created any)."""

    _rows_counter.labels(outcome=outcome).inc()
    if donations_created:
        _donations_counter.inc(donations_created)


def record_batch(*, status: str, duration_seconds: float) -> None:
    _batch_counter.labels(status=status).inc()
    _batch_duration.observe(duration_seconds)


def record_donor_merge(outcome: Literal["success", "failure"]) -> None:
    _merge_counter.labels(outcome=outcome).inc()
