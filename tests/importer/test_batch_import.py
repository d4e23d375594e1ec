import io

import pytest
from prometheus_client import REGISTRY

from donation_app.importer.adapters.stripe_csv import REQUIRED_HEADERS
from donation_app.importer.pipeline import BatchImportSummary, StripeBatchImporter, import_stripe_csv
from donation_app.models import Donation, Donor, ExternalInvoice, ImportRun, ImportRunStatus, Project, db


@pytest.fixture
def payment_rows(row_data):
    return [
        row_data({"Transaction ID": "ch_1"}),
        row_data({"Transaction ID": "ch_2", "Description": "Monthly Sponsorship Donation for Wan,Orawan"}),
        row_data({"Transaction ID": "ch_3", "Description": "Donation for Campaign 9", "Amount": "12.34"}),
        row_data({"Transaction ID": "ch_4", "Status": "failed"}),
    ]


def _create_run(dry_run=False):
    run = ImportRun(source="stripe", dry_run=dry_run)
    db.session.add(run)
    db.session.commit()
    return run


def test_batch_counts_each_outcome(payment_rows, write_payment_csv):
    summary = import_stripe_csv(write_payment_csv(payment_rows))

    assert summary.fatal is False
    assert summary.succeeded_count == 3
    assert summary.failed_count == 0
    assert summary.skipped_count == 0
    assert summary.ignored_count == 1
    assert summary.donations_created == 4
    assert summary.donors_created == 1
    assert summary.rows_processed == 4
    assert Donation.query.count() == 4


def test_second_run_over_same_file_is_idempotent(payment_rows, write_payment_csv):
    path = write_payment_csv(payment_rows)
    first = import_stripe_csv(path)

    second = import_stripe_csv(path)

    assert second.succeeded_count == 0
    assert second.skipped_count == first.succeeded_count
    assert second.ignored_count == 1
    assert second.donations_created == 0
    assert Donation.query.count() == 4
    assert ExternalInvoice.query.count() == 3


def test_one_bad_row_does_not_block_the_rest(row_data, write_payment_csv):
    rows = [row_data({"Transaction ID": f"ch_{index}"}) for index in range(5)]
    rows[2]["Amount"] = "not-money"

    summary = import_stripe_csv(write_payment_csv(rows))

    assert summary.succeeded_count == 4
    assert summary.failed_count == 1
    assert summary.errors == [
        {
            "row": 4,
            "message": "Invalid amount: 'not-money'",
            "data": {
                "amount": "not-money",
                "name": "Jane Donor",
                "email": "jane@example.org",
                "description": "",
                "nickname": "",
                "date": "2024-03-01 10:00:00",
                "status": "succeeded",
            },
        }
    ]
    assert ExternalInvoice.query.filter_by(invoice_id="ch_2").count() == 0
    assert Donation.query.count() == 4


def test_blank_anonymous_general_row(write_payment_csv):
    rows = [
        {
            "Amount": "25.00",
            "Created Formatted": "2024-03-01 10:00:00",
            "Description": "",
            "Status": "succeeded",
            "Transaction ID": "t1",
        }
    ]

    summary = import_stripe_csv(write_payment_csv(rows))

    assert summary.succeeded_count == 1
    donor = Donor.query.one()
    assert donor.name == "Anonymous"
    assert donor.email == "Anonymous@mailinator.com"
    donation = Donation.query.one()
    assert donation.amount_cents == 2500
    assert donation.project.title == "General Donation"
    assert donation.project.system is True


def test_blank_date_fails_the_row_with_sanitized_data(row_data, write_payment_csv):
    rows = [row_data({"Transaction ID": "ch_1"}), row_data({"Transaction ID": "ch_2", "Created Formatted": ""})]

    summary = import_stripe_csv(write_payment_csv(rows))

    assert summary.succeeded_count == 1
    assert summary.failed_count == 1
    assert summary.errors[0]["row"] == 3
    assert summary.errors[0]["message"] == "Invalid date: ''"
    assert summary.errors[0]["data"]["date"] == ""
    assert ExternalInvoice.query.filter_by(invoice_id="ch_2").count() == 0
    assert Donation.query.count() == 1


def test_blank_date_row_does_not_block_later_donor_updates(row_data, write_payment_csv):
    rows = [
        row_data({"Transaction ID": "ch_old", "Billing Details Name": "Jane Old", "Created Formatted": "2023-01-01"}),
        row_data({"Transaction ID": "ch_blank", "Billing Details Name": "", "Created Formatted": ""}),
        row_data({"Transaction ID": "ch_new", "Billing Details Name": "Jane Newer", "Created Formatted": "2024-06-01"}),
    ]

    summary = import_stripe_csv(write_payment_csv(rows))

    assert summary.succeeded_count == 2
    assert summary.failed_count == 1
    donor = Donor.query.one()
    assert donor.name == "Jane Newer"
    assert donor.last_updated_at.year == 2024


def test_structural_error_is_fatal_and_writes_nothing(row_data, render_csv, tmp_path):
    text = render_csv([row_data()]) + '"10.00"x,oops\n'
    path = tmp_path / "broken.csv"
    path.write_text(text, encoding="utf-8")

    summary = import_stripe_csv(path)

    assert summary.fatal is True
    assert summary.succeeded_count == summary.failed_count == summary.skipped_count == 0
    assert len(summary.errors) == 1
    assert summary.errors[0]["row"] is None
    assert summary.errors[0]["message"].startswith("CSV parsing error: ")
    assert Donation.query.count() == 0


def test_missing_headers_is_fatal(tmp_path):
    path = tmp_path / "headers.csv"
    path.write_text("Amount,Status\n10.00,succeeded\n", encoding="utf-8")

    summary = import_stripe_csv(path)

    assert summary.fatal is True
    assert "Missing required columns" in summary.errors[0]["message"]


def test_missing_file_is_fatal(tmp_path):
    summary = import_stripe_csv(tmp_path / "nope.csv")

    assert summary.fatal is True
    assert summary.errors[0]["message"].startswith("CSV parsing error")


def test_stream_sources_are_accepted(row_data, render_csv):
    summary = import_stripe_csv(io.StringIO(render_csv([row_data()])))

    assert summary.succeeded_count == 1


def test_error_list_is_capped(app, row_data, write_payment_csv):
    app.config["IMPORTER_ERROR_LIMIT"] = 2
    rows = [row_data({"Transaction ID": f"ch_{index}", "Amount": "bad"}) for index in range(5)]

    summary = import_stripe_csv(write_payment_csv(rows))

    assert summary.failed_count == 5
    assert len(summary.errors) == 2
    assert summary.errors_truncated == 3


def test_dry_run_counts_without_persisting(payment_rows, write_payment_csv):
    summary = import_stripe_csv(write_payment_csv(payment_rows), dry_run=True)

    assert summary.dry_run is True
    assert summary.succeeded_count == 3
    assert Donation.query.count() == 0
    assert Donor.query.count() == 0
    assert Project.query.count() == 0


def test_run_is_marked_succeeded(payment_rows, write_payment_csv):
    run = _create_run()

    summary = StripeBatchImporter().import_file(write_payment_csv(payment_rows), run=run)
    db.session.commit()

    stored = db.session.get(ImportRun, run.id)
    assert stored.status == ImportRunStatus.SUCCEEDED
    assert stored.started_at is not None
    assert stored.finished_at is not None
    assert stored.counts_json["succeeded_count"] == summary.succeeded_count


def test_run_is_marked_partially_failed(row_data, write_payment_csv):
    run = _create_run()
    rows = [row_data({"Transaction ID": "ch_ok"}), row_data({"Transaction ID": "ch_bad", "Amount": "?"})]

    StripeBatchImporter().import_file(write_payment_csv(rows), run=run)
    db.session.commit()

    stored = db.session.get(ImportRun, run.id)
    assert stored.status == ImportRunStatus.PARTIALLY_FAILED
    assert stored.error_summary == "1 row(s) failed"


def test_run_is_marked_failed_on_fatal_error(tmp_path):
    run = _create_run()
    path = tmp_path / "empty.csv"
    path.write_text("", encoding="utf-8")

    StripeBatchImporter().import_file(path, run=run)
    db.session.commit()

    stored = db.session.get(ImportRun, run.id)
    assert stored.status == ImportRunStatus.FAILED
    assert stored.error_summary.startswith("CSV parsing error")


def test_fatal_summary_shape():
    summary = BatchImportSummary.fatal_error("line 3: boom")

    assert summary.as_dict()["errors"] == [{"row": None, "message": "CSV parsing error: line 3: boom", "data": None}]
    assert summary.rows_processed == 0


def test_header_only_file_imports_nothing(tmp_path):
    path = tmp_path / "header.csv"
    path.write_text(",".join(REQUIRED_HEADERS) + "\n", encoding="utf-8")

    summary = import_stripe_csv(path)

    assert summary.fatal is False
    assert summary.rows_processed == 0


def test_row_outcomes_are_counted_in_metrics(row_data, write_payment_csv):
    def sample(outcome):
        return REGISTRY.get_sample_value("importer_payment_rows_total", {"outcome": outcome}) or 0

    before = {outcome: sample(outcome) for outcome in ("succeeded", "failed", "ignored")}
    rows = [
        row_data({"Transaction ID": "ch_m1"}),
        row_data({"Transaction ID": "ch_m2", "Amount": "x"}),
        row_data({"Transaction ID": "ch_m3", "Status": "pending"}),
    ]

    import_stripe_csv(write_payment_csv(rows))

    assert sample("succeeded") - before["succeeded"] == 1
    assert sample("failed") - before["failed"] == 1
    assert sample("ignored") - before["ignored"] == 1
