import pytest

from dojo_module.accounting import accounting_summary, monthly_totals
from dojo_module.errors import ValidationError
from dojo_module.services import create_record


@pytest.fixture
def ledger(db, normalizer):
    for payment in (
        {"amount": 100, "date": "2024-01-05", "taxable": 1},
        {"amount": "50", "date": "2024-02-10", "taxable": "0"},
    ):
        create_record(db, normalizer, "payments", payment)
    create_record(db, normalizer, "expenses", {"vendor": "Mat Supply Co", "amount": 30, "date": "2024-01-20", "taxable": True})
    return db


def test_summary_splits_taxable_totals(ledger):
    summary = accounting_summary(ledger)

    assert summary["income"] == {"taxable": 100.0, "non_taxable": 50.0, "total": 150.0}
    assert summary["expenses"] == {"taxable": 30.0, "non_taxable": 0.0, "total": 30.0}
    assert summary["net"] == 120.0


def test_summary_date_filter(ledger):
    summary = accounting_summary(ledger, date_from="2024-02-01", date_to="2024-02-29")

    assert summary["date_from"] == "2024-02-01"
    assert summary["income"]["total"] == 50.0
    assert summary["expenses"]["total"] == 0.0
    assert summary["net"] == 50.0


def test_summary_rejects_bad_ranges(ledger):
    with pytest.raises(ValidationError):
        accounting_summary(ledger, date_from="yesterday")
    with pytest.raises(ValidationError):
        accounting_summary(ledger, date_from="2024-03-01", date_to="2024-01-01")


def test_monthly_totals(ledger):
    assert monthly_totals(ledger) == [
        {"month": "2024-01", "income": 100.0, "expenses": 30.0, "net": 70.0},
        {"month": "2024-02", "income": 50.0, "expenses": 0.0, "net": 50.0},
    ]


def test_monthly_totals_empty(db):
    assert monthly_totals(db) == []


def test_accounting_endpoints(client):
    client.post("/api/payments", json={"amount": 40, "date": "2024-05-02", "taxable": "true"})
    client.post("/api/expenses", json={"vendor": "Landlord", "amount": 15, "date": "2024-05-03"})

    summary = client.get("/api/accounting/summary", params={"from": "2024-05-01", "to": "2024-05-31"}).json()
    monthly = client.get("/api/accounting/monthly").json()

    assert summary["income"]["taxable"] == 40.0
    assert summary["expenses"]["non_taxable"] == 15.0
    assert summary["net"] == 25.0
    assert monthly == [{"month": "2024-05", "income": 40.0, "expenses": 15.0, "net": 25.0}]
    assert client.get("/api/accounting/summary", params={"from": "nope"}).status_code == 400
