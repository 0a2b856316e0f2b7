import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    testing_session = sessionmaker(
        bind=engine, autoflush=False, expire_on_commit=False
    )

    def override_get_db():
        db = testing_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    # Not used as a context manager, so the scheduler startup hook stays off.
    yield TestClient(app)
    app.dependency_overrides.clear()


def _account(client: TestClient, balance: int = 20000) -> dict:
    response = client.post(
        "/api/bank-accounts",
        json={
            "account_name": "Wallet",
            "bank_name": "Cash",
            "currency": "aed",
            "balance_cents": balance,
        },
    )
    assert response.status_code == 201
    return response.json()


def _balance(client: TestClient, account_id: int) -> int:
    return client.get(f"/api/bank-accounts/{account_id}").json()["balance_cents"]


def test_expense_lifecycle_updates_balance(client):
    account = _account(client)
    assert account["currency"] == "AED"

    response = client.post(
        "/api/expenses",
        json={
            "date": "2024-04-10T08:30:00Z",
            "amount_cents": 5000,
            "category": "Groceries",
            "payment_method": "cash",
            "account_id": account["id"],
        },
    )
    assert response.status_code == 201
    expense = response.json()
    assert expense["date"] == "2024-04-10"
    assert _balance(client, account["id"]) == 15000

    response = client.put(f"/api/expenses/{expense['id']}", json={"amount_cents": 8000})
    assert response.status_code == 200
    assert response.json()["amount_cents"] == 8000
    assert _balance(client, account["id"]) == 12000

    assert client.delete(f"/api/expenses/{expense['id']}").status_code == 204
    assert _balance(client, account["id"]) == 20000
    assert client.get(f"/api/expenses/{expense['id']}").status_code == 404


def test_invalid_payloads_are_rejected(client):
    response = client.post(
        "/api/expenses",
        json={"date": "2024-04-10", "amount_cents": 0, "category": "Groceries"},
    )
    assert response.status_code == 422

    account = _account(client)
    expense = client.post(
        "/api/expenses",
        json={
            "date": "2024-04-10",
            "amount_cents": 100,
            "category": "Groceries",
            "payment_method": "cash",
            "account_id": account["id"],
        },
    ).json()
    response = client.put(f"/api/expenses/{expense['id']}", json={"colour": "red"})
    assert response.status_code == 422
    assert client.put("/api/expenses/999", json={}).status_code == 404


def test_missing_instrument_is_a_conflict(client):
    response = client.post(
        "/api/expenses",
        json={
            "date": "2024-04-10",
            "amount_cents": 100,
            "category": "Groceries",
            "payment_method": "cash",
            "account_id": 999,
        },
    )
    assert response.status_code == 409
    assert client.get("/api/expenses").json() == []


def test_confirm_drafts_and_insights(client):
    account = _account(client)
    response = client.post(
        "/api/expenses/confirm",
        json=[
            {
                "date": "2024-04-10",
                "amount_cents": 1500,
                "category": "Dining",
                "payment_method": "debit_card",
                "account_id": account["id"],
                "confidence": 0.9,
            }
        ],
    )
    assert response.status_code == 201
    assert response.json()[0]["source"] == "ai-parsed"

    insights = client.get("/api/expenses/insights").json()
    assert insights["total_cents"] == 1500
    assert insights["by_category"] == {"Dining": 1500}
    assert len(insights["monthly_trend"]) == 6

    listed = client.get("/api/expenses", params={"category": "Dining"}).json()
    assert len(listed) == 1
    assert client.get("/api/expenses", params={"period": "bogus"}).status_code == 400


def test_report_endpoint(client):
    account = _account(client)
    client.post(
        "/api/expenses",
        json={
            "date": "2024-04-10",
            "amount_cents": 700,
            "category": "Fuel",
            "payment_method": "cash",
            "account_id": account["id"],
        },
    )

    response = client.post(
        "/api/expenses/report",
        json={"date_from": "2024-04-01", "date_to": "2024-04-30"},
    )
    assert response.status_code == 200
    body = response.json()
    assert [expense["category"] for expense in body["expenses"]] == ["Fuel"]
    assert body["summary"]["date_range"] == {"from": "2024-04-01", "to": "2024-04-30"}


def test_loan_requires_known_linked_account(client):
    payload = {
        "loan_type": "Car",
        "lender_name": "Mashreq",
        "principal_cents": 60000,
        "emi_amount_cents": 2500,
        "outstanding_cents": 50000,
        "auto_debit": True,
        "emi_date": 5,
        "linked_bank_account_id": 999,
    }
    assert client.post("/api/loans", json=payload).status_code == 404

    payload.pop("emi_date")
    assert client.post("/api/loans", json=payload).status_code == 422


def test_manual_scheduler_run_debits_loan(client):
    account = _account(client, balance=100000)
    loan = client.post(
        "/api/loans",
        json={
            "loan_type": "Car",
            "lender_name": "Mashreq",
            "principal_cents": 60000,
            "emi_amount_cents": 2500,
            "outstanding_cents": 50000,
            "auto_debit": True,
            "emi_date": 5,
            "linked_bank_account_id": account["id"],
        },
    ).json()

    response = client.post("/api/scheduler/run", params={"run_date": "2024-04-05"})
    assert response.status_code == 200
    reports = {r["job"]: r for r in response.json()["reports"]}
    assert len(reports["loan_auto_debit_job"]["materialized"]) == 1

    assert _balance(client, account["id"]) == 97500
    loan_after = client.get(f"/api/loans/{loan['id']}").json()
    assert loan_after["outstanding_cents"] == 47500


def test_public_create_ignores_materialization_links(client):
    account = _account(client)
    template = client.post(
        "/api/expenses",
        json={
            "date": "2024-03-15",
            "amount_cents": 4000,
            "category": "Rent",
            "payment_method": "cash",
            "account_id": account["id"],
            "recurrence": "monthly",
        },
    ).json()

    spoofed = {
        "date": "2024-04-02",
        "amount_cents": 100,
        "category": "Rent",
        "origin_expense_id": template["id"],
        "occurrence_period": "2024-04",
    }
    created = client.post("/api/expenses", json=spoofed).json()
    assert created["origin_expense_id"] is None
    assert created["occurrence_period"] is None
    confirmed = client.post("/api/expenses/confirm", json=[spoofed]).json()
    assert confirmed[0]["origin_expense_id"] is None
    assert confirmed[0]["occurrence_period"] is None

    response = client.post("/api/scheduler/run", params={"run_date": "2024-04-15"})
    reports = {r["job"]: r for r in response.json()["reports"]}
    assert len(reports["recurring_expense_job"]["materialized"]) == 1
    assert reports["recurring_expense_job"]["skipped"] == 0
