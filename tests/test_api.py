from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from database import Base
from refresh import DashboardRefresher
from services import DashboardService

NOW = datetime(2025, 3, 15, 12, 0)


@pytest.fixture()
def client(monkeypatch):
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def compute(selection, now):
        with SessionLocal() as session:
            return DashboardService(session).load(selection, now)

    monkeypatch.setattr(
        main, "refresher", DashboardRefresher(compute, clock=lambda: NOW)
    )
    main.app.dependency_overrides[main.get_db] = override_get_db
    # No context manager: startup would start the real scheduler.
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def _setup_ledger(client):
    account = client.post("/api/accounts", json={"name": "Home"}).json()
    checking = client.post(
        f"/api/accounts/{account['id']}/conti",
        json={"name": "Checking", "type": "checking", "initial_balance_cents": 1_000},
    ).json()
    savings = client.post(
        f"/api/accounts/{account['id']}/conti",
        json={"name": "Savings", "type": "savings"},
    ).json()
    for payload in (
        {
            "occurred_at": "2025-03-05T10:00:00",
            "type": "income",
            "amount_cents": 200,
            "to_conto_id": checking["id"],
        },
        {
            "occurred_at": "2025-03-05T18:00:00",
            "type": "expense",
            "amount_cents": 50,
            "from_conto_id": checking["id"],
        },
        {
            "occurred_at": "2025-03-10T09:00:00",
            "type": "transfer",
            "amount_cents": 100,
            "from_conto_id": checking["id"],
            "to_conto_id": savings["id"],
        },
    ):
        resp = client.post("/api/transactions", json=payload)
        assert resp.status_code == 201
    return account, checking, savings


def test_accounts_and_conti_roundtrip(client):
    account, checking, savings = _setup_ledger(client)

    resp = client.get("/api/accounts")

    assert resp.status_code == 200
    body = resp.json()
    assert [a["name"] for a in body] == ["Home"]
    assert [c["id"] for c in body[0]["conti"]] == [checking["id"], savings["id"]]


def test_conto_on_missing_account_is_404(client):
    resp = client.post(
        "/api/accounts/999/conti", json={"name": "Ghost", "type": "cash"}
    )
    assert resp.status_code == 404


def test_invalid_transaction_is_rejected(client):
    _account, checking, _savings = _setup_ledger(client)

    resp = client.post(
        "/api/transactions",
        json={
            "occurred_at": "2025-03-05T10:00:00",
            "type": "income",
            "amount_cents": 10,
            "from_conto_id": checking["id"],
        },
    )
    assert resp.status_code == 422

    resp = client.post(
        "/api/transactions",
        json={
            "occurred_at": "2025-03-05T10:00:00",
            "type": "expense",
            "amount_cents": 10,
            "from_conto_id": 999,
        },
    )
    assert resp.status_code == 400


def test_balance_history_endpoint(client):
    _account, checking, savings = _setup_ledger(client)

    resp = client.get(
        "/api/balance-history",
        params={
            "conto_ids": [checking["id"], savings["id"]],
            "period": "1M",
            "month": "2025-03-01",
            "as_of": NOW.isoformat(),
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    assert [p["balance"] for p in body["points"]] == [1_000, 1_150, 1_150, 1_150]
    assert [p["balance"] for p in body["past"]] == [1_000, 1_150, 1_150]
    assert body["future"][0]["date"] == "2025-03-15T00:00:00"
    assert body["y_domain"] == [985, 1_165]


def test_conto_balance_and_delete(client):
    _account, checking, _savings = _setup_ledger(client)
    params = {"as_of": NOW.isoformat()}

    before = client.get(f"/api/conti/{checking['id']}/balance", params=params).json()
    recent = client.get(
        "/api/transactions/recent", params={"conto_ids": [checking["id"]]}
    ).json()
    resp = client.post(f"/api/transactions/{recent[0]['id']}/delete")
    after = client.get(f"/api/conti/{checking['id']}/balance", params=params).json()

    assert before["balance_cents"] == 1_050
    assert resp.status_code == 204
    assert after["balance_cents"] == 1_150
    assert client.post("/api/transactions/999/delete").status_code == 404


def test_summary_endpoint(client):
    _account, checking, _savings = _setup_ledger(client)

    resp = client.get(
        "/api/summary",
        params={"conto_ids": [checking["id"]], "month": "2025-03-01", "months": 2},
    )

    body = resp.json()
    assert body["current"]["income_cents"] == 200
    assert body["current"]["expense_cents"] == 50
    assert body["current"]["savings_rate"] == pytest.approx(75.0)
    assert len(body["trailing"]["months"]) == 2
    assert body["trailing"]["months"][0]["savings_rate"] is None
    assert body["statistics"]["transaction_count"] == 3
    assert body["statistics"]["transfer_count"] == 1
    assert body["statistics"]["top_expense_categories"] == []


def test_history_endpoints(client):
    account, checking, savings = _setup_ledger(client)
    params = {"period": "3M", "as_of": NOW.isoformat()}

    accounts = client.get(
        "/api/history/accounts", params={**params, "account_ids": [account["id"]]}
    ).json()
    conti = client.get(
        "/api/history/conti",
        params={**params, "conto_ids": [checking["id"], savings["id"]]},
    ).json()

    assert [p["balance"] for p in accounts[0]["points"]] == [1_000, 1_000, 1_150]
    assert [s["entity_id"] for s in conti] == [checking["id"], savings["id"]]
    assert conti[1]["color"] == "#34C759"


def test_dashboard_refresh_then_read(client):
    _setup_ledger(client)

    assert client.get("/api/dashboard").status_code == 404
    resp = client.post("/api/dashboard/refresh", json={"period": "1M"})
    assert resp.status_code == 202
    generation = resp.json()["generation"]

    body = client.get("/api/dashboard").json()
    assert body["generation"] == generation
    assert body["current_total_cents"] == 1_150
    assert body["period_start_balance_cents"] == 1_000
    assert body["percentage_change"] == pytest.approx(15.0)
    assert len(body["recent_transactions"]) == 3


def test_create_category(client):
    resp = client.post("/api/categories", json={"name": "Groceries", "type": "expense"})

    assert resp.status_code == 201
    assert resp.json()["type"] == "expense"


def test_summary_ranks_categories(client):
    _account, checking, _savings = _setup_ledger(client)
    groceries = client.post(
        "/api/categories", json={"name": "Groceries", "type": "expense"}
    ).json()
    resp = client.post(
        "/api/transactions",
        json={
            "occurred_at": "2025-03-12T10:00:00",
            "type": "expense",
            "amount_cents": 80,
            "from_conto_id": checking["id"],
            "category_id": groceries["id"],
        },
    )
    assert resp.status_code == 201

    body = client.get(
        "/api/summary",
        params={"conto_ids": [checking["id"]], "month": "2025-03-01", "months": 0},
    ).json()

    assert body["statistics"]["expense_count"] == 2
    assert body["statistics"]["top_expense_categories"] == [
        {"category_id": groceries["id"], "amount_cents": 80}
    ]


def test_balance_history_ignores_repeated_conto_ids(client):
    _account, checking, _savings = _setup_ledger(client)

    resp = client.get(
        "/api/balance-history",
        params={
            "conto_ids": [checking["id"], checking["id"]],
            "period": "1M",
            "month": "2025-03-01",
            "as_of": NOW.isoformat(),
        },
    )

    assert resp.json()["points"][0]["balance"] == 1_000


def test_list_and_duplicates_endpoints(client):
    _account, checking, _savings = _setup_ledger(client)
    resp = client.post(
        "/api/transactions",
        json={
            "occurred_at": "2025-03-05T10:04:00",
            "type": "income",
            "amount_cents": 200,
            "to_conto_id": checking["id"],
        },
    )
    copy = resp.json()

    listed = client.get(
        "/api/transactions", params={"conto_ids": [checking["id"]], "limit": 2}
    ).json()
    duplicates = client.get(f"/api/transactions/{copy['id']}/duplicates").json()

    assert [t["amount_cents"] for t in listed] == [100, 50]
    assert [t["occurred_at"] for t in duplicates] == ["2025-03-05T10:00:00"]
    assert client.get("/api/transactions/999/duplicates").status_code == 404
