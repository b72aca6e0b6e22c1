from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import Base, create_ledger_engine
from main import LedgerRegistry, app, get_registry
from repository import SqlAlchemyRepository


@pytest.fixture()
def client():
    engine = create_ledger_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    registry = LedgerRegistry(SqlAlchemyRepository(factory))
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


def _setup(client):
    checking = client.post(
        "/budgets/home/accounts",
        json={"name": "Checking", "type": "checking", "opening_balance_cents": 100000},
    ).json()
    savings = client.post(
        "/budgets/home/accounts", json={"name": "Savings", "type": "savings"}
    ).json()
    group = client.post("/budgets/home/category-groups", json={"name": "Food"}).json()
    groceries = client.post(
        "/budgets/home/categories",
        json={
            "group_id": group["id"],
            "name": "Groceries",
            "target": {"kind": "monthly", "amount_cents": 40000},
        },
    ).json()
    return checking, savings, groceries


def test_budget_flow(client):
    checking, savings, groceries = _setup(client)
    assert checking["balance_cents"] == 100000
    assert groceries["target"]["kind"] == "monthly"

    resp = client.post(
        f"/budgets/home/categories/{groceries['id']}/allocate",
        json={"amount_cents": 30000},
    )
    assert resp.status_code == 200
    assert resp.json()["available_cents"] == 30000

    resp = client.post(
        "/budgets/home/transactions",
        json={
            "date": "2025-01-10",
            "payee": "Market",
            "type": "expense",
            "amount_cents": 5000,
            "account_id": checking["id"],
            "category_id": groceries["id"],
        },
    )
    assert resp.status_code == 201
    assert resp.json()["signed_cents"] == -5000

    resp = client.post(
        "/budgets/home/transfers",
        json={
            "from_account_id": checking["id"],
            "to_account_id": savings["id"],
            "amount_cents": 20000,
            "date": "2025-01-11",
        },
    )
    assert resp.status_code == 201

    summary = client.get("/budgets/home/summary").json()
    assert summary == {
        "available_to_budget_cents": 65000,
        "total_balance_cents": 95000,
        "total_allocated_cents": 30000,
    }

    register = client.get(
        f"/budgets/home/accounts/{checking['id']}/transactions",
        params={"period": "custom", "start": "2025-01-01", "end": "2025-01-31"},
    ).json()
    assert [t["amount_cents"] for t in register["items"]] == [5000, 20000]

    progress = client.get(
        f"/budgets/home/categories/{groceries['id']}/target/progress",
        params={"on": "2025-01-15"},
    ).json()
    assert progress["remaining_cents"] == 10000
    assert progress["due_date"] == "2025-02-01"
    assert progress["reset_date"] == "2025-01-01"

    spending = client.get(
        f"/budgets/home/categories/{groceries['id']}/spending",
        params={"year": 2025, "month": 1},
    ).json()
    assert spending["spent_cents"] == 5000


def test_error_mapping(client):
    checking, savings, groceries = _setup(client)

    assert client.post(
        "/budgets/home/categories/nope/allocate", json={"amount_cents": 100}
    ).status_code == 404

    resp = client.post(
        "/budgets/home/transfers",
        json={
            "from_account_id": checking["id"],
            "to_account_id": checking["id"],
            "amount_cents": 100,
            "date": "2025-01-11",
        },
    )
    assert resp.status_code == 400

    resp = client.post(
        f"/budgets/home/categories/{groceries['id']}/allocate",
        json={"amount_cents": -1},
    )
    assert resp.status_code == 422

    resp = client.get(
        f"/budgets/home/accounts/{checking['id']}/transactions",
        params={"period": "custom", "start": "2025-02-01"},
    )
    assert resp.status_code == 400


def test_planned_lifecycle(client):
    checking, _, groceries = _setup(client)
    resp = client.post(
        "/budgets/home/planned",
        json={
            "title": "Veg box",
            "type": "expense",
            "amount_cents": 2500,
            "account_id": checking["id"],
            "category_id": groceries["id"],
            "frequency": "weekly",
            "next_due_date": "2025-01-06",
        },
    )
    assert resp.status_code == 201
    planned = resp.json()
    assert planned["frequency"] == "weekly"

    run = client.post("/budgets/home/planned/run-due", params={"on": "2025-01-13"}).json()
    assert len(run["processed"]) == 2
    assert run["failures"] == []

    stale = client.post(
        f"/budgets/home/planned/{planned['id']}/process",
        json={"next_due_date": "2025-01-06"},
    )
    assert stale.status_code == 409

    paused = client.post(f"/budgets/home/planned/{planned['id']}/pause").json()
    assert paused["is_active"] is False
    resp = client.post(
        f"/budgets/home/planned/{planned['id']}/process",
        json={"next_due_date": "2025-01-20"},
    )
    assert resp.status_code == 400

    client.post(f"/budgets/home/planned/{planned['id']}/resume")
    resp = client.post(
        f"/budgets/home/planned/{planned['id']}/process",
        json={"next_due_date": "2025-01-20", "effective_date": "2025-01-21"},
    )
    assert resp.status_code == 200
    assert resp.json()["date"] == "2025-01-21"

    listed = client.get("/budgets/home/planned").json()
    assert listed[0]["next_due_date"] == date(2025, 1, 27).isoformat()


def test_manual_due_listing(client):
    checking, _, _ = _setup(client)
    client.post(
        "/budgets/home/planned",
        json={
            "title": "Freelance invoice",
            "type": "income",
            "amount_cents": 90000,
            "account_id": checking["id"],
            "mode": "manual",
            "frequency": "custom",
            "interval_count": 1,
            "interval_unit": "month",
            "next_due_date": "2025-01-15",
        },
    )
    events = client.get("/budgets/home/planned/manual-due", params={"on": "2025-01-20"}).json()
    assert [e["title"] for e in events] == ["Freelance invoice"]
    assert events[0]["schedule"] == "every 1 month(s)"
