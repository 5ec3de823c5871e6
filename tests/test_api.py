import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cache import get_dashboard_cache
from database import Base, get_db
from main import app
from models import User


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def _get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    with TestingSession() as session:
        session.add_all(
            [
                User(id=1, email="alex@example.com", first_name="Alex", last_name="Lee"),
                User(id=2, email="sam@example.com", first_name="Sam", last_name="Roe"),
            ]
        )
        session.commit()

    app.dependency_overrides[get_db] = _get_db
    get_dashboard_cache().clear()
    yield TestClient(app)
    app.dependency_overrides.clear()
    get_dashboard_cache().clear()


def _headers(client: TestClient, user_id: int) -> dict[str, str]:
    headers = {"X-User-Id": str(user_id)}
    token = client.get("/api/csrf-token", headers=headers).json()["csrf_token"]
    headers["X-CSRF-Token"] = token
    return headers


def _household(client: TestClient):
    alex = _headers(client, 1)
    sam = _headers(client, 2)
    resp = client.post("/api/households", json={"name": "Home"}, headers=alex)
    assert resp.status_code == 201
    household_id = resp.json()["id"]
    resp = client.post(f"/api/households/{household_id}/members", headers=sam)
    assert resp.status_code == 201
    return alex, sam


def _rent(client: TestClient, headers: dict[str, str]) -> int:
    resp = client.post(
        "/api/expenses",
        json={
            "name": "Rent",
            "amount_cents": 40_000,
            "type": "SHARED",
            "category": "RECURRING",
            "frequency": "MONTHLY",
            "paid_by_user_id": 1,
        },
        headers=headers,
    )
    assert resp.status_code == 201
    return resp.json()["id"]


def test_requests_need_identity_and_csrf(client):
    assert client.get("/api/expenses").status_code == 401
    assert client.get("/api/expenses", headers={"X-User-Id": "99"}).status_code == 401

    resp = client.post(
        "/api/households", json={"name": "Home"}, headers={"X-User-Id": "1"}
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid CSRF token"


def test_household_membership_listing(client):
    alex, _ = _household(client)

    body = client.get("/api/households/me", headers=alex).json()
    assert body["name"] == "Home"
    assert [m["first_name"] for m in body["members"]] == ["Alex", "Sam"]

    resp = client.post("/api/households", json={"name": "Other"}, headers=alex)
    assert resp.status_code == 409


def test_expense_crud_and_validation(client):
    alex, sam = _household(client)
    rent_id = _rent(client, alex)

    listed = client.get("/api/expenses", headers=sam).json()
    assert [e["id"] for e in listed] == [rent_id]
    shared = client.get("/api/expenses", params={"type": "SHARED"}, headers=sam)
    assert [e["id"] for e in shared.json()] == [rent_id]
    personal = client.get("/api/expenses", params={"type": "PERSONAL"}, headers=sam)
    assert personal.json() == []

    resp = client.post(
        "/api/expenses",
        json={
            "name": "Insurance",
            "amount_cents": 1000,
            "type": "SHARED",
            "category": "RECURRING",
            "frequency": "YEARLY",
        },
        headers=alex,
    )
    assert resp.status_code == 422

    resp = client.put(
        f"/api/expenses/{rent_id}",
        json={
            "name": "Rent",
            "amount_cents": 42_000,
            "type": "SHARED",
            "category": "RECURRING",
            "frequency": "MONTHLY",
        },
        headers=sam,
    )
    assert resp.status_code == 200
    assert resp.json()["amount_cents"] == 42_000

    assert client.delete(f"/api/expenses/{rent_id}", headers=alex).status_code == 204
    assert client.get(f"/api/expenses/{rent_id}", headers=alex).status_code == 404


def test_override_endpoints(client):
    alex, _ = _household(client)
    rent_id = _rent(client, alex)

    resp = client.put(
        f"/api/expenses/{rent_id}/overrides/2100/1",
        json={"amount_cents": 45_000},
        headers=alex,
    )
    assert resp.status_code == 200
    assert resp.json()["amount_cents"] == 45_000

    resp = client.put(
        f"/api/expenses/{rent_id}/overrides/2000/1",
        json={"amount_cents": 45_000},
        headers=alex,
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Past months cannot be changed"

    overrides = client.get(f"/api/expenses/{rent_id}/overrides", headers=alex).json()
    assert [(o["year"], o["month"]) for o in overrides] == [(2100, 1)]

    resp = client.delete(
        f"/api/expenses/{rent_id}/overrides/upcoming",
        params={"from_year": 2100, "from_month": 1},
        headers=alex,
    )
    assert resp.json() == {"deleted": 1}

    timeline = client.get(f"/api/expenses/{rent_id}/timeline", headers=alex).json()
    assert len(timeline["months"]) == 25
    assert all(m["amount_cents"] == 40_000 for m in timeline["months"])


def test_payments_and_settlement_flow(client):
    alex, sam = _household(client)
    rent_id = _rent(client, alex)

    resp = client.post(
        f"/api/expenses/{rent_id}/payments/paid",
        json={"year": 2025, "month": 6},
        headers=alex,
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "PAID"

    statuses = client.get(
        "/api/payments", params={"year": 2025, "month": 6}, headers=sam
    ).json()
    assert statuses["statuses"] == {str(rent_id): "PAID"}

    dashboard = client.get(
        "/api/dashboard", params={"year": 2025, "month": 6}, headers=sam
    ).json()
    assert dashboard["expenses"]["shared_total_cents"] == 40_000
    assert dashboard["expenses"]["remaining_cents"] == 0
    assert dashboard["settlement"]["message"] == "You owe Alex €200.00"

    resp = client.post(
        "/api/dashboard/settlement/paid", json={"year": 2025, "month": 6}, headers=sam
    )
    assert resp.status_code == 201
    assert resp.json()["amount_cents"] == 20_000

    resp = client.post(
        "/api/dashboard/settlement/paid", json={"year": 2025, "month": 6}, headers=sam
    )
    assert resp.status_code == 409

    settlement = client.get(
        "/api/dashboard/settlement", params={"year": 2025, "month": 6}, headers=alex
    ).json()
    assert settlement["is_settled"]
    assert settlement["message"] == "Sam owes you €200.00"


def test_missing_household_is_not_found(client):
    headers = _headers(client, 1)
    resp = client.get("/api/dashboard", params={"year": 2025, "month": 6}, headers=headers)
    assert resp.status_code == 404
