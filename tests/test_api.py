import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from coach import CoachClient, CoachSession
from database import Base


@pytest.fixture()
def client(monkeypatch):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[main.get_db] = override_get_db
    monkeypatch.setattr(main, "coach_session", CoachSession())
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def _post_expense(client, **overrides):
    payload = {
        "merchantName": "Deli",
        "date": "2024-06-10",
        "totalAmount": 40,
        "category": "Food",
    }
    payload.update(overrides)
    resp = client.post("/api/expenses", json=payload)
    assert resp.status_code == 201
    return resp.json()


def test_health(client) -> None:
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_expense_lifecycle(client) -> None:
    created = _post_expense(client, category="fod")
    assert created["category"] == "Food"
    assert created["totalAmount"] == 40.0

    listing = client.get("/api/expenses").json()
    assert [e["id"] for e in listing["items"]] == [created["id"]]
    assert listing["has_more"] is False

    resp = client.patch(f"/api/expenses/{created['id']}/category", json={"category": "Bills"})
    assert resp.json()["category"] == "Bills"

    resp = client.patch(f"/api/expenses/{created['id']}/items/0/category", json={"category": "Food"})
    assert resp.status_code == 404

    assert client.delete(f"/api/expenses/{created['id']}").status_code == 200
    assert client.delete("/api/expenses/999").status_code == 404
    assert client.get("/api/expenses").json()["items"] == []


def test_invalid_expense_payload_is_rejected(client) -> None:
    resp = client.post("/api/expenses", json={"totalAmount": -1})
    assert resp.status_code == 422


def test_analysis_endpoint(client) -> None:
    _post_expense(client)
    _post_expense(client, merchantName="Metro", date="2024-06-12", totalAmount=60, category="Transport")

    resp = client.get(
        "/api/analysis",
        params={"startDate": "2024-06-01", "endDate": "2024-06-30", "mood": "motivator_roast"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["totals"]["spending"] == 100.0
    assert data["category_totals"]["Food"] == 40.0
    assert data["mood"] == "motivator_roast"
    assert data["coach_button_label"] == "Roast my spending"
    assert data["signature"] == main.coach_session.signature

    bad = client.get("/api/analysis", params={"startDate": "2024-06-30", "endDate": "2024-06-01"})
    assert bad.status_code == 400


def test_summary_endpoint(client) -> None:
    _post_expense(client)
    _post_expense(client, merchantName="Old", date="2024-05-01", totalAmount=5)
    data = client.get(
        "/api/expenses/summary", params={"startDate": "2024-06-01", "endDate": "2024-06-30"}
    ).json()
    assert data["totalSpending"] == 40.0
    assert data["expenseCount"] == 1
    assert data["detailedItems"][0]["merchantName"] == "Deli"


def test_categories_endpoints(client) -> None:
    assert len(client.get("/api/categories").json()) == 5

    resp = client.post("/api/categories", json={"name": "Coffee", "icon": "☕"})
    assert resp.status_code == 201
    assert resp.json()["isCustom"] is True
    assert client.post("/api/categories", json={"name": "coffee"}).status_code == 400

    assert client.delete("/api/categories/Food").status_code == 400
    assert client.delete("/api/categories/Nope").status_code == 404
    assert client.delete("/api/categories/Coffee").status_code == 200


def test_budget_endpoints(client) -> None:
    resp = client.put("/api/budgets/2024-03", json={"budgets": {"Food": 300}})
    assert resp.status_code == 200
    assert resp.json()["budgets"] == {"Food": 300.0}

    resolved = client.get("/api/budgets/2024-05").json()
    assert resolved["sourceMonth"] == "2024-03"
    assert resolved["isDefault"] is False
    assert resolved["budgets"]["Food"] == 300.0

    assert client.get("/api/budgets/2022-01").json()["isDefault"] is True
    assert client.get("/api/budgets").json() == {"months": ["2024-03"]}
    assert client.get("/api/budgets/2024-13").status_code == 400
    assert client.put("/api/budgets/2024-03", json={"budgets": {"Food": -1}}).status_code == 422

    assert client.delete("/api/budgets/2024-03").status_code == 200
    assert client.delete("/api/budgets/2024-03").status_code == 404


def test_coach_state_endpoints(client) -> None:
    assert client.get("/api/coach/state").json()["open"] is False
    assert client.post("/api/coach/open").json()["open"] is True
    assert client.post("/api/coach/close").json()["open"] is False


def test_coach_requires_configuration(client) -> None:
    resp = client.post("/api/ai/coach", json={"conversation": []})
    assert resp.status_code == 503


def test_coach_round_trip(client, monkeypatch) -> None:
    class FakeSettings:
        coach_url = "http://coach.local/api"
        coach_timeout_secs = 5.0

    monkeypatch.setattr(main, "get_settings", lambda: FakeSettings())
    monkeypatch.setattr(CoachClient, "ask", lambda self, snapshot, conversation=(): "Keep it up.")
    _post_expense(client)

    resp = client.post(
        "/api/ai/coach",
        json={
            "conversation": [{"role": "user", "content": "How am I doing?"}],
            "startDate": "2024-06-01",
            "endDate": "2024-06-30",
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Keep it up."
    assert body["discarded"] is False
    assert main.coach_session.state()["lastMessage"] == "Keep it up."
