import pytest
from fastapi.testclient import TestClient

from askbase.app import app
from askbase.services import query_engine as engine_module


@pytest.fixture
def client(monkeypatch, make_engine):
    engine = make_engine()
    monkeypatch.setattr(engine_module, "query_engine", engine)
    return TestClient(app)


def _sqlite(shop_db):
    return {"url": shop_db.url}


def test_healthz(client):
    assert client.get("/api/healthz").json() == {"status": "ok"}


def test_ask_returns_answer(client, shop_db):
    resp = client.post("/api/ask", json={"question": "show products", "connection": _sqlite(shop_db)})
    assert resp.status_code == 200
    body = resp.json()
    assert body["answer"] == "Found 5 results from the query."
    assert body["result_count"] == 5
    assert body["tables_used"] == ["products"]
    assert body["session_id"]
    assert body["chart_data"] is None
    assert isinstance(body["execution_time_ms"], int)


def test_ask_without_question_is_bad_request(client, shop_db):
    resp = client.post("/api/ask", json={"connection": _sqlite(shop_db)})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "missing_input"


def test_ask_with_unknown_tables_is_bad_request(client, shop_db):
    resp = client.post("/api/ask", json={"question": "weather forecast", "connection": _sqlite(shop_db)})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "no_relevant_tables"


def test_ask_against_unreachable_database(client, tmp_path):
    resp = client.post(
        "/api/ask",
        json={"question": "show products", "connection": {"url": f"sqlite:///{tmp_path}/nope/x.db"}},
    )
    assert resp.status_code == 500
    assert resp.json()["detail"]["error"] == "db_connection_failed"


def test_chat_history_lifecycle(client, shop_db):
    client.post(
        "/api/ask",
        json={"question": "show products", "session_id": "s1", "connection": _sqlite(shop_db)},
    )
    history = client.get("/api/chat-history", params={"session_id": "s1"}).json()
    assert history["session_id"] == "s1"
    assert [turn["question"] for turn in history["history"]] == ["show products"]

    resp = client.request("DELETE", "/api/chat-history", json={"session_id": "s1"})
    assert resp.status_code == 200
    assert client.get("/api/chat-history", params={"session_id": "s1"}).json()["history"] == []

    resp = client.request("DELETE", "/api/chat-history", json={"session_id": "unknown"})
    assert resp.status_code == 404


def test_chat_history_requires_session_id(client):
    resp = client.get("/api/chat-history")
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "missing_input"


def test_reset_session_history(client, shop_db):
    client.post(
        "/api/ask",
        json={"question": "show products", "session_id": "s2", "connection": _sqlite(shop_db)},
    )
    resp = client.post("/api/reset-session-history", json={"session_id": "s2"})
    assert resp.json() == {"success": True, "message": "Session history reset."}


def test_connect_db_and_schema(client, shop_db):
    resp = client.post("/api/connect-db", json=_sqlite(shop_db))
    assert resp.json() == {
        "status": "success",
        "message": "Database connected successfully",
        "table_count": 2,
    }

    tables = client.post("/api/schema", json=_sqlite(shop_db)).json()["tables"]
    assert [t["name"] for t in tables] == ["orders", "products"]
    assert [c["name"] for c in tables[1]["columns"]] == ["id", "name", "category", "price"]


def test_stored_connection_can_be_used_by_id(client, shop_db):
    connection_id = client.post("/api/database-connections", json=_sqlite(shop_db)).json()["connection_id"]
    resp = client.post("/api/ask", json={"question": "show products", "connection_id": connection_id})
    assert resp.status_code == 200
    assert resp.json()["result_count"] == 5


def test_unknown_connection_id(client):
    resp = client.post("/api/ask", json={"question": "show products", "connection_id": "missing"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "invalid_connection"


def test_ask_with_empty_credentials_is_bad_request(client):
    resp = client.post("/api/ask", json={"question": "show products", "connection": {}})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "missing_input"


def test_connect_db_without_host_is_bad_request(client):
    resp = client.post("/api/connect-db", json={"dialect": "postgresql", "username": "reader"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "missing_input"
