import asyncio

import pytest
from fastapi.testclient import TestClient

from src.config.session import SessionSettings
from src.server.session.dependencies import set_session_settings, set_session_store
from src.server.session.errors import TransactionError
from src.server.session.store import SQLiteSessionStore


@pytest.fixture
def store(tmp_path):
    db_path = tmp_path / "sessions_api.db"
    session_store = SQLiteSessionStore(str(db_path))
    asyncio.run(session_store.init())
    return session_store


@pytest.fixture
def client(store, tmp_path):
    set_session_settings(
        SessionSettings(db_path=str(tmp_path / "sessions_api.db"), sweeper_enabled=False)
    )
    set_session_store(store)

    from src.server.app import app

    with TestClient(app) as test_client:
        yield test_client

    set_session_store(None)
    set_session_settings(None)


def test_session_round_trip_through_cookie(client: TestClient, store: SQLiteSessionStore):
    response = client.get("/api/session")
    assert response.status_code == 200
    body = response.json()
    assert body["entries"] == {}
    assert body["is_new"] is True
    assert "session_id" not in response.cookies

    response = client.put("/api/session/user", json={"value": "alice"})
    assert response.status_code == 200
    session_id = response.json()["id"]
    assert response.cookies.get("session_id") == session_id
    assert response.json()["entries"] == {"user": "alice"}

    response = client.get("/api/session")
    assert response.status_code == 200
    assert response.json()["id"] == session_id
    assert response.json()["is_new"] is False
    assert response.json()["entries"] == {"user": "alice"}
    assert asyncio.run(store.retrieve(session_id)) == {"user": "alice"}

    response = client.delete("/api/session/user")
    assert response.status_code == 200
    assert response.json()["entries"] == {}
    assert asyncio.run(store.retrieve(session_id)) == {}


def test_invalidate_removes_persisted_session(client: TestClient, store: SQLiteSessionStore):
    response = client.put("/api/session/user", json={"value": "alice"})
    session_id = response.json()["id"]

    response = client.delete("/api/session")
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert asyncio.run(store.retrieve(session_id)) == {}


def test_over_long_key_is_rejected(client: TestClient):
    response = client.put(f"/api/session/{'k' * 201}", json={"value": "x"})
    assert response.status_code == 400


def test_failed_commit_surfaces_as_server_error(
    client: TestClient, store: SQLiteSessionStore, monkeypatch
):
    async def _failing_commit(*args, **kwargs):
        raise TransactionError("rolled back")

    monkeypatch.setattr(store, "commit", _failing_commit)

    response = client.put("/api/session/user", json={"value": "alice"})
    assert response.status_code == 500
    assert response.json()["detail"] == "Internal Server Error"


def test_healthz(client: TestClient):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
