"""Integration tests for the notification bridge and health endpoints."""

import pytest
from fastapi.testclient import TestClient

from getsticky_server.config import DatabaseSettings, LLMSettings, ServerSettings, Settings
from getsticky_server.web.app import create_app


def make_client(tmp_path, allowed_hosts):
    config = Settings(
        server=ServerSettings(bridge_allowed_hosts=allowed_hosts),
        database=DatabaseSettings(path=tmp_path / "getsticky.db"),
        llm=LLMSettings(api_key=None),
    )
    return TestClient(create_app(config))


@pytest.fixture
def client(tmp_path):
    # TestClient requests originate from the host "testclient"
    with make_client(tmp_path, ["testclient"]) as test_client:
        yield test_client


def test_notify_fans_out_to_board_viewers(client):
    with client.websocket_connect("/ws?board=b1") as viewer, client.websocket_connect("/ws?board=b2") as other:
        viewer.receive_json()
        other.receive_json()

        response = client.post(
            "/api/notify",
            json={"event": "node_created", "boardId": "b1", "data": {"id": "external-1"}},
        )
        assert response.status_code == 200
        assert response.json() == {"success": True, "delivered": 1}

        assert viewer.receive_json() == {"type": "node_created", "data": {"id": "external-1"}}

        other.send_json({"type": "get_settings"})
        assert other.receive_json()["type"] == "settings"


def test_notify_board_without_viewers(client):
    response = client.post("/api/notify", json={"event": "node_deleted", "boardId": "nobody-here"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "delivered": 0}


@pytest.mark.parametrize(
    "payload",
    [
        {"boardId": "b1"},
        {"event": "node_created"},
        {"event": "", "boardId": "b1"},
        {"event": "node_created", "boardId": ""},
    ],
)
def test_notify_requires_event_and_board(client, payload):
    response = client.post("/api/notify", json=payload)

    assert response.status_code == 422


def test_notify_rejects_remote_hosts(tmp_path):
    with make_client(tmp_path, ["127.0.0.1", "::1"]) as remote:
        response = remote.post("/api/notify", json={"event": "node_created", "boardId": "b1"})

    assert response.status_code == 403


def test_health_counts_connections(client):
    assert client.get("/api/health").json() == {"status": "healthy", "boards": 0, "connections": 0}

    with client.websocket_connect("/ws?board=b1") as ws:
        ws.receive_json()
        assert client.get("/api/health").json() == {"status": "healthy", "boards": 1, "connections": 1}
