"""
End-to-end websocket tests against the FastAPI app.

Each test runs the real lifespan (SQLite file under tmp_path) with a scripted
LLM backend in place of Claude.
"""

import pytest
from conftest import FakeBackend
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from getsticky_server.config import DatabaseSettings, LLMSettings, ServerSettings, Settings
from getsticky_server.web.app import create_app


@pytest.fixture
def client(tmp_path):
    config = Settings(
        server=ServerSettings(default_board="main"),
        database=DatabaseSettings(path=tmp_path / "getsticky.db"),
        llm=LLMSettings(api_key=None),
    )
    app = create_app(config, backend=FakeBackend(reply="Because of caching."))
    with TestClient(app) as test_client:
        yield test_client


def test_snapshot_is_first_message(client):
    with client.websocket_connect("/ws?board=b1") as ws:
        snapshot = ws.receive_json()

    assert snapshot["type"] == "initial_state"
    assert snapshot["data"]["board"]["slug"] == "b1"
    assert snapshot["data"]["nodes"] == []
    assert snapshot["data"]["edges"] == []
    assert snapshot["data"]["viewport"] == {"x": 0.0, "y": 0.0, "zoom": 1.0}


def test_default_board_when_no_query_param(client):
    with client.websocket_connect("/ws") as ws:
        assert ws.receive_json()["data"]["board"]["slug"] == "main"


def test_invalid_board_slug_is_refused(client):
    with client.websocket_connect("/ws?board=NOT_VALID") as ws:
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["data"]["code"] == "invalid_request"
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()


def test_b1_scenario_node_pair_and_response_edge(client):
    """A richtext root, then an answered query that becomes its conversation child."""
    with client.websocket_connect("/ws?board=b1") as ws:
        ws.receive_json()

        ws.send_json({"type": "create_node", "data": {"type": "richtext", "content": {}}, "id": "1"})
        first = ws.receive_json()
        assert first["type"] == "node_created"
        assert first["requestId"] == "1"

        ws.send_json({"type": "ask_claude", "data": {"question": "Why is it fast?", "parent_id": first["data"]["id"]}, "id": "2"})
        edge = ws.receive_json()
        response = ws.receive_json()

    assert edge["type"] == "edge_created"
    assert edge["requestId"] == "2"
    assert edge["data"]["label"] == "response"
    assert edge["data"]["source_id"] == first["data"]["id"]
    assert response["type"] == "claude_response"
    assert response["data"]["complete"] is True
    node = response["data"]["node"]
    assert node["type"] == "conversation"
    assert node["parent_id"] == first["data"]["id"]
    assert node["content"]["response"] == "Because of caching."
    assert edge["data"]["target_id"] == node["id"]

    with client.websocket_connect("/ws?board=b1") as ws:
        snapshot = ws.receive_json()["data"]

    assert [n["type"] for n in snapshot["nodes"]] == ["richtext", "conversation"]
    assert [e["label"] for e in snapshot["edges"]] == ["response"]


def test_two_viewers_on_b1_and_one_on_b2(client):
    with (
        client.websocket_connect("/ws?board=b1") as first,
        client.websocket_connect("/ws?board=b1") as second,
        client.websocket_connect("/ws?board=b2") as third,
    ):
        for ws in (first, second, third):
            assert ws.receive_json()["type"] == "initial_state"

        first.send_json({"type": "create_node", "data": {"type": "richtext"}})
        created = first.receive_json()
        assert created["type"] == "node_created"
        mirrored = second.receive_json()
        assert mirrored == created

        # b2 only ever sees its own reply
        third.send_json({"type": "get_settings", "id": "probe"})
        reply = third.receive_json()
        assert reply["type"] == "settings"
        assert reply["requestId"] == "probe"


def test_protocol_error_keeps_connection_open(client):
    with client.websocket_connect("/ws?board=b1") as ws:
        ws.receive_json()

        ws.send_text("not json at all")
        assert ws.receive_json()["data"]["code"] == "protocol_error"

        ws.send_json({"type": "teleport", "id": "t"})
        error = ws.receive_json()
        assert error["requestId"] == "t"

        ws.send_json({"type": "list_boards"})
        assert ws.receive_json()["type"] == "board_list"


def test_streaming_query(tmp_path):
    config = Settings(
        database=DatabaseSettings(path=tmp_path / "getsticky.db"),
        llm=LLMSettings(api_key=None),
    )
    app = create_app(config, backend=FakeBackend(chunks=["Par", "tial"]))

    with TestClient(app) as test_client, test_client.websocket_connect("/ws?board=b1") as ws:
        ws.receive_json()
        ws.send_json({"type": "ask_claude", "data": {"question": "Stream it", "stream": True}, "id": "s"})

        messages = [ws.receive_json() for _ in range(3)]

    assert [m["type"] for m in messages] == ["claude_streaming", "claude_streaming", "claude_response"]
    assert "".join(m["data"]["chunk"] for m in messages[:2]) == "Partial"
    assert messages[2]["data"]["node"]["content"]["response"] == "Partial"


def test_query_without_backend_reports_error(tmp_path, monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("GETSTICKY_LLM_API_KEY", raising=False)
    config = Settings(
        database=DatabaseSettings(path=tmp_path / "getsticky.db"),
        llm=LLMSettings(api_key=None),
    )

    with TestClient(create_app(config)) as test_client, test_client.websocket_connect("/ws?board=b1") as ws:
        ws.receive_json()
        ws.send_json({"type": "ask_claude", "data": {"question": "Hello?"}, "id": "q"})
        error = ws.receive_json()

    assert error["type"] == "error"
    assert error["requestId"] == "q"
    assert error["data"]["code"] == "backend_error"
