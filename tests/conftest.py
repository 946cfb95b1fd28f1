import json
import os
import sys

import pytest

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

from starlette.websockets import WebSocketState  # noqa: E402

from getsticky_server.models.protocol import message  # noqa: E402
from getsticky_server.storage.graph_store import GraphStore  # noqa: E402
from getsticky_server.storage.settings_store import SettingsStore  # noqa: E402
from getsticky_server.sync.connection import Connection  # noqa: E402
from getsticky_server.sync.registry import ConnectionRegistry  # noqa: E402


class FakeWebSocket:
    """Records outbound frames; enough of Starlette's WebSocket for Connection."""

    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict] = []
        self.close_code: int | None = None

    async def send_text(self, text: str) -> None:
        if self.client_state != WebSocketState.CONNECTED:
            raise RuntimeError("websocket is closed")
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000) -> None:
        self.close_code = code
        self.disconnect()

    def disconnect(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def of_type(self, type_: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == type_]

    @property
    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


class FakeBackend:
    """Scripted LLM backend.

    ``fail_after`` makes ``stream()`` raise after that many chunks have been
    yielded; ``error`` makes ``complete()`` raise.
    """

    def __init__(self, reply: str = "", chunks=None, fail_after: int | None = None, error: Exception | None = None):
        self.reply = reply
        self.chunks = list(chunks or [])
        self.fail_after = fail_after
        self.error = error
        self.calls: list[tuple[str, list[dict]]] = []

    async def complete(self, system, messages):
        self.calls.append((system, messages))
        if self.error is not None:
            raise self.error
        return self.reply

    async def stream(self, system, messages):
        self.calls.append((system, messages))
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise RuntimeError("connection reset by peer")
            yield chunk
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise RuntimeError("connection reset by peer")


async def open_connection(registry: ConnectionRegistry, board_id: str) -> Connection:
    """A joined, primed connection backed by a FakeWebSocket."""
    connection = Connection(FakeWebSocket())
    registry.join(connection, board_id)
    await connection.prime(message("initial_state", {}))
    connection.websocket.sent.clear()
    return connection


@pytest.fixture
async def store(tmp_path):
    """Graph store in a temporary SQLite file."""
    graph_store = GraphStore(tmp_path / "getsticky.db")
    await graph_store.initialize()
    yield graph_store
    await graph_store.close()


@pytest.fixture
async def settings_store(tmp_path):
    shared = SettingsStore(tmp_path / "getsticky.db")
    await shared.initialize()
    yield shared
    await shared.close()


@pytest.fixture
def registry():
    return ConnectionRegistry()
