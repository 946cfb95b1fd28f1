"""
A live client connection.

Wraps a Starlette ``WebSocket``. Until the initial board snapshot has been
sent, outbound messages are held back and flushed right after it, so the
snapshot is always the first thing a client receives.
"""

import json
import logging
import uuid
from typing import Any

from starlette.websockets import WebSocket, WebSocketState

logger = logging.getLogger(__name__)


class Connection:
    """One websocket client. Hashable by identity so it can live in sets."""

    def __init__(self, websocket: WebSocket, connection_id: str | None = None):
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex[:12]
        self._primed = False
        self._pending: list[dict[str, Any]] = []

    def __repr__(self) -> str:
        return f"Connection({self.id})"

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def prime(self, snapshot: dict[str, Any]) -> None:
        """Send the initial snapshot, then anything queued while it was being built."""
        await self._write(snapshot)
        self._primed = True
        pending, self._pending = self._pending, []
        for message in pending:
            await self._write(message)

    async def send(self, message: dict[str, Any]) -> bool:
        """
        Deliver one message.

        Returns:
            False if the connection was not open, True otherwise (including when
            the message was queued behind the snapshot)
        """
        if not self.is_open:
            return False
        if not self._primed:
            self._pending.append(message)
            return True
        await self._write(message)
        return True

    async def _write(self, message: dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps(message))

    async def close(self, code: int = 1000) -> None:
        if self.is_open:
            await self.websocket.close(code=code)
