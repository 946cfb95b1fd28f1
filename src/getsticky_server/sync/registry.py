"""
Connection registry: which live connection is viewing which board.

Keeps two maps, board id -> member connections and connection -> board id,
so join/leave are O(1). Constructed once per application and handed to every
component that broadcasts; nothing reaches it through a module global.

All access happens on the server's event loop, so the maps need no locking.
"""

import logging
from typing import Any

from .connection import Connection

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Board membership and board-scoped fan-out."""

    def __init__(self):
        self._members: dict[str, set[Connection]] = {}
        self._boards: dict[Connection, str] = {}

    # ── Membership ───────────────────────────────────────────────────────

    def join(self, connection: Connection, board_id: str) -> None:
        """
        Attach a connection to a board for its whole lifetime.

        Raises:
            ValueError: if the connection already belongs to another board
        """
        current = self._boards.get(connection)
        if current is not None:
            if current != board_id:
                raise ValueError(f"{connection!r} already joined board {current}")
            return

        self._boards[connection] = board_id
        self._members.setdefault(board_id, set()).add(connection)
        logger.info(f"{connection!r} joined board {board_id} ({len(self._members[board_id])} viewer(s))")

    def leave(self, connection: Connection) -> None:
        """Detach a connection. Safe to call more than once."""
        board_id = self._boards.pop(connection, None)
        if board_id is None:
            return

        members = self._members.get(board_id)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._members[board_id]
        logger.info(f"{connection!r} left board {board_id}")

    def board_of(self, connection: Connection) -> str | None:
        return self._boards.get(connection)

    def members(self, board_id: str) -> set[Connection]:
        return set(self._members.get(board_id, ()))

    def boards(self) -> list[str]:
        return list(self._members)

    @property
    def connection_count(self) -> int:
        return len(self._boards)

    # ── Delivery ─────────────────────────────────────────────────────────

    async def send(self, connection: Connection, message: dict[str, Any]) -> bool:
        """Send to one connection; closed or failing connections are skipped."""
        try:
            return await connection.send(message)
        except Exception as e:
            logger.debug(f"Send to {connection!r} failed, skipping: {e}")
            return False

    async def send_to_board(self, board_id: str, message: dict[str, Any]) -> int:
        """
        Deliver a message to every open connection on a board.

        Returns:
            Number of connections the message was delivered to
        """
        delivered = 0
        for connection in list(self._members.get(board_id, ())):
            if await self.send(connection, message):
                delivered += 1
        return delivered

    async def send_to_all(self, message: dict[str, Any]) -> int:
        """Deliver to every connection on every board (cross-board settings only)."""
        delivered = 0
        for connection in list(self._boards):
            if await self.send(connection, message):
                delivered += 1
        return delivered

    async def close_all(self) -> None:
        for connection in list(self._boards):
            try:
                await connection.close(code=1001)
            except Exception as e:
                logger.debug(f"Closing {connection!r} failed: {e}")
            self.leave(connection)

    async def close_board(self, board_id: str, code: int = 1008) -> int:
        """Close and detach every viewer of a board, e.g. after it was deleted."""
        members = self.members(board_id)
        for connection in members:
            try:
                await connection.close(code=code)
            except Exception as e:
                logger.debug(f"Closing {connection!r} failed: {e}")
            self.leave(connection)
        if members:
            logger.info(f"Closed {len(members)} viewer(s) of board {board_id}")
        return len(members)
