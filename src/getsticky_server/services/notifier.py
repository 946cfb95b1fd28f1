"""
Client side of the notification bridge.

Used by the external tool process, which writes to the graph store directly
and then asks the running board server to fan the change out to live viewers.
Delivery is best-effort: failures are logged and reported as ``False``.
"""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class BoardNotifier:
    """Posts ``{event, boardId, data}`` to the board server's bridge endpoint."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8080",
        timeout: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def notify(self, event: str, board_id: str, data: Any = None) -> bool:
        """
        Broadcast one event to a board's viewers.

        Returns:
            True if the server accepted the event, False on any error
        """
        url = f"{self.base_url}/api/notify"
        payload = {"event": event, "boardId": board_id, "data": data}

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Board notification '{event}' for {board_id} failed: {e}")
            return False

        delivered = body.get("delivered", 0) if isinstance(body, dict) else 0
        logger.debug(f"Board notification '{event}' for {board_id} delivered to {delivered} viewer(s)")
        return True
