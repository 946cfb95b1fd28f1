"""
Board websocket endpoint.

WS /ws?board=<slug> - one connection views exactly one board

Lifecycle:
1. accept, resolve (or auto-create) the board from the ``board`` query param
2. join the registry, then send ``initial_state``; broadcasts that race the
   snapshot are buffered by the connection and flushed after it
3. dispatch every inbound frame until the client goes away
4. leave the registry on any exit path
"""

import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from ..models.protocol import error_message
from ..sync.connection import Connection
from ..utils.errors import GetStickyError
from .dependencies import AppServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter()

POLICY_VIOLATION = 1008


@router.websocket("/ws")
async def board_websocket(
    websocket: WebSocket,
    board: str | None = Query(default=None),
    services: AppServices = Depends(get_services),
):
    await websocket.accept()
    connection = Connection(websocket)
    slug = board or services.settings.server.default_board

    try:
        current = await services.store.get_or_create_board(slug)
    except GetStickyError as e:
        logger.info(f"{connection!r} refused: {e.message}")
        await websocket.send_json(error_message(e.message, details=e.details()))
        await websocket.close(code=POLICY_VIOLATION)
        return

    services.registry.join(connection, current.id)
    try:
        await services.dispatcher.send_snapshot(connection, current)

        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            raw = frame.get("text")
            if raw is None:
                raw = frame.get("bytes") or b""
            await services.dispatcher.dispatch(connection, raw)
            if not connection.is_open:
                # Closed server-side, e.g. its board was deleted
                break

    except WebSocketDisconnect:
        pass
    finally:
        services.registry.leave(connection)
        logger.info(f"{connection!r} disconnected from board {current.slug}")
