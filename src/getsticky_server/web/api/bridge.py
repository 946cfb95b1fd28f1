"""
Notification bridge and health endpoints.

The tool-exposure process shares the SQLite file but not the event loop, so
after writing to a board it calls ``POST /api/notify`` and the change is fanned
out to that board's live viewers. Delivery is synchronous and best-effort.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from ...models.protocol import message
from ..dependencies import AppServices, get_services, require_bridge_client

router = APIRouter()
logger = logging.getLogger(__name__)


class NotifyRequest(BaseModel):
    """Event pushed by a collaborator process."""

    model_config = ConfigDict(populate_by_name=True)

    event: str = Field(..., min_length=1, description="Outbound message type, e.g. 'node_created'")
    board_id: str = Field(..., min_length=1, alias="boardId", description="Board id or slug")
    data: Any = Field(None, description="Message payload")


class NotifyResponse(BaseModel):
    success: bool
    delivered: int


class HealthResponse(BaseModel):
    status: str
    boards: int
    connections: int


@router.post(
    "/notify",
    response_model=NotifyResponse,
    tags=["bridge"],
    dependencies=[Depends(require_bridge_client)],
)
async def notify(request: NotifyRequest, services: AppServices = Depends(get_services)):
    """Broadcast ``{type: event, data}`` to every viewer of a board."""
    board_id = request.board_id
    if board_id not in services.registry.boards():
        board = await services.store.get_board_by_slug(board_id)
        if board is not None:
            board_id = board.id

    delivered = await services.registry.send_to_board(board_id, message(request.event, request.data))
    logger.info(f"Bridge event '{request.event}' for board {board_id} delivered to {delivered} viewer(s)")
    return NotifyResponse(success=True, delivered=delivered)


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health(services: AppServices = Depends(get_services)):
    return HealthResponse(
        status="healthy",
        boards=len(services.registry.boards()),
        connections=services.registry.connection_count,
    )
