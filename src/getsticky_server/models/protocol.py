"""Websocket protocol models.

Inbound envelopes are ``{type, data?, id?}``; outbound messages are
``{type, data?, error?, requestId?}``. The set of accepted inbound types is a
closed allow-list: anything else is rejected before dispatch. Each inbound
type with a payload has a ``*Data`` model validating its ``data`` object.
"""

from __future__ import annotations

from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .validators import (
    ContextSource,
    DisplayName,
    EntityId,
    FiniteFloat,
    NodeKind,
    PositiveFloat,
    Slug,
    TurnRole,
)

MessageType = Literal[
    # projects / boards
    "list_projects",
    "create_project",
    "update_project",
    "delete_project",
    "list_boards",
    "get_board",
    "create_board",
    "update_board",
    "delete_board",
    # nodes / edges
    "get_node",
    "create_node",
    "update_node",
    "delete_node",
    "branch_node",
    "create_edge",
    "update_edge",
    "delete_edge",
    # context
    "add_context",
    "get_context",
    "search_context",
    # board view / settings
    "update_viewport",
    "get_settings",
    "update_settings",
    # LLM queries
    "ask_claude",
    "ask_claude_comment",
]

INBOUND_TYPES: frozenset[str] = frozenset(get_args(MessageType))


class Envelope(BaseModel):
    """Validated inbound envelope (type checked against the allow-list separately)."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None

    @field_validator("data", mode="before")
    @classmethod
    def none_is_empty(cls, v: Any) -> Any:
        return {} if v is None else v


class OutboundMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    data: Any = None
    error: str | None = None
    request_id: str | None = Field(default=None, alias="requestId")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def message(type: str, data: Any = None, request_id: str | None = None) -> dict[str, Any]:
    """Build an outbound message dict."""
    return OutboundMessage(type=type, data=data, request_id=request_id).to_wire()


def error_message(error: str, request_id: str | None = None, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return OutboundMessage(type="error", error=error, data=details, request_id=request_id).to_wire()


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class IdData(_Payload):
    id: EntityId


class CreateProjectData(_Payload):
    name: DisplayName


class RenameData(_Payload):
    id: EntityId
    name: DisplayName


class ListBoardsData(_Payload):
    project_id: EntityId | None = None


class CreateBoardData(_Payload):
    name: DisplayName
    slug: Slug | None = None
    project_id: EntityId | None = None


class CreateNodeData(_Payload):
    type: NodeKind
    content: dict[str, Any] = Field(default_factory=dict)
    context: str = ""
    parent_id: EntityId | None = None


class UpdateNodeData(_Payload):
    id: EntityId
    content: dict[str, Any] | None = None
    merge: bool = False
    context: str | None = None
    parent_id: EntityId | None = None


class BranchNodeData(_Payload):
    parent_id: EntityId
    type: NodeKind = "conversation"
    content: dict[str, Any] = Field(default_factory=dict)


class CreateEdgeData(_Payload):
    source_id: EntityId
    target_id: EntityId
    label: str | None = Field(default=None, max_length=200)


class UpdateEdgeData(_Payload):
    id: EntityId
    label: str | None = Field(default=None, max_length=200)


class AddContextData(_Payload):
    node_id: EntityId
    text: str = Field(min_length=1)
    source: ContextSource = "user"


class GetContextData(_Payload):
    node_id: EntityId
    include_inherited: bool = True


class SearchContextData(_Payload):
    query: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1, le=100)

    @field_validator("query")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("query must not be blank")
        return v


class ViewportData(_Payload):
    x: FiniteFloat
    y: FiniteFloat
    zoom: PositiveFloat


class UpdateSettingsData(_Payload):
    agent_name: DisplayName | None = None
    api_key: str | None = None


class NodePosition(_Payload):
    x: FiniteFloat
    y: FiniteFloat


class AskClaudeData(_Payload):
    question: str = Field(min_length=1)
    parent_id: EntityId | None = None
    context: str | None = None
    node_position: NodePosition | None = None
    stream: bool = False


class CommentTurn(_Payload):
    role: TurnRole = "user"
    text: str = Field(min_length=1)


class AskCommentData(_Payload):
    node_id: EntityId
    thread_id: EntityId
    question: str | None = None
    messages: list[CommentTurn] | None = None
