"""
Protocol validation and dispatch for board websockets.

Every inbound frame must be a JSON object ``{type, data?, id?}`` whose
``type`` is on the allow-list in ``models.protocol``. Anything else is
answered with an ``error`` message to the sender only, tagged with the
request ``id`` when one was supplied.

Handlers decide where their result goes:
- sender only (reads, queries' streamed chunks)
- every viewer of the affected board (graph mutations)
- every connection (shared settings)

Handlers run one at a time across all connections, under the write lock
shared with the query orchestrator, so broadcasts leave in commit order.
Claude queries run as tracked background tasks so a slow model never holds up
other traffic; they take the lock only to persist and broadcast the answer.

Viewers of a deleted board are closed with 1008 once ``board_deleted`` has
been sent to them.
"""

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from ..config import LLMSettings
from ..models.graph import Board, Edge, Node, NodeUpdate, Viewport
from ..models.protocol import (
    INBOUND_TYPES,
    AddContextData,
    AskClaudeData,
    AskCommentData,
    BranchNodeData,
    CreateBoardData,
    CreateEdgeData,
    CreateNodeData,
    CreateProjectData,
    Envelope,
    GetContextData,
    IdData,
    ListBoardsData,
    RenameData,
    SearchContextData,
    UpdateEdgeData,
    UpdateNodeData,
    UpdateSettingsData,
    ViewportData,
    error_message,
    message,
)
from ..services.llm_backend import LLMBackend, create_backend
from ..services.query_service import QueryOrchestrator
from ..storage.graph_store import GraphStore
from ..storage.settings_store import AGENT_NAME_KEY, API_KEY_KEY, SettingsStore
from ..utils.errors import GetStickyError, InvalidRequestError, NotFoundError, ProtocolError
from .connection import Connection
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)

API_KEY_PATTERN = re.compile(r"^sk-ant-[A-Za-z0-9_-]{8,}$")
BOARD_GONE = 1008


@dataclass
class RequestContext:
    """One inbound message, bound to the connection and board it came from."""

    connection: Connection
    board_id: str
    data: dict[str, Any]
    request_id: str | None = None


Handler = Callable[[RequestContext], Awaitable[None]]


def _validation_to_request_error(e: ValidationError) -> InvalidRequestError:
    first = e.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    text = f"Invalid {field}: {first['msg']}" if field else first["msg"]
    return InvalidRequestError(text, field=field)


class MessageDispatcher:
    """Routes validated envelopes to graph, board, settings and query handlers."""

    def __init__(
        self,
        store: GraphStore,
        registry: ConnectionRegistry,
        orchestrator: QueryOrchestrator,
        settings_store: SettingsStore,
        llm_settings: LLMSettings,
        backend_factory: Callable[[str | None, LLMSettings], LLMBackend | None] = create_backend,
    ):
        self.store = store
        self.registry = registry
        self.orchestrator = orchestrator
        self.settings_store = settings_store
        self.llm_settings = llm_settings
        self._backend_factory = backend_factory
        self._write_lock = orchestrator.write_lock
        self._tasks: set[asyncio.Task] = set()

        self._handlers: dict[str, Handler] = {
            "list_projects": self._list_projects,
            "create_project": self._create_project,
            "update_project": self._update_project,
            "delete_project": self._delete_project,
            "list_boards": self._list_boards,
            "get_board": self._get_board,
            "create_board": self._create_board,
            "update_board": self._update_board,
            "delete_board": self._delete_board,
            "get_node": self._get_node,
            "create_node": self._create_node,
            "update_node": self._update_node,
            "delete_node": self._delete_node,
            "branch_node": self._branch_node,
            "create_edge": self._create_edge,
            "update_edge": self._update_edge,
            "delete_edge": self._delete_edge,
            "add_context": self._add_context,
            "get_context": self._get_context,
            "search_context": self._search_context,
            "update_viewport": self._update_viewport,
            "get_settings": self._get_settings,
            "update_settings": self._update_settings,
            "ask_claude": self._ask_claude,
            "ask_claude_comment": self._ask_claude_comment,
        }
        missing = INBOUND_TYPES - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for message types: {sorted(missing)}")

    # ── Entry points ─────────────────────────────────────────────────────

    async def send_snapshot(self, connection: Connection, board: Board) -> None:
        """Push ``initial_state`` for the connection's board before anything else."""
        graph = await self.store.export_graph(board.id)
        await connection.prime(
            message(
                "initial_state",
                {
                    "board": board.to_wire(),
                    "nodes": graph["nodes"],
                    "edges": graph["edges"],
                    "viewport": board.viewport.model_dump(),
                },
            )
        )

    @staticmethod
    def parse(raw: str | bytes) -> Envelope:
        """
        Validate one inbound frame.

        Raises:
            ProtocolError: not JSON, not an object, malformed, or type not allowed
        """
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProtocolError(f"Invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise ProtocolError("Message must be a JSON object")

        try:
            envelope = Envelope.model_validate(payload)
        except ValidationError as e:
            first = e.errors()[0]
            raise ProtocolError(f"Malformed message envelope: {'.'.join(map(str, first['loc']))} {first['msg']}") from e

        if envelope.type not in INBOUND_TYPES:
            raise ProtocolError(f"Unknown message type: {envelope.type}")
        return envelope

    @staticmethod
    def _raw_request_id(raw: str | bytes) -> str | None:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        if isinstance(payload, dict) and isinstance(payload.get("id"), str):
            return payload["id"]
        return None

    async def dispatch(self, connection: Connection, raw: str | bytes) -> None:
        """Handle one inbound frame from a connection. Never raises."""
        try:
            envelope = self.parse(raw)
        except ProtocolError as e:
            logger.info(f"Rejected frame from {connection!r}: {e.message}")
            await self._report(connection, e, self._raw_request_id(raw))
            return

        async with self._write_lock:
            # Looked up under the lock: a board deleted by an earlier frame detaches its viewers
            board_id = self.registry.board_of(connection)
            if board_id is None:
                await self._report(connection, ProtocolError("Connection has not joined a board"), envelope.id)
                return

            ctx = RequestContext(connection=connection, board_id=board_id, data=envelope.data, request_id=envelope.id)
            logger.debug(f"{connection!r} -> {envelope.type} (board={board_id}, id={envelope.id})")
            await self._guarded(ctx, self._handlers[envelope.type](ctx))

    async def _guarded(self, ctx: RequestContext, work: Coroutine[Any, Any, None]) -> None:
        try:
            await work
        except GetStickyError as e:
            await self._report(ctx.connection, e, ctx.request_id)
        except ValidationError as e:
            await self._report(ctx.connection, _validation_to_request_error(e), ctx.request_id)
        except Exception as e:
            logger.exception(f"Unhandled error while serving {ctx.connection!r}")
            await self.registry.send(ctx.connection, error_message(f"Internal error: {e}", ctx.request_id))

    async def _report(self, connection: Connection, error: GetStickyError, request_id: str | None) -> None:
        await self.registry.send(connection, error_message(error.message, request_id, error.details()))

    def _spawn(self, ctx: RequestContext, work: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(self._guarded(ctx, work), name=f"query-{ctx.connection.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight Claude queries to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _reply(self, ctx: RequestContext, type: str, data: Any = None) -> None:
        await self.registry.send(ctx.connection, message(type, data, ctx.request_id))

    async def _broadcast(self, board_id: str, type: str, data: Any, request_id: str | None) -> None:
        await self.registry.send_to_board(board_id, message(type, data, request_id))

    async def _broadcast_and_reply(self, ctx: RequestContext, board_id: str, type: str, data: Any) -> None:
        """Broadcast to a board, and answer the sender too if it is viewing another board."""
        await self._broadcast(board_id, type, data, ctx.request_id)
        if self.registry.board_of(ctx.connection) != board_id:
            await self._reply(ctx, type, data)

    async def _board_node(self, ctx: RequestContext, node_id: str) -> Node:
        node = await self.store.get_node(node_id)
        if node is None or node.board_id != ctx.board_id:
            raise NotFoundError("node", node_id)
        return node

    async def _board_edge(self, ctx: RequestContext, edge_id: str) -> Edge:
        edge = await self.store.get_edge(edge_id)
        if edge is None or edge.board_id != ctx.board_id:
            raise NotFoundError("edge", edge_id)
        return edge

    async def _check_parent(self, ctx: RequestContext, parent_id: str | None, node_id: str | None = None) -> None:
        """A parent must live on the same board; a missing parent is tolerated."""
        if parent_id is None:
            return
        if parent_id == node_id:
            raise InvalidRequestError("A node cannot be its own parent", field="parent_id")
        parent = await self.store.get_node(parent_id)
        if parent is not None and parent.board_id != ctx.board_id:
            raise InvalidRequestError(f"Parent node {parent_id} belongs to another board", field="parent_id")

    async def _settings_payload(self) -> dict[str, Any]:
        return {
            "agent_name": await self.settings_store.get_agent_name(),
            "has_api_key": bool(await self.settings_store.get_api_key() or self._env_api_key()),
        }

    def _env_api_key(self) -> str | None:
        key = self.llm_settings.api_key
        return key.get_secret_value() if key else None

    # ── Projects ─────────────────────────────────────────────────────────

    async def _list_projects(self, ctx: RequestContext) -> None:
        projects = await self.store.list_projects()
        await self._reply(ctx, "project_list", [p.to_wire() for p in projects])

    async def _create_project(self, ctx: RequestContext) -> None:
        data = CreateProjectData.model_validate(ctx.data)
        project = await self.store.create_project(data.name)
        await self._reply(ctx, "project_created", project.to_wire())

    async def _update_project(self, ctx: RequestContext) -> None:
        data = RenameData.model_validate(ctx.data)
        project = await self.store.rename_project(data.id, data.name)
        if project is None:
            raise NotFoundError("project", data.id)
        await self._reply(ctx, "project_updated", project.to_wire())

    async def _delete_project(self, ctx: RequestContext) -> None:
        data = IdData.model_validate(ctx.data)
        board_ids = await self.store.delete_project(data.id)
        if board_ids is None:
            raise NotFoundError("project", data.id)

        for board_id in board_ids:
            await self._broadcast(board_id, "board_deleted", {"id": board_id}, ctx.request_id)
        await self._reply(ctx, "project_deleted", {"id": data.id, "board_ids": board_ids})
        for board_id in board_ids:
            await self.registry.close_board(board_id, code=BOARD_GONE)

    # ── Boards ───────────────────────────────────────────────────────────

    async def _list_boards(self, ctx: RequestContext) -> None:
        data = ListBoardsData.model_validate(ctx.data)
        boards = await self.store.list_boards(data.project_id)
        await self._reply(ctx, "board_list", [b.to_wire() for b in boards])

    async def _get_board(self, ctx: RequestContext) -> None:
        data = IdData.model_validate(ctx.data)
        board = await self.store.get_board(data.id)
        if board is None:
            raise NotFoundError("board", data.id)
        await self._reply(ctx, "board", board.to_wire())

    async def _create_board(self, ctx: RequestContext) -> None:
        data = CreateBoardData.model_validate(ctx.data)
        board = await self.store.create_board(data.name, data.slug, data.project_id)
        await self._reply(ctx, "board_created", board.to_wire())

    async def _update_board(self, ctx: RequestContext) -> None:
        data = RenameData.model_validate(ctx.data)
        board = await self.store.rename_board(data.id, data.name)
        if board is None:
            raise NotFoundError("board", data.id)
        await self._reply(ctx, "board_updated", board.to_wire())

    async def _delete_board(self, ctx: RequestContext) -> None:
        data = IdData.model_validate(ctx.data)
        if not await self.store.delete_board(data.id):
            raise NotFoundError("board", data.id)
        await self._broadcast_and_reply(ctx, data.id, "board_deleted", {"id": data.id})
        await self.registry.close_board(data.id, code=BOARD_GONE)

    # ── Nodes ────────────────────────────────────────────────────────────

    async def _get_node(self, ctx: RequestContext) -> None:
        data = IdData.model_validate(ctx.data)
        node = await self._board_node(ctx, data.id)
        await self._reply(ctx, "node", node.to_wire())

    async def _create_node(self, ctx: RequestContext) -> None:
        data = CreateNodeData.model_validate(ctx.data)
        await self._check_parent(ctx, data.parent_id)
        node = await self.store.create_node(data.type, data.content, data.context, data.parent_id, board_id=ctx.board_id)
        await self._broadcast(ctx.board_id, "node_created", node.to_wire(), ctx.request_id)

    async def _update_node(self, ctx: RequestContext) -> None:
        data = UpdateNodeData.model_validate(ctx.data)
        await self._board_node(ctx, data.id)

        fields = data.model_dump(exclude_unset=True, exclude={"id"})
        update = NodeUpdate(**fields)
        if update.sets_parent:
            await self._check_parent(ctx, update.parent_id, data.id)

        node = await self.store.update_node(data.id, update)
        if node is None:
            raise NotFoundError("node", data.id)
        await self._broadcast(ctx.board_id, "node_updated", node.to_wire(), ctx.request_id)

    async def _delete_node(self, ctx: RequestContext) -> None:
        data = IdData.model_validate(ctx.data)
        await self._board_node(ctx, data.id)
        if not await self.store.delete_node(data.id):
            raise NotFoundError("node", data.id)
        await self._broadcast(ctx.board_id, "node_deleted", {"id": data.id}, ctx.request_id)

    async def _branch_node(self, ctx: RequestContext) -> None:
        data = BranchNodeData.model_validate(ctx.data)
        await self._board_node(ctx, data.parent_id)
        node = await self.store.branch_node(data.parent_id, data.type, data.content)
        if node is None:
            raise NotFoundError("node", data.parent_id)
        await self._broadcast(ctx.board_id, "node_created", node.to_wire(), ctx.request_id)

    # ── Edges ────────────────────────────────────────────────────────────

    async def _create_edge(self, ctx: RequestContext) -> None:
        data = CreateEdgeData.model_validate(ctx.data)
        await self._board_node(ctx, data.source_id)
        await self._board_node(ctx, data.target_id)
        edge = await self.store.create_edge(data.source_id, data.target_id, data.label, board_id=ctx.board_id)
        await self._broadcast(ctx.board_id, "edge_created", edge.to_wire(), ctx.request_id)

    async def _update_edge(self, ctx: RequestContext) -> None:
        data = UpdateEdgeData.model_validate(ctx.data)
        await self._board_edge(ctx, data.id)
        edge = await self.store.update_edge(data.id, data.label)
        if edge is None:
            raise NotFoundError("edge", data.id)
        await self._broadcast(ctx.board_id, "edge_updated", edge.to_wire(), ctx.request_id)

    async def _delete_edge(self, ctx: RequestContext) -> None:
        data = IdData.model_validate(ctx.data)
        await self._board_edge(ctx, data.id)
        if not await self.store.delete_edge(data.id):
            raise NotFoundError("edge", data.id)
        await self._broadcast(ctx.board_id, "edge_deleted", {"id": data.id}, ctx.request_id)

    # ── Context ──────────────────────────────────────────────────────────

    async def _add_context(self, ctx: RequestContext) -> None:
        data = AddContextData.model_validate(ctx.data)
        await self._board_node(ctx, data.node_id)
        entry = await self.store.add_context(data.node_id, data.text, data.source)
        await self._broadcast(ctx.board_id, "context_added", entry.to_wire(), ctx.request_id)

    async def _get_context(self, ctx: RequestContext) -> None:
        data = GetContextData.model_validate(ctx.data)
        node = await self._board_node(ctx, data.node_id)
        entries = await self.store.get_context_entries(node.id)
        payload = {
            "node_id": node.id,
            "context": node.context,
            "entries": [entry.to_wire() for entry in entries],
        }
        if data.include_inherited:
            payload["inherited_context"] = await self.store.get_inherited_context(node.id)
        await self._reply(ctx, "node_context", payload)

    async def _search_context(self, ctx: RequestContext) -> None:
        data = SearchContextData.model_validate(ctx.data)
        results = await self.store.search_context(ctx.board_id, data.query, data.limit)
        await self._reply(ctx, "search_results", {"query": data.query, "results": results})

    # ── Viewport / settings ──────────────────────────────────────────────

    async def _update_viewport(self, ctx: RequestContext) -> None:
        data = ViewportData.model_validate(ctx.data)
        board = await self.store.update_viewport(ctx.board_id, Viewport(x=data.x, y=data.y, zoom=data.zoom))
        if board is None:
            raise NotFoundError("board", ctx.board_id)
        await self._reply(ctx, "viewport_updated", {"board_id": board.id, "viewport": board.viewport.model_dump()})

    async def _get_settings(self, ctx: RequestContext) -> None:
        await self._reply(ctx, "settings", await self._settings_payload())

    async def _update_settings(self, ctx: RequestContext) -> None:
        data = UpdateSettingsData.model_validate(ctx.data)
        if data.agent_name is None and data.api_key is None:
            raise InvalidRequestError("No settings to update")

        api_key = data.api_key.strip() if data.api_key is not None else None
        if api_key and not API_KEY_PATTERN.match(api_key):
            raise InvalidRequestError("API key must look like 'sk-ant-...'", field="api_key")

        if data.agent_name is not None:
            await self.settings_store.set(AGENT_NAME_KEY, data.agent_name.strip())

        if api_key is not None:
            if api_key:
                await self.settings_store.set(API_KEY_KEY, api_key)
            else:
                await self.settings_store.delete(API_KEY_KEY)
            self.orchestrator.configure(self._backend_factory(api_key or self._env_api_key(), self.llm_settings))

        await self.registry.send_to_all(message("settings_updated", await self._settings_payload(), ctx.request_id))

    # ── Claude queries ───────────────────────────────────────────────────

    async def _ask_claude(self, ctx: RequestContext) -> None:
        data = AskClaudeData.model_validate(ctx.data)
        self._spawn(ctx, self.orchestrator.ask(ctx.connection, ctx.board_id, data, ctx.request_id))

    async def _ask_claude_comment(self, ctx: RequestContext) -> None:
        data = AskCommentData.model_validate(ctx.data)
        node = await self._board_node(ctx, data.node_id)
        self._spawn(ctx, self.orchestrator.ask_comment(ctx.connection, node, data, ctx.request_id))
