"""Claude query orchestration.

Turns a question asked on a board into a Claude round-trip and, for graph
queries, into a new conversation node:

1. Build background context from the parent's inherited context plus any
   explicit context.
2. Call the backend in batch or streaming mode. Streamed chunks go to the
   requesting connection only; no node exists yet.
3. On completion, store the node (and the parent→node ``response`` edge) in
   one transaction, broadcast ``edge_created`` and then ``claude_response``.

A failed or abandoned stream never creates a node. Comment-thread queries
reply to the requester only and never touch the graph.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from typing import TYPE_CHECKING, Any

from ..models.graph import Node
from ..models.protocol import AskClaudeData, AskCommentData, message
from ..storage.graph_store import GraphStore
from ..storage.settings_store import SettingsStore
from ..utils.errors import BackendError, GetStickyError, InvalidRequestError, NotFoundError
from .llm_backend import LLMBackend

if TYPE_CHECKING:
    from ..sync.connection import Connection
    from ..sync.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."
NOT_CONFIGURED_MESSAGE = "Claude API not configured. Set ANTHROPIC_API_KEY or add an API key in settings."

_ASSISTANT_AUTHORS = frozenset({"assistant", "agent", "claude"})


def build_system_prompt(context: str) -> str:
    if not context.strip():
        return DEFAULT_SYSTEM_PROMPT
    return f"{DEFAULT_SYSTEM_PROMPT} Here is the conversation context:\n\n{context}"


def alternate_turns(turns: list[tuple[str, str]]) -> list[dict[str, str]]:
    """
    Normalise a comment thread into strictly alternating turns.

    Consecutive turns from the same role are joined with a blank line and
    leading assistant turns are dropped, since a conversation must open with
    the user.
    """
    messages: list[dict[str, str]] = []
    for role, text in turns:
        text = text.strip()
        if not text:
            continue
        if not messages and role != "user":
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += f"\n\n{text}"
        else:
            messages.append({"role": role, "content": text})
    return messages


class QueryOrchestrator:
    """Runs Claude queries for websocket clients."""

    def __init__(
        self,
        store: GraphStore,
        registry: "ConnectionRegistry",
        settings_store: SettingsStore,
        backend: LLMBackend | None = None,
        write_lock: asyncio.Lock | None = None,
    ):
        self.store = store
        self.registry = registry
        self.settings_store = settings_store
        self._backend = backend
        # Shared with the dispatcher: a commit and its broadcasts happen under it
        self.write_lock = write_lock or asyncio.Lock()

    @property
    def is_available(self) -> bool:
        return self._backend is not None

    def configure(self, backend: LLMBackend | None) -> None:
        """Swap the backend, e.g. after the API key changed."""
        self._backend = backend
        logger.info(f"Query backend {'configured' if backend else 'disabled'}")

    def _require_backend(self) -> LLMBackend:
        if self._backend is None:
            raise BackendError(NOT_CONFIGURED_MESSAGE)
        return self._backend

    async def build_context(self, parent_id: str | None, extra_context: str | None) -> str:
        """Parent's inherited context, a blank line, then the explicit context."""
        extra = extra_context or ""
        if not parent_id:
            return extra

        inherited = await self.store.get_inherited_context(parent_id)
        if not inherited:
            return extra
        return f"{inherited}\n\n{extra}" if extra else inherited

    # ── Graph query ──────────────────────────────────────────────────────

    async def ask(
        self,
        connection: "Connection",
        board_id: str,
        request: AskClaudeData,
        request_id: str | None = None,
    ) -> Node | None:
        """
        Answer a question and materialise the answer as a conversation node.

        Returns:
            The created node, or None if the requester went away mid-stream

        Raises:
            BackendError: backend missing or failing (no node is created)
            NotFoundError: parent is not a node on this board, either up front
                or by the time the answer arrives (no node is created)
        """
        backend = self._require_backend()

        if request.parent_id:
            parent = await self.store.get_node(request.parent_id)
            if parent is None or parent.board_id != board_id:
                raise NotFoundError("node", request.parent_id)

        context = await self.build_context(request.parent_id, request.context)
        system = build_system_prompt(context)
        messages = [{"role": "user", "content": request.question}]

        started = time.perf_counter()
        try:
            if request.stream:
                response = await self._stream_to(connection, backend, system, messages, request_id)
                if response is None:
                    return None
            else:
                response = await backend.complete(system, messages)
        except GetStickyError:
            raise
        except Exception as e:
            logger.warning(f"Claude query failed: {e}")
            raise BackendError(f"Claude API error: {e}") from e

        position = request.node_position.model_dump() if request.node_position else None
        agent_name = await self.settings_store.get_agent_name()

        async with self.write_lock:
            # The parent may have been deleted while the model was answering
            node, edge = await self.store.create_response_node(
                board_id=board_id,
                question=request.question,
                response=response,
                parent_id=request.parent_id,
                position=position,
            )
            logger.info(
                f"Claude answered on board {board_id} in {(time.perf_counter() - started) * 1000:.0f}ms -> node {node.id}"
            )

            # Edge first so clients never see an edge pointing at an unknown node
            if edge is not None:
                await self.registry.send_to_board(board_id, message("edge_created", edge.to_wire(), request_id))
            await self.registry.send_to_board(
                board_id,
                message("claude_response", {"node": node.to_wire(), "complete": True, "agent_name": agent_name}, request_id),
            )
        return node

    async def _stream_to(
        self,
        connection: "Connection",
        backend: LLMBackend,
        system: str,
        messages: list[dict[str, str]],
        request_id: str | None,
    ) -> str | None:
        parts: list[str] = []
        async with aclosing(backend.stream(system, messages)) as chunks:
            async for chunk in chunks:
                parts.append(chunk)
                delivered = await self.registry.send(
                    connection, message("claude_streaming", {"chunk": chunk, "complete": False}, request_id)
                )
                if not delivered:
                    logger.info(f"{connection!r} closed mid-stream, abandoning query")
                    return None
        return "".join(parts)

    # ── Comment thread query ─────────────────────────────────────────────

    async def ask_comment(
        self,
        connection: "Connection",
        node: Node,
        request: AskCommentData,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Reply inside a node's comment thread.

        The node's own context is the background; the prior thread is replayed
        as alternating turns. Only the requester receives the reply.
        """
        backend = self._require_backend()
        agent_name = await self.settings_store.get_agent_name()

        if request.messages is not None:
            turns = [(turn.role, turn.text) for turn in request.messages]
        else:
            turns = self._thread_turns(node, request.thread_id, agent_name)
            if turns is None and not request.question:
                raise NotFoundError("thread", request.thread_id)
            turns = turns or []

        if request.question:
            turns.append(("user", request.question))

        messages = alternate_turns(turns)
        if not messages or messages[-1]["role"] != "user":
            raise InvalidRequestError("Comment thread must end with a user message", field="messages")

        try:
            reply = await backend.complete(build_system_prompt(node.context), messages)
        except GetStickyError:
            raise
        except Exception as e:
            logger.warning(f"Claude comment reply failed: {e}")
            raise BackendError(f"Claude API error: {e}") from e

        payload = {
            "node_id": node.id,
            "thread_id": request.thread_id,
            "message": {"role": "assistant", "author": agent_name, "text": reply, "created_at": time.time()},
        }
        await self.registry.send(connection, message("comment_response", payload, request_id))
        return payload

    @staticmethod
    def _thread_turns(node: Node, thread_id: str, agent_name: str) -> list[tuple[str, str]] | None:
        """Read a stored comment thread from the node content, if present."""
        for thread in node.content.get("comments") or []:
            if not isinstance(thread, dict) or thread.get("id") != thread_id:
                continue
            turns = []
            for msg in thread.get("messages") or []:
                if not isinstance(msg, dict):
                    continue
                role = msg.get("role")
                if role not in ("user", "assistant"):
                    author = str(msg.get("author", "")).lower()
                    role = "assistant" if author in _ASSISTANT_AUTHORS or author == agent_name.lower() else "user"
                turns.append((role, str(msg.get("text") or msg.get("content") or "")))
            return turns
        return None
