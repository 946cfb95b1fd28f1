# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Board-scoped graph store.

Owns projects, boards, nodes, edges and the append-only context chain in a
single SQLite file. This is the only path through which graph records are
created or destroyed; the websocket dispatcher, the query orchestrator and the
external tool process all go through it.

Cascades are explicit and happen inside one transaction:
- deleting a node removes its edges and context entries, and detaches children
- deleting a board removes its nodes (and transitively their edges/context)
- deleting a project removes its boards
"""

import json
import logging
import time
import uuid
from typing import Any

import aiosqlite

from ..models.content import merge_content, normalize_content
from ..models.graph import DEFAULT_PROJECT_ID, Board, ContextEntry, Edge, Node, NodeUpdate, Project, Viewport
from ..models.validators import RESPONSE_EDGE_LABEL, ContextSource, NodeKind, is_valid_slug, slugify
from ..utils.errors import InvalidRequestError, NotFoundError
from .base import SQLiteDatabase

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS boards (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        project_id TEXT NOT NULL,
        viewport_x REAL NOT NULL DEFAULT 0,
        viewport_y REAL NOT NULL DEFAULT 0,
        viewport_zoom REAL NOT NULL DEFAULT 1,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS nodes (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        content TEXT NOT NULL,
        context TEXT NOT NULL DEFAULT '',
        parent_id TEXT,
        board_id TEXT NOT NULL,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS edges (
        id TEXT PRIMARY KEY,
        source_id TEXT NOT NULL,
        target_id TEXT NOT NULL,
        label TEXT,
        board_id TEXT NOT NULL,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS context_chain (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        node_id TEXT NOT NULL,
        context_entry TEXT NOT NULL,
        source TEXT NOT NULL,
        embedding BLOB,
        created_at REAL NOT NULL,
        FOREIGN KEY (node_id) REFERENCES nodes(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_boards_project ON boards(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_nodes_board ON nodes(board_id)",
    "CREATE INDEX IF NOT EXISTS idx_nodes_parent ON nodes(parent_id)",
    "CREATE INDEX IF NOT EXISTS idx_edges_board ON edges(board_id)",
    "CREATE INDEX IF NOT EXISTS idx_edges_source ON edges(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_edges_target ON edges(target_id)",
    "CREATE INDEX IF NOT EXISTS idx_context_node ON context_chain(node_id)",
]


def _new_id() -> str:
    return str(uuid.uuid4())


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class GraphStore(SQLiteDatabase):
    """Async SQLite store for the board graph."""

    async def initialize(self) -> None:
        """Create tables and the default project if missing."""
        if self._initialized:
            return

        self._ensure_directory()

        async with self._transaction() as db:
            for stmt in SCHEMA_STATEMENTS:
                await db.execute(stmt)
            await self._ensure_default_project(db)

        self._initialized = True
        logger.info(f"Graph store initialized at {self.db_path}")

    # ── Row helpers ──────────────────────────────────────────────────────

    @staticmethod
    async def _fetch_node(db: aiosqlite.Connection, node_id: str) -> Node | None:
        cursor = await db.execute("SELECT * FROM nodes WHERE id = ?", (node_id,))
        row = await cursor.fetchone()
        return Node.from_row(row) if row else None

    @staticmethod
    async def _fetch_edge(db: aiosqlite.Connection, edge_id: str) -> Edge | None:
        cursor = await db.execute("SELECT * FROM edges WHERE id = ?", (edge_id,))
        row = await cursor.fetchone()
        return Edge.from_row(row) if row else None

    @staticmethod
    async def _fetch_board(db: aiosqlite.Connection, column: str, value: str) -> Board | None:
        cursor = await db.execute(f"SELECT * FROM boards WHERE {column} = ?", (value,))
        row = await cursor.fetchone()
        return Board.from_row(row) if row else None

    @staticmethod
    async def _ensure_default_project(db: aiosqlite.Connection) -> None:
        now = time.time()
        await db.execute(
            "INSERT OR IGNORE INTO projects (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (DEFAULT_PROJECT_ID, "Default", now, now),
        )

    @staticmethod
    async def _insert_node(
        db: aiosqlite.Connection,
        kind: NodeKind,
        content: dict[str, Any],
        context: str,
        parent_id: str | None,
        board_id: str,
    ) -> Node:
        now = time.time()
        node = Node(
            id=_new_id(),
            kind=kind,
            content=normalize_content(kind, content),
            context=context or "",
            parent_id=parent_id,
            board_id=board_id,
            created_at=now,
            updated_at=now,
        )
        await db.execute(
            """
            INSERT INTO nodes (id, type, content, context, parent_id, board_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                node.id,
                node.kind,
                json.dumps(node.content),
                node.context,
                node.parent_id,
                node.board_id,
                node.created_at,
                node.updated_at,
            ),
        )
        return node

    @staticmethod
    async def _insert_edge(
        db: aiosqlite.Connection, source_id: str, target_id: str, label: str | None, board_id: str
    ) -> Edge:
        edge = Edge(id=_new_id(), source_id=source_id, target_id=target_id, label=label, board_id=board_id)
        await db.execute(
            "INSERT INTO edges (id, source_id, target_id, label, board_id, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (edge.id, edge.source_id, edge.target_id, edge.label, edge.board_id, edge.created_at),
        )
        return edge

    @staticmethod
    async def _cascade_board(db: aiosqlite.Connection, board_id: str) -> None:
        await db.execute(
            """
            DELETE FROM edges WHERE board_id = ?
               OR source_id IN (SELECT id FROM nodes WHERE board_id = ?)
               OR target_id IN (SELECT id FROM nodes WHERE board_id = ?)
            """,
            (board_id, board_id, board_id),
        )
        await db.execute("DELETE FROM nodes WHERE board_id = ?", (board_id,))

    # ── Nodes ────────────────────────────────────────────────────────────

    async def create_node(
        self,
        kind: NodeKind,
        content: dict[str, Any] | None,
        context: str = "",
        parent_id: str | None = None,
        *,
        board_id: str,
    ) -> Node:
        """
        Create a node on a board.

        The parent reference is stored as given; a missing or cross-board parent
        simply contributes nothing to context inheritance.
        """
        if not board_id:
            raise InvalidRequestError("board_id is required", field="board_id")
        await self._ensure_initialized()

        async with self._transaction() as db:
            node = await self._insert_node(db, kind, content or {}, context, parent_id, board_id)

        logger.debug(f"Created {kind} node {node.id} on board {board_id}")
        return node

    async def get_node(self, node_id: str) -> Node | None:
        await self._ensure_initialized()
        async with self._connect() as db:
            return await self._fetch_node(db, node_id)

    async def get_all_nodes(self, board_id: str) -> list[Node]:
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM nodes WHERE board_id = ? ORDER BY created_at, rowid", (board_id,))
            return [Node.from_row(row) for row in await cursor.fetchall()]

    async def get_child_nodes(self, parent_id: str) -> list[Node]:
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM nodes WHERE parent_id = ? ORDER BY created_at, rowid", (parent_id,))
            return [Node.from_row(row) for row in await cursor.fetchall()]

    async def update_node(self, node_id: str, update: NodeUpdate) -> Node | None:
        """
        Apply a partial update and stamp ``updated_at``.

        Content is either replaced (``merge=False``) or merged one level deep
        into the stored payload (``merge=True``), validated against the node's
        kind in both cases.

        Returns:
            The updated node, or None if it does not exist
        """
        await self._ensure_initialized()

        async with self._transaction() as db:
            node = await self._fetch_node(db, node_id)
            if node is None:
                return None

            changes: dict[str, Any] = {"updated_at": max(time.time(), node.updated_at)}
            if update.content is not None:
                if update.merge:
                    changes["content"] = merge_content(node.kind, node.content, update.content)
                else:
                    changes["content"] = normalize_content(node.kind, update.content)
            if update.context is not None:
                changes["context"] = update.context
            if update.sets_parent:
                changes["parent_id"] = update.parent_id

            updated = node.model_copy(update=changes)
            await db.execute(
                "UPDATE nodes SET content = ?, context = ?, parent_id = ?, updated_at = ? WHERE id = ?",
                (json.dumps(updated.content), updated.context, updated.parent_id, updated.updated_at, node_id),
            )

        return updated

    async def delete_node(self, node_id: str) -> bool:
        """Delete a node together with its edges and context entries."""
        await self._ensure_initialized()

        async with self._transaction() as db:
            await db.execute("DELETE FROM edges WHERE source_id = ? OR target_id = ?", (node_id, node_id))
            await db.execute("UPDATE nodes SET parent_id = NULL WHERE parent_id = ?", (node_id,))
            cursor = await db.execute("DELETE FROM nodes WHERE id = ?", (node_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.debug(f"Deleted node {node_id}")
        return deleted

    # ── Context inheritance ──────────────────────────────────────────────

    async def get_inherited_context(self, node_id: str) -> str:
        """
        Concatenate the ``context`` of a node and all its ancestors.

        Fragments are ordered root-to-leaf and separated by a blank line; empty
        fragments are skipped. The walk stops at a missing parent, at a parent
        on another board, or when a node id repeats (cycle).
        """
        await self._ensure_initialized()

        fragments: list[str] = []
        seen: set[str] = set()

        async with self._connect() as db:
            current = await self._fetch_node(db, node_id)
            while current is not None:
                if current.id in seen:
                    logger.warning(f"Parent cycle detected while walking context of node {node_id}")
                    break
                seen.add(current.id)
                if current.context:
                    fragments.append(current.context)
                if not current.parent_id:
                    break
                parent = await self._fetch_node(db, current.parent_id)
                if parent is not None and parent.board_id != current.board_id:
                    break
                current = parent

        fragments.reverse()
        return "\n\n".join(fragments)

    async def branch_node(self, parent_id: str, kind: NodeKind, content: dict[str, Any] | None = None) -> Node | None:
        """Create a child whose own context is pre-seeded with the parent's inherited context."""
        parent = await self.get_node(parent_id)
        if parent is None:
            return None

        inherited = await self.get_inherited_context(parent_id)
        return await self.create_node(kind, content or {}, inherited, parent_id, board_id=parent.board_id)

    # ── Edges ────────────────────────────────────────────────────────────

    async def create_edge(self, source_id: str, target_id: str, label: str | None = None, *, board_id: str) -> Edge:
        await self._ensure_initialized()
        async with self._transaction() as db:
            return await self._insert_edge(db, source_id, target_id, label, board_id)

    async def get_edge(self, edge_id: str) -> Edge | None:
        await self._ensure_initialized()
        async with self._connect() as db:
            return await self._fetch_edge(db, edge_id)

    async def get_all_edges(self, board_id: str) -> list[Edge]:
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM edges WHERE board_id = ? ORDER BY created_at, rowid", (board_id,))
            return [Edge.from_row(row) for row in await cursor.fetchall()]

    async def get_edges_for_node(self, node_id: str) -> dict[str, list[Edge]]:
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM edges WHERE target_id = ?", (node_id,))
            incoming = [Edge.from_row(row) for row in await cursor.fetchall()]
            cursor = await db.execute("SELECT * FROM edges WHERE source_id = ?", (node_id,))
            outgoing = [Edge.from_row(row) for row in await cursor.fetchall()]
        return {"incoming": incoming, "outgoing": outgoing}

    async def update_edge(self, edge_id: str, label: str | None) -> Edge | None:
        await self._ensure_initialized()
        async with self._transaction() as db:
            cursor = await db.execute("UPDATE edges SET label = ? WHERE id = ?", (label, edge_id))
            if cursor.rowcount == 0:
                return None
            return await self._fetch_edge(db, edge_id)

    async def delete_edge(self, edge_id: str) -> bool:
        await self._ensure_initialized()
        async with self._transaction() as db:
            cursor = await db.execute("DELETE FROM edges WHERE id = ?", (edge_id,))
            return cursor.rowcount > 0

    async def create_response_node(
        self,
        *,
        board_id: str,
        question: str,
        response: str,
        parent_id: str | None = None,
        position: dict[str, float] | None = None,
    ) -> tuple[Node, Edge | None]:
        """
        Store an answered query as one conversation node, plus a ``response``
        edge from the parent when there is one, in a single transaction.

        Raises:
            NotFoundError: the parent is gone or lives on another board; nothing
                is stored
        """
        await self._ensure_initialized()

        content: dict[str, Any] = {"question": question, "response": response}
        if position is not None:
            content["position"] = position

        async with self._transaction() as db:
            if parent_id:
                parent = await self._fetch_node(db, parent_id)
                if parent is None or parent.board_id != board_id:
                    raise NotFoundError("node", parent_id)
            node = await self._insert_node(db, "conversation", content, response, parent_id, board_id)
            edge = None
            if parent_id:
                edge = await self._insert_edge(db, parent_id, node.id, RESPONSE_EDGE_LABEL, board_id)

        return node, edge

    # ── Context chain ────────────────────────────────────────────────────

    async def add_context(
        self, node_id: str, text: str, source: ContextSource, embedding: bytes | None = None
    ) -> ContextEntry:
        """Append a context entry to a node. Entries are never updated."""
        await self._ensure_initialized()

        now = time.time()
        async with self._transaction() as db:
            if await self._fetch_node(db, node_id) is None:
                raise NotFoundError("node", node_id)
            cursor = await db.execute(
                "INSERT INTO context_chain (node_id, context_entry, source, embedding, created_at) VALUES (?, ?, ?, ?, ?)",
                (node_id, text, source, embedding, now),
            )
            entry_id = cursor.lastrowid

        return ContextEntry(id=entry_id, node_id=node_id, text=text, source=source, embedding=embedding, created_at=now)

    async def get_context_entries(self, node_id: str) -> list[ContextEntry]:
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM context_chain WHERE node_id = ? ORDER BY created_at, id",
                (node_id,),
            )
            return [ContextEntry.from_row(row) for row in await cursor.fetchall()]

    async def search_context(self, board_id: str, query: str, limit: int = 5) -> list[dict[str, Any]]:
        """
        Keyword search over a board's context entries and node context fields.

        Case-insensitive substring match, newest first. Semantic search lives
        in the separate embedding subsystem.
        """
        await self._ensure_initialized()

        pattern = f"%{_escape_like(query.strip())}%"
        async with self._connect() as db:
            cursor = await db.execute(
                """
                SELECT node_id, text, source, created_at FROM (
                    SELECT c.node_id AS node_id, c.context_entry AS text, c.source AS source, c.created_at AS created_at
                    FROM context_chain c JOIN nodes n ON n.id = c.node_id
                    WHERE n.board_id = ? AND c.context_entry LIKE ? ESCAPE '\\'
                    UNION ALL
                    SELECT n.id, n.context, 'node', n.updated_at
                    FROM nodes n
                    WHERE n.board_id = ? AND n.context LIKE ? ESCAPE '\\'
                )
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (board_id, pattern, board_id, pattern, limit),
            )
            return [
                {"node_id": row["node_id"], "text": row["text"], "source": row["source"], "created_at": row["created_at"]}
                for row in await cursor.fetchall()
            ]

    # ── Export ───────────────────────────────────────────────────────────

    async def export_graph(self, board_id: str) -> dict[str, list[dict[str, Any]]]:
        nodes = await self.get_all_nodes(board_id)
        edges = await self.get_all_edges(board_id)
        return {"nodes": [n.to_wire() for n in nodes], "edges": [e.to_wire() for e in edges]}

    # ── Projects ─────────────────────────────────────────────────────────

    async def create_project(self, name: str) -> Project:
        await self._ensure_initialized()
        project = Project(id=_new_id(), name=name)
        async with self._transaction() as db:
            await db.execute(
                "INSERT INTO projects (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (project.id, project.name, project.created_at, project.updated_at),
            )
        return project

    async def get_project(self, project_id: str) -> Project | None:
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
            row = await cursor.fetchone()
            return Project.from_row(row) if row else None

    async def list_projects(self) -> list[Project]:
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM projects ORDER BY created_at, rowid")
            return [Project.from_row(row) for row in await cursor.fetchall()]

    async def rename_project(self, project_id: str, name: str) -> Project | None:
        await self._ensure_initialized()
        async with self._transaction() as db:
            cursor = await db.execute(
                "UPDATE projects SET name = ?, updated_at = ? WHERE id = ?", (name, time.time(), project_id)
            )
            if cursor.rowcount == 0:
                return None
            cursor = await db.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
            return Project.from_row(await cursor.fetchone())

    async def delete_project(self, project_id: str) -> list[str] | None:
        """
        Delete a project and, in the same transaction, every board it owns.

        Returns:
            Ids of the deleted boards, or None if the project does not exist
        """
        await self._ensure_initialized()

        async with self._transaction() as db:
            cursor = await db.execute("SELECT id FROM projects WHERE id = ?", (project_id,))
            if await cursor.fetchone() is None:
                return None
            cursor = await db.execute("SELECT id FROM boards WHERE project_id = ?", (project_id,))
            board_ids = [row["id"] for row in await cursor.fetchall()]
            for board_id in board_ids:
                await self._cascade_board(db, board_id)
            await db.execute("DELETE FROM boards WHERE project_id = ?", (project_id,))
            await db.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            if project_id == DEFAULT_PROJECT_ID:
                await self._ensure_default_project(db)

        logger.info(f"Deleted project {project_id} with {len(board_ids)} board(s)")
        return board_ids

    # ── Boards ───────────────────────────────────────────────────────────

    async def create_board(self, name: str, slug: str | None = None, project_id: str | None = None) -> Board:
        """
        Create a board explicitly.

        An explicit slug must be unused; a slug derived from the name gets a
        numeric suffix until it is unique.
        """
        await self._ensure_initialized()
        project_id = project_id or DEFAULT_PROJECT_ID

        async with self._transaction() as db:
            cursor = await db.execute("SELECT id FROM projects WHERE id = ?", (project_id,))
            if await cursor.fetchone() is None:
                raise NotFoundError("project", project_id)

            if slug is not None:
                if await self._fetch_board(db, "slug", slug) is not None:
                    raise InvalidRequestError(f"Board slug already in use: {slug}", field="slug")
            else:
                base = slugify(name)
                slug, n = base, 1
                while await self._fetch_board(db, "slug", slug) is not None:
                    n += 1
                    slug = f"{base[:60]}-{n}"

            board = Board(id=_new_id(), name=name, slug=slug, project_id=project_id)
            await self._insert_board(db, board)

        logger.info(f"Created board '{board.slug}' ({board.id})")
        return board

    @staticmethod
    async def _insert_board(db: aiosqlite.Connection, board: Board) -> None:
        await db.execute(
            """
            INSERT INTO boards (id, name, slug, project_id, viewport_x, viewport_y, viewport_zoom, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                board.id,
                board.name,
                board.slug,
                board.project_id,
                board.viewport.x,
                board.viewport.y,
                board.viewport.zoom,
                board.created_at,
                board.updated_at,
            ),
        )

    async def get_board(self, board_id: str) -> Board | None:
        await self._ensure_initialized()
        async with self._connect() as db:
            return await self._fetch_board(db, "id", board_id)

    async def get_board_by_slug(self, slug: str) -> Board | None:
        await self._ensure_initialized()
        async with self._connect() as db:
            return await self._fetch_board(db, "slug", slug)

    async def get_or_create_board(self, slug: str) -> Board:
        """Return the board for ``slug``, creating it in the default project on first reference."""
        if not is_valid_slug(slug):
            raise InvalidRequestError(f"Invalid board slug: {slug!r}", field="board")
        await self._ensure_initialized()

        async with self._transaction() as db:
            board = await self._fetch_board(db, "slug", slug)
            if board is not None:
                return board
            await self._ensure_default_project(db)
            board = Board(id=_new_id(), name=slug, slug=slug, project_id=DEFAULT_PROJECT_ID)
            await self._insert_board(db, board)

        logger.info(f"Auto-created board '{slug}' ({board.id})")
        return board

    async def list_boards(self, project_id: str | None = None) -> list[Board]:
        await self._ensure_initialized()
        async with self._connect() as db:
            if project_id is None:
                cursor = await db.execute("SELECT * FROM boards ORDER BY created_at, rowid")
            else:
                cursor = await db.execute(
                    "SELECT * FROM boards WHERE project_id = ? ORDER BY created_at, rowid", (project_id,)
                )
            return [Board.from_row(row) for row in await cursor.fetchall()]

    async def rename_board(self, board_id: str, name: str) -> Board | None:
        await self._ensure_initialized()
        async with self._transaction() as db:
            cursor = await db.execute("UPDATE boards SET name = ?, updated_at = ? WHERE id = ?", (name, time.time(), board_id))
            if cursor.rowcount == 0:
                return None
            return await self._fetch_board(db, "id", board_id)

    async def update_viewport(self, board_id: str, viewport: Viewport) -> Board | None:
        await self._ensure_initialized()
        async with self._transaction() as db:
            cursor = await db.execute(
                "UPDATE boards SET viewport_x = ?, viewport_y = ?, viewport_zoom = ?, updated_at = ? WHERE id = ?",
                (viewport.x, viewport.y, viewport.zoom, time.time(), board_id),
            )
            if cursor.rowcount == 0:
                return None
            return await self._fetch_board(db, "id", board_id)

    async def delete_board(self, board_id: str) -> bool:
        """Delete a board and all of its nodes, edges and context entries atomically."""
        await self._ensure_initialized()

        async with self._transaction() as db:
            if await self._fetch_board(db, "id", board_id) is None:
                return False
            await self._cascade_board(db, board_id)
            await db.execute("DELETE FROM boards WHERE id = ?", (board_id,))

        logger.info(f"Deleted board {board_id}")
        return True
