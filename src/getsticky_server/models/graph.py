"""Graph data models: nodes, edges, context entries, boards and projects.

Pydantic v2 models shared by the store, the dispatcher and the query
orchestrator. ``to_wire()`` produces the JSON shape sent to canvas clients.
"""

import json
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .validators import ContextSource, FiniteFloat, NodeKind, PositiveFloat

DEFAULT_PROJECT_ID = "default"


class Node(BaseModel):
    """A canvas node. ``kind`` travels as ``type`` on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    kind: NodeKind = Field(alias="type")
    content: dict[str, Any] = Field(default_factory=dict)
    context: str = ""
    parent_id: str | None = None
    board_id: str
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    @classmethod
    def from_row(cls, row: Any) -> "Node":
        return cls(
            id=row["id"],
            kind=row["type"],
            content=json.loads(row["content"]) if row["content"] else {},
            context=row["context"] or "",
            parent_id=row["parent_id"],
            board_id=row["board_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class NodeUpdate(BaseModel):
    """Partial node update.

    ``merge=True`` merges ``content`` one level deep into the stored payload,
    otherwise ``content`` replaces it. ``parent_id`` is only applied when it
    was explicitly provided, so ``parent_id=None`` detaches the node.
    """

    content: dict[str, Any] | None = None
    merge: bool = False
    context: str | None = None
    parent_id: str | None = None

    @property
    def sets_parent(self) -> bool:
        return "parent_id" in self.model_fields_set


class Edge(BaseModel):
    id: str
    source_id: str
    target_id: str
    label: str | None = None
    board_id: str
    created_at: float = Field(default_factory=time.time)

    @classmethod
    def from_row(cls, row: Any) -> "Edge":
        return cls(
            id=row["id"],
            source_id=row["source_id"],
            target_id=row["target_id"],
            label=row["label"],
            board_id=row["board_id"],
            created_at=row["created_at"],
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()


class ContextEntry(BaseModel):
    """Append-only fact attached to a node."""

    id: int
    node_id: str
    text: str
    source: ContextSource
    embedding: bytes | None = None
    created_at: float

    @classmethod
    def from_row(cls, row: Any) -> "ContextEntry":
        return cls(
            id=row["id"],
            node_id=row["node_id"],
            text=row["context_entry"],
            source=row["source"],
            embedding=row["embedding"],
            created_at=row["created_at"],
        )

    def to_wire(self) -> dict[str, Any]:
        # Embeddings belong to the search subsystem and never go to clients
        return self.model_dump(exclude={"embedding"})


class Viewport(BaseModel):
    x: FiniteFloat = 0.0
    y: FiniteFloat = 0.0
    zoom: PositiveFloat = 1.0


class Board(BaseModel):
    id: str
    name: str
    slug: str
    project_id: str = DEFAULT_PROJECT_ID
    viewport: Viewport = Field(default_factory=Viewport)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    @classmethod
    def from_row(cls, row: Any) -> "Board":
        return cls(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            project_id=row["project_id"],
            viewport=Viewport(x=row["viewport_x"], y=row["viewport_y"], zoom=row["viewport_zoom"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()


class Project(BaseModel):
    id: str
    name: str
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    @classmethod
    def from_row(cls, row: Any) -> "Project":
        return cls(id=row["id"], name=row["name"], created_at=row["created_at"], updated_at=row["updated_at"])

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()
