"""Data models for boards, graphs and the websocket protocol."""

from .graph import Board, ContextEntry, Edge, Node, NodeUpdate, Project, Viewport

__all__ = [
    "Board",
    "ContextEntry",
    "Edge",
    "Node",
    "NodeUpdate",
    "Project",
    "Viewport",
]
