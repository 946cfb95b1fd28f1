"""Durable SQLite stores: the board graph and shared settings."""

from .graph_store import GraphStore
from .settings_store import SettingsStore

__all__ = ["GraphStore", "SettingsStore"]
