"""
Real-time board synchronisation.

- Connection: one websocket client, snapshot-first delivery
- ConnectionRegistry: board membership and board-scoped broadcast
- MessageDispatcher: envelope validation and handler routing
"""

from .connection import Connection
from .dispatcher import MessageDispatcher
from .registry import ConnectionRegistry

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "MessageDispatcher",
]
