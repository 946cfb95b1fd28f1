"""
Durable key/value settings shared by every board.

Holds the agent display name shown on Claude responses and the Anthropic API
key entered from the canvas. Lives in the same SQLite file as the graph.
"""

import logging
import time

from .base import SQLiteDatabase

logger = logging.getLogger(__name__)

AGENT_NAME_KEY = "agent_name"
API_KEY_KEY = "anthropic_api_key"


class SettingsStore(SQLiteDatabase):
    """Async SQLite key/value store."""

    def __init__(self, db_path, busy_timeout: float = 5.0, default_agent_name: str = "Claude"):
        super().__init__(db_path, busy_timeout)
        self.default_agent_name = default_agent_name

    async def initialize(self) -> None:
        if self._initialized:
            return

        self._ensure_directory()
        async with self._transaction() as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

        self._initialized = True
        logger.info(f"Settings store initialized at {self.db_path}")

    async def get(self, key: str) -> str | None:
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute("SELECT value FROM settings WHERE key = ?", (key,))
            row = await cursor.fetchone()
            return row["value"] if row else None

    async def set(self, key: str, value: str) -> None:
        await self._ensure_initialized()
        async with self._transaction() as db:
            await db.execute(
                """
                INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, time.time()),
            )

    async def delete(self, key: str) -> bool:
        await self._ensure_initialized()
        async with self._transaction() as db:
            cursor = await db.execute("DELETE FROM settings WHERE key = ?", (key,))
            return cursor.rowcount > 0

    async def get_all(self) -> dict[str, str]:
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute("SELECT key, value FROM settings")
            return {row["key"]: row["value"] for row in await cursor.fetchall()}

    async def get_agent_name(self) -> str:
        return await self.get(AGENT_NAME_KEY) or self.default_agent_name

    async def get_api_key(self) -> str | None:
        return await self.get(API_KEY_KEY)
