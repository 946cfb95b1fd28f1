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
Shared aiosqlite plumbing for the durable stores.

aiosqlite does not keep persistent connections here: every operation opens a
short-lived connection. Multi-statement writes run inside ``BEGIN IMMEDIATE``
so concurrent writers (websocket handlers, bridge requests) are serialised by
SQLite's own locking.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)


class SQLiteDatabase:
    """Base class for stores living in the GetSticky SQLite file."""

    def __init__(self, db_path: str | Path, busy_timeout: float = 5.0):
        """
        Args:
            db_path: Path to SQLite database file
            busy_timeout: Seconds to wait for a competing writer's lock
        """
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        self._initialized = False

    def _ensure_directory(self) -> None:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON")
            yield db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection holding the write lock until commit/rollback."""
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def initialize(self) -> None:  # pragma: no cover - overridden
        raise NotImplementedError

    async def close(self) -> None:
        """Close database connections."""
        # aiosqlite doesn't maintain persistent connections, so nothing to close
        pass
