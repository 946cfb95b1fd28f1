#!/usr/bin/env python3
"""Attach a context entry to a node from outside the board server.

Writes straight to the shared SQLite file, then asks the running server to
push ``context_added`` to the board's live viewers through the notification
bridge. If the server is down the entry is still stored; viewers pick it up
on their next snapshot.

Usage:
    python scripts/add_context.py --node <node-id> --source codebase \
        --text "Auth uses JWT, see src/auth/tokens.py"

    # Server on another port:
    python scripts/add_context.py --node <id> --text "..." --server http://127.0.0.1:9000
"""

import argparse
import asyncio
import logging
import sys
from typing import get_args

from getsticky_server.config import settings
from getsticky_server.models.validators import ContextSource
from getsticky_server.services.notifier import BoardNotifier
from getsticky_server.storage.graph_store import GraphStore
from getsticky_server.utils.errors import NotFoundError

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def add_context(db_path: str, server_url: str, node_id: str, text: str, source: str) -> bool:
    store = GraphStore(db_path, busy_timeout=settings.database.busy_timeout)
    await store.initialize()

    node = await store.get_node(node_id)
    if node is None:
        logger.error(f"Node {node_id} not found")
        return False

    try:
        entry = await store.add_context(node_id, text, source)
    except NotFoundError as e:
        logger.error(e.message)
        return False
    logger.info(f"Stored context entry {entry.id} on node {node_id} (board {node.board_id})")

    notifier = BoardNotifier(server_url)
    if not await notifier.notify("context_added", node.board_id, entry.to_wire()):
        logger.warning("Board server not reachable; viewers will see the entry on reconnect")
    return True


def main():
    parser = argparse.ArgumentParser(description="Add a context entry to a GetSticky node")
    parser.add_argument("--node", required=True, help="Target node id")
    parser.add_argument("--text", required=True, help="Context text")
    parser.add_argument("--source", default="codebase", choices=get_args(ContextSource))
    parser.add_argument("--db-path", default=str(settings.database.path))
    parser.add_argument("--server", default=f"http://{settings.server.host}:{settings.server.port}")
    args = parser.parse_args()

    ok = asyncio.run(add_context(args.db_path, args.server, args.node, args.text, args.source))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
