#!/usr/bin/env python3
"""Export a board's graph (nodes, edges and context entries) as JSON.

Reads the SQLite file directly, so the board server does not need to be
running. Useful for backups and for diffing boards between machines.

Usage:
    GETSTICKY_DB_PATH=./getsticky-data/getsticky.db \
        python scripts/export_board.py --board b1 [--output board.json]

    # Every board in the database:
    python scripts/export_board.py --all --output boards.json
"""

import argparse
import asyncio
import json
import logging
import sys
import time

from getsticky_server.config import settings
from getsticky_server.storage.graph_store import GraphStore

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def export_board(store: GraphStore, slug: str) -> dict | None:
    """Export one board by slug, or None if it does not exist."""
    board = await store.get_board_by_slug(slug)
    if board is None:
        logger.error(f"Board '{slug}' not found")
        return None

    graph = await store.export_graph(board.id)
    entries = []
    for node in graph["nodes"]:
        entries.extend(entry.to_wire() for entry in await store.get_context_entries(node["id"]))

    logger.info(f"Board '{slug}': {len(graph['nodes'])} nodes, {len(graph['edges'])} edges, {len(entries)} context entries")
    return {"board": board.to_wire(), **graph, "context_entries": entries}


async def export_boards(db_path: str, slugs: list[str], export_all: bool) -> list[dict]:
    store = GraphStore(db_path, busy_timeout=settings.database.busy_timeout)
    await store.initialize()

    if export_all:
        slugs = [board.slug for board in await store.list_boards()]

    exported = []
    for slug in slugs:
        result = await export_board(store, slug)
        if result is not None:
            exported.append(result)

    await store.close()
    return exported


def main():
    parser = argparse.ArgumentParser(description="Export GetSticky boards as JSON")
    parser.add_argument("--board", action="append", default=[], help="Board slug (repeatable)")
    parser.add_argument("--all", action="store_true", help="Export every board")
    parser.add_argument("--db-path", default=str(settings.database.path))
    parser.add_argument("--output", help="Write to this file instead of stdout")
    args = parser.parse_args()

    if not args.board and not args.all:
        parser.error("pass --board SLUG or --all")

    start = time.monotonic()
    boards = asyncio.run(export_boards(args.db_path, args.board, args.all))
    payload = json.dumps({"exported_at": time.time(), "boards": boards}, indent=2)

    if args.output:
        with open(args.output, "w") as f:
            f.write(payload)
        logger.info(f"Wrote {len(boards)} board(s) to {args.output} in {time.monotonic() - start:.1f}s")
    else:
        print(payload)

    if len(boards) < len(args.board):
        sys.exit(1)


if __name__ == "__main__":
    main()
