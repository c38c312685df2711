import asyncio
import json
import logging
import sqlite3
from typing import Any, Iterable, List, Tuple

import aiosqlite

from . import tree
from .tree import Segments

SCHEMA = """
CREATE TABLE IF NOT EXISTS nodes (
    path TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


def encode_path(segments: Segments) -> str:
    """The root is stored as an empty path, every other location as `/a/b`."""
    return "".join(f"/{key}" for key in segments)


def decode_path(path: str) -> Segments:
    return tuple(path.split("/")[1:]) if path else ()


class SQLiteStorageHandle:
    """
    Persists the tree as one row per scalar leaf, keyed by its full path.

    Every write replaces whole subtrees inside a single transaction. Writes are
    serialised by a lock, so they reach the database in the order they were made.
    """

    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn
        self.write_lock = asyncio.Lock()

    async def create_schema(self):
        await self.conn.execute(SCHEMA)
        await self.conn.commit()

    async def load(self) -> Any:
        """Reads every stored leaf and rebuilds the tree."""
        items: List[Tuple[Segments, Any]] = []
        async with self.conn.execute("SELECT path, value FROM nodes ORDER BY path") as cursor:
            async for path, value in cursor:
                try:
                    items.append((decode_path(path), json.loads(value)))
                except json.JSONDecodeError as e:
                    logging.warning(f"Skipping invalid node row {path!r}: {e}")
        return tree.build(items)

    async def write(self, writes: Iterable[Tuple[Segments, Any]]):
        """Replaces the subtree at each path with the given node, None removing it."""
        async with self.write_lock:
            try:
                await self.conn.execute("BEGIN")
                for segments, node in writes:
                    await self._replace(segments, node)
                await self.conn.commit()
            except sqlite3.Error as e:
                await self.conn.rollback()
                logging.error(f"Failed to write nodes to SQLite: {e}")
                raise

    async def _replace(self, segments: Segments, node: Any):
        prefix = encode_path(segments)
        if segments:
            # '0' is the character right after '/', so this range is the whole subtree.
            await self.conn.execute(
                "DELETE FROM nodes WHERE path = ? OR (path >= ? AND path < ?)",
                (prefix, prefix + "/", prefix + "0"),
            )
        else:
            await self.conn.execute("DELETE FROM nodes")

        # A scalar stored above this location is replaced by the new children.
        ancestors = [encode_path(segments[:depth]) for depth in range(len(segments))]
        if ancestors:
            stale = ancestors + [f"{path}/{tree.VALUE}" for path in ancestors]
            placeholders = ",".join("?" for _ in stale)
            await self.conn.execute(f"DELETE FROM nodes WHERE path IN ({placeholders})", stale)

        rows = [(encode_path(path), json.dumps(value)) for path, value in tree.leaves(segments, node)]
        if rows:
            await self.conn.executemany("INSERT INTO nodes (path, value) VALUES (?, ?)", rows)
