import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiosqlite

from ...database import Database
from .backend import SQLiteBackend
from .handle import SQLiteStorageHandle


@asynccontextmanager
async def sqlite_database_factory(
    db_path: str,
    *,
    cache_size_kib: int = -16384,
    busy_timeout_ms: int = 5000,
) -> AsyncIterator[Database]:
    """
    Opens a `Database` backed by a SQLite file, or by memory for `:memory:`.

    On exit the backend goes offline, so pending disconnect operations run and
    are persisted before the connection is closed.
    """
    if not db_path:
        raise ValueError("`db_path` must be provided.")

    conn = await aiosqlite.connect(db_path)
    try:
        if db_path != ":memory:":
            await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA synchronous = NORMAL;")
        await conn.execute(f"PRAGMA cache_size = {cache_size_kib};")
        await conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms};")

        backend = await SQLiteBackend.open(SQLiteStorageHandle(conn))
        logging.info(f"Opened database at {db_path}")
        try:
            yield Database(backend)
        finally:
            await backend.close()
    finally:
        await conn.close()
