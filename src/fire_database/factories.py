import logging
import os
import urllib.parse
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from .adaptors.sqlite import sqlite_database_factory
from .config import DatabaseConfig
from .database import Database


def sqlite_path(url: str) -> str:
    """Extracts the database file from a `sqlite://` URL, `:memory:` when there is none."""
    db_path = urllib.parse.urlparse(url).path
    if os.name == "nt" and db_path.startswith("/") and not db_path.startswith("//"):
        db_path = db_path[1:]
    if not db_path or db_path == "/":
        db_path = ":memory:"
    return db_path


@asynccontextmanager
async def database_factory(config: Dict[str, Any] | DatabaseConfig | None = None) -> AsyncIterator[Database]:
    """
    Opens a `Database` from a configuration dict, defaulting to an in-memory
    SQLite database when no URL is given.
    """
    if not isinstance(config, DatabaseConfig):
        config = DatabaseConfig.from_dict(config)

    scheme = config.url.split("://", 1)[0] if "://" in config.url else ""
    if scheme != "sqlite":
        raise ValueError(f"Unsupported scheme: {scheme}. Only 'sqlite' is supported.")

    db_path = sqlite_path(config.url)
    logging.debug(f"Opening {config.url} as {db_path}")
    async with sqlite_database_factory(
        db_path,
        cache_size_kib=config.cache_size_kib,
        busy_timeout_ms=config.busy_timeout_ms,
    ) as database:
        yield database
