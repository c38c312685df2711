from .backend import SQLiteBackend
from .factory import sqlite_database_factory
from .handle import SQLiteStorageHandle

__all__ = ["SQLiteBackend", "SQLiteStorageHandle", "sqlite_database_factory"]
