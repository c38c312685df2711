# fire_database package

from .changes import Change, ChangeKind, SnapshotChange
from .config import DatabaseConfig
from .database import Database
from .errors import AbortTransaction, BackendError, DecodeError, FireDatabaseError, PathError
from .factories import database_factory
from .mapping import decode_change, decode_children, decode_snapshot, encode, map_array, map_changes, map_data, map_set, map_values
from .models import EpochMillis, Record, Snapshot
from .path import Child, NewChild, Path
from .protocols import MISSING, Backend, EventType, Query, Reference
from .reactive import Reactive

__all__ = [
    "AbortTransaction",
    "Backend",
    "BackendError",
    "Change",
    "ChangeKind",
    "Child",
    "Database",
    "DatabaseConfig",
    "DecodeError",
    "EpochMillis",
    "EventType",
    "FireDatabaseError",
    "MISSING",
    "NewChild",
    "Path",
    "PathError",
    "Query",
    "Reactive",
    "Record",
    "Reference",
    "Snapshot",
    "SnapshotChange",
    "database_factory",
    "decode_change",
    "decode_children",
    "decode_snapshot",
    "encode",
    "map_array",
    "map_changes",
    "map_data",
    "map_set",
    "map_values",
]
