"""
Child-level mutations of an ordered collection.

A change is tagged with its kind and carries the affected payload plus the key
of the preceding sibling at the moment of the event (None when the child is now
first). `SnapshotChange` carries the raw snapshot, `Change[T]` the decoded record.
"""
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict

from .models import Record, Snapshot

T = TypeVar("T", bound=Record)


class ChangeKind(str, Enum):
    DELETE = "delete"
    INSERT = "insert"
    MOVE = "move"
    UPDATE = "update"


class SnapshotChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    snapshot: Snapshot
    previous_key: str | None = None

    @classmethod
    def delete(cls, snapshot: Snapshot, previous_key: str | None = None) -> "SnapshotChange":
        return cls(kind=ChangeKind.DELETE, snapshot=snapshot, previous_key=previous_key)

    @classmethod
    def insert(cls, snapshot: Snapshot, previous_key: str | None = None) -> "SnapshotChange":
        return cls(kind=ChangeKind.INSERT, snapshot=snapshot, previous_key=previous_key)

    @classmethod
    def move(cls, snapshot: Snapshot, previous_key: str | None = None) -> "SnapshotChange":
        return cls(kind=ChangeKind.MOVE, snapshot=snapshot, previous_key=previous_key)

    @classmethod
    def update(cls, snapshot: Snapshot, previous_key: str | None = None) -> "SnapshotChange":
        return cls(kind=ChangeKind.UPDATE, snapshot=snapshot, previous_key=previous_key)


class Change(BaseModel, Generic[T]):
    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    value: T
    previous_key: str | None = None
