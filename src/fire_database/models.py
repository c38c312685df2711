"""
This module defines the core data models using Pydantic.

`Snapshot` is the read-only view of one location handed out by the backend.
`Record` is the base class for typed application data: every record carries the
key of the snapshot it was decoded from as its `id`.
"""
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, PlainSerializer, PlainValidator, PrivateAttr

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)


def datetime_from_millis(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Expected milliseconds since epoch, got {value!r}")
    return EPOCH + timedelta(milliseconds=value)


def datetime_to_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - EPOCH) // _MILLISECOND


# Dates travel as integer milliseconds since the Unix epoch in both directions.
EpochMillis = Annotated[
    datetime,
    PlainValidator(datetime_from_millis),
    PlainSerializer(datetime_to_millis, return_type=int),
]


class Record(BaseModel):
    """Base class for records stored in the database, identified by their key."""

    id: str = ""


class Snapshot(BaseModel):
    """
    An immutable view of the data at one location.

    `value` is None when nothing is stored there. Dicts keep the backend's
    child order. Snapshots built by a backend with `Snapshot.ordered` also keep
    the order and priorities of their children, which a list value cannot show.
    """

    model_config = ConfigDict(frozen=True)

    key: str | None
    value: Any = None
    priority: Any = None

    _children: Optional[Tuple["Snapshot", ...]] = PrivateAttr(default=None)

    @classmethod
    def ordered(cls, key: str | None, value: Any, priority: Any, children: Iterable["Snapshot"]) -> "Snapshot":
        snapshot = cls(key=key, value=value, priority=priority)
        snapshot._children = tuple(children)
        return snapshot

    @property
    def exists(self) -> bool:
        return self.value is not None

    @property
    def has_children(self) -> bool:
        return isinstance(self.value, (dict, list)) and len(self.value) > 0

    @property
    def children(self) -> List["Snapshot"]:
        if self._children is not None:
            return list(self._children)
        if isinstance(self.value, dict):
            return [Snapshot(key=key, value=value) for key, value in self.value.items()]
        if isinstance(self.value, list):
            return [
                Snapshot(key=str(index), value=value)
                for index, value in enumerate(self.value)
                if value is not None
            ]
        return []

    @property
    def children_count(self) -> int:
        return len(self.children)

    def child(self, path: str) -> "Snapshot":
        """Returns the snapshot of a descendant, e.g. `snapshot.child("address/city")`."""
        snapshot = self
        for key in (segment for segment in path.split("/") if segment):
            snapshot = snapshot._child(key)
        return snapshot

    def _child(self, key: str) -> "Snapshot":
        if self._children is not None:
            return next((child for child in self._children if child.key == key), Snapshot(key=key))
        value = self.value
        if isinstance(value, dict):
            return Snapshot(key=key, value=value.get(key))
        if isinstance(value, list) and key.isdigit() and int(key) < len(value):
            return Snapshot(key=key, value=value[int(key)])
        return Snapshot(key=key)
