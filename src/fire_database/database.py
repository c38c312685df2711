"""
Callback based operations addressed by `Path`.

`Database` resolves paths against a `Backend`, applies query refinements, encodes
records before writing and turns the backend's completion callbacks into
`completed`/`failed` pairs. Its `reactive` property exposes the same operations
as coroutines and async generators.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List, Optional

from pydantic import BaseModel

from .changes import SnapshotChange
from .mapping import encode
from .models import Snapshot
from .path import Path
from .protocols import MISSING, Backend, EventType, Query, QueryBuilder, Reference
from .reactive import Reactive

CONNECTED_PATH = Path.parse(".info/connected")

Completed = Callable[[Optional[str]], None]
Failed = Callable[[Exception], None]


def _encoded(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return encode(data)
    return data


class Database:
    def __init__(self, backend: Backend):
        self.backend = backend

    @property
    def reactive(self) -> Reactive:
        return Reactive(self)

    def _query(self, path: Path, query: QueryBuilder | None) -> Query:
        reference: Query = path.resolve(self.backend)
        if query is not None:
            reference = query(reference)
        return reference

    @staticmethod
    def _on_complete(completed: Completed, failed: Failed):
        def on_complete(error: Exception | None, reference: Reference):
            if error is not None:
                failed(error)
            else:
                completed(reference.key)

        return on_complete

    # Read

    def get(
        self,
        path: Path,
        *,
        event: EventType = EventType.VALUE,
        query: QueryBuilder | None = None,
        completed: Callable[[Snapshot, str | None], None],
        failed: Failed,
    ) -> None:
        """Gets the data at the given path once."""
        self.backend.observe_once(self._query(path, query), event, completed, failed)

    def observe(
        self,
        path: Path,
        *,
        event: EventType = EventType.VALUE,
        query: QueryBuilder | None = None,
        completed: Callable[[Snapshot, str | None], None],
        failed: Failed,
    ) -> int:
        """Observes data at the given path. Returns a handle for `remove_observers`."""
        return self.backend.observe(self._query(path, query), event, completed, failed)

    def observe_changes(
        self,
        path: Path,
        *,
        query: QueryBuilder | None = None,
        completed: Callable[[SnapshotChange], None],
        failed: Failed,
    ) -> List[int]:
        """
        Observes child changes at the given path with one listener per change kind.

        Returns the four handles (delete, insert, move, update). A failure of one
        listener does not cancel the others: the caller must remove every handle.
        """
        resolved = self._query(path, query)
        listeners = [
            (EventType.CHILD_REMOVED, SnapshotChange.delete),
            (EventType.CHILD_ADDED, SnapshotChange.insert),
            (EventType.CHILD_MOVED, SnapshotChange.move),
            (EventType.CHILD_CHANGED, SnapshotChange.update),
        ]
        handles = []
        for event, make_change in listeners:

            def on_event(snapshot: Snapshot, previous_key: str | None, make_change=make_change):
                completed(make_change(snapshot, previous_key))

            handles.append(self.backend.observe(resolved, event, on_event, failed))
        return handles

    def is_connected(self, *, completed: Callable[[bool], None], failed: Failed) -> int:
        """Observes the connection status."""

        def on_event(snapshot: Snapshot, _previous_key: str | None):
            completed(snapshot.exists and snapshot.value is True)

        return self.observe(CONNECTED_PATH, completed=on_event, failed=failed)

    def remove_observers(self, handles: Iterable[int]) -> None:
        for handle in handles:
            self.backend.remove_observer(handle)

    # Create

    def save(
        self,
        path: Path,
        data: Any = MISSING,
        *,
        priority: Any = MISSING,
        when_disconnected: bool = False,
        completed: Completed,
        failed: Failed,
    ) -> None:
        """
        Saves data and/or a priority to the given path.
        With `when_disconnected`, the write only happens once the connection is lost.
        """
        if data is MISSING and priority is MISSING:
            raise ValueError("At least one of data or priority must be provided when saving")
        if when_disconnected and data is MISSING:
            raise ValueError("Data must be provided when saving on disconnection")

        reference = path.resolve(self.backend)
        on_complete = self._on_complete(completed, failed)
        data = _encoded(data)

        if when_disconnected:
            self.backend.on_disconnect_set_value(reference, data, on_complete, priority=priority)
        elif data is MISSING:
            self.backend.set_priority(reference, priority, on_complete)
        else:
            self.backend.set_value(reference, data, on_complete, priority=priority)

    def merge(
        self,
        path: Path,
        data: Any,
        *,
        fields: Iterable[str] | None = None,
        when_disconnected: bool = False,
        completed: Completed,
        failed: Failed,
    ) -> None:
        """
        Merges data into the existing data, or saves it if nothing exists yet.
        Only `fields` are written when given.
        """
        data = _encoded(data)
        if not isinstance(data, dict):
            raise TypeError(f"Merged data must be a mapping, got {type(data).__name__}")
        if fields is not None:
            allowed = set(fields)
            data = {key: value for key, value in data.items() if key in allowed}

        reference = path.resolve(self.backend)
        on_complete = self._on_complete(completed, failed)

        if when_disconnected:
            self.backend.on_disconnect_update_children(reference, data, on_complete)
        else:
            self.backend.update_children(reference, data, on_complete)

    # Delete

    def delete(
        self,
        path: Path,
        *,
        when_disconnected: bool = False,
        completed: Completed,
        failed: Failed,
    ) -> None:
        """Deletes data at the given path."""
        reference = path.resolve(self.backend)
        on_complete = self._on_complete(completed, failed)

        if when_disconnected:
            self.backend.on_disconnect_remove_value(reference, on_complete)
        else:
            self.backend.remove_value(reference, on_complete)

    # Transaction

    def run_transaction(
        self,
        path: Path,
        transaction: Callable[[Any], Any],
        *,
        send_intermediate_events: bool = False,
        completed: Callable[[Snapshot | None, bool], None],
        failed: Failed,
    ) -> None:
        """
        Changes the data at the given path atomically.

        `transaction` receives the current value and returns the new one. Raising
        `AbortTransaction` aborts it, reported as `committed=False`.
        """
        reference = path.resolve(self.backend)

        def on_complete(error: Exception | None, committed: bool, snapshot: Snapshot | None):
            if error is not None:
                failed(error)
            else:
                completed(snapshot, committed)

        self.backend.run_transaction(
            reference, lambda current: _encoded(transaction(current)), on_complete, send_intermediate_events
        )

    # Presence

    def cancel_pending_disconnect_ops(self, path: Path, *, completed: Completed, failed: Failed) -> None:
        """Cancels any operations set to run on disconnection at or below the given path."""
        reference = path.resolve(self.backend)
        logging.debug(f"Cancelling disconnect operations at {path}")
        self.backend.cancel_disconnect_operations(reference, self._on_complete(completed, failed))
