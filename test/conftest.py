import itertools
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

from pytest_asyncio import fixture

from fire_database import EpochMillis, Record, database_factory
from fire_database.protocols import MISSING, EventType


class Message(Record):
    text: str
    date: EpochMillis | None = None


class FakeReference:
    """A reference recording its location and the refinements applied to it."""

    def __init__(self, segments: Tuple[str, ...] = (), refinements: Tuple = ()):
        self.segments = segments
        self.refinements = refinements

    @property
    def key(self):
        return self.segments[-1] if self.segments else None

    def child(self, key):
        return FakeReference(self.segments + (key,))

    def _refine(self, *refinement):
        return FakeReference(self.segments, self.refinements + (refinement,))

    def order_by_key(self):
        return self._refine("order_by_key")

    def order_by_value(self):
        return self._refine("order_by_value")

    def order_by_priority(self):
        return self._refine("order_by_priority")

    def order_by_child(self, path):
        return self._refine("order_by_child", path)

    def start_at(self, value, key=None):
        return self._refine("start_at", value, key)

    def end_at(self, value, key=None):
        return self._refine("end_at", value, key)

    def equal_to(self, value, key=None):
        return self._refine("equal_to", value, key)

    def limit_to_first(self, limit):
        return self._refine("limit_to_first", limit)

    def limit_to_last(self, limit):
        return self._refine("limit_to_last", limit)


class FakeBackend:
    """
    A backend that records every call and lets tests drive the listener
    callbacks by hand, synchronously.
    """

    def __init__(self):
        self.listeners: Dict[int, Tuple[FakeReference, EventType, Any, Any]] = {}
        self.removed: List[int] = []
        self.calls: List[Tuple] = []
        self._handles = itertools.count(1)
        self._keys = itertools.count(1)
        self.once_result: Tuple = ()

    def reference(self):
        return FakeReference()

    def mint_key(self):
        return f"key-{next(self._keys)}"

    def observe(self, query, event, on_event, on_cancel):
        handle = next(self._handles)
        self.listeners[handle] = (query, event, on_event, on_cancel)
        return handle

    def observe_once(self, query, event, on_event, on_cancel):
        self.calls.append(("observe_once", query.segments, event))
        on_event(*self.once_result)

    def remove_observer(self, handle):
        self.removed.append(handle)
        self.listeners.pop(handle, None)

    def handles_for(self, event: EventType) -> List[int]:
        return [handle for handle, (_, kind, _, _) in self.listeners.items() if kind is event]

    def emit(self, event: EventType, snapshot, previous_key=None):
        for handle in self.handles_for(event):
            self.listeners[handle][2](snapshot, previous_key)

    def cancel(self, handle: int, error: Exception):
        self.listeners[handle][3](error)

    def _complete(self, name, reference, on_complete, *args):
        self.calls.append((name, reference.segments) + args)
        on_complete(None, reference)

    def set_value(self, reference, value, on_complete, priority=MISSING):
        self._complete("set_value", reference, on_complete, value, priority)

    def set_priority(self, reference, priority, on_complete):
        self._complete("set_priority", reference, on_complete, priority)

    def update_children(self, reference, values, on_complete):
        self._complete("update_children", reference, on_complete, values)

    def remove_value(self, reference, on_complete):
        self._complete("remove_value", reference, on_complete)

    def on_disconnect_set_value(self, reference, value, on_complete, priority=MISSING):
        self._complete("on_disconnect_set_value", reference, on_complete, value, priority)

    def on_disconnect_update_children(self, reference, values, on_complete):
        self._complete("on_disconnect_update_children", reference, on_complete, values)

    def on_disconnect_remove_value(self, reference, on_complete):
        self._complete("on_disconnect_remove_value", reference, on_complete)

    def cancel_disconnect_operations(self, reference, on_complete):
        self._complete("cancel_disconnect_operations", reference, on_complete)

    def run_transaction(self, reference, update, on_complete, local_events=True):
        self.calls.append(("run_transaction", reference.segments, local_events))
        on_complete(None, True, None)


@fixture
def fake_backend():
    return FakeBackend()


@fixture
def fresh_config():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = os.path.join(tmpdir, "test.db")
        yield {"url": f"sqlite:///{db_path}"}


@fixture
async def database():
    """Provides a clean in-memory database for each test function."""
    async with database_factory({"url": "sqlite://"}) as database:
        yield database


def a_date() -> datetime:
    return datetime(2024, 5, 1, 12, 30, 15, 250000, tzinfo=timezone.utc)
