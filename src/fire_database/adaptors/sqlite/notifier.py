import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

from ...models import Snapshot
from ...protocols import CancelCallback, EventCallback, EventType
from .query import SQLiteReference, child_snapshot
from .tree import Segments

# Events raised by one write are delivered in this order.
_EVENT_ORDER = {
    EventType.CHILD_REMOVED: 0,
    EventType.CHILD_ADDED: 1,
    EventType.CHILD_MOVED: 2,
    EventType.CHILD_CHANGED: 3,
    EventType.VALUE: 4,
}


@dataclass
class _Listener:
    handle: int
    query: SQLiteReference
    event: EventType
    on_event: EventCallback
    on_cancel: CancelCallback
    once: bool = False
    view: List[Tuple[str, Any]] = field(default_factory=list)
    value: Tuple[Any, Any] = (None, None)


def _previous_keys(keys: List[str]) -> Dict[str, str | None]:
    return {key: keys[index - 1] if index else None for index, key in enumerate(keys)}


def diff_views(
    old: List[Tuple[str, Any]], new: List[Tuple[str, Any]]
) -> List[Tuple[EventType, str, Any, str | None]]:
    """
    Computes the child events turning one ordered view into another, as
    (event, key, node, previous key) tuples.

    A changed child is also reported as moved when its predecessor among the
    children present in both views is not the same any more.
    """
    old_nodes = dict(old)
    new_nodes = dict(new)
    new_keys = [key for key, _ in new]
    previous = _previous_keys(new_keys)
    events = []

    for key, node in old:
        if key not in new_nodes:
            events.append((EventType.CHILD_REMOVED, key, node, None))

    for key, node in new:
        if key not in old_nodes:
            events.append((EventType.CHILD_ADDED, key, node, previous[key]))

    old_common = _previous_keys([key for key, _ in old if key in new_nodes])
    new_common = _previous_keys([key for key in new_keys if key in old_nodes])
    for key, node in new:
        if key in old_nodes and old_nodes[key] != node:
            if old_common[key] != new_common[key]:
                events.append((EventType.CHILD_MOVED, key, node, previous[key]))
            events.append((EventType.CHILD_CHANGED, key, node, previous[key]))

    return events


class SQLiteNotifier:
    """
    Keeps the registered listeners and the last view each of them has seen.

    After every change to the tree, `notify()` recomputes each listener's view,
    derives its events and schedules their delivery on the event loop. An event
    whose listener was removed before delivery is dropped.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, read: Callable[[Segments], Any]):
        self._loop = loop
        self._read = read
        self._listeners: Dict[int, _Listener] = {}
        self._handles = itertools.count(1)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def register(
        self,
        query: SQLiteReference,
        event: EventType,
        on_event: EventCallback,
        on_cancel: CancelCallback,
        once: bool = False,
    ) -> int:
        handle = next(self._handles)
        node = self._read(query.segments)
        snapshot = query.snapshot(node)
        listener = _Listener(
            handle=handle,
            query=query,
            event=event,
            on_event=on_event,
            on_cancel=on_cancel,
            once=once,
            view=query.view(node),
            value=(snapshot.value, snapshot.priority),
        )
        self._listeners[handle] = listener

        if event is EventType.VALUE:
            self._schedule(listener, snapshot, None)
        elif event is EventType.CHILD_ADDED:
            previous = _previous_keys([key for key, _ in listener.view])
            for key, child in listener.view:
                self._schedule(listener, child_snapshot(key, child), previous[key])
        return handle

    def unregister(self, handle: int) -> bool:
        return self._listeners.pop(handle, None) is not None

    def notify(self):
        pending = []
        for listener in list(self._listeners.values()):
            node = self._read(listener.query.segments)
            if listener.event is EventType.VALUE:
                snapshot = listener.query.snapshot(node)
                value = (snapshot.value, snapshot.priority)
                if value != listener.value:
                    listener.value = value
                    pending.append((_EVENT_ORDER[EventType.VALUE], listener, snapshot, None))
                continue

            view = listener.query.view(node)
            for event, key, child, previous_key in diff_views(listener.view, view):
                if event is listener.event:
                    pending.append((_EVENT_ORDER[event], listener, child_snapshot(key, child), previous_key))
            listener.view = view

        pending.sort(key=lambda item: item[0])
        for _, listener, snapshot, previous_key in pending:
            self._schedule(listener, snapshot, previous_key)

    def cancel_all(self, error: Exception):
        listeners = list(self._listeners.values())
        self._listeners.clear()
        for listener in listeners:
            self._loop.call_soon(listener.on_cancel, error)
        if listeners:
            logging.info(f"Cancelled {len(listeners)} listener(s): {error}")

    def _schedule(self, listener: _Listener, snapshot: Snapshot, previous_key: str | None):
        self._loop.call_soon(self._deliver, listener.handle, snapshot, previous_key)

    def _deliver(self, handle: int, snapshot: Snapshot, previous_key: str | None):
        listener = self._listeners.get(handle)
        if listener is None:
            logging.debug(f"Dropping event for removed listener {handle}")
            return
        if listener.once:
            del self._listeners[handle]
        listener.on_event(snapshot, previous_key)
