"""
This module defines the abstract protocols for the backend client.

The `Database` and `Reactive` layers talk to a `Backend`, never to a concrete
implementation. Backends are callback based and must invoke every callback on
the running asyncio event loop, which acts as the single serial callback queue.
"""
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

from .models import Snapshot


class _Missing:
    def __repr__(self):
        return "MISSING"


# Distinguishes "not provided" from an explicit None (which deletes).
MISSING: Any = _Missing()


class EventType(str, Enum):
    VALUE = "value"
    CHILD_ADDED = "child_added"
    CHILD_CHANGED = "child_changed"
    CHILD_MOVED = "child_moved"
    CHILD_REMOVED = "child_removed"


EventCallback = Callable[[Snapshot, Optional[str]], None]
CancelCallback = Callable[[Exception], None]
CompletionCallback = Callable[[Optional[Exception], "Reference"], None]
TransactionCallback = Callable[[Optional[Exception], bool, Optional[Snapshot]], None]


class Query(Protocol):
    """
    An ordered, filtered view of the children at a location.
    Every refinement returns a new query.
    """

    def order_by_key(self) -> "Query":
        ...

    def order_by_value(self) -> "Query":
        ...

    def order_by_priority(self) -> "Query":
        ...

    def order_by_child(self, path: str) -> "Query":
        ...

    def start_at(self, value: Any, key: str | None = None) -> "Query":
        ...

    def end_at(self, value: Any, key: str | None = None) -> "Query":
        ...

    def equal_to(self, value: Any, key: str | None = None) -> "Query":
        ...

    def limit_to_first(self, limit: int) -> "Query":
        ...

    def limit_to_last(self, limit: int) -> "Query":
        ...


class Reference(Query, Protocol):
    """A location in the backend's tree."""

    @property
    def key(self) -> str | None:
        ...

    def child(self, key: str) -> "Reference":
        ...


QueryBuilder = Callable[[Query], Query]


class Backend(Protocol):
    """
    Defines the contract that all backend adaptors must implement.
    The `Database` class interacts with this protocol, not a concrete implementation.
    """

    def reference(self) -> Reference:
        ...

    def mint_key(self) -> str:
        ...

    def observe(
        self,
        query: Query,
        event: EventType,
        on_event: EventCallback,
        on_cancel: CancelCallback,
    ) -> int:
        ...

    def observe_once(
        self,
        query: Query,
        event: EventType,
        on_event: EventCallback,
        on_cancel: CancelCallback,
    ) -> None:
        ...

    def remove_observer(self, handle: int) -> None:
        ...

    def set_value(
        self,
        reference: Reference,
        value: Any,
        on_complete: CompletionCallback,
        priority: Any = MISSING,
    ) -> None:
        ...

    def set_priority(self, reference: Reference, priority: Any, on_complete: CompletionCallback) -> None:
        ...

    def update_children(
        self, reference: Reference, values: Dict[str, Any], on_complete: CompletionCallback
    ) -> None:
        ...

    def remove_value(self, reference: Reference, on_complete: CompletionCallback) -> None:
        ...

    def on_disconnect_set_value(
        self,
        reference: Reference,
        value: Any,
        on_complete: CompletionCallback,
        priority: Any = MISSING,
    ) -> None:
        ...

    def on_disconnect_update_children(
        self, reference: Reference, values: Dict[str, Any], on_complete: CompletionCallback
    ) -> None:
        ...

    def on_disconnect_remove_value(self, reference: Reference, on_complete: CompletionCallback) -> None:
        ...

    def cancel_disconnect_operations(self, reference: Reference, on_complete: CompletionCallback) -> None:
        ...

    def run_transaction(
        self,
        reference: Reference,
        update: Callable[[Any], Any],
        on_complete: TransactionCallback,
        local_events: bool = True,
    ) -> None:
        ...
