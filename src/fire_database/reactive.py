"""
Asyncio wrappers around the callback based `Database` operations.

Single-result operations are coroutines: nothing reaches the backend until they
are awaited, and they finish with exactly one value or one raised error.
Listening operations are async generators: they register their listeners on the
first iteration and unregister every one of them when the generator is closed,
so no event is delivered afterwards. Callbacks that were already scheduled when
the consumer walked away are dropped.

`Reactive` only holds a weak reference to its `Database`, so an open stream never
keeps the database alive.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, List, Tuple

from .changes import SnapshotChange
from .errors import BackendError
from .models import Snapshot
from .path import Path
from .protocols import MISSING, EventType, QueryBuilder

if TYPE_CHECKING:
    from .database import Database


class _Subscription:
    """
    A single channel fed by one or more listener callbacks.

    Only the first error is kept; once closed, every callback is a no-op.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._failed = False

    def send(self, item: Any) -> None:
        if self._closed or self._failed:
            logging.debug("Dropping event delivered after the subscription ended")
            return
        self._queue.put_nowait((False, item))

    def fail(self, error: Exception) -> None:
        if self._closed or self._failed:
            logging.debug(f"Dropping error delivered after the subscription ended: {error}")
            return
        self._failed = True
        self._queue.put_nowait((True, error))

    def close(self) -> None:
        self._closed = True

    def __aiter__(self) -> "_Subscription":
        return self

    async def __anext__(self) -> Any:
        is_error, item = await self._queue.get()
        if is_error:
            raise item
        return item


def _settle(future: asyncio.Future, value: Any = None, error: Exception | None = None) -> None:
    if future.done():
        # The awaiting coroutine was cancelled.
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(value)


class Reactive:
    def __init__(self, database: "Database"):
        self._database = weakref.ref(database)

    def _require(self) -> "Database":
        database = self._database()
        if database is None:
            raise BackendError("The database is no longer available")
        return database

    async def _single(self, start: Callable[["Database", asyncio.Future], None]) -> Any:
        future = asyncio.get_running_loop().create_future()
        start(self._require(), future)
        return await future

    async def _listen(self, register: Callable[["Database", _Subscription], List[int]]) -> AsyncIterator[Any]:
        database = self._database()
        if database is None:
            return
        subscription = _Subscription()
        handles = register(database, subscription)
        del database
        try:
            async for item in subscription:
                yield item
        finally:
            subscription.close()
            database = self._database()
            if database is not None:
                database.remove_observers(handles)

    # Read

    async def get(
        self,
        path: Path,
        event: EventType = EventType.VALUE,
        query: QueryBuilder | None = None,
    ) -> Tuple[Snapshot, str | None]:
        """Gets the snapshot at the given path and its previous key."""

        def start(database: "Database", future: asyncio.Future):
            database.get(
                path,
                event=event,
                query=query,
                completed=lambda snapshot, previous_key: _settle(future, (snapshot, previous_key)),
                failed=lambda error: _settle(future, error=error),
            )

        return await self._single(start)

    def observe(
        self,
        path: Path,
        event: EventType = EventType.VALUE,
        query: QueryBuilder | None = None,
    ) -> AsyncIterator[Tuple[Snapshot, str | None]]:
        """Observes snapshots at the given path, with their previous key."""

        def register(database: "Database", subscription: _Subscription) -> List[int]:
            handle = database.observe(
                path,
                event=event,
                query=query,
                completed=lambda snapshot, previous_key: subscription.send((snapshot, previous_key)),
                failed=subscription.fail,
            )
            return [handle]

        return self._listen(register)

    def observe_changes(self, path: Path, query: QueryBuilder | None = None) -> AsyncIterator[SnapshotChange]:
        """
        Observes child changes at the given path as a single ordered stream.

        The first listener error ends the stream, and ending the stream removes
        all four listeners.
        """

        def register(database: "Database", subscription: _Subscription) -> List[int]:
            return database.observe_changes(
                path, query=query, completed=subscription.send, failed=subscription.fail
            )

        return self._listen(register)

    def is_connected(self) -> AsyncIterator[bool]:
        """Observes the connection status."""

        def register(database: "Database", subscription: _Subscription) -> List[int]:
            return [database.is_connected(completed=subscription.send, failed=subscription.fail)]

        return self._listen(register)

    # Create

    async def save(
        self,
        path: Path,
        data: Any = MISSING,
        priority: Any = MISSING,
        when_disconnected: bool = False,
    ) -> str | None:
        """Saves data to the given path. Returns the key of the saved location."""

        def start(database: "Database", future: asyncio.Future):
            database.save(
                path,
                data,
                priority=priority,
                when_disconnected=when_disconnected,
                completed=lambda key: _settle(future, key),
                failed=lambda error: _settle(future, error=error),
            )

        return await self._single(start)

    async def merge(
        self,
        path: Path,
        data: Any,
        fields: List[str] | None = None,
        when_disconnected: bool = False,
    ) -> str | None:
        """Merges data into the existing data at the given path."""

        def start(database: "Database", future: asyncio.Future):
            database.merge(
                path,
                data,
                fields=fields,
                when_disconnected=when_disconnected,
                completed=lambda key: _settle(future, key),
                failed=lambda error: _settle(future, error=error),
            )

        return await self._single(start)

    # Delete

    async def delete(self, path: Path, when_disconnected: bool = False) -> str | None:
        """Deletes data at the given path."""

        def start(database: "Database", future: asyncio.Future):
            database.delete(
                path,
                when_disconnected=when_disconnected,
                completed=lambda key: _settle(future, key),
                failed=lambda error: _settle(future, error=error),
            )

        return await self._single(start)

    # Transaction

    async def run_transaction(
        self,
        path: Path,
        transaction: Callable[[Any], Any],
        send_intermediate_events: bool = False,
    ) -> Tuple[Snapshot | None, bool]:
        """Changes data atomically. Returns the resulting snapshot and whether it was committed."""

        def start(database: "Database", future: asyncio.Future):
            database.run_transaction(
                path,
                transaction,
                send_intermediate_events=send_intermediate_events,
                completed=lambda snapshot, committed: _settle(future, (snapshot, committed)),
                failed=lambda error: _settle(future, error=error),
            )

        return await self._single(start)

    # Presence

    async def cancel_pending_disconnect_ops(self, path: Path) -> str | None:
        """Cancels any operations set to run on disconnection at the given path."""

        def start(database: "Database", future: asyncio.Future):
            database.cancel_pending_disconnect_ops(
                path,
                completed=lambda key: _settle(future, key),
                failed=lambda error: _settle(future, error=error),
            )

        return await self._single(start)
