"""
A `Backend` keeping the whole tree in memory and persisting it to SQLite.

Writes are applied to the in-memory tree and raise local events right away; the
completion callback fires once the write has been committed. A write that cannot
be committed is taken back out of the tree, which raises events again. Every
callback runs on the event loop the backend was opened on.
"""
import asyncio
import logging
import sqlite3
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Set, Tuple

from ...errors import AbortTransaction, BackendError
from ...protocols import (
    MISSING,
    CancelCallback,
    CompletionCallback,
    EventCallback,
    EventType,
    Query,
    Reference,
    TransactionCallback,
)
from . import tree
from .handle import SQLiteStorageHandle
from .keys import PushKeyGenerator
from .notifier import SQLiteNotifier
from .query import SQLiteReference, child_snapshot, split_key
from .tree import Segments

INFO = ".info"

Writes = List[Tuple[Segments, Any]]
Done = Callable[[Exception | None], None]


def _apply(root: Any, writes: Writes) -> Any:
    for segments, node in writes:
        root = tree.set_in(root, segments, node)
    return root


class SQLiteBackend:
    def __init__(self, handle: SQLiteStorageHandle, root: Any = None):
        self.handle = handle
        self._root = root
        # The tree as committed, and the writes applied on top of it since.
        self._confirmed = root
        self._unconfirmed: Deque[Writes] = deque()
        self._persist_lock = asyncio.Lock()
        self._loop = asyncio.get_running_loop()
        self._notifier = SQLiteNotifier(self._loop, self._read)
        self._keys = PushKeyGenerator()
        self._connected = True
        self._closed = False
        self._disconnect_ops: List[Tuple[Segments, Writes]] = []
        self._pending: Set[asyncio.Task] = set()

    @classmethod
    async def open(cls, handle: SQLiteStorageHandle) -> "SQLiteBackend":
        await handle.create_schema()
        root = await handle.load()
        logging.info(f"Opened SQLite backend with {sum(1 for _ in tree.leaves((), root))} stored value(s)")
        return cls(handle, root)

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def listener_count(self) -> int:
        return self._notifier.listener_count

    def _read(self, segments: Segments) -> Any:
        if segments[:1] == (INFO,):
            return tree.get_in({"connected": self._connected}, segments[1:])
        return tree.get_in(self._root, segments)

    @staticmethod
    def _query(query: Query) -> SQLiteReference:
        if not isinstance(query, SQLiteReference):
            raise TypeError(f"Expected a SQLite query, got {type(query).__name__}")
        return query

    def _writable(self, reference: Reference) -> Segments:
        segments = self._query(reference).segments
        if segments[:1] == (INFO,):
            raise ValueError(f"Cannot write to {INFO}")
        return segments

    # References

    def reference(self) -> SQLiteReference:
        return SQLiteReference()

    def mint_key(self) -> str:
        return self._keys()

    # Listeners

    def observe(self, query: Query, event: EventType, on_event: EventCallback, on_cancel: CancelCallback) -> int:
        return self._observe(query, event, on_event, on_cancel, once=False)

    def observe_once(self, query: Query, event: EventType, on_event: EventCallback, on_cancel: CancelCallback) -> None:
        self._observe(query, event, on_event, on_cancel, once=True)

    def _observe(self, query, event, on_event, on_cancel, once: bool) -> int:
        query = self._query(query)
        if self._closed:
            self._loop.call_soon(on_cancel, BackendError("Database closed"))
            return 0
        return self._notifier.register(query, EventType(event), on_event, on_cancel, once=once)

    def remove_observer(self, handle: int) -> None:
        if not self._notifier.unregister(handle):
            logging.debug(f"Listener {handle} was already removed")

    # Writes

    def set_value(self, reference: Reference, value: Any, on_complete: CompletionCallback, priority: Any = MISSING) -> None:
        self._write(self._set_writes(reference, value, priority), self._completion(reference, on_complete))

    def set_priority(self, reference: Reference, priority: Any, on_complete: CompletionCallback) -> None:
        segments = self._writable(reference)
        node = tree.with_priority(tree.get_in(self._root, segments), priority)
        self._write([(segments, node)], self._completion(reference, on_complete))

    def update_children(self, reference: Reference, values: Dict[str, Any], on_complete: CompletionCallback) -> None:
        self._write(self._update_writes(reference, values), self._completion(reference, on_complete))

    def remove_value(self, reference: Reference, on_complete: CompletionCallback) -> None:
        self._write([(self._writable(reference), None)], self._completion(reference, on_complete))

    def _set_writes(self, reference: Reference, value: Any, priority: Any) -> Writes:
        segments = self._writable(reference)
        node = tree.normalize(value)
        if priority is not MISSING:
            node = tree.with_priority(node, priority)
        return [(segments, node)]

    def _update_writes(self, reference: Reference, values: Dict[str, Any]) -> Writes:
        segments = self._writable(reference)
        return [(segments + split_key(key), tree.normalize(value)) for key, value in values.items()]

    def _completion(self, reference: Reference, on_complete: CompletionCallback) -> Done:
        return lambda error: on_complete(error, reference)

    def _write(self, writes: Writes, done: Done, local_events: bool = True):
        if self._closed:
            self._loop.call_soon(done, BackendError("Database closed"))
            return
        self._root = _apply(self._root, writes)
        self._unconfirmed.append(writes)
        rows = [self._persisted(segments) for segments, _ in writes]
        if local_events:
            self._notifier.notify()
        self._spawn(self._persist(writes, rows, done, notify=not local_events))

    def _persisted(self, segments: Segments) -> Tuple[Segments, Any]:
        """The topmost location to rewrite so the stored rows match the pruned tree."""
        for depth in range(len(segments) + 1):
            node = tree.get_in(self._root, segments[:depth])
            if node is None:
                return segments[:depth], None
        return segments, node

    async def _persist(self, writes: Writes, rows: Writes, done: Done, notify: bool):
        error = None
        async with self._persist_lock:
            try:
                await self.handle.write(rows)
            except sqlite3.Error as e:
                error = BackendError(f"Failed to persist write: {e}")
                error.__cause__ = e
            self._unconfirmed.popleft()
            if error is None:
                self._confirmed = _apply(self._confirmed, writes)
            else:
                self._revert()
                notify = True
        if notify:
            self._notifier.notify()
        done(error)

    def _revert(self):
        """Drops a failed write from memory, replaying the writes still being persisted."""
        root = self._confirmed
        for writes in self._unconfirmed:
            root = _apply(root, writes)
        self._root = root
        logging.warning("Reverted a write that could not be persisted")

    def _spawn(self, coro):
        task = self._loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self):
        """Waits until every pending write has been persisted."""
        while self._pending:
            await asyncio.gather(*self._pending)

    # Disconnect operations

    def on_disconnect_set_value(
        self, reference: Reference, value: Any, on_complete: CompletionCallback, priority: Any = MISSING
    ) -> None:
        self._queue_disconnect(reference, self._set_writes(reference, value, priority), on_complete)

    def on_disconnect_update_children(
        self, reference: Reference, values: Dict[str, Any], on_complete: CompletionCallback
    ) -> None:
        self._queue_disconnect(reference, self._update_writes(reference, values), on_complete)

    def on_disconnect_remove_value(self, reference: Reference, on_complete: CompletionCallback) -> None:
        self._queue_disconnect(reference, [(self._writable(reference), None)], on_complete)

    def _queue_disconnect(self, reference: Reference, writes: Writes, on_complete: CompletionCallback):
        if self._closed:
            self._loop.call_soon(on_complete, BackendError("Database closed"), reference)
            return
        self._disconnect_ops.append((self._query(reference).segments, writes))
        self._loop.call_soon(on_complete, None, reference)

    def cancel_disconnect_operations(self, reference: Reference, on_complete: CompletionCallback) -> None:
        segments = self._query(reference).segments
        kept = [op for op in self._disconnect_ops if op[0][: len(segments)] != segments]
        logging.debug(f"Cancelled {len(self._disconnect_ops) - len(kept)} disconnect operation(s)")
        self._disconnect_ops = kept
        self._loop.call_soon(on_complete, None, reference)

    # Transactions

    def run_transaction(
        self,
        reference: Reference,
        update: Callable[[Any], Any],
        on_complete: TransactionCallback,
        local_events: bool = True,
    ) -> None:
        segments = self._writable(reference)
        key = self._query(reference).key
        if self._closed:
            self._loop.call_soon(on_complete, BackendError("Database closed"), False, None)
            return

        current = tree.get_in(self._root, segments)
        try:
            node = tree.with_priority(tree.normalize(update(tree.export(current))), tree.priority_of(current))
        except AbortTransaction:
            logging.debug(f"Transaction at {key} aborted")
            self._loop.call_soon(on_complete, None, False, child_snapshot(key, current))
            return
        except Exception as e:
            self._loop.call_soon(on_complete, e, False, None)
            return

        snapshot = child_snapshot(key, node)

        def done(error: Exception | None):
            on_complete(error, error is None, snapshot if error is None else None)

        self._write([(segments, node)], done, local_events=local_events)

    # Connection

    def go_offline(self):
        """Marks the backend disconnected and runs the queued disconnect operations."""
        if not self._connected:
            return
        self._connected = False
        ops, self._disconnect_ops = self._disconnect_ops, []
        logging.info(f"Going offline, running {len(ops)} disconnect operation(s)")
        for _, writes in ops:
            self._write(writes, self._log_failure)
        self._notifier.notify()

    def go_online(self):
        if self._connected:
            return
        self._connected = True
        logging.info("Going online")
        self._notifier.notify()

    @staticmethod
    def _log_failure(error: Exception | None):
        if error is not None:
            logging.error(f"Disconnect operation failed: {error}")

    async def close(self):
        """Goes offline, persists pending writes and cancels every remaining listener."""
        if self._closed:
            return
        self.go_offline()
        await self.flush()
        self._closed = True
        self._notifier.cancel_all(BackendError("Database closed"))
        logging.info("SQLite backend closed")
