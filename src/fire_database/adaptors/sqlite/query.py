"""
References and ordered queries for the SQLite backend.

A `SQLiteReference` is a location plus optional query parameters. Refinements
return new references; `child()` always starts from an unrefined location.
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, List, Tuple

from ...models import Snapshot
from . import tree
from .tree import Segments

_MIN_KEY = (-1,)
_MAX_KEY = (2,)


class OrderBy(str, Enum):
    PRIORITY = "priority"
    KEY = "key"
    VALUE = "value"
    CHILD = "child"


def split_key(key: str) -> Segments:
    segments = tuple(segment for segment in key.split("/") if segment)
    if not segments:
        raise ValueError(f"Invalid key {key!r}")
    return segments


@dataclass(frozen=True)
class SQLiteReference:
    segments: Segments = ()
    order_by: OrderBy = OrderBy.PRIORITY
    order_child: Segments = ()
    start: Tuple[Any, str | None] | None = None
    end: Tuple[Any, str | None] | None = None
    limit_first: int | None = None
    limit_last: int | None = None

    @property
    def key(self) -> str | None:
        return self.segments[-1] if self.segments else None

    def child(self, key: str) -> "SQLiteReference":
        return SQLiteReference(self.segments + split_key(key))

    # Ordering

    def order_by_key(self) -> "SQLiteReference":
        return replace(self, order_by=OrderBy.KEY, order_child=())

    def order_by_value(self) -> "SQLiteReference":
        return replace(self, order_by=OrderBy.VALUE, order_child=())

    def order_by_priority(self) -> "SQLiteReference":
        return replace(self, order_by=OrderBy.PRIORITY, order_child=())

    def order_by_child(self, path: str) -> "SQLiteReference":
        return replace(self, order_by=OrderBy.CHILD, order_child=split_key(path))

    # Filtering

    def start_at(self, value: Any, key: str | None = None) -> "SQLiteReference":
        return replace(self, start=(value, key))

    def end_at(self, value: Any, key: str | None = None) -> "SQLiteReference":
        return replace(self, end=(value, key))

    def equal_to(self, value: Any, key: str | None = None) -> "SQLiteReference":
        return replace(self, start=(value, key), end=(value, key))

    def limit_to_first(self, limit: int) -> "SQLiteReference":
        self._check_limit(limit)
        return replace(self, limit_first=limit)

    def limit_to_last(self, limit: int) -> "SQLiteReference":
        self._check_limit(limit)
        return replace(self, limit_last=limit)

    def _check_limit(self, limit: int):
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValueError(f"Limit must be a positive integer, got {limit!r}")
        if self.limit_first is not None or self.limit_last is not None:
            raise ValueError("A limit has already been set on this query")

    # Evaluation

    def sort_key(self, key: str, node: Any) -> tuple:
        if self.order_by is OrderBy.KEY:
            return tree.key_order(key)
        if self.order_by is OrderBy.PRIORITY:
            ordered = tree.priority_of(node)
        elif self.order_by is OrderBy.VALUE:
            ordered = tree.leaf_value(node)
        else:
            ordered = tree.leaf_value(tree.get_in(node, self.order_child))
        return (tree.value_order(ordered), tree.key_order(key))

    def _bound(self, bound: Tuple[Any, str | None], default_key: tuple) -> tuple:
        value, key = bound
        if self.order_by is OrderBy.KEY:
            return tree.key_order(str(value))
        return (tree.value_order(value), tree.key_order(key) if key is not None else default_key)

    def view(self, node: Any) -> List[Tuple[str, Any]]:
        """The ordered (key, node) children matched by this query."""
        children = sorted(tree.children_of(node), key=lambda item: self.sort_key(*item))
        if self.start is not None:
            lower = self._bound(self.start, _MIN_KEY)
            children = [item for item in children if self.sort_key(*item) >= lower]
        if self.end is not None:
            upper = self._bound(self.end, _MAX_KEY)
            children = [item for item in children if self.sort_key(*item) <= upper]
        if self.limit_first is not None:
            children = children[: self.limit_first]
        if self.limit_last is not None:
            children = children[-self.limit_last :]
        return children

    def snapshot(self, node: Any) -> Snapshot:
        """The snapshot of this query's location given the node stored there, children in query order."""
        return child_snapshot(self.key, node, self.view(node))


def child_snapshot(key: str | None, node: Any, view: List[Tuple[str, Any]] | None = None) -> Snapshot:
    """
    Builds the snapshot of a node. Its children come from `view` when given, and in
    default order otherwise; every descendant keeps its priority.
    """
    if not tree.children_of(node):
        return Snapshot(key=key, value=tree.export(node), priority=tree.priority_of(node))
    if view is None:
        view = sorted(tree.children_of(node), key=tree.default_order)
    children = [child_snapshot(child_key, child) for child_key, child in view]
    value = tree.collect([(child.key, child.value) for child in children])
    return Snapshot.ordered(key, value, tree.priority_of(node), children)
