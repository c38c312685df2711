"""
Copy-on-write operations over the nested dict tree held by the SQLite backend.

A stored node is either a scalar (bool, int, float, str) or a non-empty dict of
child nodes. Lists are stored as dicts keyed by index, and empty values are
pruned. A priority lives under the `.priority` key; a scalar with a priority is
wrapped as `{".value": scalar, ".priority": priority}`.

Nodes are never mutated once built, so a listener can keep an old subtree and
compare it with the new one.
"""
import math
import re
from typing import Any, Iterable, Iterator, List, Tuple

PRIORITY = ".priority"
VALUE = ".value"

Segments = Tuple[str, ...]

_INT_KEY = re.compile(r"-?(0|[1-9][0-9]*)")
_INDEX_KEY = re.compile(r"0|[1-9][0-9]*")
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


def normalize(value: Any) -> Any:
    """Converts a value given by the user into a stored node, or None if it is empty."""
    if value is None:
        return None
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"Cannot store non-finite number {value!r}")
    if isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        items: Iterable[Tuple[Any, Any]] = enumerate(value)
    elif isinstance(value, dict):
        items = value.items()
    else:
        raise TypeError(f"Cannot store value of type {type(value).__name__}")

    node = {}
    for key, child in items:
        key = str(key)
        if not key or "/" in key:
            raise ValueError(f"Invalid key {key!r}")
        child = normalize(child)
        if child is not None:
            node[key] = child
    return node if has_value(node) else None


def has_value(node: Any) -> bool:
    if node is None:
        return False
    if isinstance(node, dict):
        return any(key != PRIORITY for key in node)
    return True


def priority_of(node: Any) -> Any:
    if isinstance(node, dict):
        return node.get(PRIORITY)
    return None


def leaf_value(node: Any) -> Any:
    """The scalar of a node, unwrapping a prioritized scalar. Dicts are returned as is."""
    if isinstance(node, dict) and VALUE in node:
        return node[VALUE]
    return node


def with_priority(node: Any, priority: Any) -> Any:
    """Returns the node with its priority replaced. A node without value cannot hold a priority."""
    if priority is not None and (isinstance(priority, bool) or not isinstance(priority, (int, float, str))):
        raise TypeError(f"Priority must be a number or a string, got {type(priority).__name__}")
    if not has_value(node):
        return None
    if isinstance(node, dict):
        base = leaf_value(node)
        if isinstance(base, dict):
            base = {key: child for key, child in base.items() if key != PRIORITY}
    else:
        base = node
    if priority is None:
        return base
    if isinstance(base, dict):
        return {**base, PRIORITY: priority}
    return {VALUE: base, PRIORITY: priority}


def get_in(node: Any, segments: Segments) -> Any:
    for key in segments:
        if not isinstance(node, dict) or key == VALUE:
            return None
        node = node.get(key)
    return node


def set_in(node: Any, segments: Segments, value: Any) -> Any:
    """Returns a new tree where `segments` holds `value`; None removes the location."""
    if not segments:
        return value
    key, rest = segments[0], segments[1:]
    if isinstance(node, dict):
        children = {name: child for name, child in node.items() if name != VALUE}
    else:
        children = {}
    child = set_in(children.get(key), rest, value)
    if child is None:
        children.pop(key, None)
    else:
        children[key] = child
    return children if has_value(children) else None


def key_order(key: str) -> tuple:
    """Keys that are 32-bit integers sort numerically before every other key."""
    if _INT_KEY.fullmatch(key):
        number = int(key)
        if _INT32_MIN <= number <= _INT32_MAX:
            return (0, number, "")
    return (1, 0, key)


def value_order(value: Any) -> tuple:
    """Null, then false and true, then numbers, strings and finally objects."""
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    return (4, 0)


def children_of(node: Any) -> list:
    if not isinstance(node, dict) or VALUE in node:
        return []
    return [(key, child) for key, child in node.items() if key != PRIORITY]


def default_order(item: Tuple[str, Any]) -> tuple:
    key, node = item
    return (value_order(priority_of(node)), key_order(key))


def as_collection(items: Iterable[Tuple[str, Any]]) -> Any:
    """Builds the exported value of ordered children, turning dense index keys into a list."""
    return collect([(key, export(child)) for key, child in items])


def collect(exported: List[Tuple[str, Any]]) -> Any:
    if not exported:
        return None
    indexes = [int(key) if _INDEX_KEY.fullmatch(key) else -1 for key, _ in exported]
    if all(index >= 0 for index in indexes) and max(indexes) < 2 * len(indexes):
        array = [None] * (max(indexes) + 1)
        for index, (_, value) in zip(indexes, exported):
            array[index] = value
        return array
    return dict(exported)


def export(node: Any) -> Any:
    """Converts a stored node back to a plain value, without priorities."""
    if not isinstance(node, dict):
        return node
    if VALUE in node:
        return node[VALUE]
    return as_collection(sorted(children_of(node), key=default_order))


def leaves(segments: Segments, node: Any) -> Iterator[Tuple[Segments, Any]]:
    """Flattens a node into (path, scalar) pairs."""
    if isinstance(node, dict):
        for key, child in node.items():
            yield from leaves(segments + (key,), child)
    elif node is not None:
        yield segments, node


def build(items: Iterable[Tuple[Segments, Any]]) -> Any:
    """Rebuilds a tree from (path, scalar) pairs, as produced by `leaves`."""
    root: dict = {}
    for segments, value in items:
        if not segments:
            return value
        node = root
        for key in segments[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = node[key] = {}
            node = child
        node[segments[-1]] = value
    return prune(root)


def prune(node: Any) -> Any:
    if not isinstance(node, dict):
        return node
    children = {}
    for key, child in node.items():
        child = prune(child)
        if child is not None:
            children[key] = child
    return children if has_value(children) else None
