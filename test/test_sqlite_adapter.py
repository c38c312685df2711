import asyncio

import aiosqlite
import pytest
from pytest_asyncio import fixture

from fire_database.adaptors.sqlite import SQLiteStorageHandle
from fire_database.adaptors.sqlite import tree
from fire_database.adaptors.sqlite.handle import decode_path, encode_path
from fire_database.adaptors.sqlite.keys import PushKeyGenerator
from fire_database.adaptors.sqlite.notifier import SQLiteNotifier, diff_views
from fire_database.adaptors.sqlite.query import SQLiteReference
from fire_database.protocols import EventType


@fixture
async def handle():
    """Provides a storage handle on a clean in-memory database for each test function."""
    async with aiosqlite.connect(":memory:") as conn:
        handle = SQLiteStorageHandle(conn)
        await handle.create_schema()
        yield handle


def test_normalize_prunes_empty_values():
    assert tree.normalize({"a": None, "b": {}, "c": [], "d": 1}) == {"d": 1}
    assert tree.normalize({"a": {"b": None}}) is None
    assert tree.normalize(["x", "y"]) == {"0": "x", "1": "y"}


@pytest.mark.parametrize("value", [float("nan"), {"a/b": 1}, {"": 1}, object()])
def test_normalize_rejects_unstorable_values(value):
    with pytest.raises((ValueError, TypeError)):
        tree.normalize(value)


def test_export_turns_dense_index_keys_into_lists():
    assert tree.export({"0": "a", "1": "b", "2": "c"}) == ["a", "b", "c"]
    assert tree.export({"0": "a", "2": "c"}) == ["a", None, "c"]
    assert tree.export({"0": "a", "9": "b"}) == {"0": "a", "9": "b"}
    assert tree.export({"1": "a", "x": "b"}) == {"1": "a", "x": "b"}


def test_priorities_wrap_scalars():
    node = tree.with_priority("hello", 2)
    assert node == {".value": "hello", ".priority": 2}
    assert tree.export(node) == "hello"
    assert tree.priority_of(node) == 2
    assert tree.with_priority(node, None) == "hello"
    with pytest.raises(TypeError):
        tree.with_priority("hello", {"not": "allowed"})


def test_set_in_is_copy_on_write():
    root = {"a": {"b": 1, "c": 2}}
    updated = tree.set_in(root, ("a", "b"), None)
    assert root == {"a": {"b": 1, "c": 2}}
    assert updated == {"a": {"c": 2}}
    assert tree.set_in(updated, ("a", "c"), None) is None
    assert tree.set_in({"a": 5}, ("a", "b"), 1) == {"a": {"b": 1}}


def test_key_and_value_order():
    keys = ["b", "10", "a", "2", "-1", "99999999999"]
    assert sorted(keys, key=tree.key_order) == ["-1", "2", "10", "99999999999", "a", "b"]
    values = ["a", {"x": 1}, 3, True, None, False, 1.5]
    assert sorted(values, key=tree.value_order) == [None, False, True, 1.5, 3, "a", {"x": 1}]


def test_query_view_filters_and_limits():
    node = {"a": {"n": 3}, "b": {"n": 1}, "c": {"n": 2}, "d": {"x": 0}}
    by_n = SQLiteReference(("items",)).order_by_child("n")
    assert [key for key, _ in by_n.view(node)] == ["d", "b", "c", "a"]
    assert [key for key, _ in by_n.start_at(2).view(node)] == ["c", "a"]
    assert [key for key, _ in by_n.equal_to(2).view(node)] == ["c"]
    assert [key for key, _ in by_n.limit_to_first(2).view(node)] == ["d", "b"]
    assert [key for key, _ in SQLiteReference().order_by_key().end_at("b").view(node)] == ["a", "b"]


def test_query_snapshot_keeps_view_order_and_priorities():
    node = {"0": {"n": 3}, "1": {"n": 1, ".priority": 7}, "2": {"n": 2}}
    snapshot = SQLiteReference(("items",)).order_by_child("n").snapshot(node)
    assert snapshot.key == "items"
    assert snapshot.value == [{"n": 3}, {"n": 1}, {"n": 2}]
    assert [(child.key, child.priority) for child in snapshot.children] == [("1", 7), ("2", None), ("0", None)]
    assert snapshot.child("1/n").value == 1


def test_query_limits_are_validated():
    reference = SQLiteReference()
    with pytest.raises(ValueError):
        reference.limit_to_first(0)
    with pytest.raises(ValueError):
        reference.limit_to_first(1).limit_to_last(1)


def test_child_starts_an_unrefined_reference():
    reference = SQLiteReference(("a",)).order_by_value().limit_to_last(3)
    child = reference.child("b/c")
    assert child == SQLiteReference(("a", "b", "c"))
    assert child.key == "c"


def test_diff_views():
    old = [("a", 1), ("b", 2), ("c", 3)]
    new = [("b", 2), ("c", 4), ("d", 5)]
    assert diff_views(old, new) == [
        (EventType.CHILD_REMOVED, "a", 1, None),
        (EventType.CHILD_ADDED, "d", 5, "c"),
        (EventType.CHILD_CHANGED, "c", 4, "b"),
    ]


def test_diff_views_reports_moves():
    old = [("a", 1), ("b", 2), ("c", 3)]
    new = [("b", 2), ("c", 3), ("a", 9)]
    assert diff_views(old, new) == [
        (EventType.CHILD_MOVED, "a", 9, "c"),
        (EventType.CHILD_CHANGED, "a", 9, "c"),
    ]


def test_push_keys_sort_in_creation_order():
    generate = PushKeyGenerator()
    keys = [generate() for _ in range(200)]
    assert all(len(key) == 20 for key in keys)
    assert len(set(keys)) == len(keys)
    assert sorted(keys) == keys


def test_paths_are_encoded_from_the_root():
    assert encode_path(()) == ""
    assert encode_path(("a", "b")) == "/a/b"
    assert decode_path("/a/b") == ("a", "b")
    assert decode_path("") == ()


@pytest.mark.asyncio
async def test_notifier_delivers_on_the_loop_and_drops_removed_listeners():
    root = {"a": 1}
    notifier = SQLiteNotifier(asyncio.get_running_loop(), lambda segments: tree.get_in(root, segments))
    received = []
    handle = notifier.register(SQLiteReference(), EventType.VALUE, lambda s, _: received.append(s.value), received.append)
    assert received == []
    await asyncio.sleep(0)
    assert received == [{"a": 1}]

    root = {"a": 2}
    notifier.notify()
    notifier.unregister(handle)
    await asyncio.sleep(0)
    assert received == [{"a": 1}]
    assert notifier.listener_count == 0


@pytest.mark.asyncio
async def test_handle_round_trip(handle):
    await handle.write([((), {"a": {"b": 1, "c": "x"}, "d": True})])
    await handle.write([(("a", "b"), None)])
    assert await handle.load() == {"a": {"c": "x"}, "d": True}


@pytest.mark.asyncio
async def test_handle_replaces_scalars_and_keeps_priorities(handle):
    await handle.write([(("a",), {".value": 5, ".priority": 1})])
    await handle.write([(("a", "b"), "child")])
    assert await handle.load() == {"a": {"b": "child", ".priority": 1}}

    await handle.write([((), 3.5)])
    assert await handle.load() == 3.5
