import pydantic_core
import pytest
from pydantic import ConfigDict

from fire_database import (
    ChangeKind,
    DecodeError,
    Record,
    Snapshot,
    SnapshotChange,
    decode_change,
    decode_children,
    decode_snapshot,
    encode,
    map_changes,
    map_set,
    map_values,
)
from conftest import Message, a_date


class Counter(Record):
    count: int


class Tag(Record):
    model_config = ConfigDict(frozen=True)

    name: str


async def _stream(*items):
    for item in items:
        yield item


@pytest.mark.parametrize("model", [Message, Counter])
def test_decode_missing_value_is_none(model):
    assert decode_snapshot(Snapshot(key="nothing"), model) is None


def test_decode_sets_id_from_key():
    snapshot = Snapshot(key="my message", value={"text": "hi", "id": "stale"})
    assert decode_snapshot(snapshot, Message) == Message(id="my message", text="hi")


def test_decode_ignores_invalid_embedded_id():
    snapshot = Snapshot(key="k", value={"count": 3, "id": 42})
    assert decode_snapshot(snapshot, Counter) == Counter(id="k", count=3)


def test_decode_mismatch_raises_decode_error():
    snapshot = Snapshot(key="k", value={"count": "many"})
    with pytest.raises(DecodeError) as info:
        decode_snapshot(snapshot, Counter)
    assert isinstance(info.value.__cause__, pydantic_core.ValidationError)


def test_dates_are_epoch_milliseconds():
    date = a_date()
    encoded = encode(Message(id="ignored", text="hi", date=date))
    assert encoded == {"text": "hi", "date": 1714566615250}
    decoded = decode_snapshot(Snapshot(key="m", value=encoded), Message)
    assert decoded.date == date


def test_decode_children_keeps_order():
    snapshot = Snapshot(key="counters", value={"b": {"count": 2}, "a": {"count": 1}})
    assert [counter.id for counter in decode_children(snapshot, Counter)] == ["b", "a"]


def test_decode_children_of_list():
    snapshot = Snapshot(key="counters", value=[{"count": 0}, None, {"count": 2}])
    assert decode_children(snapshot, Counter) == [Counter(id="0", count=0), Counter(id="2", count=2)]


def test_decode_change_keeps_kind_and_previous_key():
    change = SnapshotChange.move(Snapshot(key="b", value={"count": 1}), "a")
    typed = decode_change(change, Counter)
    assert typed.kind is ChangeKind.MOVE
    assert typed.value == Counter(id="b", count=1)
    assert typed.previous_key == "a"


def test_decode_change_without_value_is_none():
    assert decode_change(SnapshotChange.delete(Snapshot(key="gone")), Counter) is None


def test_decode_change_propagates_decode_error():
    change = SnapshotChange.insert(Snapshot(key="b", value={"count": "many"}))
    with pytest.raises(DecodeError):
        decode_change(change, Counter)


@pytest.mark.asyncio
async def test_map_changes_skips_empty_payloads():
    changes = _stream(
        SnapshotChange.insert(Snapshot(key="a", value={"count": 1})),
        SnapshotChange.update(Snapshot(key="b")),
        SnapshotChange.delete(Snapshot(key="a", value={"count": 1}), None),
    )
    typed = [change async for change in map_changes(changes, Counter)]
    assert [(change.kind, change.value.id) for change in typed] == [
        (ChangeKind.INSERT, "a"),
        (ChangeKind.DELETE, "a"),
    ]


@pytest.mark.asyncio
async def test_map_values_ends_with_decode_error():
    snapshots = _stream((Snapshot(key="a", value={"count": 1}), None), (Snapshot(key="b", value="x"), "a"))
    values = map_values(snapshots, Counter)
    assert await values.__anext__() == (Counter(id="a", count=1), None)
    with pytest.raises(DecodeError):
        await values.__anext__()


@pytest.mark.asyncio
async def test_map_set_collects_hashable_records():
    snapshots = _stream(
        (Snapshot(key="tags", value={"a": {"name": "red"}, "b": {"name": "blue"}}), None),
        (Snapshot(key="tags"), None),
    )
    sets = [values async for values, _ in map_set(snapshots, Tag)]
    assert sets == [frozenset({Tag(id="a", name="red"), Tag(id="b", name="blue")}), frozenset()]
