"""
Mapping between snapshots and typed records.

Decoding is schema driven: the record's Pydantic model validates the snapshot
value, then the snapshot key is injected as the record's `id`. A snapshot with
no value decodes to None, which is a valid result and not an error.
"""
from typing import Any, AsyncIterable, AsyncIterator, Dict, FrozenSet, List, Tuple, Type, TypeVar

import pydantic_core

from .changes import Change, SnapshotChange
from .errors import DecodeError
from .models import Record, Snapshot

T = TypeVar("T", bound=Record)


def decode_snapshot(snapshot: Snapshot, model: Type[T]) -> T | None:
    """Maps a snapshot to the given model, or None if nothing is stored there."""
    if not snapshot.exists:
        return None
    data = snapshot.value
    if isinstance(data, dict) and snapshot.key is not None:
        # The key wins over any id stored in the payload.
        data = {**data, "id": snapshot.key}
    try:
        value = model.model_validate(data)
    except pydantic_core.ValidationError as e:
        raise DecodeError(
            f"Snapshot {snapshot.key!r} does not match {model.__name__}: {e.error_count()} error(s)"
        ) from e
    if snapshot.key is None:
        return value
    return value.model_copy(update={"id": snapshot.key})


def decode_children(snapshot: Snapshot, model: Type[T]) -> List[T]:
    """Maps every child of a snapshot to the given model, keeping the child order."""
    values = []
    for child in snapshot.children:
        value = decode_snapshot(child, model)
        if value is not None:
            values.append(value)
    return values


def decode_change(change: SnapshotChange, model: Type[T]) -> Change[T] | None:
    """
    Decodes the payload of a change, keeping its kind and previous key.
    Returns None when the payload holds no value.
    """
    value = decode_snapshot(change.snapshot, model)
    if value is None:
        return None
    return Change[model](kind=change.kind, value=value, previous_key=change.previous_key)


def encode(record: Record) -> Dict[str, Any]:
    """
    Serializes a record for writing. The id is the key of the location, so it is
    not stored. Unset optional fields are left out, so a merge keeps what is stored.
    """
    return record.model_dump(mode="json", exclude={"id"}, exclude_none=True)


async def _close(stream: AsyncIterable) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


async def map_data(
    stream: AsyncIterable[Tuple[Snapshot, str | None]],
) -> AsyncIterator[Tuple[str | None, Any, str | None]]:
    """Maps snapshots to their key, raw value and previous key."""
    try:
        async for snapshot, previous_key in stream:
            yield snapshot.key, snapshot.value, previous_key
    finally:
        await _close(stream)


async def map_values(
    stream: AsyncIterable[Tuple[Snapshot, str | None]], model: Type[T]
) -> AsyncIterator[Tuple[T | None, str | None]]:
    """Maps snapshots to the given model. A decoding failure ends the stream with `DecodeError`."""
    try:
        async for snapshot, previous_key in stream:
            yield decode_snapshot(snapshot, model), previous_key
    finally:
        await _close(stream)


async def map_array(
    stream: AsyncIterable[Tuple[Snapshot, str | None]], model: Type[T]
) -> AsyncIterator[Tuple[List[T], str | None]]:
    """Maps collection snapshots to lists of the given model."""
    try:
        async for snapshot, previous_key in stream:
            yield decode_children(snapshot, model), previous_key
    finally:
        await _close(stream)


async def map_set(
    stream: AsyncIterable[Tuple[Snapshot, str | None]], model: Type[T]
) -> AsyncIterator[Tuple[FrozenSet[T], str | None]]:
    """
    Maps collection snapshots to sets of the given model.

    The model must be hashable, e.g. declared with `ConfigDict(frozen=True)`.
    """
    try:
        async for snapshot, previous_key in stream:
            yield frozenset(decode_children(snapshot, model)), previous_key
    finally:
        await _close(stream)


async def map_changes(stream: AsyncIterable[SnapshotChange], model: Type[T]) -> AsyncIterator[Change[T]]:
    """Maps raw changes to typed changes, skipping those without a value."""
    try:
        async for change in stream:
            typed = decode_change(change, model)
            if typed is not None:
                yield typed
    finally:
        await _close(stream)
