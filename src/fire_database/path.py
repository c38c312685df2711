"""
Typed locations in the database tree.

A `Path` is an immutable sequence of components. A component is either a
literal key (`Child`) or a placeholder (`NewChild`) asking the backend to mint
a fresh unique key when the path is resolved:

    Path.parse("/countries/france/cities")     # a collection
    Path.parse("/countries/france/cities/*")   # a new city
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Tuple, Union

from .errors import PathError

if TYPE_CHECKING:
    from .protocols import Backend, Reference

NEW_CHILD_MARKER = "*"


@dataclass(frozen=True, slots=True)
class Child:
    key: str

    @property
    def value(self) -> str:
        return self.key


@dataclass(frozen=True, slots=True)
class NewChild:
    @property
    def value(self) -> str:
        return NEW_CHILD_MARKER


Component = Union[Child, NewChild]


def _component(segment: str) -> Component:
    if segment == NEW_CHILD_MARKER:
        return NewChild()
    return Child(segment)


@dataclass(frozen=True, slots=True)
class Path:
    """An immutable location, built from `/`-separated segments."""

    components: Tuple[Component, ...]

    def __post_init__(self):
        if not self.components:
            raise PathError("Path must contain at least one component")
        for component in self.components:
            if isinstance(component, Child) and not component.key:
                raise PathError("Path components must not be empty")

    @classmethod
    def parse(cls, text: str) -> "Path":
        """Creates a path from a string such as "/countries/france/cities/*"."""
        segments = text.strip("/").split("/")
        if segments == [""]:
            raise PathError(f"Provided path {text!r} is empty")
        if any(not segment for segment in segments):
            raise PathError(f"Provided path {text!r} contains empty components")
        return cls(tuple(_component(segment) for segment in segments))

    @classmethod
    def of(cls, *segments: str) -> "Path":
        """Creates a path from already separated segments."""
        if any(not segment for segment in segments):
            raise PathError(f"Provided segments {segments!r} contain empty components")
        return cls(tuple(_component(segment) for segment in segments))

    @property
    def key(self) -> str | None:
        """The last literal key, or None if the path ends with a new child."""
        last = self.components[-1]
        return last.key if isinstance(last, Child) else None

    def child(self, id: str) -> "Path":
        """Adds a specific child to the path."""
        return Path(self.components + (Child(id),))

    def new_child(self) -> "Path":
        """Adds a new child to the path."""
        return Path(self.components + (NewChild(),))

    def render(self) -> str:
        return "/".join(component.value for component in self.components)

    def resolve(self, backend: "Backend") -> "Reference":
        """
        Walks the components from the backend's root reference.

        Every `NewChild` component mints a new key, so resolving the same path
        twice gives two different locations when it contains one.
        """
        reference = backend.reference()
        for component in self.components:
            if isinstance(component, NewChild):
                reference = reference.child(backend.mint_key())
            else:
                reference = reference.child(component.key)
        return reference

    def __add__(self, segment: str) -> "Path":
        if segment == NEW_CHILD_MARKER:
            return self.new_child()
        return self.child(segment)

    def __str__(self) -> str:
        return self.render()
