"""
Contracts of the host document collaborators.

formtree never talks to a word processor directly. Everything it needs from
the document is expressed by these protocols: anchors (named, possibly
zero-width markers around a text range), native text fields, and a store for
named data blobs attached to the document.

Positions are character offsets into the document text. Every accessor on an
anchor or field raises `StaleAnchorError` once the underlying object has been
deleted, e.g. by manual editing.
"""

from enum import Enum
from typing import Protocol, runtime_checkable


class NativeFieldKind(Enum):
    """Kind of native text field the model interprets."""

    INPUT_USER = "inputUser"  # content names a function: WM(FUNCTION 'name')
    DATABASE = "database"  # mail-merge field bound to a data column


@runtime_checkable
class Anchor(Protocol):
    """Named marker around a text range (a bookmark)."""

    @property
    def name(self) -> str: ...

    def span(self) -> tuple[int, int]: ...

    def get_text(self) -> str: ...

    def set_text(self, text: str) -> None: ...

    def focus(self) -> None: ...

    def dispose(self, keep_content: bool = False) -> None: ...


@runtime_checkable
class NativeField(Protocol):
    """Text field embedded in the document."""

    @property
    def kind(self) -> NativeFieldKind: ...

    @property
    def variable_name(self) -> str | None: ...

    @property
    def column(self) -> str | None: ...

    def span(self) -> tuple[int, int]: ...

    def get_text(self) -> str: ...

    def set_text(self, text: str) -> None: ...

    def focus(self) -> None: ...

    def dispose(self, keep_content: bool = False) -> None: ...


class TextDocument(Protocol):
    """The parts of a text document formtree reads and edits."""

    @property
    def url(self) -> str | None: ...

    @property
    def modified(self) -> bool: ...

    @modified.setter
    def modified(self, value: bool) -> None: ...

    def anchors(self) -> list[Anchor]:
        """All anchors in document order."""
        ...

    def has_anchor(self, name: str) -> bool: ...

    def create_anchor(self, name: str, start: int, end: int) -> Anchor: ...

    def insert_text(self, position: int, text: str) -> None: ...

    def delete_text(self, start: int, end: int) -> None: ...

    def replace_text(self, start: int, end: int, text: str) -> None:
        """Replace a range in one edit; ranges enclosing it grow or shrink with it."""
        ...

    def native_fields(self) -> list[NativeField]: ...

    def insert_native_field(
        self,
        position: int,
        kind: NativeFieldKind,
        *,
        variable_name: str | None = None,
        column: str | None = None,
        content: str = "",
        hint: str | None = None,
    ) -> NativeField: ...

    def create_native_field(
        self,
        start: int,
        end: int,
        kind: NativeFieldKind,
        *,
        variable_name: str | None = None,
        column: str | None = None,
        hint: str | None = None,
    ) -> NativeField:
        """Turn existing text into a native field."""
        ...

    def user_field_masters(self) -> list[str]:
        """Variable names of all user field masters of the document."""
        ...

    def dispose_user_field_master(self, variable_name: str) -> None: ...


class PersistentData(Protocol):
    """Named string blobs stored with the document."""

    def get_data(self, data_id: str) -> str | None: ...

    def set_data(self, data_id: str, value: str) -> None: ...

    def remove_data(self, data_id: str) -> None: ...
