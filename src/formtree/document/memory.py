"""
In-memory implementation of the document collaborators.

`MemoryDocument` keeps the document as a plain string plus a list of ranges
(anchors and native fields) whose offsets follow every edit. It is used by
the test suite and works as a headless backend for scripting.
"""

import itertools
import logging
from abc import ABC, abstractmethod

from formtree.document.interfaces import NativeFieldKind
from formtree.exceptions import StaleAnchorError

logger = logging.getLogger(__name__)

_creation_counter = itertools.count()


class _Range(ABC):
    def __init__(self, document: "MemoryDocument", start: int, end: int):
        self._document = document
        self.start = start
        self.end = end
        self.alive = True
        self.order = next(_creation_counter)

    @property
    @abstractmethod
    def label(self) -> str: ...

    def _check(self) -> None:
        if not self.alive:
            raise StaleAnchorError(self.label)

    def span(self) -> tuple[int, int]:
        self._check()
        return self.start, self.end

    def get_text(self) -> str:
        self._check()
        return self._document.text[self.start : self.end]

    def set_text(self, text: str) -> None:
        self._check()
        self._document._replace(self.start, self.end, text, owner=self)

    def focus(self) -> None:
        self._check()
        self._document.focused = self


class MemoryAnchor(_Range):
    """Anchor of a MemoryDocument."""

    def __init__(self, document: "MemoryDocument", name: str, start: int, end: int):
        super().__init__(document, start, end)
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def label(self) -> str:
        return self._name

    def dispose(self, keep_content: bool = False) -> None:
        self._check()
        document = self._document
        self.alive = False
        document._anchors.remove(self)
        if not keep_content and self.end > self.start:
            document._replace(self.start, self.end, "")
        document.modified = True

    def __repr__(self) -> str:
        state = "" if self.alive else " stale"
        return f"MemoryAnchor({self._name!r}, {self.start}, {self.end}{state})"


class MemoryNativeField(_Range):
    """Native text field of a MemoryDocument."""

    def __init__(
        self,
        document: "MemoryDocument",
        kind: NativeFieldKind,
        start: int,
        end: int,
        variable_name: str | None = None,
        column: str | None = None,
        hint: str | None = None,
    ):
        super().__init__(document, start, end)
        self.kind = kind
        self.variable_name = variable_name
        self.column = column
        self.hint = hint

    @property
    def label(self) -> str:
        return self.variable_name or self.column or "<field>"

    def dispose(self, keep_content: bool = False) -> None:
        self._check()
        document = self._document
        self.alive = False
        document._fields.remove(self)
        if not keep_content and self.end > self.start:
            document._replace(self.start, self.end, "")
        document.modified = True

    def __repr__(self) -> str:
        return f"MemoryNativeField({self.kind.value}, {self.label!r}, {self.start}, {self.end})"


class MemoryDocument:
    """A text document held in memory.

    Params:
        text: Initial document text
        url: Location of the document; None marks an unsaved template instance
    """

    def __init__(self, text: str = "", url: str | None = None):
        self.text = text
        self.url = url
        self.modified = False
        self.focused: _Range | None = None
        self._anchors: list[MemoryAnchor] = []
        self._fields: list[MemoryNativeField] = []
        self._masters: set[str] = set()

    # -- anchors -------------------------------------------------------------

    def anchors(self) -> list[MemoryAnchor]:
        return sorted(self._anchors, key=lambda a: (a.start, -a.end, a.order))

    def has_anchor(self, name: str) -> bool:
        return any(anchor.name == name for anchor in self._anchors)

    def anchor(self, name: str) -> MemoryAnchor:
        for anchor in self._anchors:
            if anchor.name == name:
                return anchor
        raise KeyError(name)

    def create_anchor(self, name: str, start: int, end: int) -> MemoryAnchor:
        if self.has_anchor(name):
            raise ValueError(f"Anchor name '{name}' is already in use")
        if not 0 <= start <= end <= len(self.text):
            raise ValueError(f"Invalid range {start}..{end}")
        anchor = MemoryAnchor(self, name, start, end)
        self._anchors.append(anchor)
        self.modified = True
        return anchor

    def add_anchored_text(self, name: str, text: str) -> MemoryAnchor:
        """Append `text` at the end of the document and anchor it."""
        start = len(self.text)
        self.insert_text(start, text)
        return self.create_anchor(name, start, start + len(text))

    # -- text ----------------------------------------------------------------

    def insert_text(self, position: int, text: str) -> None:
        if not 0 <= position <= len(self.text):
            raise ValueError(f"Invalid position {position}")
        self._replace(position, position, text)

    def delete_text(self, start: int, end: int) -> None:
        if not 0 <= start <= end <= len(self.text):
            raise ValueError(f"Invalid range {start}..{end}")
        if end > start:
            self._replace(start, end, "")

    def replace_text(self, start: int, end: int, text: str) -> None:
        if not 0 <= start <= end <= len(self.text):
            raise ValueError(f"Invalid range {start}..{end}")
        self._replace(start, end, text)

    def _replace(self, start: int, end: int, new_text: str, owner: _Range | None = None) -> None:
        self.text = self.text[:start] + new_text + self.text[end:]
        delta = len(new_text) - (end - start)
        new_end = start + len(new_text)

        for item in [*self._anchors, *self._fields]:
            if item is owner:
                continue
            if item.end < start or (item.end == start and (item.start < start or start < end)):
                continue
            if item.start >= end:
                item.start += delta
                item.end += delta
            elif item.start <= start and item.end >= end:
                item.end += delta
            elif item.start >= start and item.end <= end:
                if isinstance(item, MemoryNativeField):
                    item.alive = False
                    self._fields.remove(item)
                else:
                    item.start = item.end = start
            elif item.start < start:
                item.end = start
            else:
                item.start = new_end
                item.end += delta

        if owner is not None:
            owner.start = start
            owner.end = new_end
        self.modified = True

    # -- native fields -------------------------------------------------------

    def native_fields(self) -> list[MemoryNativeField]:
        return sorted(self._fields, key=lambda f: (f.start, f.order))

    def insert_native_field(
        self,
        position: int,
        kind: NativeFieldKind,
        *,
        variable_name: str | None = None,
        column: str | None = None,
        content: str = "",
        hint: str | None = None,
    ) -> MemoryNativeField:
        self.insert_text(position, content)
        return self.create_native_field(
            position,
            position + len(content),
            kind,
            variable_name=variable_name,
            column=column,
            hint=hint,
        )

    def create_native_field(
        self,
        start: int,
        end: int,
        kind: NativeFieldKind,
        *,
        variable_name: str | None = None,
        column: str | None = None,
        hint: str | None = None,
    ) -> MemoryNativeField:
        if not 0 <= start <= end <= len(self.text):
            raise ValueError(f"Invalid range {start}..{end}")
        field = MemoryNativeField(
            self, kind, start, end, variable_name=variable_name, column=column, hint=hint
        )
        self._fields.append(field)
        if kind is NativeFieldKind.INPUT_USER and variable_name:
            self._masters.add(variable_name)
        return field

    def user_field_masters(self) -> list[str]:
        return sorted(self._masters)

    def dispose_user_field_master(self, variable_name: str) -> None:
        self._masters.discard(variable_name)
        logger.debug(f"Disposed user field master {variable_name!r}")


class MemoryPersistentData:
    """Blob store kept in a dict; writes mark the owning document modified."""

    def __init__(self, document: MemoryDocument | None = None, data: dict[str, str] | None = None):
        self.document = document
        self.data: dict[str, str] = dict(data or {})

    def get_data(self, data_id: str) -> str | None:
        return self.data.get(data_id)

    def set_data(self, data_id: str, value: str) -> None:
        self.data[data_id] = value
        self._touch()

    def remove_data(self, data_id: str) -> None:
        if self.data.pop(data_id, None) is not None:
            self._touch()

    def _touch(self) -> None:
        if self.document is not None:
            self.document.modified = True
