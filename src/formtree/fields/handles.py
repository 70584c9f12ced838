"""
Field handles: physical occurrences of logical form fields.

Anchors and native fields can be deleted by manual editing at any time.
Every accessor therefore catches StaleAnchorError and degrades to a no-op.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum

from formtree.commands.tree import unique_anchor_name
from formtree.core.config_node import serialize
from formtree.document.interfaces import NativeField, NativeFieldKind, TextDocument
from formtree.exceptions import StaleAnchorError
from formtree.parsing.commands import Command

logger = logging.getLogger(__name__)


class FieldKind(Enum):
    """Collection a handle is registered in."""

    COMMAND = "command"  # insertFormValue anchor
    NATIVE = "native"  # input-user or database field with an id
    STATIC = "static"  # input-user field whose function has no parameters


class FieldHandle(ABC):
    """One physical occurrence of a logical field."""

    trafo: str | None = None

    @property
    def is_transformed(self) -> bool:
        return self.trafo is not None

    @property
    @abstractmethod
    def label(self) -> str: ...

    @abstractmethod
    def _get_text(self) -> str: ...

    @abstractmethod
    def _set_text(self, text: str) -> None: ...

    @abstractmethod
    def _focus(self) -> None: ...

    @abstractmethod
    def _dispose(self, keep_content: bool) -> None: ...

    @abstractmethod
    def _span(self) -> tuple[int, int]: ...

    def get_value(self) -> str:
        """Currently displayed text, "" if the field no longer exists."""
        try:
            return self._get_text()
        except StaleAnchorError:
            logger.debug(f"Reading stale field {self.label!r}")
            return ""

    def set_value(self, value: str) -> None:
        try:
            self._set_text(value)
        except StaleAnchorError:
            logger.debug(f"Writing stale field {self.label!r}")

    def focus(self) -> None:
        try:
            self._focus()
        except StaleAnchorError:
            logger.debug(f"Cannot focus stale field {self.label!r}")

    def dispose(self) -> None:
        """Remove the field and its content from the document."""
        try:
            self._dispose(keep_content=False)
        except StaleAnchorError:
            logger.debug(f"Field {self.label!r} is already gone")

    def detach(self) -> None:
        """Remove the field but keep its text in the document."""
        try:
            self._dispose(keep_content=True)
        except StaleAnchorError:
            logger.debug(f"Field {self.label!r} is already gone")

    def span(self) -> tuple[int, int] | None:
        try:
            return self._span()
        except StaleAnchorError:
            return None

    def substitute_field_id(self, old_id: str, new_id: str) -> bool:
        """Rebind the handle from `old_id` to `new_id` in place; False if unsupported."""
        return False


class CommandFieldHandle(FieldHandle):
    """Field represented by an insertFormValue command anchor."""

    def __init__(self, command: Command, document: TextDocument):
        self.command = command
        self.document = document
        self.anchor = command.anchor
        self.trafo = command.trafo

    @property
    def field_id(self) -> str | None:
        return self.command.field_id

    @property
    def label(self) -> str:
        return self.anchor.name

    def _get_text(self) -> str:
        return self.anchor.get_text()

    def _set_text(self, text: str) -> None:
        self.anchor.set_text(text)

    def _focus(self) -> None:
        self.anchor.focus()

    def _dispose(self, keep_content: bool) -> None:
        self.anchor.dispose(keep_content=keep_content)

    def _span(self) -> tuple[int, int]:
        return self.anchor.span()

    def substitute_field_id(self, old_id: str, new_id: str) -> bool:
        """
        Rename the ID of the command anchor, keeping its span and content.

        Returns:
            True if the anchor now carries `new_id`
        """
        if self.command.field_id != old_id:
            return False
        payload = self.command.payload.copy()
        for child in payload.children_named("ID"):
            if child.is_scalar:
                child.value = new_id
        try:
            start, end = self.anchor.span()
            name = unique_anchor_name(self.document, serialize(payload))
            self.anchor.dispose(keep_content=True)
            self.anchor = self.document.create_anchor(name, start, end)
        except StaleAnchorError:
            logger.debug(f"Cannot rename stale field {self.label!r}")
            return False
        self.command.field_id = new_id
        self.command.payload = payload
        self.command.anchor = self.anchor
        return True

    def __repr__(self) -> str:
        return f"CommandFieldHandle({self.field_id!r}, trafo={self.trafo!r})"


class NativeFieldHandle(FieldHandle):
    """Field represented by a native input-user or database field."""

    def __init__(self, field: NativeField, trafo: str | None = None):
        self.field = field
        self.trafo = trafo

    @property
    def kind(self) -> NativeFieldKind:
        return self.field.kind

    @property
    def label(self) -> str:
        return self.field.variable_name or self.field.column or "<field>"

    def _get_text(self) -> str:
        return self.field.get_text()

    def _set_text(self, text: str) -> None:
        self.field.set_text(text)

    def _focus(self) -> None:
        self.field.focus()

    def _dispose(self, keep_content: bool) -> None:
        self.field.dispose(keep_content=keep_content)

    def _span(self) -> tuple[int, int]:
        return self.field.span()

    def __repr__(self) -> str:
        return f"NativeFieldHandle({self.label!r}, trafo={self.trafo!r})"
