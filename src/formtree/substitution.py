"""
Substitution of a field id by literal text and other fields.

A substitution is an ordered list of elements, each either fixed text or a
reference to a field id:

    [{"fixedText": "Herr "}, {"field": "Nachname"}]

Untransformed occurrences of the old id are replaced physically. Transformed
occurrences can only be renamed 1-to-1 (a substitution consisting of exactly
one field reference); anything else is reported and that occurrence is left
as it is.
"""

import logging
from enum import Enum
from typing import Iterable, Iterator, Mapping

from attrs import frozen

from formtree.commands.tree import unique_anchor_name
from formtree.core.config_node import serialize
from formtree.document.interfaces import NativeFieldKind, TextDocument
from formtree.events import DiagnosticChannel
from formtree.exceptions import FunctionDefinitionError, SubstitutionError
from formtree.fields.handles import FieldHandle
from formtree.fields.registry import FieldRegistry
from formtree.form.descriptor import FormDescriptor
from formtree.functions.callbacks import CallbackRegistry
from formtree.functions.expressions import parse_function, rename_value_references
from formtree.functions.library import FunctionLibrary
from formtree.parsing.commands import insert_form_value_payload

logger = logging.getLogger(__name__)


class SubstKind(Enum):
    FIXED_TEXT = "fixedText"
    FIELD = "field"


@frozen
class SubstElement:
    kind: SubstKind
    value: str

    @property
    def is_field(self) -> bool:
        return self.kind is SubstKind.FIELD

    @property
    def is_fixed_text(self) -> bool:
        return self.kind is SubstKind.FIXED_TEXT

    @property
    def text(self) -> str:
        """Text written to the document for this element; fields show as `<id>`."""
        return f"<{self.value}>" if self.is_field else self.value


class FieldSubstitution:
    """Ordered replacement for a field id."""

    def __init__(self, elements: Iterable[SubstElement] = ()):
        self._elements = list(elements)

    @classmethod
    def from_elements(cls, items: Iterable[Mapping[str, str]]) -> "FieldSubstitution":
        """
        Build a substitution from `{"fixedText": ...}` and `{"field": ...}` items.

        Raises:
            ValueError: If an item does not have exactly one of these keys
        """
        substitution = cls()
        for item in items:
            if len(item) != 1:
                raise ValueError(f"Substitution element needs exactly one key: {item!r}")
            ((key, value),) = item.items()
            try:
                kind = SubstKind(key)
            except ValueError:
                raise ValueError(f"Unknown substitution element '{key}'") from None
            substitution._elements.append(SubstElement(kind, value))
        return substitution

    def add_field(self, field_id: str) -> None:
        self._elements.append(SubstElement(SubstKind.FIELD, field_id))

    def add_fixed_text(self, text: str) -> None:
        self._elements.append(SubstElement(SubstKind.FIXED_TEXT, text))

    def __iter__(self) -> Iterator[SubstElement]:
        return iter(self._elements)

    def __len__(self) -> int:
        return len(self._elements)

    @property
    def one_to_one_target(self) -> str | None:
        """The new id if the substitution is exactly one field reference."""
        if len(self._elements) == 1 and self._elements[0].is_field:
            return self._elements[0].value
        return None

    def field_ids(self) -> list[str]:
        return list(dict.fromkeys(e.value for e in self._elements if e.is_field))

    def text(self) -> str:
        return "".join(element.text for element in self._elements)


class SubstitutionEngine:
    """Rewrites the occurrences of a field id in a document.

    The engine only edits the document, the descriptor and the library;
    the caller rescans the document afterwards.
    """

    def __init__(
        self,
        document: TextDocument,
        registry: FieldRegistry,
        library: FunctionLibrary,
        descriptor: FormDescriptor,
        diagnostics: DiagnosticChannel,
        callbacks: CallbackRegistry | None = None,
    ):
        self.document = document
        self.registry = registry
        self.library = library
        self.descriptor = descriptor
        self.diagnostics = diagnostics
        self.callbacks = callbacks

    def apply(self, field_id: str, substitution: FieldSubstitution) -> bool:
        """
        Rewrite every occurrence of `field_id`.

        Params:
            field_id: The id to replace
            substitution: The replacement

        Returns:
            False if the substitution was empty and nothing happened
        """
        if not len(substitution):
            return False
        new_id = substitution.one_to_one_target
        renamed_trafos: set[str] = set()

        for handle in self.registry.command_fields_for(field_id):
            if handle.is_transformed:
                if new_id is None:
                    self._reject(field_id, handle)
                elif not handle.substitute_field_id(field_id, new_id):
                    logger.debug(f"Could not rename {handle!r}")
                else:
                    self._rename_once(handle.trafo, field_id, new_id, renamed_trafos)
            else:
                self._replace_with_commands(handle, substitution)

        for handle in self.registry.native_fields_for(field_id):
            if handle.is_transformed:
                if new_id is None:
                    self._reject(field_id, handle)
                else:
                    self._rename_once(handle.trafo, field_id, new_id, renamed_trafos)
            else:
                self._replace_with_database_fields(handle, substitution)
        return True

    def _rename_once(self, trafo: str, old_id: str, new_id: str, renamed_trafos: set[str]) -> None:
        if trafo not in renamed_trafos:
            renamed_trafos.add(trafo)
            self.rename_in_trafo(trafo, old_id, new_id)

    def _reject(self, field_id: str, handle: FieldHandle) -> None:
        error = SubstitutionError(
            field_id,
            f"transformed field {handle.label!r} can only be replaced by exactly one field",
        )
        self.diagnostics.report_error(error)

    def _replace_with_commands(self, handle: FieldHandle, substitution: FieldSubstitution) -> None:
        span = handle.span()
        handle.detach()
        if span is None:
            logger.debug(f"Skipping stale field {handle.label!r}")
            return
        position, end = span
        self.document.replace_text(position, end, substitution.text())
        for element in substitution:
            end = position + len(element.text)
            if element.is_field:
                name = unique_anchor_name(
                    self.document, serialize(insert_form_value_payload(element.value))
                )
                self.document.create_anchor(name, position, end)
            position = end

    def _replace_with_database_fields(self, handle: FieldHandle, substitution: FieldSubstitution) -> None:
        span = handle.span()
        handle.detach()
        if span is None:
            logger.debug(f"Skipping stale field {handle.label!r}")
            return
        position, end = span
        self.document.replace_text(position, end, substitution.text())
        for element in substitution:
            end = position + len(element.text)
            if element.is_field:
                self.document.create_native_field(
                    position, end, NativeFieldKind.DATABASE, column=element.value
                )
            position = end

    def rename_in_trafo(self, trafo: str, old_id: str, new_id: str) -> bool:
        """
        Replace `VALUE 'old_id'` by `VALUE 'new_id'` in a document-local function.

        The descriptor is persisted and the function re-parsed into the
        library. Functions not defined in the document are left alone.

        Returns:
            True if the definition was rewritten
        """
        definition = self.descriptor.function_definition(trafo)
        if definition is None:
            logger.error(f"TRAFO '{trafo}' is not defined in this document and cannot be changed")
            return False
        rename_value_references(definition, old_id, new_id)
        self.descriptor.persist()
        try:
            self.library.add(trafo, parse_function(definition, self.library, self.callbacks))
        except FunctionDefinitionError as e:
            logger.error(f"Rewritten TRAFO '{trafo}' is invalid: {e}")
        return True
