"""
The per-document model.

A DocumentModel owns everything derived from one document: the command
tree, the field registry, the value store, the document-local function
library and the form description. It replaces process-wide registries; every
operation goes through the model of the document it affects.

All public methods run under one re-entrant lock per document, so callers on
different threads block rather than interleave and callbacks may re-enter
the model from within an operation.
"""

import functools
import logging
import threading
from typing import Iterable, Mapping

from attrs import frozen

from formtree.autofunctions import (
    AutofunctionCollector,
    CollectionResult,
    generate_autofunction_name,
)
from formtree.commands.tree import CommandTree, unique_anchor_name
from formtree.core.config_node import ConfigNode, serialize
from formtree.core.settings import FormTreeSettings
from formtree.document.interfaces import NativeField, NativeFieldKind, PersistentData, TextDocument
from formtree.events import DiagnosticChannel
from formtree.exceptions import (
    CommandSyntaxError,
    FunctionDefinitionError,
    OverrideFragChainError,
    UnavailableError,
)
from formtree.fields.collect import collect_command_fields, collect_native_fields
from formtree.fields.handles import FieldHandle, FieldKind, NativeFieldHandle
from formtree.fields.preset import compute_preset_values
from formtree.fields.registry import FieldRegistry
from formtree.fields.values import ValueStore
from formtree.form.descriptor import FormDescriptor
from formtree.form.metadata import FORM_DOCUMENT, DocumentType, MailMergeConfig, OverrideFrags
from formtree.form.print_functions import PrintFunctions
from formtree.functions.callbacks import CallbackRegistry
from formtree.functions.expressions import parse_function
from formtree.functions.library import FunctionLibrary
from formtree.parsing.commands import (
    Command,
    CommandKind,
    CommandParser,
    user_field_variable_name,
)
from formtree.substitution import FieldSubstitution, SubstitutionEngine

logger = logging.getLogger(__name__)

_DEFORM_KINDS = frozenset({CommandKind.FORM, CommandKind.SET_GROUPS, CommandKind.INSERT_FORM_VALUE})


def synchronized(method):
    """Run a DocumentModel method under the model's lock."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


@frozen
class ReferencedFieldId:
    """A field id referenced in the document and whether any of its fields is transformed."""

    field_id: str
    is_transformed: bool


class DocumentModel:
    """Form model of one document.

    Params:
        document: The text document
        persistent_data: Blob store attached to the document
        settings: Model settings, defaults if omitted
        global_functions: Library of globally defined functions; document-local
            definitions override them
        callbacks: Python callbacks available to EXTERN expressions
        diagnostics: Channel for user-visible errors
    """

    def __init__(
        self,
        document: TextDocument,
        persistent_data: PersistentData,
        settings: FormTreeSettings | None = None,
        global_functions: FunctionLibrary | None = None,
        callbacks: CallbackRegistry | None = None,
        diagnostics: DiagnosticChannel | None = None,
    ):
        self._lock = threading.RLock()
        self.document = document
        self.persistent_data = persistent_data
        self.settings = settings or FormTreeSettings()
        self.callbacks = callbacks or CallbackRegistry()
        self.diagnostics = diagnostics or DiagnosticChannel()
        self.preview_mode = self.settings.preview_mode
        self.closed = False

        data_ids = self.settings.data_ids
        self.library = FunctionLibrary(parent=global_functions, settings=self.settings)
        self.commands = CommandTree(document)
        self.registry = FieldRegistry()
        self.values = ValueStore(persistent_data, data_ids.form_values)
        self.descriptor = FormDescriptor(persistent_data, data_ids.form_description)
        self.print_functions = PrintFunctions(persistent_data, data_ids.print_function)
        self.document_type = DocumentType(persistent_data, data_ids.document_type)
        self.mailmerge = MailMergeConfig(persistent_data, data_ids.mailmerge)
        self.override_frags = OverrideFrags()
        self._frag_urls: list[str] = []

        self.values.load()
        self._load_functions()

    def __repr__(self) -> str:
        return f"DocumentModel({self.document.url!r})"

    # -- scanning ------------------------------------------------------------

    def _load_functions(self) -> None:
        for section in self.descriptor.function_sections():
            self.library.load(section, self.callbacks)

    @synchronized
    def scan(self) -> bool:
        """
        Rescan the document: update the command tree, execute pending global
        commands and rebuild the field registry.

        Returns:
            True if command anchors were added or removed since the last scan
        """
        changed = self.commands.update()
        self._execute_global_commands()
        self._collect_fields()
        return changed

    def _collect_fields(self) -> None:
        self.registry.unregister_all()
        collect_command_fields(self.commands, self.document, self.registry)
        collect_native_fields(self.document, self.library, self.registry)

    def _execute_global_commands(self) -> None:
        for command in self.commands:
            if command.done:
                continue
            if command.kind is CommandKind.FORM:
                self._execute_form(command)
            elif command.kind is CommandKind.SET_TYPE:
                self.document_type.set_from_command(command.doc_type)
                command.mark_done()
            elif command.kind is CommandKind.SET_PRINT_FUNCTION:
                for name in command.print_functions:
                    try:
                        self.print_functions.add(name)
                    except CommandSyntaxError as e:
                        logger.error(f"Ignoring print function of {command}: {e}")
                command.mark_done()
            elif command.kind is CommandKind.OVERRIDE_FRAG:
                try:
                    self.override_frags.set(command.frag_id, command.new_frag_id)
                except OverrideFragChainError as e:
                    self.diagnostics.report(str(e), e)
                command.mark_done()

    def _execute_form(self, command: Command) -> None:
        # the anchored text holds the form description and is consumed
        text = command.anchor.get_text()
        if not text.strip():
            logger.error(f"Form description of {command} is missing")
        elif self.descriptor.merge_form_text(text):
            command.anchor.set_text("")
            self._load_functions()
        command.mark_done()

    # -- values and display --------------------------------------------------

    @synchronized
    def transformed_value(self, value: str, trafo: str | None, use_known_values: bool = True) -> str:
        """
        Value shown by a field with transformation `trafo`.

        Params:
            value: The value to transform
            trafo: Function name, None for untransformed fields
            use_known_values: Feed every parameter from the value store (True) or
                give every parameter `value` (False, used by insertFormValue fields)

        Returns:
            The transformed value, `value` itself without trafo, or the error
            marker if the function is not defined
        """
        if trafo is None:
            return value
        function = self.library.get(trafo)
        if function is None:
            logger.error(f"TRAFO '{trafo}' is not defined")
            return self.settings.trafo_error(trafo)
        try:
            parameters = function.parameters
        except FunctionDefinitionError as e:
            logger.error(f"TRAFO '{trafo}' cannot be evaluated: {e}")
            return self.settings.trafo_error(trafo)
        if use_known_values:
            arguments = {name: self.values.get(name) for name in parameters}
        else:
            arguments = {name: value for name in parameters}
        return self.library.evaluate(trafo, arguments)

    def _display_value(self, value: str, handle: FieldHandle) -> str:
        use_known_values = self.registry.kind_of(handle) is not FieldKind.COMMAND
        return self.transformed_value(value, handle.trafo, use_known_values)

    @synchronized
    def get_preset_values(self) -> dict[str, str]:
        """Reconcile stored values with the document; see `compute_preset_values`."""
        return compute_preset_values(
            self.values, self.registry, self._display_value, self.settings.fishy_marker
        )

    @synchronized
    def set_form_value(self, field_id: str, value: str | None) -> None:
        """Store a value (None removes it) and show it in all fields of the id."""
        self.values.set(field_id, value)
        self.update_form_fields(field_id)

    @synchronized
    def update_form_fields(self, field_id: str) -> None:
        """Show the stored value of `field_id`, or `<field_id>` outside preview mode."""
        if self.preview_mode:
            value = self.values.get(field_id)
            for handle in self.registry.fields_for(field_id, include_static=True):
                handle.set_value(self._display_value(value, handle))
        else:
            placeholder = f"<{field_id}>"
            for handle in self.registry.fields_for(field_id, include_static=True):
                handle.set_value(placeholder)
        self.document.modified = True

    @synchronized
    def update_all_form_fields(self) -> None:
        field_ids = sorted(self.registry.all_ids())
        for field_id in field_ids:
            self.update_form_fields(field_id)
        if not field_ids and self.preview_mode:
            for handle in self.registry.static_fields():
                handle.set_value(self._display_value("", handle))

    @synchronized
    def set_preview_mode(self, preview_mode: bool) -> None:
        self.preview_mode = preview_mode
        self.update_all_form_fields()
        self.collect_garbage()

    @synchronized
    def focus_form_field(self, field_id: str) -> bool:
        """
        Focus a field of `field_id`, preferring native and untransformed fields.

        Returns:
            False if the id has no fields
        """
        native = self.registry.native_fields_for(field_id)
        if native:
            handle = native[0]
        else:
            handle = self.registry.prefer_untransformed(self.registry.command_fields_for(field_id))
        if handle is None:
            return False
        handle.focus()
        return True

    @synchronized
    def all_field_ids(self) -> set[str]:
        return self.registry.all_ids()

    # -- field creation ------------------------------------------------------

    @synchronized
    def insert_mailmerge_field(self, field_id: str, position: int) -> NativeFieldHandle | None:
        """
        Insert a database field for `field_id` and register it.

        The id gets an empty stored value if it has none yet.

        Returns:
            Handle of the new field, None if `field_id` is empty
        """
        if not field_id:
            return None
        content = "" if self.preview_mode else f"<{field_id}>"
        field = self.document.insert_native_field(
            position, NativeFieldKind.DATABASE, column=field_id, content=content
        )
        if not self.values.has(field_id):
            self.values.set(field_id, "")
        handle = NativeFieldHandle(field)
        self.registry.register(field_id, handle, FieldKind.NATIVE)
        self.update_form_fields(field_id)
        return handle

    @synchronized
    def add_autofunction(self, definition: ConfigNode) -> str:
        """
        Add a generated document-local function.

        Params:
            definition: Node whose children form the function body; its name is ignored

        Returns:
            The generated function name

        Raises:
            FunctionDefinitionError: If the definition is invalid
        """
        name = generate_autofunction_name(self.settings.autofunction_prefix, self.library.names())
        function = parse_function(definition, self.library, self.callbacks)
        # resolving the parameters raises on recursive FUNCTION references
        function.parameters
        self.library.add(name, function)
        self.descriptor.add_function(name, [child.copy() for child in definition.children])
        logger.debug(f"Added autofunction {name}")
        return name

    @synchronized
    def replace_range_with_trafo_field(
        self, definition: ConfigNode, start: int, end: int, hint: str | None = None
    ) -> str:
        """
        Replace a text range by an input field computed by a new autofunction.

        Every parameter of the function without a stored value gets "".

        Returns:
            Name of the generated function
        """
        name = self.add_autofunction(definition)
        self.add_input_user_field(start, end, name, hint)
        self._collect_fields()
        parameters = self.library.parameters(name)
        for field_id in parameters:
            if not self.values.has(field_id):
                self.values.set(field_id, "")
            self.update_form_fields(field_id)
        if not parameters:
            self.update_all_form_fields()
        self.collect_garbage()
        return name

    @synchronized
    def add_input_user_field(self, start: int, end: int, trafo: str, hint: str | None = None) -> NativeField:
        """
        Replace a text range by an input field showing the value of `trafo`.

        The field is not registered; the next scan picks it up.
        """
        self.document.delete_text(start, end)
        return self.document.insert_native_field(
            start,
            NativeFieldKind.INPUT_USER,
            variable_name=user_field_variable_name(trafo),
            hint=hint,
        )

    @synchronized
    def add_document_command(self, start: int, end: int, command_text: str) -> str:
        """
        Anchor a new command at a text range.

        The anchor name is made unique with a numeric suffix. The command is
        executed by the next scan like any other.

        Params:
            start: Start of the range
            end: End of the range
            command_text: The command as `WM(...)` text

        Returns:
            Name of the new anchor

        Raises:
            CommandSyntaxError: If `command_text` is not a well-formed command
        """
        parser = CommandParser()
        payload = parser.parse_payload(command_text)
        name = unique_anchor_name(self.document, serialize(payload))
        parser.parse(name)
        self.document.create_anchor(name, start, end)
        logger.debug(f"Added command anchor {name!r}")
        return name

    @synchronized
    def has_mailmerge_fields(self) -> bool:
        return any(field.kind is NativeFieldKind.DATABASE for field in self.document.native_fields())

    # -- functions -----------------------------------------------------------

    @synchronized
    def get_trafo(self, name: str) -> ConfigNode:
        """
        Copy of the definition of a document-local function.

        Raises:
            UnavailableError: If the function is not defined in the document
        """
        definition = self.descriptor.function_definition(name)
        if definition is None:
            raise UnavailableError(f"TRAFO '{name}' is not defined in this document")
        return definition.copy()

    @synchronized
    def set_trafo(self, name: str, definition: ConfigNode) -> None:
        """
        Replace the body of a document-local function.

        Params:
            name: Function name
            definition: Node whose children form the new body; its name is ignored

        Raises:
            UnavailableError: If the function is not defined in the document
            FunctionDefinitionError: If the new definition is invalid
        """
        existing = self.descriptor.function_definition(name)
        if existing is None:
            raise UnavailableError(f"TRAFO '{name}' is not defined in this document and cannot be changed")
        function = parse_function(definition, self.library, self.callbacks)
        previous = self.library.get(name) if self.library.is_local(name) else None
        self.library.add(name, function)
        try:
            function.parameters
        except FunctionDefinitionError:
            if previous is None:
                self.library.remove(name)
            else:
                self.library.add(name, previous)
            raise
        existing.clear()
        for child in definition.children:
            existing.add_child(child.copy())
        self.descriptor.persist()
        # parameters may have changed, so native fields move to other ids
        self._collect_fields()
        self.update_all_form_fields()

    @synchronized
    def trafo_in_range(self, start: int, end: int) -> ConfigNode | None:
        """
        Definition of the function used by the single transformed field in a range.

        A field lying completely inside the range wins over one that only
        starts inside it. None if no such field is unique or its function is
        not defined in the document.
        """
        complete: set[str] = set()
        started: set[str] = set()
        for handle in self.registry.all_handles():
            span = handle.span()
            if handle.trafo is None or span is None:
                continue
            field_start, field_end = span
            if start <= field_start and field_end <= end:
                complete.add(handle.trafo)
            elif start <= field_start <= end:
                started.add(handle.trafo)
        candidates = complete or started
        if len(candidates) != 1:
            return None
        definition = self.descriptor.function_definition(candidates.pop())
        return definition.copy() if definition is not None else None

    @synchronized
    def referenced_field_ids_not_in_schema(self, schema: Iterable[str]) -> list[ReferencedFieldId]:
        """Field ids used in the document but missing from `schema`, sorted."""
        known = set(schema)
        result = []
        for field_id in sorted(self.registry.all_ids() - known):
            transformed = any(h.is_transformed for h in self.registry.fields_for(field_id))
            result.append(ReferencedFieldId(field_id, transformed))
        return result

    # -- refactoring ---------------------------------------------------------

    @synchronized
    def substitute(
        self, field_id: str, substitution: FieldSubstitution | Iterable[Mapping[str, str]]
    ) -> None:
        """
        Replace every occurrence of `field_id` by the elements of `substitution`.

        Afterwards the stored value of `field_id` is removed, the document is
        rescanned and the new ids are displayed.
        """
        if not isinstance(substitution, FieldSubstitution):
            substitution = FieldSubstitution.from_elements(substitution)
        engine = SubstitutionEngine(
            self.document,
            self.registry,
            self.library,
            self.descriptor,
            self.diagnostics,
            self.callbacks,
        )
        if not engine.apply(field_id, substitution):
            return
        self.scan()
        self.values.set(field_id, None)
        for new_id in substitution.field_ids():
            self.update_form_fields(new_id)

    @synchronized
    def collect_garbage(self) -> CollectionResult:
        collector = AutofunctionCollector(
            self.document,
            self.registry,
            self.library,
            self.descriptor,
            self.settings.autofunction_prefix,
        )
        return collector.collect_garbage()

    # -- form description ----------------------------------------------------

    @synchronized
    def form_description(self) -> ConfigNode:
        return self.descriptor.root

    @synchronized
    def set_form_description(self, root: ConfigNode | None) -> None:
        self.descriptor.replace(root)
        self.library = FunctionLibrary(parent=self.library.parent, settings=self.settings)
        self._load_functions()
        self.document.modified = True

    @synchronized
    def has_form_descriptor(self) -> bool:
        return not self.descriptor.is_empty()

    @synchronized
    def has_form_window(self) -> bool:
        return self.descriptor.has_window()

    # -- metadata ------------------------------------------------------------

    @synchronized
    def add_print_function(self, name: str) -> None:
        self.print_functions.add(name)

    @synchronized
    def remove_print_function(self, name: str) -> None:
        self.print_functions.remove(name)

    @synchronized
    def print_function_names(self) -> list[str]:
        return self.print_functions.names()

    @property
    def doc_type(self) -> str | None:
        return self.document_type.value

    @synchronized
    def set_type(self, doc_type: str | None) -> None:
        self.document_type.set(doc_type)

    @synchronized
    def is_form_document(self) -> bool:
        return self.document_type.is_form_document()

    @synchronized
    def is_template(self) -> bool:
        return self.document_type.is_template(self.document.url)

    @synchronized
    def mailmerge_config(self) -> ConfigNode:
        return self.mailmerge.get()

    @synchronized
    def set_mailmerge_config(self, config: ConfigNode) -> None:
        self.mailmerge.set(config)

    @synchronized
    def set_override_frag(self, frag_id: str, new_frag_id: str) -> None:
        self.override_frags.set(frag_id, new_frag_id)

    @synchronized
    def get_override_frag(self, frag_id: str) -> str:
        return self.override_frags.get(frag_id)

    @synchronized
    def frag_urls(self) -> list[str]:
        """Fragment URLs that insertContent commands insert, as set by the opener."""
        return list(self._frag_urls)

    @synchronized
    def set_frag_urls(self, urls: Iterable[str]) -> None:
        self._frag_urls = list(urls)

    @synchronized
    def first_jump_mark(self) -> Command | None:
        """The first setJumpMark command in document order."""
        return self.commands.first_of_kind(CommandKind.SET_JUMP_MARK)

    # -- visibility ----------------------------------------------------------

    @synchronized
    def set_group_visibility(self, group: str, visible: bool) -> list[Command]:
        return self.commands.set_group_visibility(group, visible)

    @synchronized
    def invisible_groups(self) -> frozenset[str]:
        return self.commands.invisible_groups

    @synchronized
    def set_print_block_visibility(self, kind: CommandKind, visible: bool) -> list[Command]:
        return self.commands.set_print_block_visibility(kind, visible)

    # -- lifecycle -----------------------------------------------------------

    @synchronized
    def deform(self) -> int:
        """
        Turn the form back into a plain document.

        Removes form, setGroups, insertFormValue and `setType 'formDocument'`
        anchors (their text stays) as well as the form description and the
        form values.

        Returns:
            Number of removed anchors
        """
        parser = CommandParser()
        removed = 0
        for anchor in self.document.anchors():
            if not parser.is_command_anchor(anchor.name):
                continue
            try:
                command = parser.parse(anchor.name)
            except CommandSyntaxError:
                continue
            is_form_type = (
                command.kind is CommandKind.SET_TYPE
                and command.doc_type.lower() == FORM_DOCUMENT.lower()
            )
            if command.kind in _DEFORM_KINDS or is_form_type:
                anchor.dispose(keep_content=True)
                removed += 1

        data_ids = self.settings.data_ids
        self.persistent_data.remove_data(data_ids.form_description)
        self.persistent_data.remove_data(data_ids.form_values)
        self.descriptor.reset()
        self.values.load()
        self.scan()
        return removed

    @synchronized
    def close(self) -> None:
        self.registry.unregister_all()
        self.closed = True
        logger.debug(f"Closed {self!r}")
