"""
The persisted form description of a document.

The description is a `WM` node holding one or more `Formular` sections:

    WM(Formular(
      Fenster(Eingabe(TITLE 'Eingabe' Eingabefelder(...)))
      Sichtbarkeit(...)
      Funktionen(Gruss(CAT('Hallo ' VALUE 'Name')))
    ))

A description without content in any of the recognized sections is stored
as absent data rather than as an empty shell.
"""

import logging

from formtree.core.config_node import ConfigNode, parse_config, serialize
from formtree.document.interfaces import PersistentData
from formtree.exceptions import ConfigSyntaxError

logger = logging.getLogger(__name__)

ROOT_NAME = "WM"
FORM_SECTION = "Formular"
FUNCTIONS_SECTION = "Funktionen"
WINDOW_SECTION = "Fenster"
VISIBILITY_SECTION = "Sichtbarkeit"
RECOGNIZED_SECTIONS = (WINDOW_SECTION, VISIBILITY_SECTION, FUNCTIONS_SECTION)


def add_form_sections(root: ConfigNode, blob: str | None) -> int:
    """
    Append the `Formular` sections found in `blob` to `root`.

    A missing or empty blob is ignored; a malformed one is logged and ignored.

    Returns:
        Number of appended sections
    """
    if not blob:
        return 0
    try:
        parsed = parse_config(blob)
    except ConfigSyntaxError as e:
        logger.error(f"Form description is malformed: {e}")
        return 0
    sections = parsed.query(FORM_SECTION)
    for section in sections:
        root.add_child(section)
    return len(sections)


def load_descriptor(blob: str | None) -> ConfigNode:
    """Build the `WM` root from a persisted form description blob."""
    root = ConfigNode.section(ROOT_NAME)
    add_form_sections(root, blob)
    return root


def has_content(root: ConfigNode) -> bool:
    """True if a recognized section of the description has children."""
    for name in RECOGNIZED_SECTIONS:
        sections = root.query(name)
        if sections and len(sections.last()) > 0:
            return True
    return False


def store_descriptor(root: ConfigNode) -> str | None:
    """Serialized description, or None if it has no content worth persisting."""
    if not has_content(root):
        return None
    return serialize(root)


class FormDescriptor:
    """Lazily loaded form description bound to the document's blob store.

    Params:
        persistent_data: Blob store of the document
        data_id: Name of the form description blob
    """

    def __init__(self, persistent_data: PersistentData, data_id: str):
        self._persistent_data = persistent_data
        self._data_id = data_id
        self._root: ConfigNode | None = None

    @property
    def root(self) -> ConfigNode:
        if self._root is None:
            logger.debug(f"Reading form description {self._data_id!r}")
            self._root = load_descriptor(self._persistent_data.get_data(self._data_id))
        return self._root

    def persist(self) -> bool:
        """
        Write the description, or remove the blob if it is empty.

        Returns:
            True if a blob was written
        """
        blob = store_descriptor(self.root)
        if blob is None:
            self._persistent_data.remove_data(self._data_id)
            return False
        self._persistent_data.set_data(self._data_id, blob)
        return True

    def replace(self, root: ConfigNode | None) -> None:
        """Replace the whole description; None clears it. The node is used as is, not copied."""
        self._root = root if root is not None else ConfigNode.section(ROOT_NAME)
        self.persist()

    def reset(self) -> None:
        """Forget the loaded description so that it is read again on next access."""
        self._root = None

    def merge_form_text(self, text: str) -> int:
        """Append the `Formular` sections of `text` and persist; returns the number added."""
        added = add_form_sections(self.root, text)
        if added:
            self.persist()
        return added

    def merge_form_section(self, section: ConfigNode) -> None:
        """Append a copy of a `Formular` section and persist."""
        if section.name != FORM_SECTION:
            raise ValueError(f"Expected a {FORM_SECTION} section, got '{section.name}'")
        self.root.add_child(section.copy())
        self.persist()

    def functions_section(self) -> ConfigNode:
        """The last `Funktionen` section, created together with a `Formular` section if needed."""
        sections = self.root.query(FORM_SECTION).query(FUNCTIONS_SECTION)
        if sections:
            return sections.last()
        forms = self.root.query(FORM_SECTION)
        form = forms.last() if forms else self.root.add_section(FORM_SECTION)
        return form.add_section(FUNCTIONS_SECTION)

    def function_sections(self) -> list[ConfigNode]:
        return list(self.root.query(FORM_SECTION).query(FUNCTIONS_SECTION))

    def function_definition(self, name: str) -> ConfigNode | None:
        """Definition node of a document-local function; later definitions win."""
        result = None
        for section in self.function_sections():
            for definition in section.children_named(name):
                result = definition
        return result

    def add_function(self, name: str, body: list[ConfigNode]) -> ConfigNode:
        """Append a definition `name(body...)` to the functions section and persist."""
        definition = ConfigNode.section(name, *body)
        self.functions_section().add_child(definition)
        self.persist()
        return definition

    def remove_functions(self, names: set[str]) -> int:
        """Remove all definitions with one of `names`; persists if something was removed."""
        removed = 0
        for section in self.function_sections():
            for definition in list(section.children):
                if definition.name in names:
                    section.remove_child(definition)
                    removed += 1
        if removed:
            self.persist()
        return removed

    def has_window(self) -> bool:
        """True if the description defines a form window."""
        return len(self.root.query(FORM_SECTION).query(WINDOW_SECTION)) > 0

    def is_empty(self) -> bool:
        return not has_content(self.root)
