"""
Document metadata: type tag, mail-merge settings and fragment overrides.
"""

import logging

from formtree.core.config_node import ConfigNode, parse_config, serialize
from formtree.document.interfaces import PersistentData
from formtree.exceptions import ConfigSyntaxError, OverrideFragChainError

logger = logging.getLogger(__name__)

FORM_DOCUMENT = "formDocument"
NORMAL_TEMPLATE = "normalTemplate"
TEMPLATE_TEMPLATE = "templateTemplate"

MAILMERGE_SECTION = "Seriendruck"


class DocumentType:
    """The document type tag (`normalTemplate`, `templateTemplate`, `formDocument`, ...)."""

    def __init__(self, persistent_data: PersistentData, data_id: str):
        self._persistent_data = persistent_data
        self._data_id = data_id
        self.value: str | None = persistent_data.get_data(data_id)

    def set(self, doc_type: str | None) -> None:
        """Set the type and persist it; None removes it."""
        self.value = doc_type
        if doc_type is None:
            self._persistent_data.remove_data(self._data_id)
        else:
            self._persistent_data.set_data(self._data_id, doc_type)

    def set_from_command(self, doc_type: str) -> bool:
        """Set the type from a setType command without persisting, unless a type is already set."""
        if self.value is not None:
            return False
        self.value = doc_type
        return True

    def is_form_document(self) -> bool:
        return self.value is not None and self.value.lower() == FORM_DOCUMENT.lower()

    def is_template(self, url: str | None) -> bool:
        """True if the document is or should be treated as a template."""
        if self.value is not None:
            lowered = self.value.lower()
            if lowered == NORMAL_TEMPLATE.lower():
                return True
            if lowered in (TEMPLATE_TEMPLATE.lower(), FORM_DOCUMENT.lower()):
                return False
        # unsaved documents have no url
        return not url


class MailMergeConfig:
    """Mail-merge settings stored as `WM(Seriendruck(...))`."""

    def __init__(self, persistent_data: PersistentData, data_id: str):
        self._persistent_data = persistent_data
        self._data_id = data_id
        self._section: ConfigNode | None = None

    def get(self) -> ConfigNode:
        """The `Seriendruck` section; empty if nothing is stored."""
        if self._section is None:
            self._section = ConfigNode.section(MAILMERGE_SECTION)
            data = self._persistent_data.get_data(self._data_id)
            if data is not None:
                try:
                    sections = parse_config(data).query("WM").query(MAILMERGE_SECTION)
                    if sections:
                        self._section = sections.last()
                except ConfigSyntaxError as e:
                    logger.error(f"Mail-merge settings are malformed: {e}")
        return self._section

    def set(self, config: ConfigNode) -> None:
        """Store copies of the children of `config`; no children removes the blob."""
        section = ConfigNode.section(MAILMERGE_SECTION, *(child.copy() for child in config.children))
        self._section = section
        if section.children:
            self._persistent_data.set_data(self._data_id, serialize(ConfigNode.section("WM", section)))
        else:
            self._persistent_data.remove_data(self._data_id)


class OverrideFrags:
    """Fragment replacements declared by overrideFrag commands."""

    def __init__(self):
        self._overrides: dict[str, str] = {}

    def set(self, frag_id: str, new_frag_id: str) -> None:
        """
        Register that `frag_id` is replaced by `new_frag_id`.

        A fragment that is already overridden keeps its first replacement.

        Raises:
            OverrideFragChainError: If the override would create a replacement chain
        """
        if new_frag_id in self._overrides:
            raise OverrideFragChainError(new_frag_id)
        if frag_id in self._overrides.values():
            raise OverrideFragChainError(frag_id)
        self._overrides.setdefault(frag_id, new_frag_id)

    def get(self, frag_id: str) -> str:
        """The replacement of `frag_id`, or `frag_id` itself."""
        return self._overrides.get(frag_id, frag_id)

    def as_dict(self) -> dict[str, str]:
        return dict(self._overrides)
