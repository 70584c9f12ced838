"""
Canonical values of the logical form fields.

Values are persisted as

    WM(Formularwerte((ID 'Nachname' VALUE 'Muster') (ID 'Vorname' VALUE 'Max')))
"""

import logging

from formtree.core.config_node import ConfigNode, parse_config, serialize
from formtree.document.interfaces import PersistentData
from formtree.exceptions import ConfigSyntaxError, NodeNotFoundError

logger = logging.getLogger(__name__)


class ValueStore:
    """Mapping from field id to its last set value, written through to the document.

    Params:
        persistent_data: Blob store of the document
        data_id: Name of the form values blob
    """

    def __init__(self, persistent_data: PersistentData, data_id: str):
        self._persistent_data = persistent_data
        self._data_id = data_id
        self._values: dict[str, str] = {}

    def load(self, blob: str | None = None) -> None:
        """
        Read values from `blob`, or from the persisted blob if omitted.

        A malformed blob is logged and ignored; malformed entries are skipped.
        """
        if blob is None:
            blob = self._persistent_data.get_data(self._data_id)
        self._values.clear()
        if blob is None:
            return
        try:
            entries = parse_config(blob).get("WM").get("Formularwerte")
        except (ConfigSyntaxError, NodeNotFoundError) as e:
            logger.error(f"Form values section is malformed: {e}")
            return
        for entry in entries.children:
            field_id = entry.get_text("ID")
            value = entry.get_text("VALUE")
            if field_id is None or value is None:
                logger.error(f"Skipping malformed form value entry {serialize(entry)}")
                continue
            self._values[field_id] = value

    def get(self, field_id: str) -> str:
        return self._values.get(field_id, "")

    def has(self, field_id: str) -> bool:
        return field_id in self._values

    def __contains__(self, field_id: str) -> bool:
        return field_id in self._values

    def set(self, field_id: str, value: str | None) -> None:
        """Set a value, or remove it if `value` is None, and persist immediately."""
        if value is None:
            self._values.pop(field_id, None)
        else:
            self._values[field_id] = value
        self._persistent_data.set_data(self._data_id, self.to_blob())

    def ids(self) -> list[str]:
        return list(self._values)

    def snapshot(self) -> dict[str, str]:
        return dict(self._values)

    def to_blob(self) -> str:
        values = ConfigNode.section("Formularwerte")
        for field_id, value in self._values.items():
            values.add_child(
                ConfigNode.section(
                    "",
                    ConfigNode.scalar("ID", field_id),
                    ConfigNode.scalar("VALUE", value),
                )
            )
        return serialize(ConfigNode.section("WM", values))
