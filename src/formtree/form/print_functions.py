"""
Print functions assigned to a document.
"""

import logging

from formtree.document.interfaces import PersistentData
from formtree.parsing.commands import (
    check_identifier,
    parse_print_function_blob,
    serialize_print_function_blob,
)

logger = logging.getLogger(__name__)


class PrintFunctions:
    """Set of print function names persisted with the document.

    A single function is stored as its bare name, several functions as a
    sorted `WM(Druckfunktionen(...))` tree; an empty set removes the blob.
    """

    def __init__(self, persistent_data: PersistentData, data_id: str):
        self._persistent_data = persistent_data
        self._data_id = data_id
        self._names: set[str] | None = None

    @property
    def _loaded(self) -> set[str]:
        if self._names is None:
            self._names = set(parse_print_function_blob(self._persistent_data.get_data(self._data_id)))
        return self._names

    def names(self) -> list[str]:
        return sorted(self._loaded)

    def __contains__(self, name: str) -> bool:
        return name in self._loaded

    def __len__(self) -> int:
        return len(self._loaded)

    def add(self, name: str) -> None:
        """
        Add a print function.

        Raises:
            CommandSyntaxError: If `name` is not a valid identifier
        """
        self._loaded.add(check_identifier(name))
        self._store()

    def remove(self, name: str) -> None:
        if name not in self._loaded:
            logger.debug(f"Print function {name!r} is not set")
            return
        self._loaded.discard(name)
        self._store()

    def _store(self) -> None:
        blob = serialize_print_function_blob(self._loaded)
        if blob is None:
            self._persistent_data.remove_data(self._data_id)
        else:
            self._persistent_data.set_data(self._data_id, blob)
