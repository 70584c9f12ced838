"""
Function library with a global and a document-local scope.
"""

import logging
from typing import Mapping

from formtree.core.config_node import ConfigNode
from formtree.core.settings import FormTreeSettings
from formtree.exceptions import FunctionDefinitionError
from formtree.functions.callbacks import CallbackRegistry
from formtree.functions.expressions import Function, parse_function

logger = logging.getLogger(__name__)


class FunctionLibrary:
    """Named transformation functions.

    Entries added to this library are local; lookups that miss fall back to
    the parent library, so local definitions override global ones.

    Params:
        parent: Enclosing (global) library, if any
        settings: Settings providing the error marker for undefined functions
    """

    def __init__(
        self,
        parent: "FunctionLibrary | None" = None,
        settings: FormTreeSettings | None = None,
    ):
        self.parent = parent
        self.settings = settings or FormTreeSettings()
        self._functions: dict[str, Function] = {}

    def get(self, name: str) -> Function | None:
        function = self._functions.get(name)
        if function is None and self.parent is not None:
            return self.parent.get(name)
        return function

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def add(self, name: str, function: Function) -> None:
        self._functions[name] = function

    def remove(self, name: str) -> bool:
        """Remove a local function; global definitions are never removed."""
        return self._functions.pop(name, None) is not None

    def parameters(self, name: str) -> list[str]:
        function = self.get(name)
        return function.parameters if function is not None else []

    def names(self) -> set[str]:
        names = set(self._functions)
        if self.parent is not None:
            names |= self.parent.names()
        return names

    def local_names(self) -> set[str]:
        return set(self._functions)

    def is_local(self, name: str) -> bool:
        return name in self._functions

    def evaluate(self, name: str, values: Mapping[str, str]) -> str:
        """
        Evaluate a function by name.

        Never raises: an undefined function or a failing evaluation yields the
        error marker from the settings and is logged.

        Params:
            name: Function name
            values: Parameter values

        Returns:
            The function value or the error marker
        """
        function = self.get(name)
        if function is None:
            logger.error(f"TRAFO '{name}' is not defined")
            return self.settings.trafo_error(name)
        try:
            return function.evaluate(values)
        except Exception:
            logger.exception(f"Evaluation of TRAFO '{name}' failed")
            return self.settings.trafo_error(name)

    def load(self, section: ConfigNode, callbacks: CallbackRegistry | None = None) -> list[str]:
        """
        Parse every child of a `Funktionen` section into this library.

        Invalid definitions are logged and skipped.

        Returns:
            Names of the functions that were added
        """
        added = []
        for definition in section.children:
            try:
                self.add(definition.name, parse_function(definition, self, callbacks))
                added.append(definition.name)
            except FunctionDefinitionError as e:
                logger.error(f"Skipping function definition: {e}")
        return added
