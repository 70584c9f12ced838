"""
Garbage collection of generated transformation functions.

Functions created ad hoc for a single field get a generated name starting
with the autofunction prefix. Once no field uses such a function anymore it
is removed from the library, the form description and the user field
masters of the document.
"""

import logging
import time
from dataclasses import dataclass, field

from formtree.document.interfaces import TextDocument
from formtree.fields.registry import FieldRegistry
from formtree.form.descriptor import FormDescriptor
from formtree.functions.library import FunctionLibrary
from formtree.parsing.commands import function_name_for_user_field

logger = logging.getLogger(__name__)


def generate_autofunction_name(prefix: str, taken: set[str]) -> str:
    """`prefix + millis + "_" + i` with the smallest `i` not in `taken`."""
    millis = int(time.time() * 1000)
    counter = 0
    while True:
        name = f"{prefix}{millis}_{counter}"
        if name not in taken:
            return name
        counter += 1


@dataclass
class CollectionResult:
    """What a garbage collection run removed."""

    functions: list[str] = field(default_factory=list)
    definitions: int = 0
    masters: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.functions or self.definitions or self.masters)


class AutofunctionCollector:
    """Removes autofunctions no field handle refers to.

    Params:
        document: The document, for its modified flag and user field masters
        registry: Registry with the live handles
        library: The document-local function library
        descriptor: The form description holding the definitions
        prefix: Name prefix of generated functions
    """

    def __init__(
        self,
        document: TextDocument,
        registry: FieldRegistry,
        library: FunctionLibrary,
        descriptor: FormDescriptor,
        prefix: str,
    ):
        self.document = document
        self.registry = registry
        self.library = library
        self.descriptor = descriptor
        self.prefix = prefix

    def _is_garbage(self, name: str | None, used: set[str]) -> bool:
        return bool(name) and name.startswith(self.prefix) and name not in used

    def collect_garbage(self) -> CollectionResult:
        """
        Remove unreferenced autofunctions.

        The document's modified flag is the same before and after the call.

        Returns:
            CollectionResult describing what was removed
        """
        modified = self.document.modified
        try:
            return self._collect()
        finally:
            self.document.modified = modified

    def _collect(self) -> CollectionResult:
        used = self.registry.used_trafos()
        result = CollectionResult()

        for name in sorted(self.library.local_names()):
            if self._is_garbage(name, used):
                self.library.remove(name)
                result.functions.append(name)

        garbage_definitions = {
            definition.name
            for section in self.descriptor.function_sections()
            for definition in section.children
            if self._is_garbage(definition.name, used)
        }
        if garbage_definitions:
            result.definitions = self.descriptor.remove_functions(garbage_definitions)

        for variable_name in self.document.user_field_masters():
            if self._is_garbage(function_name_for_user_field(variable_name), used):
                self.document.dispose_user_field_master(variable_name)
                result.masters.append(variable_name)

        if result:
            logger.debug(
                f"Removed autofunctions {result.functions}, {result.definitions} definitions "
                f"and user field masters {result.masters}"
            )
        return result
