"""
Discovery of field handles in a document.
"""

import logging

from formtree.commands.tree import CommandTree
from formtree.document.interfaces import NativeFieldKind, TextDocument
from formtree.exceptions import FunctionDefinitionError, StaleAnchorError
from formtree.fields.handles import CommandFieldHandle, FieldKind, NativeFieldHandle
from formtree.fields.registry import FieldRegistry
from formtree.functions.library import FunctionLibrary
from formtree.parsing.commands import CommandKind, function_name_for_user_field

logger = logging.getLogger(__name__)


def collect_command_fields(tree: CommandTree, document: TextDocument, registry: FieldRegistry) -> int:
    """Register a handle for every insertFormValue command of the tree."""
    count = 0
    for command in tree.of_kind(CommandKind.INSERT_FORM_VALUE):
        registry.register(command.field_id, CommandFieldHandle(command, document), FieldKind.COMMAND)
        count += 1
    return count


def collect_native_fields(
    document: TextDocument, library: FunctionLibrary, registry: FieldRegistry
) -> int:
    """
    Register handles for the native fields the model interprets.

    An input-user field named `WM(FUNCTION 'name')` is registered under every
    parameter of that function, or as static field if it has none. A database
    field is registered under its column. Fields using an undefined function
    or a function that refers to itself are logged and skipped.

    Returns:
        Number of registered handles
    """
    count = 0
    for field in document.native_fields():
        try:
            if field.kind is NativeFieldKind.INPUT_USER:
                function_name = function_name_for_user_field(field.variable_name)
                if function_name is None:
                    continue
                if library.get(function_name) is None:
                    logger.error(
                        f"Function '{function_name}' used by input field {field.variable_name!r} is not defined"
                    )
                    continue
                try:
                    parameters = library.parameters(function_name)
                except FunctionDefinitionError as e:
                    logger.error(f"Skipping input field {field.variable_name!r}: {e}")
                    continue
                handle = NativeFieldHandle(field, trafo=function_name)
                if not parameters:
                    registry.register(None, handle, FieldKind.STATIC)
                for parameter in parameters:
                    registry.register(parameter, handle, FieldKind.NATIVE)
                count += 1
            elif field.kind is NativeFieldKind.DATABASE and field.column:
                registry.register(field.column, NativeFieldHandle(field), FieldKind.NATIVE)
                count += 1
        except StaleAnchorError:
            logger.debug("Skipping native field that disappeared during the scan")
    return count
