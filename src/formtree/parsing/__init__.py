"""
Parsing of document commands and persisted command-like blobs.
"""

from formtree.parsing.commands import (
    Command,
    CommandKind,
    CommandParser,
    check_identifier,
    function_name_for_command,
    function_name_for_user_field,
    insert_form_value_payload,
    is_identifier,
    parse_command,
    parse_print_function_blob,
    print_functions_of,
    serialize_print_function_blob,
    user_field_variable_name,
)

__all__ = [
    "Command",
    "CommandKind",
    "CommandParser",
    "check_identifier",
    "function_name_for_command",
    "function_name_for_user_field",
    "insert_form_value_payload",
    "is_identifier",
    "parse_command",
    "parse_print_function_blob",
    "print_functions_of",
    "serialize_print_function_blob",
    "user_field_variable_name",
]
