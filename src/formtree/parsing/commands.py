"""
Parser for document commands embedded in anchor names.

A command anchor is named `WM(CMD '<name>' KEY 'value' ...)`, optionally
followed by an integer that only keeps anchor names unique. The payload uses
the configuration grammar of `formtree.core.config_node`.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from formtree.core.config_node import ConfigNode, parse_config, serialize
from formtree.exceptions import CommandSyntaxError, ConfigSyntaxError, ErrorContext

if TYPE_CHECKING:
    from formtree.document.interfaces import Anchor

logger = logging.getLogger(__name__)

COMMAND_ANCHOR_PATTERN = re.compile(r"\A\s*(WM\s*\(.*\))\s*(\d*)\Z", re.DOTALL)
USER_FIELD_FUNCTION_PATTERN = re.compile(r"\A\s*(WM\s*\(.*\))\s*\Z", re.DOTALL)
IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class CommandKind(Enum):
    """Kind of document command, named as in the CMD key."""

    FORM = "form"
    SET_TYPE = "setType"
    SET_GROUPS = "setGroups"
    INSERT_FORM_VALUE = "insertFormValue"
    OVERRIDE_FRAG = "overrideFrag"
    SET_PRINT_FUNCTION = "setPrintFunction"
    INVISIBLE_MARKER = "invisibleMarker"
    INSERT_FRAG = "insertFrag"
    INSERT_VALUE = "insertValue"
    INSERT_CONTENT = "insertContent"
    SET_JUMP_MARK = "setJumpMark"
    DRAFT_ONLY = "draftOnly"
    ALL_VERSIONS = "allVersions"
    NOT_IN_ORIGINAL = "notInOriginal"
    ORIGINAL_ONLY = "originalOnly"
    UPDATE_FIELDS = "updateFields"

    @classmethod
    def from_name(cls, name: str) -> "CommandKind | None":
        return _KINDS_BY_LOWER_NAME.get(name.lower())


_KINDS_BY_LOWER_NAME = {kind.value.lower(): kind for kind in CommandKind}

PRINT_BLOCK_KINDS = frozenset(
    {
        CommandKind.DRAFT_ONLY,
        CommandKind.ALL_VERSIONS,
        CommandKind.NOT_IN_ORIGINAL,
        CommandKind.ORIGINAL_ONLY,
    }
)


@dataclass(eq=False)
class Command:
    """
    A document command bound to an anchor.

    Kind-specific data is held in explicit optional attributes; only the
    attributes of the command's kind are set.

    Params:
        kind: Command kind
        payload: The parsed `WM(...)` node
        anchor: Anchor the command is bound to, None until attached
        done: Set once the command was executed; never reset within a pass
        visible: Visibility flag maintained by group visibility changes
        field_id: ID of insertFormValue commands
        trafo: Optional TRAFO of insertFormValue/insertValue commands
        groups: Visibility groups of setGroups commands
        highlight_color: Optional HIGHLIGHT_COLOR (hex RGB) of print blocks and groups
        doc_type: TYPE of setType commands
        print_functions: Function names of setPrintFunction commands
        frag_id: FRAG_ID of overrideFrag/insertFrag commands
        new_frag_id: NEW_FRAG_ID of overrideFrag commands
        column: DB_SPALTE of insertValue commands
    """

    kind: CommandKind
    payload: ConfigNode
    anchor: "Anchor | None" = None
    done: bool = False
    visible: bool = True
    field_id: str | None = None
    trafo: str | None = None
    groups: frozenset[str] = frozenset()
    highlight_color: str | None = None
    doc_type: str | None = None
    print_functions: tuple[str, ...] = ()
    frag_id: str | None = None
    new_frag_id: str | None = None
    column: str | None = None
    parent: "Command | None" = field(default=None, repr=False)
    children: list["Command"] = field(default_factory=list, repr=False)

    @property
    def anchor_name(self) -> str | None:
        return self.anchor.name if self.anchor is not None else None

    def mark_done(self) -> None:
        self.done = True

    def __str__(self) -> str:
        return serialize(self.payload)


class CommandParser:
    """Parser for command anchor names."""

    def is_command_anchor(self, anchor_name: str) -> bool:
        return COMMAND_ANCHOR_PATTERN.match(anchor_name) is not None

    def parse(self, anchor_name: str) -> Command:
        """
        Parse an anchor name into a Command.

        Params:
            anchor_name: Full anchor name including an optional number suffix

        Returns:
            Command without anchor

        Raises:
            CommandSyntaxError: If the name is not a well-formed command
        """
        match = COMMAND_ANCHOR_PATTERN.match(anchor_name)
        if not match:
            raise CommandSyntaxError("Not a command anchor", ErrorContext(anchor_name=anchor_name))
        payload = self.parse_payload(match.group(1), anchor_name)
        return self._classify(payload, anchor_name)

    def parse_payload(self, text: str, anchor_name: str | None = None) -> ConfigNode:
        """Parse `WM(...)` text and return the WM node."""
        context = ErrorContext(anchor_name=anchor_name, payload=text)
        try:
            root = parse_config(text)
        except ConfigSyntaxError as e:
            raise CommandSyntaxError(f"Syntax error in command: {e}", context) from e
        wm_nodes = root.children_named("WM")
        if len(root.children) != 1 or not wm_nodes or wm_nodes[0].is_scalar:
            raise CommandSyntaxError("Command must consist of exactly one WM(...) section", context)
        return wm_nodes[0]

    def _classify(self, payload: ConfigNode, anchor_name: str) -> Command:
        context = ErrorContext(anchor_name=anchor_name, payload=serialize(payload))
        cmd_name = payload.get_text("CMD")
        if cmd_name is None:
            if payload.has("GROUPS"):
                kind = CommandKind.SET_GROUPS
            else:
                raise CommandSyntaxError("Command has no CMD key", context)
        else:
            kind = CommandKind.from_name(cmd_name)
            if kind is None:
                raise CommandSyntaxError(f"Unknown command '{cmd_name}'", context)

        command = Command(kind=kind, payload=payload)

        if kind is CommandKind.INSERT_FORM_VALUE:
            command.field_id = self._required(payload, "ID", context)
            command.trafo = payload.get_text("TRAFO")
        elif kind is CommandKind.INSERT_VALUE:
            command.column = self._required(payload, "DB_SPALTE", context)
            command.trafo = payload.get_text("TRAFO")
        elif kind is CommandKind.SET_TYPE:
            command.doc_type = self._required(payload, "TYPE", context)
        elif kind is CommandKind.SET_GROUPS:
            groups = payload.find("GROUPS")
            if groups is None:
                raise CommandSyntaxError("setGroups needs a GROUPS key", context)
            command.groups = frozenset(_scalar_texts(groups))
            command.highlight_color = payload.get_text("HIGHLIGHT_COLOR")
        elif kind is CommandKind.OVERRIDE_FRAG:
            command.frag_id = self._required(payload, "FRAG_ID", context)
            command.new_frag_id = payload.get_text("NEW_FRAG_ID", "")
        elif kind is CommandKind.INSERT_FRAG:
            command.frag_id = self._required(payload, "FRAG_ID", context)
        elif kind is CommandKind.SET_PRINT_FUNCTION:
            names = print_functions_of(payload)
            if not names:
                raise CommandSyntaxError("setPrintFunction needs a FUNCTION", context)
            command.print_functions = tuple(names)
        elif kind in PRINT_BLOCK_KINDS:
            command.highlight_color = payload.get_text("HIGHLIGHT_COLOR")
        return command

    @staticmethod
    def _required(payload: ConfigNode, key: str, context: ErrorContext) -> str:
        value = payload.get_text(key)
        if value is None:
            raise CommandSyntaxError(f"Missing key {key}", context)
        return value


def _scalar_texts(node: ConfigNode) -> list[str]:
    if node.is_scalar:
        return [node.value]
    return [text for child in node.children for text in _scalar_texts(child)]


def print_functions_of(node: ConfigNode) -> list[str]:
    """
    Collect print function names from a node.

    Both a direct `FUNCTION 'name'` and any number of `(FUNCTION 'name')`
    entries inside a `Druckfunktionen(...)` section are recognized.
    """
    names = []
    direct = node.get_text("FUNCTION")
    if direct:
        names.append(direct)
    sections = node.query("Druckfunktionen", min_level=0)
    for section in sections:
        for entry in _nodes_with_child(section, "FUNCTION"):
            name = entry.get_text("FUNCTION")
            if name and name not in names:
                names.append(name)
    return names


def _nodes_with_child(node: ConfigNode, child_name: str) -> list[ConfigNode]:
    found = []
    for child in node.children:
        if child.has(child_name):
            found.append(child)
        found.extend(_nodes_with_child(child, child_name))
    return found


def is_identifier(text: str) -> bool:
    return IDENTIFIER_PATTERN.fullmatch(text) is not None


def check_identifier(text: str) -> str:
    """Return `text` if it is a valid identifier, raise CommandSyntaxError otherwise."""
    if not is_identifier(text):
        raise CommandSyntaxError(f"Invalid identifier: {text!r}")
    return text


def parse_print_function_blob(data: str | None) -> list[str]:
    """
    Read the persisted print function blob.

    The blob is either a `WM(Druckfunktionen((FUNCTION 'a') ...))` tree or,
    for documents written by older versions, just one function name.
    Unreadable blobs are logged and yield no functions.
    """
    if not data:
        return []
    try:
        root = parse_config(data)
    except ConfigSyntaxError as e:
        candidate = data.strip()
        if is_identifier(candidate):
            return [candidate]
        logger.error(f"Error reading print function section {data!r}: {e}")
        return []
    names = []
    for wm in root.children_named("WM"):
        for name in print_functions_of(wm):
            if name not in names:
                names.append(name)
    return names


def serialize_print_function_blob(names: set[str] | list[str]) -> str | None:
    """Bare name for a single function, a sorted Druckfunktionen tree otherwise."""
    if not names:
        return None
    ordered = sorted(names)
    if len(ordered) == 1:
        return ordered[0]
    section = ConfigNode.section("Druckfunktionen")
    for name in ordered:
        section.add_child(ConfigNode.section("", ConfigNode.scalar("FUNCTION", name)))
    return serialize(ConfigNode.section("WM", section))


def function_name_for_user_field(variable_name: str | None) -> str | None:
    """
    Name of the function used by an input-user field, if the model handles it.

    Params:
        variable_name: Variable name of the field, e.g. `WM(FUNCTION 'Gruss')`

    Returns:
        The function name, or None if the field is not of that form
    """
    if variable_name is None:
        return None
    match = USER_FIELD_FUNCTION_PATTERN.match(variable_name)
    if not match:
        return None
    try:
        root = parse_config(match.group(1))
    except ConfigSyntaxError:
        return None
    functions = root.query("FUNCTION")
    if len(functions) != 1:
        return None
    return functions[0].text


def function_name_for_command(anchor_name: str) -> str | None:
    """TRAFO of an insertFormValue anchor name, or None."""
    try:
        command = CommandParser().parse(anchor_name)
    except CommandSyntaxError:
        return None
    if command.kind is CommandKind.INSERT_FORM_VALUE:
        return command.trafo
    return None


def user_field_variable_name(function_name: str) -> str:
    return serialize(ConfigNode.section("WM", ConfigNode.scalar("FUNCTION", function_name)))


def insert_form_value_payload(field_id: str, trafo: str | None = None) -> ConfigNode:
    payload = ConfigNode.section(
        "WM",
        ConfigNode.scalar("CMD", CommandKind.INSERT_FORM_VALUE.value),
        ConfigNode.scalar("ID", field_id),
    )
    if trafo:
        payload.add_scalar("TRAFO", trafo)
    return payload


def parse_command(anchor_name: str) -> Command:
    """
    Convenience function to parse a command anchor name.

    Params:
        anchor_name: The anchor name to parse

    Returns:
        Command object of the matching kind

    Raises:
        CommandSyntaxError: If the anchor name is malformed
    """
    return CommandParser().parse(anchor_name)
