"""
Command tree built from the command anchors of a document.

The tree mirrors anchor nesting: an anchor whose span lies inside another
anchor's span is a child of the innermost such anchor. Commands are keyed by
anchor name so that rescanning an unchanged document keeps the very same
Command objects.
"""

import logging
from typing import Iterator

from formtree.document.interfaces import Anchor, TextDocument
from formtree.exceptions import CommandSyntaxError, StaleAnchorError
from formtree.parsing.commands import (
    PRINT_BLOCK_KINDS,
    Command,
    CommandKind,
    CommandParser,
)

logger = logging.getLogger(__name__)


class CommandTree:
    """Command tree of one document.

    Params:
        document: Document whose anchors are scanned
        parser: Parser for anchor names, a default CommandParser if omitted
    """

    def __init__(self, document: TextDocument, parser: CommandParser | None = None):
        self._document = document
        self._parser = parser or CommandParser()
        self._commands: dict[str, Command] = {}
        self._order: list[Command] = []
        self._roots: list[Command] = []
        self._malformed: set[str] = set()
        self._hidden_groups: set[str] = set()

    @property
    def roots(self) -> list[Command]:
        return list(self._roots)

    def __len__(self) -> int:
        return len(self._commands)

    def __iter__(self) -> Iterator[Command]:
        return iter(self._order)

    def get(self, anchor_name: str) -> Command | None:
        return self._commands.get(anchor_name)

    def update(self) -> bool:
        """
        Re-derive the tree from the current anchors of the document.

        Anchors seen before keep their Command object, new anchors get a new
        one, and commands whose anchor disappeared are dropped. Malformed
        command anchors are logged once and skipped.

        Returns:
            True if commands were added or removed
        """
        changed = False
        current: dict[str, Command] = {}
        spans: dict[str, tuple[int, int]] = {}
        order: list[Command] = []

        for anchor in self._document.anchors():
            name = anchor.name
            if not self._parser.is_command_anchor(name):
                continue
            try:
                span = anchor.span()
            except StaleAnchorError:
                logger.debug(f"Skipping stale anchor {name!r}")
                continue

            command = self._commands.get(name)
            if command is None:
                command = self._create(anchor)
                if command is None:
                    continue
                changed = True
            else:
                command.anchor = anchor
            current[name] = command
            spans[name] = span
            order.append(command)

        if set(self._commands) - set(current):
            changed = True
        self._malformed &= {anchor.name for anchor in self._document.anchors()}

        self._commands = current
        self._order = order
        self._roots = self._nest(order, spans)
        logger.debug(f"Command tree holds {len(order)} commands (changed={changed})")
        return changed

    def _create(self, anchor: Anchor) -> Command | None:
        try:
            command = self._parser.parse(anchor.name)
        except CommandSyntaxError as e:
            if anchor.name not in self._malformed:
                self._malformed.add(anchor.name)
                logger.error(f"Ignoring malformed command anchor: {e}")
            return None
        command.anchor = anchor
        if command.kind is CommandKind.SET_GROUPS:
            command.visible = not (command.groups & self._hidden_groups)
        return command

    @staticmethod
    def _nest(order: list[Command], spans: dict[str, tuple[int, int]]) -> list[Command]:
        roots = []
        stack: list[tuple[Command, int, int]] = []
        for command in order:
            start, end = spans[command.anchor_name]
            while stack and not (stack[-1][1] <= start and end <= stack[-1][2]):
                stack.pop()
            command.children = []
            if stack:
                command.parent = stack[-1][0]
                command.parent.children.append(command)
            else:
                command.parent = None
                roots.append(command)
            stack.append((command, start, end))
        return roots

    def walk(self) -> Iterator[Command]:
        """Depth-first pre-order iteration; equals document order."""

        def visit(command: Command) -> Iterator[Command]:
            yield command
            for child in command.children:
                yield from visit(child)

        for root in self._roots:
            yield from visit(root)

    def of_kind(self, *kinds: CommandKind) -> list[Command]:
        return [command for command in self._order if command.kind in kinds]

    def first_of_kind(self, kind: CommandKind) -> Command | None:
        for command in self._order:
            if command.kind is kind:
                return command
        return None

    def groups_of(self, command: Command) -> frozenset[str]:
        """Visibility groups of `command`, including those of enclosing setGroups commands."""
        groups: set[str] = set()
        node: Command | None = command
        while node is not None:
            if node.kind is CommandKind.SET_GROUPS:
                groups |= node.groups
            node = node.parent
        return frozenset(groups)

    def is_visible(self, command: Command) -> bool:
        node: Command | None = command
        while node is not None:
            if not node.visible:
                return False
            node = node.parent
        return True

    @property
    def invisible_groups(self) -> frozenset[str]:
        return frozenset(self._hidden_groups)

    def set_group_visibility(self, group: str, visible: bool) -> list[Command]:
        """
        Show or hide a visibility group.

        Only the visibility flags of setGroups commands are changed; a command
        is visible while none of its groups is hidden.

        Params:
            group: Name of the visibility group
            visible: New visibility of the group

        Returns:
            setGroups commands whose visibility flag changed
        """
        if visible:
            self._hidden_groups.discard(group)
        else:
            self._hidden_groups.add(group)

        changed = []
        for command in self.of_kind(CommandKind.SET_GROUPS):
            if group not in command.groups:
                continue
            new_visible = not (command.groups & self._hidden_groups)
            if new_visible != command.visible:
                command.visible = new_visible
                changed.append(command)
        return changed

    def set_print_block_visibility(self, kind: CommandKind, visible: bool) -> list[Command]:
        """Set the visibility flag of all print blocks of `kind`."""
        if kind not in PRINT_BLOCK_KINDS:
            raise ValueError(f"{kind.value} is not a print block command")
        blocks = self.of_kind(kind)
        for command in blocks:
            command.visible = visible
        return blocks

    def cleanup_done(self) -> int:
        """
        Remove the anchors of all executed commands, keeping their content.

        Returns:
            Number of anchors removed
        """
        removed = 0
        for command in [c for c in self._order if c.done]:
            try:
                command.anchor.dispose(keep_content=True)
                removed += 1
            except StaleAnchorError:
                logger.debug(f"Anchor of executed command {command} is already gone")
        if removed:
            self.update()
        return removed


def unique_anchor_name(document: TextDocument, base: str) -> str:
    """`base`, or `base` with the smallest numeric suffix that is not yet taken."""
    if not document.has_anchor(base):
        return base
    counter = 1
    while document.has_anchor(f"{base} {counter}"):
        counter += 1
    return f"{base} {counter}"
