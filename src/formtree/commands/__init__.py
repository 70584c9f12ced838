"""
Document command tree.
"""

from formtree.commands.tree import CommandTree, unique_anchor_name
from formtree.parsing.commands import Command, CommandKind

__all__ = [
    "Command",
    "CommandKind",
    "CommandTree",
    "unique_anchor_name",
]
