"""
Tests for the command tree built from document anchors.
"""

import logging

import pytest

from formtree.commands.tree import CommandTree, unique_anchor_name
from formtree.document.memory import MemoryDocument
from formtree.parsing.commands import CommandKind

GROUPS_ANCHOR = "WM(CMD 'setGroups' GROUPS('A'))"
FIELD_ANCHOR = "WM(CMD 'insertFormValue' ID 'Name')"


@pytest.fixture
def nested_document():
    """A setGroups block around an insertFormValue field, plus noise."""
    document = MemoryDocument("x" * 30)
    document.create_anchor(GROUPS_ANCHOR, 0, 20)
    document.create_anchor(FIELD_ANCHOR, 5, 10)
    document.create_anchor("Textmarke", 2, 3)
    document.create_anchor("WM(CMD 'bogus')", 25, 26)
    document.create_anchor("WM(CMD 'draftOnly')", 22, 24)
    return document


class TestUpdate:
    """Tests for deriving the tree from anchors."""

    def test_builds_nested_tree(self, nested_document):
        """Contained anchors become children of the innermost container."""
        tree = CommandTree(nested_document)
        assert tree.update()
        assert len(tree) == 3
        groups, draft = tree.roots
        assert groups.kind is CommandKind.SET_GROUPS
        assert draft.kind is CommandKind.DRAFT_ONLY
        assert [child.kind for child in groups.children] == [CommandKind.INSERT_FORM_VALUE]
        assert groups.children[0].parent is groups

    def test_document_order(self, nested_document):
        """Iteration and walk follow document order."""
        tree = CommandTree(nested_document)
        tree.update()
        kinds = [CommandKind.SET_GROUPS, CommandKind.INSERT_FORM_VALUE, CommandKind.DRAFT_ONLY]
        assert [c.kind for c in tree] == kinds
        assert [c.kind for c in tree.walk()] == kinds

    def test_update_is_idempotent(self, nested_document):
        """A second update without changes keeps the very same Command objects."""
        tree = CommandTree(nested_document)
        tree.update()
        before = list(tree)
        roots_before = tree.roots
        assert not tree.update()
        after = list(tree)
        assert len(before) == len(after)
        assert all(a is b for a, b in zip(before, after))
        assert all(a is b for a, b in zip(roots_before, tree.roots))
        assert tree.roots[0].children[0] is before[1]

    def test_removed_anchor_drops_command(self, nested_document):
        """Commands whose anchor disappeared are dropped."""
        tree = CommandTree(nested_document)
        tree.update()
        nested_document.anchor(FIELD_ANCHOR).dispose()
        assert tree.update()
        assert tree.get(FIELD_ANCHOR) is None
        assert tree.roots[0].children == []

    def test_added_anchor_is_picked_up(self, nested_document):
        """New command anchors are added while old commands are kept."""
        tree = CommandTree(nested_document)
        tree.update()
        groups = tree.get(GROUPS_ANCHOR)
        nested_document.create_anchor("WM(CMD 'insertFormValue' ID 'Vorname')", 12, 15)
        assert tree.update()
        assert tree.get(GROUPS_ANCHOR) is groups
        assert len(groups.children) == 2

    def test_malformed_anchor_logged_once(self, nested_document, caplog):
        """A malformed command anchor is logged once and skipped."""
        tree = CommandTree(nested_document)
        with caplog.at_level(logging.ERROR, logger="formtree.commands.tree"):
            tree.update()
            tree.update()
        messages = [r.getMessage() for r in caplog.records if "bogus" in r.getMessage()]
        assert len(messages) == 1

    def test_of_kind(self, nested_document):
        """Commands can be selected by kind."""
        tree = CommandTree(nested_document)
        tree.update()
        assert [c.field_id for c in tree.of_kind(CommandKind.INSERT_FORM_VALUE)] == ["Name"]
        assert tree.first_of_kind(CommandKind.FORM) is None


class TestVisibility:
    """Tests for group and print block visibility."""

    def test_hiding_a_group(self, nested_document):
        """Hiding a group hides the setGroups block and everything inside."""
        tree = CommandTree(nested_document)
        tree.update()
        groups = tree.get(GROUPS_ANCHOR)
        field = tree.get(FIELD_ANCHOR)
        assert tree.groups_of(field) == frozenset({"A"})

        assert tree.set_group_visibility("A", False) == [groups]
        assert not tree.is_visible(field)
        assert tree.invisible_groups == frozenset({"A"})

        assert tree.set_group_visibility("A", True) == [groups]
        assert tree.is_visible(field)

    def test_unchanged_visibility_reports_nothing(self, nested_document):
        """Setting the current visibility again changes nothing."""
        tree = CommandTree(nested_document)
        tree.update()
        assert tree.set_group_visibility("A", True) == []
        assert tree.set_group_visibility("Other", False) == []

    def test_new_blocks_respect_hidden_groups(self, nested_document):
        """setGroups blocks found after hiding a group start out invisible."""
        tree = CommandTree(nested_document)
        tree.update()
        tree.set_group_visibility("A", False)
        nested_document.create_anchor("WM(CMD 'setGroups' GROUPS('A' 'B'))", 26, 28)
        tree.update()
        assert not tree.get("WM(CMD 'setGroups' GROUPS('A' 'B'))").visible

    def test_print_blocks(self, nested_document):
        """Print block visibility is set per kind."""
        tree = CommandTree(nested_document)
        tree.update()
        blocks = tree.set_print_block_visibility(CommandKind.DRAFT_ONLY, False)
        assert len(blocks) == 1
        assert not blocks[0].visible
        with pytest.raises(ValueError):
            tree.set_print_block_visibility(CommandKind.INSERT_FORM_VALUE, False)


class TestCleanup:
    """Tests for removing executed commands."""

    def test_cleanup_keeps_content(self):
        """Anchors of done commands are removed, their text stays."""
        document = MemoryDocument()
        document.add_anchored_text("WM(CMD 'setType' TYPE 'formDocument')", "Text")
        tree = CommandTree(document)
        tree.update()
        tree.first_of_kind(CommandKind.SET_TYPE).mark_done()
        assert tree.cleanup_done() == 1
        assert len(tree) == 0
        assert document.text == "Text"
        assert document.anchors() == []


class TestUniqueAnchorName:
    """Tests for unique_anchor_name."""

    def test_suffixes(self):
        """Taken names get the smallest free numeric suffix."""
        document = MemoryDocument("abc")
        assert unique_anchor_name(document, FIELD_ANCHOR) == FIELD_ANCHOR
        document.create_anchor(FIELD_ANCHOR, 0, 1)
        assert unique_anchor_name(document, FIELD_ANCHOR) == f"{FIELD_ANCHOR} 1"
        document.create_anchor(f"{FIELD_ANCHOR} 1", 1, 2)
        assert unique_anchor_name(document, FIELD_ANCHOR) == f"{FIELD_ANCHOR} 2"
