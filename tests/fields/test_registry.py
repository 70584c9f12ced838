"""
Tests for FieldRegistry and field collection.
"""

import pytest

from formtree.commands.tree import CommandTree
from formtree.core.config_node import parse_config
from formtree.document.interfaces import NativeFieldKind
from formtree.document.memory import MemoryDocument
from formtree.fields.collect import collect_command_fields, collect_native_fields
from formtree.fields.handles import CommandFieldHandle, FieldKind, NativeFieldHandle
from formtree.fields.registry import FieldRegistry
from formtree.functions.library import FunctionLibrary
from formtree.parsing.commands import user_field_variable_name


@pytest.fixture
def handles():
    """Native handles on a scratch document: two plain and one transformed."""
    document = MemoryDocument()
    plain_a = NativeFieldHandle(
        document.insert_native_field(0, NativeFieldKind.DATABASE, column="A", content="a")
    )
    plain_b = NativeFieldHandle(
        document.insert_native_field(1, NativeFieldKind.DATABASE, column="A", content="b")
    )
    transformed = NativeFieldHandle(
        document.insert_native_field(
            2, NativeFieldKind.INPUT_USER, variable_name=user_field_variable_name("F"), content="c"
        ),
        trafo="F",
    )
    return plain_a, plain_b, transformed


class TestRegister:
    """Tests for registering handles."""

    def test_fields_for_order(self, handles):
        """Command fields come first, then native fields, then static fields if requested."""
        plain_a, plain_b, transformed = handles
        registry = FieldRegistry()
        registry.register("A", plain_a, FieldKind.NATIVE)
        registry.register("A", plain_b, FieldKind.COMMAND)
        registry.register(None, transformed, FieldKind.STATIC)

        assert registry.fields_for("A") == [plain_b, plain_a]
        assert registry.fields_for("A", include_static=True) == [plain_b, plain_a, transformed]
        assert registry.command_fields_for("A") == [plain_b]
        assert registry.native_fields_for("A") == [plain_a]
        assert registry.static_fields() == [transformed]
        assert registry.all_ids() == {"A"}
        assert "A" in registry
        assert "B" not in registry

    def test_handle_under_several_ids(self, handles):
        """A native handle reading several ids is listed once per id."""
        _, _, transformed = handles
        registry = FieldRegistry()
        registry.register("X", transformed, FieldKind.NATIVE)
        registry.register("Z", transformed, FieldKind.NATIVE)
        registry.register("Z", transformed, FieldKind.NATIVE)

        assert registry.fields_for("X") == [transformed]
        assert registry.fields_for("Z") == [transformed]
        assert registry.all_handles() == [transformed]
        assert registry.used_trafos() == {"F"}
        assert registry.kind_of(transformed) is FieldKind.NATIVE

    def test_conflicting_kind_rejected(self, handles):
        """A handle belongs to exactly one collection."""
        plain_a, _, _ = handles
        registry = FieldRegistry()
        registry.register("A", plain_a, FieldKind.NATIVE)
        with pytest.raises(ValueError):
            registry.register("A", plain_a, FieldKind.COMMAND)

    def test_id_required(self, handles):
        """Non-static handles need an id."""
        with pytest.raises(ValueError):
            FieldRegistry().register(None, handles[0], FieldKind.NATIVE)

    def test_unregister_all(self, handles):
        """unregister_all empties every collection."""
        registry = FieldRegistry()
        registry.register("A", handles[0], FieldKind.NATIVE)
        registry.register(None, handles[2], FieldKind.STATIC)
        registry.unregister_all()
        assert registry.all_ids() == set()
        assert registry.all_handles() == []
        assert registry.kind_of(handles[0]) is None

    def test_snapshots_are_read_only(self, handles):
        """Snapshots cannot be used to modify the registry."""
        registry = FieldRegistry()
        registry.register("A", handles[0], FieldKind.NATIVE)
        snapshot = registry.native_snapshot()
        assert snapshot["A"] == (handles[0],)
        with pytest.raises(TypeError):
            snapshot["B"] = ()
        assert dict(registry.command_snapshot()) == {}


class TestPreferUntransformed:
    """Tests for choosing a handle to focus or read."""

    def test_prefers_untransformed(self, handles):
        """The first untransformed handle wins."""
        plain_a, plain_b, transformed = handles
        assert FieldRegistry.prefer_untransformed([transformed, plain_b, plain_a]) is plain_b

    def test_falls_back_to_first(self, handles):
        """Without untransformed handles the first one is used."""
        transformed = handles[2]
        assert FieldRegistry.prefer_untransformed([transformed]) is transformed
        assert FieldRegistry.prefer_untransformed([]) is None


class TestCollect:
    """Tests for discovering handles in a document."""

    def test_collects_command_and_native_fields(self):
        """insertFormValue anchors, database fields and function fields are registered."""
        document = MemoryDocument()
        document.add_anchored_text("WM(CMD 'insertFormValue' ID 'Nachname')", "Muster")
        document.insert_native_field(6, NativeFieldKind.DATABASE, column="Vorname", content="Max")
        document.insert_native_field(
            9, NativeFieldKind.INPUT_USER, variable_name=user_field_variable_name("Gruss")
        )
        document.insert_native_field(
            9, NativeFieldKind.INPUT_USER, variable_name=user_field_variable_name("Datum")
        )
        document.insert_native_field(9, NativeFieldKind.INPUT_USER, variable_name="Kundennummer")

        library = FunctionLibrary()
        library.load(
            parse_config("Funktionen(Gruss(VALUE 'Anrede' VALUE 'Nachname') Datum('1.1.2030'))").get(
                "Funktionen"
            )
        )
        tree = CommandTree(document)
        tree.update()
        registry = FieldRegistry()

        assert collect_command_fields(tree, document, registry) == 1
        assert collect_native_fields(document, library, registry) == 3

        assert registry.all_ids() == {"Nachname", "Vorname", "Anrede"}
        command_handle = registry.command_fields_for("Nachname")[0]
        assert isinstance(command_handle, CommandFieldHandle)
        assert command_handle.get_value() == "Muster"
        assert [h.trafo for h in registry.native_fields_for("Nachname")] == ["Gruss"]
        assert registry.native_fields_for("Anrede") == registry.native_fields_for("Nachname")
        assert [h.trafo for h in registry.static_fields()] == ["Datum"]

    def test_undefined_function_skipped(self):
        """Fields of undefined functions are not registered."""
        document = MemoryDocument()
        document.insert_native_field(
            0, NativeFieldKind.INPUT_USER, variable_name=user_field_variable_name("Missing")
        )
        registry = FieldRegistry()
        assert collect_native_fields(document, FunctionLibrary(), registry) == 0
        assert registry.all_handles() == []
