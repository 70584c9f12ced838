"""
Tests for DocumentModel, the per-document form model.

Covers scanning and global commands, value display and preset values,
function editing, field insertion, metadata accessors and de-forming.
"""

import threading

import pytest

from formtree.core.config_node import parse_config
from formtree.core.settings import FormTreeSettings
from formtree.document.interfaces import NativeFieldKind
from formtree.document.memory import MemoryDocument, MemoryPersistentData
from formtree.exceptions import CommandSyntaxError, FunctionDefinitionError, UnavailableError
from formtree.form.descriptor import load_descriptor
from formtree.functions.callbacks import CallbackRegistry
from formtree.model import DocumentModel, ReferencedFieldId
from formtree.parsing.commands import CommandKind, user_field_variable_name

SETTINGS = FormTreeSettings()
DATA_IDS = SETTINGS.data_ids
FIELD_ANCHOR = "WM(CMD 'insertFormValue' ID 'Nachname')"


def _functions(definitions: str) -> str:
    return f"WM(Formular(Funktionen({definitions})))"


class TestEndToEnd:
    """One command field and one mail-merge field for the same id."""

    def test_manual_edit_is_adopted(self):
        """Unchanged fields keep the stored value; a single manual edit is adopted."""
        document = MemoryDocument()
        persistent_data = MemoryPersistentData(
            document, {DATA_IDS.form_values: "WM(Formularwerte((ID 'Nachname' VALUE 'Muster')))"}
        )
        document.add_anchored_text(FIELD_ANCHOR, "Muster")
        document.insert_text(len(document.text), " ")
        field = document.insert_native_field(
            len(document.text), NativeFieldKind.DATABASE, column="Nachname", content="Muster"
        )
        model = DocumentModel(document, persistent_data)
        model.scan()

        assert model.get_preset_values() == {"Nachname": "Muster"}

        field.set_text("Meier")
        assert model.get_preset_values() == {"Nachname": "Meier"}

    def test_conflicting_edits_are_fishy(self, make_model, document):
        """Two fields edited to different values give the ambiguity marker."""
        document.add_anchored_text(FIELD_ANCHOR, "A")
        document.insert_text(len(document.text), " ")
        document.insert_native_field(
            len(document.text), NativeFieldKind.DATABASE, column="Nachname", content="C"
        )
        model = make_model(values="WM(Formularwerte((ID 'Nachname' VALUE 'B')))")
        model.scan()
        assert model.get_preset_values() == {"Nachname": SETTINGS.fishy_marker}


class TestScan:
    """Tests for scanning and executing global commands."""

    def test_form_command_is_merged(self, model, document, persistent_data):
        """The text of a form command becomes part of the description and is consumed."""
        document.add_anchored_text(
            "WM(CMD 'form')", "WM(Formular(Funktionen(Gruss(CAT('Hallo ' VALUE 'Name')))))"
        )
        model.scan()

        assert "Gruss" in model.library
        assert model.has_form_descriptor()
        assert persistent_data.get_data(DATA_IDS.form_description) is not None
        assert document.anchor("WM(CMD 'form')").get_text() == ""
        assert model.commands.first_of_kind(CommandKind.FORM).done

    def test_empty_form_command_is_logged(self, model, document, caplog):
        """A form command without description is an error in the log."""
        document.add_anchored_text("WM(CMD 'form')", "")
        model.scan()
        assert "missing" in caplog.text
        assert not model.has_form_descriptor()

    def test_set_type_command(self, model, document, persistent_data):
        """setType sets the type without persisting it."""
        document.add_anchored_text("WM(CMD 'setType' TYPE 'formDocument')", "")
        model.scan()
        assert model.is_form_document()
        assert model.doc_type == "formDocument"
        assert persistent_data.get_data(DATA_IDS.document_type) is None

    def test_set_print_function_command(self, model, document, persistent_data):
        """setPrintFunction adds its functions."""
        document.add_anchored_text("WM(CMD 'setPrintFunction' FUNCTION 'Briefkopf')", "")
        model.scan()
        assert model.print_function_names() == ["Briefkopf"]
        assert persistent_data.get_data(DATA_IDS.print_function) == "Briefkopf"

    def test_override_frag_chain_is_reported(self, model, document):
        """Override chains are reported through the diagnostic channel."""
        document.add_anchored_text("WM(CMD 'overrideFrag' FRAG_ID 'A' NEW_FRAG_ID 'B')", "")
        document.add_anchored_text("WM(CMD 'overrideFrag' FRAG_ID 'B' NEW_FRAG_ID 'C')", "")
        model.scan()
        assert model.get_override_frag("A") == "B"
        assert model.get_override_frag("B") == "B"
        assert len(model.diagnostics.reports) == 1

    def test_commands_run_once(self, model, document):
        """Rescanning does not execute commands again."""
        document.add_anchored_text("WM(CMD 'setPrintFunction' FUNCTION 'Briefkopf')", "")
        model.scan()
        model.remove_print_function("Briefkopf")
        assert not model.scan()
        assert model.print_function_names() == []

    def test_functions_loaded_at_start(self, make_model):
        """Functions of the persisted description are available right away."""
        model = make_model(descriptor=_functions("Gruss('Hallo')"))
        assert model.library.evaluate("Gruss", {}) == "Hallo"

    def test_recursive_function_field_is_skipped(self, make_model, document, caplog):
        """An input field whose function refers to itself is logged instead of registered."""
        document.insert_native_field(0, NativeFieldKind.INPUT_USER, variable_name=user_field_variable_name("A"))
        document.add_anchored_text("WM(CMD 'insertFormValue' ID 'X' TRAFO 'A')", "x")
        model = make_model(descriptor=_functions("A(FUNCTION 'B') B(FUNCTION 'A')"))

        model.scan()

        assert model.registry.native_fields_for("X") == []
        assert model.all_field_ids() == {"X"}
        assert "recursive FUNCTION reference" in caplog.text
        assert model.transformed_value("x", "A") == "<ERROR: TRAFO 'A' not defined>"
        model.set_form_value("X", "neu")
        assert document.anchor("WM(CMD 'insertFormValue' ID 'X' TRAFO 'A')").get_text() == (
            "<ERROR: TRAFO 'A' not defined>"
        )


class TestDisplay:
    """Tests for showing values in fields."""

    def test_set_form_value_updates_fields(self, model, document):
        """All fields of an id show the new value."""
        document.add_anchored_text(FIELD_ANCHOR, "?")
        document.insert_text(len(document.text), ", ")
        document.insert_native_field(
            len(document.text), NativeFieldKind.DATABASE, column="Nachname", content="?"
        )
        model.scan()
        document.modified = False

        model.set_form_value("Nachname", "Muster")

        assert document.text == "Muster, Muster"
        assert model.values.get("Nachname") == "Muster"
        assert document.modified

    def test_command_fields_broadcast(self, make_model, document):
        """Transformed command fields feed the value to every parameter."""
        document.add_anchored_text("WM(CMD 'insertFormValue' ID 'A' TRAFO 'Doppelt')", "")
        model = make_model(descriptor=_functions("Doppelt(VALUE 'A' '/' VALUE 'B')"))
        model.scan()
        model.set_form_value("B", "b")
        model.set_form_value("A", "a")
        assert document.text == "a/a"

    def test_native_fields_use_known_values(self, make_model, document):
        """Input fields read every parameter from the value store."""
        document.insert_native_field(
            0, NativeFieldKind.INPUT_USER, variable_name=user_field_variable_name("Name")
        )
        model = make_model(descriptor=_functions("Name(VALUE 'Vorname' ' ' VALUE 'Nachname')"))
        model.scan()
        model.set_form_value("Vorname", "Max")
        model.set_form_value("Nachname", "Muster")
        assert document.text == "Max Muster"

    def test_static_fields_refresh_on_every_update(self, make_model, document):
        """Fields of functions without parameters are refreshed with any id."""
        document.add_anchored_text(FIELD_ANCHOR, "")
        document.insert_native_field(
            len(document.text), NativeFieldKind.INPUT_USER, variable_name=user_field_variable_name("Fix")
        )
        model = make_model(descriptor=_functions("Fix('!')"))
        model.scan()
        model.set_form_value("Nachname", "Muster")
        assert document.text == "Muster!"

    def test_preview_off_shows_placeholders(self, model, document):
        """Outside preview mode fields show their id."""
        document.add_anchored_text(FIELD_ANCHOR, "Muster")
        model.scan()
        model.set_preview_mode(False)
        assert document.text == "<Nachname>"
        model.set_preview_mode(True)
        assert document.text == ""

    def test_transformed_value(self, model):
        """Both evaluation modes and the missing-function marker."""
        model.library.load(parse_config("Funktionen(Paar(VALUE 'a' VALUE 'b'))").get("Funktionen"))
        model.values.set("a", "1")
        model.values.set("b", "2")
        assert model.transformed_value("x", None) == "x"
        assert model.transformed_value("x", "Paar") == "12"
        assert model.transformed_value("x", "Paar", use_known_values=False) == "xx"
        assert model.transformed_value("x", "Fehlt") == "<ERROR: TRAFO 'Fehlt' not defined>"

    def test_transformed_command_field_keeps_preset(self, make_model, document):
        """A command field showing its TRAFO applied to the stored value is unchanged."""
        document.add_anchored_text("WM(CMD 'insertFormValue' ID 'Name' TRAFO 'Klammer')", "")
        model = make_model(descriptor=_functions("Klammer(CAT('<' VALUE 'X' '>'))"))
        model.scan()
        model.set_form_value("Name", "Max")

        assert document.text == "<Max>"
        assert model.get_preset_values()["Name"] == "Max"

    def test_focus_prefers_native_then_untransformed(self, model, document):
        """Native fields are focused first, then untransformed command fields."""
        document.add_anchored_text("WM(CMD 'insertFormValue' ID 'Nachname' TRAFO 'F')", "a")
        document.add_anchored_text(FIELD_ANCHOR, "b")
        model.scan()
        assert model.focus_form_field("Nachname")
        assert document.focused is document.anchor(FIELD_ANCHOR)

        field = document.insert_native_field(0, NativeFieldKind.DATABASE, column="Nachname")
        model.scan()
        assert model.focus_form_field("Nachname")
        assert document.focused is field

        assert not model.focus_form_field("Unbekannt")


class TestFieldCreation:
    """Tests for inserting new fields."""

    def test_insert_mailmerge_field(self, model, document):
        """A mail-merge field is inserted, registered and shows the stored value."""
        document.insert_text(0, "Hallo ")
        model.set_form_value("Nachname", "Muster")
        handle = model.insert_mailmerge_field("Nachname", 6)
        assert document.text == "Hallo Muster"
        assert model.registry.native_fields_for("Nachname") == [handle]

    def test_insert_mailmerge_field_presets_empty_value(self, model, document):
        """Ids without a value get an empty one."""
        model.insert_mailmerge_field("Vorname", 0)
        assert model.values.has("Vorname")
        assert model.insert_mailmerge_field("", 0) is None

    def test_insert_mailmerge_field_without_preview(self, model, document):
        """Outside preview mode the new field shows its id."""
        model.set_preview_mode(False)
        model.insert_mailmerge_field("Vorname", 0)
        assert document.text == "<Vorname>"

    def test_replace_range_with_trafo_field(self, model, document):
        """A range is replaced by an input field computed by a new autofunction."""
        document.insert_text(0, "Sehr geehrter Herr Muster")
        model.set_form_value("Nachname", "Muster")
        name = model.replace_range_with_trafo_field(
            parse_config("CAT('Herr ' VALUE 'Nachname')"), 14, 25, hint="Anrede"
        )

        assert name.startswith(SETTINGS.autofunction_prefix)
        assert document.text == "Sehr geehrter Herr Muster"
        field = document.native_fields()[0]
        assert field.variable_name == user_field_variable_name(name)
        assert field.hint == "Anrede"
        assert model.registry.native_fields_for("Nachname")[0].trafo == name

    def test_invalid_autofunction(self, model):
        """Invalid definitions are rejected before anything is stored."""
        with pytest.raises(FunctionDefinitionError):
            model.add_autofunction(parse_config("FOO('x')"))
        assert not model.has_form_descriptor()

    def test_add_input_user_field(self, make_model, document):
        """A range becomes an input field of an existing function; the next scan registers it."""
        model = make_model(descriptor=_functions("Gruss(CAT('Hallo ' VALUE 'Name'))"))
        document.insert_text(0, "Sehr geehrte Damen")
        field = model.add_input_user_field(0, 12, "Gruss", hint="Anrede")

        assert document.text == " Damen"
        assert field.variable_name == user_field_variable_name("Gruss")
        assert field.hint == "Anrede"
        assert model.all_field_ids() == set()
        model.scan()
        assert model.registry.native_fields_for("Name")[0].trafo == "Gruss"


class TestFunctionEditing:
    """Tests for get_trafo, set_trafo and related queries."""

    def test_get_and_set_trafo(self, model, document, persistent_data):
        """Changing a function moves its fields to the new parameters."""
        document.insert_text(0, "Name")
        name = model.replace_range_with_trafo_field(parse_config("VALUE 'Nachname'"), 0, 4)
        assert model.get_trafo(name).children[0].to_text() == "VALUE 'Nachname'"

        model.set_form_value("Vorname", "Max")
        model.set_trafo(name, parse_config("VALUE 'Vorname' '!'"))

        assert model.library.parameters(name) == ["Vorname"]
        assert model.all_field_ids() == {"Vorname"}
        assert document.text == "Max!"
        assert "VALUE 'Vorname'" in persistent_data.get_data(DATA_IDS.form_description)

    def test_unknown_trafo(self, model):
        """Functions not defined in the document are unavailable."""
        with pytest.raises(UnavailableError):
            model.get_trafo("Fehlt")
        with pytest.raises(UnavailableError):
            model.set_trafo("Fehlt", parse_config("'x'"))

    def test_invalid_new_definition(self, make_model):
        """An invalid new body leaves the old function in place."""
        model = make_model(descriptor=_functions("F(VALUE 'A')"))
        with pytest.raises(FunctionDefinitionError):
            model.set_trafo("F", parse_config("FOO('x')"))
        assert model.library.parameters("F") == ["A"]
        assert model.get_trafo("F").children[0].to_text() == "VALUE 'A'"

    def test_recursive_new_definition(self, make_model):
        """A new body that makes the function call itself is rejected."""
        model = make_model(descriptor=_functions("F(VALUE 'A') G(CAT('>' FUNCTION 'F'))"))
        with pytest.raises(FunctionDefinitionError):
            model.set_trafo("F", parse_config("FUNCTION 'G'"))
        assert model.library.parameters("F") == ["A"]
        assert model.library.parameters("G") == ["A"]
        assert model.get_trafo("F").children[0].to_text() == "VALUE 'A'"

    def test_trafo_in_range(self, model, document):
        """The function of the single transformed field in a range is found."""
        document.insert_text(0, "Hallo Welt")
        name = model.replace_range_with_trafo_field(parse_config("'Hallo'"), 0, 5)
        assert model.trafo_in_range(0, 10).name == name
        assert model.trafo_in_range(6, 10) is None

    def test_referenced_ids_not_in_schema(self, model, document):
        """Ids missing from the schema are listed with their transformation state."""
        document.add_anchored_text(FIELD_ANCHOR, "")
        document.add_anchored_text("WM(CMD 'insertFormValue' ID 'Anrede' TRAFO 'Gruss')", "")
        document.add_anchored_text("WM(CMD 'insertFormValue' ID 'Ort')", "")
        model.scan()
        assert model.referenced_field_ids_not_in_schema(["Nachname"]) == [
            ReferencedFieldId("Anrede", True),
            ReferencedFieldId("Ort", False),
        ]


class TestMetadata:
    """Tests for description, type, print function and mail-merge accessors."""

    def test_set_form_description(self, make_model, persistent_data):
        """Replacing the description reloads the functions."""
        model = make_model(descriptor=_functions("Alt('x')"))
        model.set_form_description(load_descriptor(_functions("Neu('y')")))
        assert "Neu" in model.library
        assert "Alt" not in model.library

        model.set_form_description(None)
        assert persistent_data.get_data(DATA_IDS.form_description) is None
        assert not model.has_form_descriptor()

    def test_has_form_window(self, make_model):
        """A Fenster section means the document has a form window."""
        model = make_model(descriptor="WM(Formular(Fenster(Eingabe(TITLE 'Eingabe'))))")
        assert model.has_form_window()

    def test_type_accessors(self, model, persistent_data):
        """set_type persists; unsaved documents without type are templates."""
        assert model.is_template()
        model.set_type("formDocument")
        assert persistent_data.get_data(DATA_IDS.document_type) == "formDocument"
        assert not model.is_template()
        assert model.is_form_document()

    def test_print_functions(self, model):
        """Print functions are added and removed by name."""
        model.add_print_function("Briefkopf")
        model.add_print_function("Anlage")
        assert model.print_function_names() == ["Anlage", "Briefkopf"]
        model.remove_print_function("Anlage")
        assert model.print_function_names() == ["Briefkopf"]

    def test_mailmerge_config(self, model, persistent_data):
        """Mail-merge settings round trip through the blob store."""
        model.set_mailmerge_config(parse_config("Seriendruck(DATENQUELLE 'kunden')").get("Seriendruck"))
        assert model.mailmerge_config().get_text("DATENQUELLE") == "kunden"
        assert persistent_data.get_data(DATA_IDS.mailmerge) == "WM(Seriendruck(DATENQUELLE 'kunden'))"

    def test_visibility(self, model, document):
        """Group and print block visibility go through the command tree."""
        document.add_anchored_text("WM(CMD 'setGroups' GROUPS('Anlage'))", "Anlage")
        document.add_anchored_text("WM(CMD 'draftOnly')", "Entwurf")
        model.scan()
        assert len(model.set_group_visibility("Anlage", False)) == 1
        assert model.invisible_groups() == frozenset({"Anlage"})
        assert len(model.set_print_block_visibility(CommandKind.DRAFT_ONLY, False)) == 1


class TestDocumentCommands:
    """Tests for adding commands and querying what the document contains."""

    def test_add_document_command(self, model, document):
        """New commands get unique anchor names and run with the next scan."""
        document.insert_text(0, "Hier Hallo")
        name = model.add_document_command(0, 4, "WM(CMD 'setJumpMark')")
        assert name == "WM(CMD 'setJumpMark')"
        assert document.anchor(name).get_text() == "Hier"
        assert model.first_jump_mark() is None

        second = model.add_document_command(5, 10, "WM(CMD 'setJumpMark')")
        assert second == "WM(CMD 'setJumpMark') 1"
        model.scan()
        assert model.first_jump_mark().anchor_name == name

    @pytest.mark.parametrize(
        "command_text",
        ["WM(CMD 'unbekannt')", "WM(CMD 'setJumpMark'", "WM(CMD 'insertFormValue')"],
    )
    def test_invalid_document_command(self, model, document, command_text):
        """Malformed commands are rejected without touching the document."""
        document.insert_text(0, "Hallo")
        with pytest.raises(CommandSyntaxError):
            model.add_document_command(0, 5, command_text)
        assert document.anchors() == []

    def test_new_command_joins_the_form(self, model, document):
        """An added setType command is executed by the next scan."""
        document.insert_text(0, "x")
        model.add_document_command(0, 1, "WM(CMD 'setType' TYPE 'formDocument')")
        model.scan()
        assert model.is_form_document()

    def test_has_mailmerge_fields(self, model, document):
        """Only database fields count as mail-merge fields."""
        document.insert_native_field(0, NativeFieldKind.INPUT_USER, variable_name=user_field_variable_name("F"))
        assert not model.has_mailmerge_fields()
        model.insert_mailmerge_field("Name", 0)
        assert model.has_mailmerge_fields()

    def test_frag_urls(self, model):
        """Fragment URLs are stored as given and handed out as copies."""
        assert model.frag_urls() == []
        model.set_frag_urls(["file:///a.odt", "file:///b.odt"])
        urls = model.frag_urls()
        urls.append("file:///c.odt")
        assert model.frag_urls() == ["file:///a.odt", "file:///b.odt"]


class TestDeform:
    """Tests for turning a form back into a plain document."""

    def test_deform(self, make_model, document, persistent_data):
        """Form anchors and blobs go away, text and other commands stay."""
        document.add_anchored_text("WM(CMD 'setType' TYPE 'formDocument')", "")
        document.add_anchored_text("WM(CMD 'setGroups' GROUPS('A'))", "Block ")
        document.add_anchored_text(FIELD_ANCHOR, "Muster")
        document.add_anchored_text("WM(CMD 'insertFrag' FRAG_ID 'Fuss')", " Fuss")
        model = make_model(
            descriptor=_functions("F('x')"),
            values="WM(Formularwerte((ID 'Nachname' VALUE 'Muster')))",
        )
        model.scan()

        assert model.deform() == 3

        assert document.text == "Block Muster Fuss"
        assert [a.name for a in document.anchors()] == ["WM(CMD 'insertFrag' FRAG_ID 'Fuss')"]
        assert persistent_data.get_data(DATA_IDS.form_description) is None
        assert persistent_data.get_data(DATA_IDS.form_values) is None
        assert model.all_field_ids() == set()
        assert not model.has_form_descriptor()


class TestConcurrency:
    """Tests for the per-document lock."""

    def test_callbacks_may_reenter_the_model(self, document, persistent_data):
        """Code called from within an operation can use the model again."""
        callbacks = CallbackRegistry()
        model = None

        def reenter(value):
            return f"{value}:{len(model.all_field_ids())}"

        callbacks.register("python:reenter", reenter)
        document.insert_native_field(
            0, NativeFieldKind.INPUT_USER, variable_name=user_field_variable_name("R")
        )
        persistent_data.set_data(
            DATA_IDS.form_description, _functions("R(EXTERN(URL 'python:reenter' PARAMS('A')))")
        )
        model = DocumentModel(document, persistent_data, callbacks=callbacks)
        model.scan()
        model.set_form_value("A", "a")
        assert document.text == "a:1"

    def test_concurrent_callers_do_not_interleave(self, model, document):
        """Updates from several threads leave a consistent value store."""
        document.add_anchored_text(FIELD_ANCHOR, "")
        model.scan()

        def worker(n):
            for i in range(20):
                model.set_form_value(f"Feld{n}", str(i))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert model.values.snapshot() == {f"Feld{n}": "19" for n in range(4)}

    def test_transformed_value_waits_for_the_lock(self, model):
        """transformed_value does not read the library while another caller holds the model."""
        model.library.load(parse_config("Funktionen(Echo(VALUE 'a'))").get("Funktionen"))
        results = []

        def evaluate():
            results.append(model.transformed_value("x", "Echo", use_known_values=False))

        with model._lock:
            thread = threading.Thread(target=evaluate)
            thread.start()
            thread.join(timeout=0.2)
            assert thread.is_alive()
            assert results == []
        thread.join()
        assert results == ["x"]

    def test_close(self, model):
        """Closing drops all field handles."""
        model.close()
        assert model.closed
        assert model.all_field_ids() == set()