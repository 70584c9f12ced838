"""
Settings for a formtree document model.

The data ids name the blobs the persistence collaborator stores alongside a
document; they are part of the document format and only change for
documents written by other tools.
"""

from pydantic import BaseModel, ConfigDict


class DataIds(BaseModel):
    """Names of the persisted data blobs attached to a document."""

    model_config = ConfigDict(frozen=True)

    form_description: str = "WollMuxFormularbeschreibung"
    form_values: str = "WollMuxFormularwerte"
    print_function: str = "PrintFunction"
    document_type: str = "SetType"
    mailmerge: str = "WollMuxSeriendruck"


class FormTreeSettings(BaseModel):
    """Per-model configuration.

    Params:
        autofunction_prefix: Name prefix of generated transformation functions
        fishy_marker: Preset value reported when field contents are ambiguous
        trafo_error_template: Text shown instead of a value whose function is undefined
        preview_mode: Show values in fields (True) or `<id>` placeholders (False)
        data_ids: Blob names used with the persistence collaborator
    """

    model_config = ConfigDict(frozen=True)

    autofunction_prefix: str = "AUTOFUNCTION_"
    fishy_marker: str = "!!!CHECK!!!"
    trafo_error_template: str = "<ERROR: TRAFO '{name}' not defined>"
    preview_mode: bool = True
    data_ids: DataIds = DataIds()

    def trafo_error(self, name: str) -> str:
        return self.trafo_error_template.format(name=name)
