"""
formtree - form fields and commands embedded in rich-text documents

formtree keeps the logical field ids of a form document in sync with their
physical occurrences: anchors, native fields and fields computed by
transformation functions.
"""

from importlib.metadata import version

from formtree.core import ConfigNode, FormTreeSettings, parse_config, serialize
from formtree.events import DiagnosticChannel, EventProcessor, await_completion
from formtree.model import DocumentModel, ReferencedFieldId
from formtree.substitution import FieldSubstitution

__version__ = version("formtree")

__all__ = [
    "__version__",
    "ConfigNode",
    "DiagnosticChannel",
    "DocumentModel",
    "EventProcessor",
    "FieldSubstitution",
    "FormTreeSettings",
    "ReferencedFieldId",
    "await_completion",
    "parse_config",
    "serialize",
]
