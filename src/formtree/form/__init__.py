"""
Persisted form metadata of a document.
"""

from formtree.form.descriptor import (
    FormDescriptor,
    has_content,
    load_descriptor,
    store_descriptor,
)
from formtree.form.metadata import DocumentType, MailMergeConfig, OverrideFrags
from formtree.form.print_functions import PrintFunctions

__all__ = [
    "DocumentType",
    "FormDescriptor",
    "MailMergeConfig",
    "OverrideFrags",
    "PrintFunctions",
    "has_content",
    "load_descriptor",
    "store_descriptor",
]
