"""
Form fields: handles, registry, value store and preset reconciliation.
"""

from formtree.fields.collect import collect_command_fields, collect_native_fields
from formtree.fields.handles import (
    CommandFieldHandle,
    FieldHandle,
    FieldKind,
    NativeFieldHandle,
)
from formtree.fields.preset import compute_preset_values
from formtree.fields.registry import FieldRegistry
from formtree.fields.values import ValueStore

__all__ = [
    "CommandFieldHandle",
    "FieldHandle",
    "FieldKind",
    "FieldRegistry",
    "NativeFieldHandle",
    "ValueStore",
    "collect_command_fields",
    "collect_native_fields",
    "compute_preset_values",
]
