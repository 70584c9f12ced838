"""
Reconciliation of persisted form values with the current document content.
"""

from typing import Callable

from formtree.fields.handles import FieldHandle
from formtree.fields.registry import FieldRegistry
from formtree.fields.values import ValueStore


def compute_preset_values(
    values: ValueStore,
    registry: FieldRegistry,
    transform: Callable[[str, FieldHandle], str],
    fishy_marker: str,
) -> dict[str, str]:
    """
    Determine the preset value of every stored field id.

    For each id with handles:

    1. if every handle still shows the (transformed) stored value, the stored
       value is kept;
    2. else if no handle is transformed and all handles that differ from the
       stored value show one common value, that value is adopted;
    3. otherwise the value is ambiguous and `fishy_marker` is returned.

    Ids without handles keep their stored value.

    Params:
        values: The value store
        registry: Registry with the current handles
        transform: Computes what a handle should show for a stored value
        fishy_marker: Result for ambiguous ids

    Returns:
        Mapping from field id to preset value
    """
    presets = {}
    for field_id in values.ids():
        stored = values.get(field_id)
        handles = registry.fields_for(field_id)
        if not handles:
            presets[field_id] = stored
            continue

        all_unchanged = True
        all_untransformed = True
        differing: set[str] = set()
        for handle in handles:
            shown = handle.get_value()
            if shown != transform(stored, handle):
                all_unchanged = False
            if handle.is_transformed:
                all_untransformed = False
            elif shown != stored:
                differing.add(shown)

        if all_unchanged:
            presets[field_id] = stored
        elif all_untransformed and len(differing) == 1:
            presets[field_id] = differing.pop()
        else:
            presets[field_id] = fishy_marker
    return presets
