"""
Registry of the field handles of one document.
"""

import logging
from types import MappingProxyType
from typing import Iterable, Mapping

from formtree.fields.handles import FieldHandle, FieldKind

logger = logging.getLogger(__name__)


class FieldRegistry:
    """Maps logical field ids to their physical occurrences.

    Handles are partitioned into command fields, native fields and static
    fields. A handle belongs to exactly one of these collections; a native
    handle whose function reads several ids is listed once under each id.
    """

    def __init__(self):
        self._command: dict[str, list[FieldHandle]] = {}
        self._native: dict[str, list[FieldHandle]] = {}
        self._static: list[FieldHandle] = []
        self._kinds: dict[int, FieldKind] = {}

    def register(self, field_id: str | None, handle: FieldHandle, kind: FieldKind) -> None:
        """
        Register a handle.

        Params:
            field_id: Logical id; ignored for static fields
            handle: The handle to register
            kind: Collection the handle belongs to

        Raises:
            ValueError: If the handle is already registered in another collection,
                or a non-static handle has no id
        """
        known_kind = self._kinds.get(id(handle))
        if known_kind is not None and known_kind is not kind:
            raise ValueError(f"{handle!r} is already registered as {known_kind.value} field")

        if kind is FieldKind.STATIC:
            if known_kind is None:
                self._static.append(handle)
        else:
            if not field_id:
                raise ValueError(f"{kind.value} fields need an id")
            target = self._command if kind is FieldKind.COMMAND else self._native
            handles = target.setdefault(field_id, [])
            if not any(h is handle for h in handles):
                handles.append(handle)
        self._kinds[id(handle)] = kind
        logger.debug(f"Registered {handle!r} as {kind.value} field {field_id!r}")

    def unregister_all(self) -> None:
        self._command.clear()
        self._native.clear()
        self._static.clear()
        self._kinds.clear()

    def kind_of(self, handle: FieldHandle) -> FieldKind | None:
        return self._kinds.get(id(handle))

    def fields_for(self, field_id: str, include_static: bool = False) -> list[FieldHandle]:
        """Handles of `field_id`: command fields first, then native fields, then static fields if requested."""
        handles = list(self._command.get(field_id, ())) + list(self._native.get(field_id, ()))
        if include_static:
            handles += self._static
        return handles

    def command_fields_for(self, field_id: str) -> list[FieldHandle]:
        return list(self._command.get(field_id, ()))

    def native_fields_for(self, field_id: str) -> list[FieldHandle]:
        return list(self._native.get(field_id, ()))

    def static_fields(self) -> list[FieldHandle]:
        return list(self._static)

    def all_ids(self) -> set[str]:
        return set(self._command) | set(self._native)

    def all_handles(self) -> list[FieldHandle]:
        """Every registered handle once, in registration order per collection."""
        seen: set[int] = set()
        result = []
        for handle in self._iter_all():
            if id(handle) not in seen:
                seen.add(id(handle))
                result.append(handle)
        return result

    def _iter_all(self) -> Iterable[FieldHandle]:
        for handles in self._command.values():
            yield from handles
        for handles in self._native.values():
            yield from handles
        yield from self._static

    def used_trafos(self) -> set[str]:
        return {handle.trafo for handle in self._iter_all() if handle.trafo is not None}

    def command_snapshot(self) -> Mapping[str, tuple[FieldHandle, ...]]:
        return MappingProxyType({key: tuple(value) for key, value in self._command.items()})

    def native_snapshot(self) -> Mapping[str, tuple[FieldHandle, ...]]:
        return MappingProxyType({key: tuple(value) for key, value in self._native.items()})

    @staticmethod
    def prefer_untransformed(handles: Iterable[FieldHandle]) -> FieldHandle | None:
        """First untransformed handle, else the first handle, else None."""
        first = None
        for handle in handles:
            if first is None:
                first = handle
            if not handle.is_transformed:
                return handle
        return first

    def __contains__(self, field_id: str) -> bool:
        return field_id in self._command or field_id in self._native
