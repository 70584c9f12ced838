"""
Document collaborator contracts and the in-memory backend.
"""

from formtree.document.interfaces import (
    Anchor,
    NativeField,
    NativeFieldKind,
    PersistentData,
    TextDocument,
)
from formtree.document.memory import (
    MemoryAnchor,
    MemoryDocument,
    MemoryNativeField,
    MemoryPersistentData,
)

__all__ = [
    "Anchor",
    "NativeField",
    "NativeFieldKind",
    "PersistentData",
    "TextDocument",
    "MemoryAnchor",
    "MemoryDocument",
    "MemoryNativeField",
    "MemoryPersistentData",
]
