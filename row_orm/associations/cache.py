"""Per-record association cache."""

from __future__ import annotations

from enum import Enum
from typing import Any


class CacheState(Enum):
    UNRESOLVED = "unresolved"
    SINGLE = "single"
    COLLECTION = "collection"


class AssociationCache:
    """Resolved association values of one record instance.

    A name is either unresolved (absent), resolved to a single record or
    None, or resolved to an ordered list. Resolved-to-nothing is a real
    state and never falls back to unresolved.
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[CacheState, Any]] = {}

    def state(self, name: str) -> CacheState:
        entry = self._entries.get(name)
        return CacheState.UNRESOLVED if entry is None else entry[0]

    def is_resolved(self, name: str) -> bool:
        return name in self._entries

    def get(self, name: str) -> Any:
        """Cached value; raises KeyError when *name* is unresolved."""
        return self._entries[name][1]

    def set_single(self, name: str, record: Any) -> None:
        self._entries[name] = (CacheState.SINGLE, record)

    def set_collection(self, name: str, records: list[Any]) -> None:
        self._entries[name] = (CacheState.COLLECTION, list(records))

    def append(self, name: str, record: Any) -> None:
        """Add *record* to a resolved collection; no-op when unresolved."""
        entry = self._entries.get(name)
        if entry is not None and entry[0] is CacheState.COLLECTION:
            entry[1].append(record)

    def reset(self, name: str | None = None) -> None:
        if name is None:
            self._entries.clear()
        else:
            self._entries.pop(name, None)

    def names(self) -> list[str]:
        return list(self._entries)

    def copy_from(self, other: AssociationCache, names: list[str]) -> None:
        for name in names:
            if name in other._entries:
                state, value = other._entries[name]
                self._entries[name] = (state, list(value) if state is CacheState.COLLECTION else value)
