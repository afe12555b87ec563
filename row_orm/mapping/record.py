"""Row-to-record mapper."""

from __future__ import annotations

from typing import Any, Generic, TypeVar

T = TypeVar("T")


class RecordMapper(Generic[T]):
    """Hydrate Record instances from plain result rows.

    Args:
        record_type: The Record subclass to build.
        session: Session the records are bound to (for lazy loading).
    """

    def __init__(self, record_type: type[T], session: Any = None) -> None:
        self._record_type = record_type
        self._session = session

    def map_one(self, row: dict[str, Any]) -> T:
        """Map a single row to a persisted record."""
        return self._record_type.hydrate(row, self._session)  # type: ignore[attr-defined, no-any-return]

    def map_many(self, rows: list[dict[str, Any]]) -> list[T]:
        """Map all rows via map_one."""
        return [self.map_one(row) for row in rows]

    def map_prefixed(self, row: dict[str, Any], prefix: str, columns: tuple[str, ...]) -> T:
        """Map the ``prefix``-ed columns of a joined row."""
        return self.map_one({col: row.get(prefix + col) for col in columns})
