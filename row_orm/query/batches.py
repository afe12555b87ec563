"""Cursor-based batch enumeration.

Pages are fetched with ``cursor > last`` (``<`` when descending),
``ORDER BY cursor`` and ``LIMIT size``; a short page ends the walk. No
cursor or transaction is held between pages.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from row_orm.core.enums import SortDirection
from row_orm.core.exceptions import InvalidQueryError

if TYPE_CHECKING:
    from row_orm.query.builder import Query

logger = logging.getLogger(__name__)


class BatchEnumerator:
    """Restartable sequence of record pages over a base Query.

    Every ``iter()`` starts a new walk from the beginning; the generators
    returned by ``each_record`` and ``each_query`` are single-pass.

    The base query's predicates are kept, its ordering is replaced by the
    cursor ordering and its limit caps the total number of records. An
    offset cannot be combined with cursor paging.
    """

    def __init__(
        self,
        query: Query[Any],
        batch_size: int,
        *,
        start: Any = None,
        finish: Any = None,
        cursor: str | None = None,
        order: str | SortDirection = "asc",
    ) -> None:
        if not isinstance(batch_size, int) or batch_size < 1:
            raise InvalidQueryError(f"batch size must be >= 1, got {batch_size!r}")
        spec = query.spec
        if spec.offset is not None:
            raise InvalidQueryError("Batches cannot be combined with offset()")
        try:
            self.direction = SortDirection.parse(order)
        except ValueError:
            raise InvalidQueryError(f"Invalid batch order {order!r}; use 'asc' or 'desc'") from None

        record_type = query.record_type
        self.cursor = cursor or record_type.__schema__.primary_key  # type: ignore[attr-defined]
        if self.cursor not in record_type.__schema__.columns:  # type: ignore[attr-defined]
            raise InvalidQueryError(f"Unknown cursor column '{self.cursor}'")
        if spec.select and not any(
            c.rsplit(".", 1)[-1] == self.cursor for c in spec.select
        ):
            raise InvalidQueryError(f"Batch cursor '{self.cursor}' must be selected")

        self.batch_size = batch_size
        self.start = start
        self.finish = finish
        self._limit = spec.limit
        if spec.order:
            logger.warning(
                "Scoped order is ignored; batches on %s are ordered by %s %s",
                record_type.__name__,
                self.cursor,
                self.direction.value,
            )
        self._base = self._bounded(query.reorder(**{self.cursor: self.direction.value}).limit(None))

    def _bounded(self, query: Query[Any]) -> Query[Any]:
        ascending = self.direction is SortDirection.ASC
        if self.start is not None:
            query = (query.where_gte if ascending else query.where_lte)(self.cursor, self.start)
        if self.finish is not None:
            query = (query.where_lte if ascending else query.where_gte)(self.cursor, self.finish)
        return query

    def _after(self, query: Query[Any], last: Any) -> Query[Any]:
        if last is None:
            return query
        if self.direction is SortDirection.ASC:
            return query.where_gt(self.cursor, last)
        return query.where_lt(self.cursor, last)

    def _resume_from(self, value: Any) -> Any:
        if value is None:
            raise InvalidQueryError(
                f"Batch cursor '{self.cursor}' reached a NULL value; page on a non-null column"
            )
        return value

    def _page_sizes(self) -> Iterator[int]:
        remaining = self._limit
        while remaining is None or remaining > 0:
            size = self.batch_size if remaining is None else min(self.batch_size, remaining)
            yield size
            if remaining is not None:
                remaining -= size

    def __iter__(self) -> Iterator[list[Any]]:
        last = None
        for size in self._page_sizes():
            records = self._after(self._base, last).limit(size).to_list()
            if not records:
                return
            yield records
            if len(records) < size:
                return
            last = self._resume_from(records[-1].read_attribute(self.cursor))

    def each_record(self) -> Iterator[Any]:
        for batch in self:
            yield from batch

    def each_query(self, load: bool = False) -> Iterator[Query[Any]]:
        """A Query per page restricted to that page's cursor values.

        With ``load=True`` the page's records are fetched once and the
        yielded Query returns them without another round trip.
        """
        last = None
        for size in self._page_sizes():
            page = self._after(self._base, last).limit(size)
            if load:
                records = page.to_list()
                keys = [r.read_attribute(self.cursor) for r in records]
            else:
                records = None
                keys = page.pluck(self.cursor)
            if not keys:
                return
            restricted = self._base.where_in(self.cursor, keys)
            yield restricted if records is None else restricted._with_records(records)
            if len(keys) < size:
                return
            last = self._resume_from(keys[-1])
