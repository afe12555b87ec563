"""Query specification value types.

A QuerySpec is the frozen state behind a Query. Every chain operation
produces a new spec with ``dataclasses.replace``; nothing here mutates.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any

from row_orm.core.enums import LoadStrategy, SortDirection
from row_orm.core.exceptions import InvalidQueryError
from row_orm.core.params import check_fragment

COLUMN_TOKEN = "{column}"

# "table.column" references inside raw SQL fragments
_TABLE_REFERENCE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_]*)\.(?:[A-Za-z_][A-Za-z0-9_]*|\*)")
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?$")


def is_identifier(expression: str) -> bool:
    """True for ``col`` or ``table.col``."""
    return bool(_IDENTIFIER.match(expression))


def referenced_tables(sql: str) -> set[str]:
    return {m.group(1) for m in _TABLE_REFERENCE.finditer(sql)}


@dataclass(frozen=True)
class Predicate:
    """One WHERE/HAVING fragment with its positional parameters.

    Structured predicates carry ``column`` and ``table`` and use the
    ``{column}`` token in ``sql``; the compiler substitutes a bare or
    table-qualified name. Raw predicates have ``column=None``.
    """

    sql: str
    params: tuple[Any, ...] = ()
    column: str | None = None
    table: str | None = None

    def __post_init__(self) -> None:
        check_fragment(self.sql.replace(COLUMN_TOKEN, "c"), self.params)

    @property
    def raw(self) -> bool:
        return self.column is None

    def tables(self) -> set[str]:
        if self.table is not None:
            return {self.table}
        return referenced_tables(self.sql)


@dataclass(frozen=True)
class OrderKey:
    sql: str
    direction: SortDirection | None = None
    column: str | None = None
    table: str | None = None

    def reversed(self) -> OrderKey:
        if self.direction is not None:
            flipped = SortDirection.ASC if self.direction is SortDirection.DESC else SortDirection.DESC
            return replace(self, direction=flipped)
        match = re.search(r"\s+(ASC|DESC)\s*$", self.sql, re.IGNORECASE)
        if match is None:
            return replace(self, sql=f"{self.sql} DESC")
        flipped_word = "ASC" if match.group(1).upper() == "DESC" else "DESC"
        return replace(self, sql=self.sql[: match.start()] + f" {flipped_word}")

    def tables(self) -> set[str]:
        if self.table is not None:
            return {self.table}
        return referenced_tables(self.sql)


@dataclass(frozen=True)
class Join:
    """A rendered join fragment.

    ``association`` names the association it was built from (None for raw
    SQL), ``alias`` the name the joined target is reachable under.
    """

    sql: str
    alias: str | None = None
    association: str | None = None
    tables: frozenset[str] = frozenset()


@dataclass(frozen=True)
class JoinStep:
    """One table joined while walking an association path."""

    table: str
    alias: str
    on: str

    def render(self, kind: str) -> str:
        target = self.table if self.alias == self.table else f"{self.table} {self.alias}"
        return f"{kind} JOIN {target} ON {self.on}"


class AliasTracker:
    """Hands out table aliases that are unique within one statement."""

    def __init__(self, used: set[str] | None = None) -> None:
        self._used: set[str] = set(used or ())

    def alias_for(self, table: str) -> str:
        if table not in self._used:
            self._used.add(table)
            return table
        n = 2
        while f"{table}_{n}" in self._used:
            n += 1
        alias = f"{table}_{n}"
        self._used.add(alias)
        return alias


@dataclass(frozen=True)
class EagerSpec:
    association: str
    strategy: LoadStrategy


@dataclass(frozen=True)
class QuerySpec:
    """Accumulated, immutable state of a Query."""

    record_type: type
    predicates: tuple[Predicate, ...] = ()
    select: tuple[str, ...] = ()
    joins: tuple[Join, ...] = ()
    order: tuple[OrderKey, ...] = ()
    limit: int | None = None
    offset: int | None = None
    group: tuple[str, ...] = ()
    having: tuple[Predicate, ...] = ()
    distinct: bool = False
    lock: str | bool | None = None
    eager: tuple[EagerSpec, ...] = ()
    references: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        for name in ("limit", "offset"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or value < 0):
                raise InvalidQueryError(f"{name} must be a non-negative integer, got {value!r}")

    @property
    def table(self) -> str:
        return self.record_type.__table__  # type: ignore[attr-defined, no-any-return]

    @property
    def params(self) -> tuple[Any, ...]:
        return tuple(p for pred in self.predicates for p in pred.params)

    def join_aliases(self) -> set[str]:
        return {j.alias for j in self.joins if j.alias is not None}

    def filtered_tables(self) -> set[str]:
        """Tables mentioned by predicates and sort keys."""
        tables: set[str] = set()
        for pred in self.predicates:
            tables |= pred.tables()
        for key in self.order:
            tables |= key.tables()
        return tables

    def merge(self, other: QuerySpec) -> QuerySpec:
        """Apply *other*'s intent over this spec.

        Lists that ``other`` populates replace ours wholesale; scalars it
        sets win; joins are appended without duplicates; distinct is or-ed.
        """
        if other.record_type is not self.record_type:
            raise InvalidQueryError(
                f"Cannot merge a {other.record_type.__name__} query into a "
                f"{self.record_type.__name__} query"
            )
        joins = self.joins + tuple(j for j in other.joins if j not in self.joins)
        return replace(
            self,
            predicates=other.predicates or self.predicates,
            select=other.select or self.select,
            joins=joins,
            order=other.order or self.order,
            limit=other.limit if other.limit is not None else self.limit,
            offset=other.offset if other.offset is not None else self.offset,
            group=other.group or self.group,
            having=other.having or self.having,
            distinct=self.distinct or other.distinct,
            lock=other.lock if other.lock is not None else self.lock,
            eager=other.eager or self.eager,
            references=self.references | other.references,
        )
