"""Chainable query builder.

Every chain method returns a new Query over a new QuerySpec; the receiver
is never modified, so a base query can be shared and extended freely.
Terminal methods (``to_list``, ``first``, ``count``, ``pluck``...) need a
Session and run through its Engine.

Example::

    books = (
        session.query(Book)
        .where(out_of_print=False)
        .where("pages > ?", 100)
        .includes("author")
        .order(title="asc")
        .limit(10)
        .to_list()
    )
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from row_orm.adapters.dialect import Dialect
from row_orm.core.enums import LoadStrategy, SortDirection
from row_orm.core.exceptions import InvalidQueryError, NotFoundError
from row_orm.core.params import check_fragment
from row_orm.query.batches import BatchEnumerator
from row_orm.query.compiler import CompiledQuery, QueryCompiler
from row_orm.query.eager import EagerLoadResolver, association_joins, find_association
from row_orm.query.spec import (
    AliasTracker,
    EagerSpec,
    Join,
    OrderKey,
    Predicate,
    QuerySpec,
    is_identifier,
    referenced_tables,
)

if TYPE_CHECKING:
    from row_orm.session import Session

R = TypeVar("R")

_RAW_JOIN_TARGET = re.compile(
    r"\bJOIN\s+([A-Za-z_]\w*)(?:\s+(?:AS\s+)?(?!ON\b)([A-Za-z_]\w*))?", re.IGNORECASE
)
_GENERIC_DIALECT = Dialect()


def _parse_direction(value: Any) -> SortDirection:
    try:
        return SortDirection.parse(value)
    except (ValueError, AttributeError):
        raise InvalidQueryError(f"Invalid sort direction {value!r}; use 'asc' or 'desc'") from None


class Query(Generic[R]):
    """Immutable, chainable query over one record type."""

    def __init__(
        self,
        record_type: type[R],
        session: Session | None = None,
        spec: QuerySpec | None = None,
        *,
        preloaded: list[R] | None = None,
    ) -> None:
        self._record_type = record_type
        self._session = session
        self._spec = spec if spec is not None else QuerySpec(record_type)
        self._preloaded = preloaded

    def _clone(self, **changes: Any) -> Query[R]:
        """Return a new Query with *changes* applied to the spec."""
        return self.__class__(self._record_type, self._session, replace(self._spec, **changes))

    @property
    def spec(self) -> QuerySpec:
        return self._spec

    @property
    def record_type(self) -> type[R]:
        return self._record_type

    @property
    def session(self) -> Session | None:
        return self._session

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        scope_fn = self._record_type.__scopes__.get(name)  # type: ignore[attr-defined]
        if scope_fn is None:
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

        def scoped(*args: Any, **kwargs: Any) -> Query[R]:
            result = scope_fn(self, *args, **kwargs)
            if not isinstance(result, Query):
                raise InvalidQueryError(f"Scope '{name}' must return a Query, got {type(result).__name__}")
            return result

        return scoped

    def __repr__(self) -> str:
        return f"<Query {self._record_type.__name__}: {self.to_sql()}>"

    # --- conditions ---

    def _schema_columns(self) -> dict[str, Any]:
        return self._record_type.__schema__.columns  # type: ignore[attr-defined, no-any-return]

    def _column_ref(self, column: str) -> tuple[str, str]:
        """Split ``col`` / ``table.col`` into (column, table)."""
        if "." in column:
            table, name = column.split(".", 1)
            return name, table
        if column not in self._schema_columns():
            raise InvalidQueryError(
                f"Unknown column '{column}' for {self._record_type.__name__}"
            )
        return column, self._spec.table

    def _table_for(self, key: str) -> str:
        association = self._record_type.__associations__.get(key)  # type: ignore[attr-defined]
        if association is None:
            return key
        for join in self._spec.joins:
            if join.association == key and join.alias:
                return join.alias
        return association.target_table  # type: ignore[no-any-return]

    @staticmethod
    def _condition(column: str, table: str, value: Any, negate: bool = False) -> Predicate:
        if value is None:
            op = "IS NOT NULL" if negate else "IS NULL"
            return Predicate(f"{{column}} {op}", (), column, table)
        if isinstance(value, range) and value.step == 1:
            if len(value) == 0:
                return Predicate("1=1" if negate else "1=0", (), column, table)
            op = "NOT BETWEEN" if negate else "BETWEEN"
            return Predicate(f"{{column}} {op} ? AND ?", (value.start, value.stop - 1), column, table)
        if isinstance(value, Query):
            compiled = value.compile()
            op = "NOT IN" if negate else "IN"
            return Predicate(f"{{column}} {op} ({compiled.sql})", compiled.params, column, table)
        if isinstance(value, (list, tuple, set, frozenset, range)):
            values = tuple(getattr(v, "pk", v) if hasattr(v, "__schema__") else v for v in value)
            if not values:
                return Predicate("1=1" if negate else "1=0", (), column, table)
            marks = ", ".join("?" for _ in values)
            op = "NOT IN" if negate else "IN"
            return Predicate(f"{{column}} {op} ({marks})", values, column, table)
        op = "!=" if negate else "="
        return Predicate(f"{{column}} {op} ?", (value,), column, table)

    def _hash_conditions(self, conditions: Mapping[str, Any], negate: bool = False) -> list[Predicate]:
        predicates = []
        associations = self._record_type.__associations__  # type: ignore[attr-defined]
        for key, value in conditions.items():
            if isinstance(value, Mapping):
                table = self._table_for(key)
                for column, nested in value.items():
                    predicates.append(self._condition(column, table, nested, negate))
                continue
            association = associations.get(key)
            if association is not None and association.macro == "belongs_to":
                # where(author=record) filters on the foreign key
                if association.polymorphic and value is not None:
                    table = self._spec.table
                    pair = (type(value).__name__, getattr(value, "pk", value))
                    if negate:
                        predicates.append(
                            Predicate(
                                f"NOT ({table}.{association.foreign_type} = ? "
                                f"AND {table}.{association.foreign_key} = ?)",
                                pair,
                            )
                        )
                    else:
                        predicates.append(self._condition(association.foreign_type, table, pair[0]))
                        predicates.append(self._condition(association.foreign_key, table, pair[1]))
                    continue
                if hasattr(value, "__schema__"):
                    value = value.pk
                predicates.append(
                    self._condition(association.foreign_key, self._spec.table, value, negate)
                )
                continue
            column, table = self._column_ref(key)
            declared = self._schema_columns().get(column) if table == self._spec.table else None
            if declared is not None:
                value = declared.to_stored(value)
            predicates.append(self._condition(column, table, value, negate))
        return predicates

    def _add_predicates(self, predicates: list[Predicate]) -> Query[R]:
        return self._clone(predicates=self._spec.predicates + tuple(predicates))

    def where(self, *args: Any, **conditions: Any) -> Query[R]:
        """Add conditions, AND-ed with the existing ones.

        Accepts keyword equality (``None`` -> IS NULL, sequences -> IN,
        ``range`` -> BETWEEN), a mapping whose keys may be ``table.col`` or
        an association/table name mapped to nested conditions, or a raw
        SQL fragment with ``?`` placeholders followed by its parameters.
        """
        predicates: list[Predicate] = []
        if args:
            first, *rest = args
            if isinstance(first, Mapping):
                if rest:
                    raise InvalidQueryError("where(mapping) takes no positional parameters")
                predicates.extend(self._hash_conditions(first))
            elif isinstance(first, str):
                predicates.append(Predicate(first, tuple(rest)))
            else:
                raise InvalidQueryError(f"Unsupported where() argument: {first!r}")
        predicates.extend(self._hash_conditions(conditions))
        return self._add_predicates(predicates)

    def where_not(self, *args: Any, **conditions: Any) -> Query[R]:
        """Negated hash conditions (``!=``, ``NOT IN``, ``IS NOT NULL``)."""
        mapping: dict[str, Any] = {}
        for arg in args:
            if not isinstance(arg, Mapping):
                raise InvalidQueryError("where_not() takes mappings or keyword conditions")
            mapping.update(arg)
        mapping.update(conditions)
        return self._add_predicates(self._hash_conditions(mapping, negate=True))

    def _where_op(self, column: str, sql: str, params: tuple[Any, ...]) -> Query[R]:
        name, table = self._column_ref(column)
        return self._add_predicates([Predicate(sql, params, name, table)])

    def where_in(self, column: str, values: Any) -> Query[R]:
        name, table = self._column_ref(column)
        return self._add_predicates([self._condition(name, table, list(values))])

    def where_not_in(self, column: str, values: Any) -> Query[R]:
        name, table = self._column_ref(column)
        return self._add_predicates([self._condition(name, table, list(values), negate=True)])

    def where_like(self, column: str, pattern: str) -> Query[R]:
        return self._where_op(column, "{column} LIKE ?", (pattern,))

    def where_between(self, column: str, low: Any, high: Any) -> Query[R]:
        return self._where_op(column, "{column} BETWEEN ? AND ?", (low, high))

    def where_null(self, column: str) -> Query[R]:
        return self._where_op(column, "{column} IS NULL", ())

    def where_not_null(self, column: str) -> Query[R]:
        return self._where_op(column, "{column} IS NOT NULL", ())

    def where_gt(self, column: str, value: Any) -> Query[R]:
        return self._where_op(column, "{column} > ?", (value,))

    def where_gte(self, column: str, value: Any) -> Query[R]:
        return self._where_op(column, "{column} >= ?", (value,))

    def where_lt(self, column: str, value: Any) -> Query[R]:
        return self._where_op(column, "{column} < ?", (value,))

    def where_lte(self, column: str, value: Any) -> Query[R]:
        return self._where_op(column, "{column} <= ?", (value,))

    # --- joins ---

    def _join_associations(self, names: tuple[str, ...], kind: str) -> Query[R]:
        joins = list(self._spec.joins)
        used = {self._spec.table}
        for join in joins:
            used |= set(join.tables)
        tracker = AliasTracker(used)
        for name in names:
            if any(j.association == name for j in joins):
                continue
            association = find_association(self._record_type, name)
            joins.extend(association_joins(association, self._spec.table, tracker, kind))
        return self._clone(joins=tuple(joins))

    def joins(self, *items: str) -> Query[R]:
        """INNER JOIN associations by name, or append raw join fragments."""
        query: Query[R] = self
        for item in items:
            if item in self._record_type.__associations__:  # type: ignore[attr-defined]
                query = query._join_associations((item,), "INNER")
                continue
            sql = item.strip()
            match = _RAW_JOIN_TARGET.search(sql)
            tables = referenced_tables(sql)
            alias = None
            if match is not None:
                alias = match.group(2) or match.group(1)
                tables |= {match.group(1), alias}
            join = Join(sql, alias=alias, tables=frozenset(tables))
            if join not in query._spec.joins:
                query = query._clone(joins=query._spec.joins + (join,))
        return query

    def left_joins(self, *names: str) -> Query[R]:
        """LEFT OUTER JOIN associations by name."""
        return self._join_associations(names, "LEFT OUTER")

    # --- ordering, paging, projection ---

    def _order_key(self, text: str, direction: Any = None) -> OrderKey:
        parts = text.strip().split()
        if len(parts) == 2 and is_identifier(parts[0]) and parts[1].isalpha():
            if direction is not None:
                raise InvalidQueryError(f"Direction given twice for order key {text!r}")
            expr, direction = parts
        elif len(parts) == 1:
            expr = parts[0]
        else:
            if direction is not None:
                return OrderKey(f"{text.strip()} {_parse_direction(direction).value}")
            return OrderKey(text.strip())

        resolved = _parse_direction(direction if direction is not None else "ASC")
        if not is_identifier(expr):
            return OrderKey(f"{expr} {resolved.value}")
        if "." in expr:
            table, column = expr.split(".", 1)
            return OrderKey(expr, resolved, column, table)
        if expr not in self._schema_columns():
            # select alias or expression name
            return OrderKey(f"{expr} {resolved.value}")
        return OrderKey(expr, resolved, expr, self._spec.table)

    def _order_keys(self, keys: tuple[Any, ...], directions: dict[str, Any]) -> tuple[OrderKey, ...]:
        result = []
        for key in keys:
            if isinstance(key, Mapping):
                result.extend(self._order_key(k, d) for k, d in key.items())
            else:
                result.append(self._order_key(key))
        result.extend(self._order_key(k, d) for k, d in directions.items())
        return tuple(result)

    def order(self, *keys: Any, **directions: Any) -> Query[R]:
        """Append sort keys: ``order("title")``, ``order("title DESC")``, ``order(title="desc")``."""
        return self._clone(order=self._spec.order + self._order_keys(keys, directions))

    def reorder(self, *keys: Any, **directions: Any) -> Query[R]:
        """Replace the sort keys (no arguments clears them)."""
        return self._clone(order=self._order_keys(keys, directions))

    def _default_order(self) -> tuple[OrderKey, ...]:
        pk = self._record_type.__schema__.primary_key  # type: ignore[attr-defined]
        return (OrderKey(pk, SortDirection.ASC, pk, self._spec.table),)

    def reverse_order(self) -> Query[R]:
        keys = self._spec.order or self._default_order()
        return self._clone(order=tuple(key.reversed() for key in keys))

    def limit(self, value: int | None) -> Query[R]:
        return self._clone(limit=value)

    def offset(self, value: int | None) -> Query[R]:
        return self._clone(offset=value)

    def page(self, number: int, per_page: int = 25) -> Query[R]:
        """1-based page of *per_page* rows."""
        if number < 1 or per_page < 1:
            raise InvalidQueryError("page() needs number >= 1 and per_page >= 1")
        return self._clone(limit=per_page, offset=(number - 1) * per_page)

    def select(self, *columns: str) -> Query[R]:
        return self._clone(select=tuple(columns))

    def group(self, *columns: str) -> Query[R]:
        return self._clone(group=tuple(columns))

    def having(self, sql: str, *params: Any) -> Query[R]:
        return self._clone(having=self._spec.having + (Predicate(sql, tuple(params)),))

    def distinct(self, value: bool = True) -> Query[R]:
        return self._clone(distinct=value)

    def lock(self, mode: str | bool = True) -> Query[R]:
        """Row-lock the selected rows (``FOR UPDATE`` or a verbatim mode string)."""
        return self._clone(lock=None if mode is False else mode)

    # --- eager loading ---

    def _eager(self, names: tuple[str, ...], strategy: LoadStrategy) -> Query[R]:
        specs = list(self._spec.eager)
        for name in names:
            find_association(self._record_type, name)
            specs = [s for s in specs if s.association != name]
            specs.append(EagerSpec(name, strategy))
        return self._clone(eager=tuple(specs))

    def includes(self, *names: str) -> Query[R]:
        """Preload, or join when the query filters/orders on the association."""
        return self._eager(names, LoadStrategy.INCLUDES)

    def preload(self, *names: str) -> Query[R]:
        return self._eager(names, LoadStrategy.PRELOAD)

    def eager_load(self, *names: str) -> Query[R]:
        return self._eager(names, LoadStrategy.EAGER_LOAD)

    def references(self, *tables: str) -> Query[R]:
        """Mark tables (or association names) as referenced for ``includes``."""
        return self._clone(references=self._spec.references | frozenset(tables))

    # --- composition ---

    def merge(self, other: Query[Any] | QuerySpec) -> Query[R]:
        other_spec = other.spec if isinstance(other, Query) else other
        return self.__class__(self._record_type, self._session, self._spec.merge(other_spec))

    def unscoped(self) -> Query[R]:
        """A fresh query on the same session without the default scope."""
        return self.__class__(self._record_type, self._session)

    # --- compilation ---

    def _dialect(self) -> Dialect:
        return self._session.dialect if self._session is not None else _GENERIC_DIALECT

    def _compiler(self, spec: QuerySpec | None = None) -> QueryCompiler:
        return QueryCompiler(spec or self._spec, self._dialect())

    def _value_compiler(self) -> QueryCompiler:
        """Compiler for terminals that return values, with includes joins applied."""
        if not self._spec.eager:
            return self._compiler()
        return self._compiler(EagerLoadResolver(self._require_session()).flatten(self._spec))

    def compile(self, dialect: Dialect | None = None) -> CompiledQuery:
        """SELECT statement and its ordered parameters."""
        return QueryCompiler(self._spec, dialect or self._dialect()).select()

    def to_sql(self) -> str:
        return self.compile().sql

    # --- execution ---

    def _require_session(self) -> Session:
        if self._session is None:
            raise InvalidQueryError(
                f"Query on {self._record_type.__name__} is not bound to a session"
            )
        return self._session

    def to_list(self) -> list[R]:
        """Execute and return all matching records."""
        if self._preloaded is not None:
            return list(self._preloaded)
        return EagerLoadResolver(self._require_session()).load(self)

    def all(self) -> list[R]:
        return self.to_list()

    def __iter__(self) -> Iterator[R]:
        return iter(self.to_list())

    def first(self, n: int | None = None) -> Any:
        """First record by the query order (primary key when unordered)."""
        query = self if self._spec.order else self._clone(order=self._default_order())
        records = query.limit(1 if n is None else n).to_list()
        if n is not None:
            return records
        return records[0] if records else None

    def last(self, n: int | None = None) -> Any:
        records = self.reverse_order().limit(1 if n is None else n).to_list()
        if n is not None:
            return list(reversed(records))
        return records[0] if records else None

    def take(self, n: int | None = None) -> Any:
        """Records in database order, without imposing a sort."""
        records = self.limit(1 if n is None else n).to_list()
        if n is not None:
            return records
        return records[0] if records else None

    def _criteria(self) -> str:
        where_sql, params = self._compiler().where_clause()
        return f"{where_sql.strip() or 'no conditions'} {list(params)}".strip()

    def first_or_raise(self) -> R:
        record = self.first()
        if record is None:
            raise NotFoundError(self._record_type.__name__, self._criteria())
        return record  # type: ignore[no-any-return]

    def find(self, *ids: Any) -> Any:
        """Record(s) by primary key; raises NotFoundError if any is missing."""
        pk = self._record_type.__schema__.primary_key  # type: ignore[attr-defined]
        many = len(ids) != 1 or isinstance(ids[0], (list, tuple))
        wanted = list(ids[0]) if len(ids) == 1 and many else list(ids)
        if not many:
            record = self.where(**{pk: wanted[0]}).take()
            if record is None:
                raise NotFoundError(self._record_type.__name__, f"'{pk}'={wanted[0]!r}")
            return record
        records = self.where(**{pk: wanted}).to_list()
        by_key = {r.pk: r for r in records}  # type: ignore[attr-defined]
        missing = [i for i in wanted if i not in by_key]
        if missing:
            raise NotFoundError(self._record_type.__name__, f"'{pk}' in {missing!r}")
        return [by_key[i] for i in wanted]

    def find_by(self, *args: Any, **conditions: Any) -> R | None:
        return self.where(*args, **conditions).take()  # type: ignore[no-any-return]

    def find_by_or_raise(self, *args: Any, **conditions: Any) -> R:
        query = self.where(*args, **conditions)
        record = query.take()
        if record is None:
            raise NotFoundError(self._record_type.__name__, query._criteria())
        return record  # type: ignore[no-any-return]

    def exists(self, *args: Any, **conditions: Any) -> bool:
        query = self.where(*args, **conditions) if args or conditions else self
        compiled = query._value_compiler().exists()
        return bool(query._require_session().engine.query(compiled.sql, compiled.params))

    # --- calculations ---

    def _calculate(self, operation: str, column: str | None) -> Any:
        session = self._require_session()
        compiled = self._value_compiler().calculation(operation, column)
        if self._spec.group:
            result = {}
            for row in session.engine.query(compiled.sql, compiled.params):
                values = list(row.values())
                key = values[0] if len(values) == 2 else tuple(values[:-1])
                result[key] = self._cast(operation, values[-1])
            return result
        return self._cast(operation, session.engine.scalar(compiled.sql, compiled.params))

    @staticmethod
    def _cast(operation: str, value: Any) -> Any:
        if operation == "count":
            return int(value or 0)
        if operation == "sum" and value is None:
            return 0
        if operation == "average" and value is not None:
            return float(value)
        return value

    def count(self, column: str | None = None) -> Any:
        """Row count; a ``{group key: count}`` dict when grouped."""
        return self._calculate("count", column)

    def sum(self, column: str) -> Any:
        return self._calculate("sum", column)

    def average(self, column: str) -> Any:
        return self._calculate("average", column)

    def minimum(self, column: str) -> Any:
        return self._calculate("minimum", column)

    def maximum(self, column: str) -> Any:
        return self._calculate("maximum", column)

    def pluck(self, *columns: str) -> list[Any]:
        """Column values without building records."""
        if not columns:
            raise InvalidQueryError("pluck() needs at least one column")
        compiler = self._value_compiler()
        compiler.check_grouping(columns)
        projection = tuple(
            f"{compiler.expression(c)} AS pluck_{i}" for i, c in enumerate(columns)
        )
        compiled = self._compiler(replace(compiler.spec, select=projection)).select()
        rows = self._require_session().engine.query(compiled.sql, compiled.params)
        if len(columns) == 1:
            return [next(iter(row.values())) for row in rows]
        return [tuple(row.values()) for row in rows]

    def pick(self, *columns: str) -> Any:
        values = self.limit(1).pluck(*columns)
        return values[0] if values else None

    def ids(self) -> list[Any]:
        return self.pluck(self._record_type.__schema__.primary_key)  # type: ignore[attr-defined]

    # --- bulk writes ---

    def update_all(self, *args: Any, **assignments: Any) -> int:
        """Bulk UPDATE without hooks or locking; returns affected rows."""
        if args:
            sql, *params = args
            if not isinstance(sql, str) or assignments:
                raise InvalidQueryError("update_all() takes either a SQL fragment or keywords")
            check_fragment(sql, tuple(params))
            sets, values = [sql], tuple(params)
        else:
            if not assignments:
                raise InvalidQueryError("update_all() needs assignments")
            for name in assignments:
                self._column_ref(name)
            sets = [f"{name} = ?" for name in assignments]
            values = tuple(assignments.values())
        compiled = self._value_compiler().update(sets, values)
        return self._require_session().engine.execute(compiled.sql, compiled.params)

    def delete_all(self) -> int:
        """Bulk DELETE without hooks; returns affected rows."""
        compiled = self._value_compiler().delete()
        return self._require_session().engine.execute(compiled.sql, compiled.params)

    def find_or_create_by(self, **attributes: Any) -> R:
        record = self.find_by(**attributes)
        if record is not None:
            return record
        return self._require_session().create(self._record_type, **attributes)

    def find_or_initialize_by(self, **attributes: Any) -> R:
        record = self.find_by(**attributes)
        if record is not None:
            return record
        record = self._record_type(**attributes)
        record._session = self._session  # type: ignore[attr-defined]
        return record

    def explain(self) -> str:
        """The database's plan for this query, one line per row."""
        compiled = self._compiler().explain()
        rows = self._require_session().engine.query(compiled.sql, compiled.params)
        return "\n".join(" | ".join(str(v) for v in row.values()) for row in rows)

    # --- batches ---

    def find_in_batches(
        self,
        batch_size: int | None = None,
        *,
        start: Any = None,
        finish: Any = None,
        cursor: str | None = None,
        order: str = "asc",
    ) -> BatchEnumerator:
        """Restartable iterable of record lists, paged by a cursor column."""
        session = self._require_session()
        return BatchEnumerator(
            self,
            session.settings.default_batch_size if batch_size is None else batch_size,
            start=start,
            finish=finish,
            cursor=cursor,
            order=order,
        )

    def find_each(self, batch_size: int | None = None, **options: Any) -> Iterator[R]:
        """One record at a time, fetched in pages."""
        return self.find_in_batches(batch_size, **options).each_record()

    def in_batches(self, of: int | None = None, *, load: bool = False, **options: Any) -> Iterator[Query[R]]:
        """A Query per page, restricted to that page's cursor values."""
        return self.find_in_batches(of, **options).each_query(load=load)

    def _with_records(self, records: list[R]) -> Query[R]:
        return self.__class__(self._record_type, self._session, self._spec, preloaded=records)
