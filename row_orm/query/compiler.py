"""Lower a QuerySpec to SQL.

Compilation is deterministic: the same spec always yields the same
statement and parameter order. Placeholders are emitted as ``?``;
``CompiledQuery.native`` rewrites them for a driver's param style.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from row_orm.adapters.dialect import Dialect
from row_orm.core.exceptions import InvalidQueryError
from row_orm.core.params import rewrite_placeholders
from row_orm.query.spec import COLUMN_TOKEN, Predicate, QuerySpec, is_identifier

_AGGREGATES = {"count": "COUNT", "sum": "SUM", "average": "AVG", "minimum": "MIN", "maximum": "MAX"}


def _bare(expression: str) -> str:
    return expression.rsplit(".", 1)[-1]


@dataclass(frozen=True)
class CompiledQuery:
    sql: str
    params: tuple[Any, ...] = ()

    def native(self, paramstyle: str) -> str:
        """SQL with placeholders in the given DB-API param style."""
        return rewrite_placeholders(self.sql, paramstyle) if self.params else self.sql

    def __str__(self) -> str:
        return self.sql


class QueryCompiler:
    """Compile one QuerySpec for one Dialect."""

    def __init__(self, spec: QuerySpec, dialect: Dialect) -> None:
        self._spec = spec
        self._dialect = dialect
        self._schema = spec.record_type.__schema__  # type: ignore[attr-defined]
        self._qualify = bool(spec.joins)

    @property
    def spec(self) -> QuerySpec:
        return self._spec

    # --- fragments ---

    def column(self, name: str, table: str | None = None) -> str:
        """Column reference, table-qualified when joins are present."""
        table = table or self._spec.table
        if table != self._spec.table or self._qualify:
            return f"{table}.{name}"
        return name

    def expression(self, expr: str) -> str:
        """Qualify plain base-table column names; leave everything else."""
        if "." not in expr and expr in self._schema.columns:
            return self.column(expr)
        return expr

    def _predicate(self, pred: Predicate) -> str:
        if pred.raw:
            return f"({pred.sql})"
        return pred.sql.replace(COLUMN_TOKEN, self.column(pred.column, pred.table))  # type: ignore[arg-type]

    def where_clause(self) -> tuple[str, tuple[Any, ...]]:
        preds = self._spec.predicates
        if not preds:
            return "", ()
        sql = " WHERE " + " AND ".join(self._predicate(p) for p in preds)
        return sql, self._spec.params

    def from_clause(self) -> str:
        parts = [f"FROM {self._spec.table}"]
        parts.extend(j.sql for j in self._spec.joins)
        return " ".join(parts)

    def _group_clause(self) -> tuple[str, tuple[Any, ...]]:
        spec = self._spec
        sql = ""
        params: tuple[Any, ...] = ()
        if spec.group:
            sql += " GROUP BY " + ", ".join(self.expression(g) for g in spec.group)
        if spec.having:
            sql += " HAVING " + " AND ".join(self._predicate(p) for p in spec.having)
            params = tuple(p for pred in spec.having for p in pred.params)
        return sql, params

    def order_clause(self) -> str:
        keys = []
        for key in self._spec.order:
            if key.column is not None:
                keys.append(f"{self.column(key.column, key.table)} {key.direction.value}")  # type: ignore[union-attr]
            else:
                keys.append(key.sql)
        return " ORDER BY " + ", ".join(keys) if keys else ""

    def _limit_clause(self) -> str:
        clause = self._dialect.limit_clause(self._spec.limit, self._spec.offset)
        return f" {clause}" if clause else ""

    def check_grouping(self, expressions: tuple[str, ...]) -> None:
        if not self._spec.group:
            return
        grouped = {_bare(g) for g in self._spec.group}
        for expr in expressions:
            if is_identifier(expr) and _bare(expr) not in grouped:
                raise InvalidQueryError(
                    f"Column '{expr}' must appear in the GROUP BY clause "
                    f"({', '.join(self._spec.group)}) or be used in an aggregate"
                )

    # --- statements ---

    def select(self) -> CompiledQuery:
        spec = self._spec
        self.check_grouping(spec.select)
        if spec.select:
            projection = ", ".join(self.expression(c) for c in spec.select)
        else:
            projection = f"{spec.table}.*" if self._qualify else "*"
        distinct = "DISTINCT " if spec.distinct else ""
        where_sql, where_params = self.where_clause()
        group_sql, group_params = self._group_clause()
        sql = (
            f"SELECT {distinct}{projection} {self.from_clause()}"
            f"{where_sql}{group_sql}{self.order_clause()}{self._limit_clause()}"
        )
        if spec.lock is not None and spec.lock is not False:
            lock = self._dialect.lock_clause(spec.lock)
            if lock:
                sql += f" {lock}"
        return CompiledQuery(sql, where_params + group_params)

    def exists(self) -> CompiledQuery:
        inner = replace(self._spec, select=("1 AS one",), order=(), limit=1, offset=None, lock=None)
        return QueryCompiler(inner, self._dialect).select()

    def calculation(self, operation: str, column: str | None = None) -> CompiledQuery:
        """``SELECT FN(column)`` over the spec; grouped specs add group columns."""
        spec = self._spec
        function = _AGGREGATES[operation]
        if column is None or column == "*":
            target = "*"
        else:
            target = self.expression(column)
        if operation == "count" and spec.distinct and target != "*":
            target = f"DISTINCT {target}"
        aggregate = f"{function}({target})"

        if spec.group:
            projection = tuple(spec.group) + (f"{aggregate} AS {operation}_value",)
            grouped = replace(spec, select=projection, lock=None)
            return QueryCompiler(grouped, self._dialect).select()

        if spec.limit is not None or spec.offset is not None or (spec.distinct and target == "*"):
            inner = QueryCompiler(replace(spec, lock=None), self._dialect).select()
            outer_target = "*" if target == "*" else _bare(target)
            return CompiledQuery(
                f"SELECT {function}({outer_target}) FROM ({inner.sql}) subquery", inner.params
            )

        flat = replace(spec, select=(aggregate,), order=(), distinct=False, lock=None)
        return QueryCompiler(flat, self._dialect).select()

    def _scoped_where(self) -> tuple[str, tuple[Any, ...]]:
        """WHERE clause for UPDATE/DELETE, through a key sub-select when needed."""
        spec = self._spec
        if not spec.joins and spec.limit is None and spec.offset is None:
            return self.where_clause()
        pk = self._schema.primary_key
        inner_spec = replace(
            spec, select=(f"{spec.table}.{pk}",), distinct=False, lock=None, eager=()
        )
        inner = QueryCompiler(inner_spec, self._dialect).select()
        return f" WHERE {pk} IN (SELECT {pk} FROM ({inner.sql}) subquery)", inner.params

    def update(self, assignments: list[str], params: tuple[Any, ...]) -> CompiledQuery:
        where_sql, where_params = self._scoped_where()
        sql = f"UPDATE {self._spec.table} SET {', '.join(assignments)}{where_sql}"
        return CompiledQuery(sql, tuple(params) + where_params)

    def delete(self) -> CompiledQuery:
        where_sql, where_params = self._scoped_where()
        return CompiledQuery(f"DELETE FROM {self._spec.table}{where_sql}", where_params)

    def explain(self) -> CompiledQuery:
        compiled = self.select()
        return CompiledQuery(f"{self._dialect.explain_prefix} {compiled.sql}", compiled.params)
