"""Eager-load resolver.

Runs a Query and resolves its requested associations with one of three
strategies:

* preload: the base query, then one ``IN (...)`` query per association
  (one per hop for through associations), partitioned back by key;
* eager_load: a single query with a LEFT OUTER JOIN chain per
  association, deduplicated by JoinedRecordMapper;
* includes: preload, unless the query filters or orders on the
  association's tables, then eager_load.

Every strategy leaves each requested association resolved on every
returned record: missing singular targets as None, missing collections as
an empty list.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from row_orm.associations.runtime import HABTM, THROUGH, owner_key_value
from row_orm.core.enums import IncludesDetection, LoadStrategy, SortDirection
from row_orm.core.exceptions import AssociationConfigurationError, InvalidQueryError
from row_orm.mapping.joined import JoinedRecordMapper
from row_orm.mapping.plan import AssociationPlan, JoinedQueryPlan, entity_plan
from row_orm.mapping.record import RecordMapper
from row_orm.query.compiler import QueryCompiler
from row_orm.query.spec import AliasTracker, Join, OrderKey, Predicate, QuerySpec, is_identifier

if TYPE_CHECKING:
    from row_orm.associations.descriptors import Association
    from row_orm.query.builder import Query
    from row_orm.session import Session

logger = logging.getLogger(__name__)


def find_association(record_type: type, name: str) -> Association:
    association = record_type.__associations__.get(name)  # type: ignore[attr-defined]
    if association is None:
        raise AssociationConfigurationError(
            record_type.__name__, name, "no such association"
        )
    return association  # type: ignore[no-any-return]


def association_joins(
    association: Association,
    source_alias: str,
    tracker: AliasTracker,
    kind: str,
) -> list[Join]:
    """Join fragments reaching *association*'s target; the last one carries its name."""
    steps = association.join_steps(source_alias, tracker)
    joins = []
    for i, step in enumerate(steps):
        last = i == len(steps) - 1
        joins.append(
            Join(
                step.render(kind),
                alias=step.alias,
                association=association.name if last else None,
                tables=frozenset({step.table, step.alias}),
            )
        )
    return joins


def _split_direction(sql: str) -> tuple[str, SortDirection]:
    parts = sql.rsplit(" ", 1)
    if len(parts) == 2 and parts[1].upper() in ("ASC", "DESC"):
        return parts[0].strip(), SortDirection.parse(parts[1])
    return sql.strip(), SortDirection.ASC


def _unique(values: list[Any]) -> list[Any]:
    seen: set[Any] = set()
    result = []
    for value in values:
        if value is not None and value not in seen:
            seen.add(value)
            result.append(value)
    return result


class EagerLoadResolver:
    """Load records for a Query and resolve its eager-load specs."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # --- strategy selection ---

    def _references(self, spec: QuerySpec, association: Association) -> bool:
        if association.polymorphic:
            names = {association.name}
        else:
            names = {association.name, association.target_table} | association.intermediate_tables()
        if self._session.settings.includes_detection is IncludesDetection.EXPLICIT:
            return bool(spec.references & names)
        referenced = (spec.filtered_tables() - {spec.table}) | spec.references
        return bool(referenced & names)

    def partition(self, spec: QuerySpec) -> tuple[list[str], list[str]]:
        """Split eager specs into (joined, preloaded) association names."""
        joined: list[str] = []
        preloaded: list[str] = []
        for eager in spec.eager:
            association = find_association(spec.record_type, eager.association)
            strategy = eager.strategy
            if strategy is LoadStrategy.INCLUDES:
                strategy = (
                    LoadStrategy.EAGER_LOAD
                    if self._references(spec, association)
                    else LoadStrategy.PRELOAD
                )
                logger.debug(
                    "includes(%s) on %s resolved to %s",
                    eager.association,
                    spec.record_type.__name__,
                    strategy.value,
                )
            target = joined if strategy is LoadStrategy.EAGER_LOAD else preloaded
            if eager.association not in target:
                target.append(eager.association)
        return joined, preloaded

    # --- entry points ---

    def load(self, query: Query) -> list[Any]:
        spec = query.spec
        joined, preloaded = self.partition(spec)
        if joined:
            records = self._eager_join(spec, joined)
        else:
            records = self._fetch(spec)
        for name in preloaded:
            self.preload(records, name)
        return records

    def load_records(self, records: list[Any], names: tuple[str, ...], strategy: LoadStrategy) -> None:
        """Resolve *names* on already-fetched records."""
        if not records:
            return
        if strategy is LoadStrategy.EAGER_LOAD:
            record_type = type(records[0])
            pk = record_type.__schema__.primary_key
            fetched = (
                self._session.unscoped_query(record_type)
                .where(**{pk: [r.pk for r in records]})
                .eager_load(*names)
                .to_list()
            )
            by_key = {r.pk: r for r in fetched}
            for record in records:
                source = by_key.get(record.pk)
                if source is not None:
                    record._association_cache.copy_from(source._association_cache, list(names))
            return
        if strategy is LoadStrategy.LAZY:
            for record in records:
                for name in names:
                    value = getattr(record, name)
                    if find_association(type(record), name).collection:
                        value.load()
            return
        for name in names:
            self.preload(records, name)

    def _fetch(self, spec: QuerySpec) -> list[Any]:
        compiled = QueryCompiler(spec, self._session.dialect).select()
        rows = self._session.engine.query(compiled.sql, compiled.params)
        return RecordMapper(spec.record_type, self._session).map_many(rows)

    # --- preload ---

    def preload(self, records: list[Any], association: Association | str) -> None:
        """Resolve one association on *records* with separate queries."""
        if not records:
            return
        if isinstance(association, str):
            association = find_association(type(records[0]), association)
        if association.macro == THROUGH:
            self._preload_through(records, association)
        elif association.polymorphic:
            self._preload_polymorphic(records, association)
        else:
            self._preload_direct(records, association)

    def _preload_direct(self, records: list[Any], association: Association) -> None:
        keys = _unique([owner_key_value(r, association) for r in records])
        groups: dict[Any, list[Any]] = {}
        if keys:
            target_type = association.target_type
            query = self._session.unscoped_query(target_type)
            if association.macro == HABTM:
                table = association.target_table
                join_table = association.join_table  # type: ignore[attr-defined]
                query = (
                    query.joins(
                        f"INNER JOIN {join_table} ON {join_table}."
                        f"{association.association_foreign_key} = {table}.{association.target_key}"  # type: ignore[attr-defined]
                    )
                    .select(f"{table}.*", f"{join_table}.{association.foreign_key} AS _owner_key")  # type: ignore[attr-defined]
                    .where({f"{join_table}.{association.foreign_key}": keys})  # type: ignore[attr-defined]
                )
                fetched = query.to_list()
                for record in fetched:
                    groups.setdefault(record["_owner_key"], []).append(record)
            else:
                query = query.where(**association.target_conditions(keys))
                order = getattr(association, "order", None)
                if order:
                    query = query.order(order)
                for record in query.to_list():
                    groups.setdefault(record.read_attribute(association.target_key), []).append(record)
            logger.debug(
                "Preloaded %s.%s for %d key(s)", association.owner_name, association.name, len(keys)
            )

        for record in records:
            found = groups.get(owner_key_value(record, association), [])
            cache = record._association_cache
            if association.collection:
                cache.set_collection(association.name, found)
            else:
                cache.set_single(association.name, found[0] if found else None)

    def _preload_polymorphic(self, records: list[Any], association: Association) -> None:
        """One query per target type named by the records' type column."""
        foreign_key = association.foreign_key  # type: ignore[attr-defined]
        foreign_type = association.foreign_type  # type: ignore[attr-defined]
        by_type: dict[str, list[Any]] = {}
        for record in records:
            type_name = record.read_attribute(foreign_type)
            if type_name and record.read_attribute(foreign_key) is not None:
                by_type.setdefault(type_name, []).append(record)

        found: dict[tuple[str, Any], Any] = {}
        for type_name, group in by_type.items():
            target = association.target_for(group[0])  # type: ignore[attr-defined]
            if target is None:
                logger.debug("Skipping unknown %s type %r", association.name, type_name)
                continue
            pk = target.__schema__.primary_key
            keys = _unique([r.read_attribute(foreign_key) for r in group])
            for item in self._session.unscoped_query(target).where(**{pk: keys}).to_list():
                found[(type_name, item.pk)] = item
            logger.debug(
                "Preloaded %s.%s as %s for %d key(s)", association.owner_name, association.name, type_name, len(keys)
            )

        for record in records:
            key = (record.read_attribute(foreign_type), record.read_attribute(foreign_key))
            record._association_cache.set_single(association.name, found.get(key))

    def _preload_through(self, records: list[Any], association: Association) -> None:
        through = association._through_association()  # type: ignore[attr-defined]
        source = association.source_association()  # type: ignore[attr-defined]
        self.preload(records, through)

        intermediates: list[Any] = []
        seen: set[int] = set()
        for record in records:
            for item in self._cached(record, through):
                if id(item) not in seen:
                    seen.add(id(item))
                    intermediates.append(item)
        self.preload(intermediates, source)

        for record in records:
            targets: list[Any] = []
            keys: set[Any] = set()
            for item in self._cached(record, through):
                for target in self._cached(item, source):
                    if target.pk not in keys:
                        keys.add(target.pk)
                        targets.append(target)
            record._association_cache.set_collection(association.name, targets)

    @staticmethod
    def _cached(record: Any, association: Association) -> list[Any]:
        value = record._association_cache.get(association.name)
        if association.collection:
            return value  # type: ignore[no-any-return]
        return [] if value is None else [value]

    # --- eager join ---

    def _eager_join(self, spec: QuerySpec, names: list[str]) -> list[Any]:
        if spec.group:
            raise InvalidQueryError("eager_load cannot be combined with group()")
        record_type = spec.record_type
        base = spec.table
        pk = record_type.__schema__.primary_key  # type: ignore[attr-defined]
        used = {base} | spec.join_aliases()
        for join in spec.joins:
            used |= set(join.tables)
        tracker = AliasTracker(used)

        joins = list(spec.joins)
        plans: list[AssociationPlan] = []
        collection_order: list[OrderKey] = []
        for index, name in enumerate(names, start=1):
            association = find_association(record_type, name)
            existing = next((j for j in spec.joins if j.association == name), None)
            if existing is not None:
                alias = existing.alias
            else:
                new_joins = association_joins(association, base, tracker, "LEFT OUTER")
                joins.extend(new_joins)
                alias = new_joins[-1].alias
            target = association.target_type
            plan = entity_plan(target, f"t{index}__")
            plans.append(AssociationPlan(name, plan, alias, association.collection))  # type: ignore[arg-type]
            if association.collection:
                collection_order.append(self._collection_order(association, alias, plan.key_column))  # type: ignore[arg-type]

        root = entity_plan(record_type, "t0__")
        projection = root.projection(base)
        for plan in plans:
            projection.extend(plan.entity_plan.projection(plan.alias))

        base_order = spec.order or (OrderKey(pk, SortDirection.ASC, pk, base),)
        joined = replace(
            spec,
            joins=tuple(joins),
            select=tuple(projection),
            order=base_order + tuple(collection_order),
            distinct=False,
            eager=(),
        )
        query_plan = JoinedQueryPlan(root, plans)

        if query_plan.has_collections and (spec.limit is not None or spec.offset is not None):
            joined = replace(
                joined,
                predicates=joined.predicates + (self._limited_keys(joined, base_order, pk),),
                limit=None,
                offset=None,
            )

        compiled = QueryCompiler(joined, self._session.dialect).select()
        logger.debug("eager_load(%s) on %s in one query", ", ".join(names), record_type.__name__)
        rows = self._session.engine.query(compiled.sql, compiled.params)
        return JoinedRecordMapper(query_plan, self._session).map_many(rows)

    @staticmethod
    def _collection_order(association: Association, alias: str, key_column: str) -> OrderKey:
        order = getattr(association, "order", None)
        if order:
            parts = order.split()
            if len(parts) <= 2 and is_identifier(parts[0]) and "." not in parts[0]:
                direction = SortDirection.parse(parts[1]) if len(parts) == 2 else SortDirection.ASC
                return OrderKey(parts[0], direction, parts[0], alias)
        return OrderKey(key_column, SortDirection.ASC, key_column, alias)

    def _limited_keys(self, spec: QuerySpec, order: tuple[OrderKey, ...], pk: str) -> Predicate:
        """``base.pk IN (...)`` restricting the join to one page of base rows.

        The sub-select yields one row per base key; sort keys on joined
        columns are folded with MIN (ascending) or MAX (descending) so a
        base record with several joined rows still counts once.
        """
        base = spec.table
        key_expr = f"{base}.{pk}"
        inner_order = []
        for key in order:
            if key.column is not None:
                expr = f"{key.table}.{key.column}"
                direction = key.direction or SortDirection.ASC
            else:
                expr, direction = _split_direction(key.sql)
            if expr == key_expr:
                inner_order.append(OrderKey(f"{key_expr} {direction.value}"))
                continue
            function = "MAX" if direction is SortDirection.DESC else "MIN"
            inner_order.append(OrderKey(f"{function}({expr}) {direction.value}"))
        inner_spec = replace(
            spec,
            select=(f"{key_expr} AS limited_pk",),
            group=(key_expr,),
            having=(),
            order=tuple(inner_order),
            distinct=False,
            lock=None,
        )
        inner = QueryCompiler(inner_spec, self._session.dialect).select()
        return Predicate(
            f"{key_expr} IN (SELECT limited_pk FROM ({inner.sql}) limited)", inner.params
        )

    # --- record-less terminals ---

    def flatten(self, spec: QuerySpec) -> QuerySpec:
        """Spec for terminals that read values instead of records.

        Associations that ``includes``/``eager_load`` resolve by joining
        are joined here too, so predicates on their tables still bind.
        When a joined association is a collection the base rows would
        repeat, so the joins move into a key sub-select instead.
        """
        joined, _ = self.partition(spec)
        if not joined:
            return replace(spec, eager=())
        base = spec.table
        pk = spec.record_type.__schema__.primary_key  # type: ignore[attr-defined]
        used = {base} | spec.join_aliases()
        for join in spec.joins:
            used |= set(join.tables)
        tracker = AliasTracker(used)

        joins = list(spec.joins)
        aliases: set[str] = set()
        repeats = False
        for name in joined:
            association = find_association(spec.record_type, name)
            if any(j.association == name for j in spec.joins):
                continue
            new_joins = association_joins(association, base, tracker, "LEFT OUTER")
            joins.extend(new_joins)
            for join in new_joins:
                aliases |= set(join.tables)
            repeats = repeats or association.collection
        with_joins = replace(spec, joins=tuple(joins), eager=())
        if not repeats:
            return with_joins

        logger.debug("Joined collections on %s moved into a key sub-select", spec.record_type.__name__)
        if spec.limit is not None or spec.offset is not None:
            base_order = spec.order or (OrderKey(pk, SortDirection.ASC, pk, base),)
            keys = self._limited_keys(with_joins, base_order, pk)
        else:
            inner_spec = replace(
                with_joins,
                select=(f"{base}.{pk} AS matched_pk",),
                order=(),
                group=(),
                having=(),
                distinct=False,
                lock=None,
            )
            inner = QueryCompiler(inner_spec, self._session.dialect).select()
            keys = Predicate(
                f"{base}.{pk} IN (SELECT matched_pk FROM ({inner.sql}) matched)", inner.params
            )
        return replace(
            with_joins,
            predicates=(keys,),
            joins=spec.joins,
            order=tuple(k for k in spec.order if not (k.tables() & aliases)),
            limit=None,
            offset=None,
        )
