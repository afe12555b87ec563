"""Association runtime: lazy accessors, collection proxies, join-table writes.

Nothing here imports the descriptor classes; associations are driven
through their ``macro`` and key properties.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING, Any, overload

from row_orm.core.exceptions import (
    AssociationConfigurationError,
    AttributeTypeError,
    DetachedRecordError,
)
from row_orm.query.spec import AliasTracker, JoinStep

if TYPE_CHECKING:
    from row_orm.associations.descriptors import Association
    from row_orm.model.record import Record
    from row_orm.query.builder import Query
    from row_orm.session import Session

logger = logging.getLogger(__name__)

HABTM = "has_and_belongs_to_many"
THROUGH = "has_many_through"


def _session_for(record: Record, association: Association) -> Session:
    session = record._session
    if session is None:
        raise DetachedRecordError(type(record).__name__, association.name)
    return session


def owner_key_value(record: Record, association: Association) -> Any:
    return record.read_attribute(association.owner_key)


# --- scopes ---


def _reverse_steps(hop: Association, dest_alias: str, tracker: AliasTracker) -> tuple[str, list[JoinStep]]:
    """Join from a hop's target back to its owner table."""
    owner_table = hop.owner.__table__  # type: ignore[union-attr]
    steps: list[JoinStep] = []
    if hop.macro == HABTM:
        join_alias = tracker.alias_for(hop.join_table)  # type: ignore[attr-defined]
        steps.append(
            JoinStep(
                hop.join_table,  # type: ignore[attr-defined]
                join_alias,
                f"{join_alias}.{hop.association_foreign_key} = {dest_alias}.{hop.target_key}",  # type: ignore[attr-defined]
            )
        )
        source_alias = tracker.alias_for(owner_table)
        steps.append(
            JoinStep(
                owner_table,
                source_alias,
                f"{source_alias}.{hop.owner_key} = {join_alias}.{hop.foreign_key}",  # type: ignore[attr-defined]
            )
        )
        return source_alias, steps
    source_alias = tracker.alias_for(owner_table)
    steps.append(
        JoinStep(
            owner_table,
            source_alias,
            f"{source_alias}.{hop.owner_key} = {dest_alias}.{hop.target_key}{hop.type_condition(dest_alias)}",
        )
    )
    return source_alias, steps


def _through_scope(query: Query, hops: tuple[Association, ...], key: Any) -> Query:
    """Single joined query walking the hop chain backwards from the target."""
    tracker = AliasTracker({query.spec.table})
    steps: list[JoinStep] = []
    dest_alias = query.spec.table
    for hop in reversed(hops[1:]):
        dest_alias, hop_steps = _reverse_steps(hop, dest_alias, tracker)
        steps.extend(hop_steps)

    first = hops[0]
    if first.macro == HABTM:
        join_alias = tracker.alias_for(first.join_table)  # type: ignore[attr-defined]
        steps.append(
            JoinStep(
                first.join_table,  # type: ignore[attr-defined]
                join_alias,
                f"{join_alias}.{first.association_foreign_key} = {dest_alias}.{first.target_key}",  # type: ignore[attr-defined]
            )
        )
        condition = f"{join_alias}.{first.foreign_key} = ?"  # type: ignore[attr-defined]
    else:
        condition = f"{dest_alias}.{first.target_key} = ?{first.type_condition(dest_alias)}"

    for step in steps:
        query = query.joins(step.render("INNER"))
    return query.where(condition, key).distinct()


def association_scope(record: Record, association: Association, session: Session) -> Query:
    """Query for the rows *association* resolves to on *record*.

    The target's default scope is not applied.
    """
    query = session.unscoped_query(association.target_type)
    key = owner_key_value(record, association)
    if association.macro == THROUGH:
        hops = association.chain()
        query = _through_scope(query, hops, key)
        order = getattr(hops[-1], "order", None)
    elif association.macro == HABTM:
        table = association.target_table
        join_table = association.join_table  # type: ignore[attr-defined]
        query = query.joins(
            f"INNER JOIN {join_table} ON {join_table}.{association.association_foreign_key} "  # type: ignore[attr-defined]
            f"= {table}.{association.target_key}"
        ).where(f"{join_table}.{association.foreign_key} = ?", key)  # type: ignore[attr-defined]
        order = None
    else:
        query = query.where(**association.target_conditions(key))
        order = getattr(association, "order", None)
    if order:
        query = query.order(order)
    return query


# --- accessors ---


def _fetch(record: Record, association: Association) -> Any:
    key = owner_key_value(record, association)
    if key is None:
        # unsaved owner or empty foreign key: nothing can match
        return [] if association.collection else None
    session = _session_for(record, association)
    logger.debug("Lazy loading %s.%s", type(record).__name__, association.name)
    if association.polymorphic:
        return _fetch_polymorphic(record, association, session, key)
    query = association_scope(record, association, session)
    if association.collection:
        return query.to_list()
    return query.take()


def _fetch_polymorphic(record: Record, association: Association, session: Session, key: Any) -> Any:
    target = association.target_for(record)  # type: ignore[attr-defined]
    if target is None:
        logger.debug(
            "%s.%s names unknown type %r",
            type(record).__name__,
            association.name,
            record.read_attribute(association.foreign_type),  # type: ignore[attr-defined]
        )
        return None
    return session.unscoped_query(target).where(**{target.__schema__.primary_key: key}).take()


def read_single(record: Record, association: Association) -> Any:
    cache = record._association_cache
    if not cache.is_resolved(association.name):
        cache.set_single(association.name, _fetch(record, association))
    return cache.get(association.name)


def load_collection(record: Record, association: Association) -> list[Any]:
    cache = record._association_cache
    if not cache.is_resolved(association.name):
        cache.set_collection(association.name, _fetch(record, association))
    return cache.get(association.name)  # type: ignore[no-any-return]


def write_belongs_to(record: Record, association: Association, value: Record | None) -> None:
    """Point the foreign key (and type column, if polymorphic) at *value* and cache it."""
    if association.polymorphic:
        type_column = association.foreign_type  # type: ignore[attr-defined]
        if value is None:
            record.write_attribute(association.owner_key, None)
            record.write_attribute(type_column, None)
        elif not hasattr(type(value), "__schema__"):
            raise AttributeTypeError(type(record).__name__, association.name, "Record", value)
        else:
            record.write_attribute(association.owner_key, value.pk)
            record.write_attribute(type_column, type(value).__name__)
    elif value is None:
        record.write_attribute(association.owner_key, None)
    else:
        target = association.target_type
        if not isinstance(value, target):
            raise AttributeTypeError(type(record).__name__, association.name, target.__name__, value)
        record.write_attribute(association.owner_key, value.read_attribute(association.target_key))
    record._association_cache.set_single(association.name, value)


class CollectionProxy(Sequence[Any]):
    """Sequence view over a plural association.

    Reading elements loads the association once and serves the cache
    afterwards. Mutating helpers write through the owner's session and
    invalidate the cache.
    """

    def __init__(self, owner: Record, association: Association) -> None:
        self._owner = owner
        self._association = association

    def _records(self) -> list[Any]:
        return load_collection(self._owner, self._association)

    @overload
    def __getitem__(self, index: int) -> Any: ...

    @overload
    def __getitem__(self, index: slice) -> list[Any]: ...

    def __getitem__(self, index: int | slice) -> Any:
        return self._records()[index]

    def __len__(self) -> int:
        return len(self._records())

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._records()))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CollectionProxy):
            return self._records() == other._records()
        if isinstance(other, (list, tuple)):
            return self._records() == list(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        state = self._records() if self.loaded else "not loaded"
        return f"<CollectionProxy {type(self._owner).__name__}.{self._association.name} {state}>"

    @property
    def loaded(self) -> bool:
        return self._owner._association_cache.is_resolved(self._association.name)

    def load(self) -> list[Any]:
        return list(self._records())

    def reload(self) -> list[Any]:
        self.reset()
        return self.load()

    def reset(self) -> None:
        self._owner._association_cache.reset(self._association.name)

    def query(self) -> Query:
        """Fresh Query over this association's rows."""
        session = _session_for(self._owner, self._association)
        return association_scope(self._owner, self._association, session)

    def where(self, *args: Any, **conditions: Any) -> Query:
        return self.query().where(*args, **conditions)

    def count(self) -> int:
        if self.loaded:
            return len(self._records())
        if owner_key_value(self._owner, self._association) is None:
            return 0
        return self.query().count()  # type: ignore[no-any-return]

    def exists(self) -> bool:
        if self.loaded:
            return bool(self._records())
        if owner_key_value(self._owner, self._association) is None:
            return False
        return self.query().exists()

    # --- building ---

    def build(self, **attributes: Any) -> Any:
        """New target record pointing at the owner; not saved."""
        if self._association.macro not in ("has_many", "has_one"):
            raise self._unsupported("build")
        attributes.update(self._association.target_conditions(owner_key_value(self._owner, self._association)))
        record = self._association.target_type(**attributes)
        record._session = self._owner._session
        self._owner._association_cache.append(self._association.name, record)
        return record

    def create(self, **attributes: Any) -> Any:
        """Build and save a target record (and attach it for join tables)."""
        session = _session_for(self._owner, self._association)
        if self._association.macro == HABTM:
            record = self._association.target_type(**attributes)
            session.save(record)
            self.attach(record)
            return record
        record = self.build(**attributes)
        session.save(record)
        return record

    # --- join-table mutation ---

    def _unsupported(self, action: str) -> AssociationConfigurationError:
        return AssociationConfigurationError(
            type(self._owner).__name__,
            self._association.name,
            f"{action} is not supported for {self._association.macro}",
        )

    def _join_session(self, action: str) -> Session:
        if self._association.macro != HABTM:
            raise self._unsupported(action)
        session = _session_for(self._owner, self._association)
        if self._owner.new_record:
            session.save(self._owner)
        return session

    def attach(self, *others: Record) -> None:
        """Insert a join row per target unless the pair already exists."""
        session = self._join_session("attach")
        assoc = self._association
        dialect = session.engine.dialect
        columns = [assoc.foreign_key, assoc.association_foreign_key]  # type: ignore[attr-defined]
        sql = dialect.insert_ignore(assoc.join_table, columns)  # type: ignore[attr-defined]
        owner_key = owner_key_value(self._owner, assoc)
        for other in others:
            if other.new_record:
                session.save(other)
            params = dialect.insert_ignore_params([owner_key, other.read_attribute(assoc.target_key)])
            session.engine.execute(sql, params)
        self.reset()

    def detach(self, *others: Record) -> int:
        """Delete the join rows pairing the owner with *others*."""
        session = self._join_session("detach")
        assoc = self._association
        owner_key = owner_key_value(self._owner, assoc)
        removed = 0
        for other in others:
            removed += session.engine.execute(
                f"DELETE FROM {assoc.join_table} WHERE {assoc.foreign_key} = ? "  # type: ignore[attr-defined]
                f"AND {assoc.association_foreign_key} = ?",  # type: ignore[attr-defined]
                (owner_key, other.read_attribute(assoc.target_key)),
            )
        self.reset()
        return removed

    def clear(self) -> int:
        """Delete every join row of the owner."""
        session = self._join_session("clear")
        assoc = self._association
        removed = session.engine.execute(
            f"DELETE FROM {assoc.join_table} WHERE {assoc.foreign_key} = ?",  # type: ignore[attr-defined]
            (owner_key_value(self._owner, assoc),),
        )
        self.reset()
        return removed
