"""Session: persistence, finders and locking on top of an Engine.

Example::

    engine = Engine.from_config(ConnectionConfig(driver="sqlite", database="app.db"))
    session = Session(engine)

    book = session.create(Book, title="Dune", author=author)
    book.title = "Dune Messiah"
    session.save(book)          # UPDATE ... WHERE id = ? AND lock_version = ?

    with session.transaction():
        locked = session.lock(book)   # SELECT ... FOR UPDATE
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, TypeVar

from row_orm.adapters.dialect import Dialect
from row_orm.associations.runtime import write_belongs_to
from row_orm.core.engine import Engine
from row_orm.core.enums import LoadStrategy
from row_orm.core.exceptions import InvalidQueryError, NotFoundError, StaleObjectError
from row_orm.core.settings import OrmSettings
from row_orm.core.transaction import TransactionManager
from row_orm.mapping.record import RecordMapper
from row_orm.model.callbacks import Phase, run_callbacks
from row_orm.model.record import Record
from row_orm.query.builder import Query
from row_orm.query.eager import EagerLoadResolver

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)


class Session:
    """Unit of persistence bound to one Engine and one OrmSettings."""

    def __init__(self, engine: Engine, settings: OrmSettings | None = None) -> None:
        self._engine = engine
        self._settings = settings or OrmSettings()
        if self._settings.log_statements:
            engine.log_statements = True

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def settings(self) -> OrmSettings:
        return self._settings

    @property
    def dialect(self) -> Dialect:
        return self._engine.dialect  # type: ignore[no-any-return]

    def transaction(self) -> TransactionManager:
        return self._engine.transaction()

    # --- queries ---

    def query(self, record_type: type[R]) -> Query[R]:
        """Query with the record type's default scope applied."""
        query = Query(record_type, self)
        default_scope = getattr(record_type, "__default_scope__", None)
        if default_scope is not None:
            query = default_scope(query)
        return query

    def unscoped_query(self, record_type: type[R]) -> Query[R]:
        return Query(record_type, self)

    def find(self, record_type: type[R], *ids: Any) -> Any:
        return self.query(record_type).find(*ids)

    def find_by_sql(self, record_type: type[R], sql: str, *params: Any) -> list[R]:
        """Hydrate records from a hand-written SELECT."""
        rows = self._engine.query(sql, params)
        return RecordMapper(record_type, self).map_many(rows)

    def load(
        self,
        records: list[Record],
        *names: str,
        strategy: LoadStrategy = LoadStrategy.PRELOAD,
    ) -> list[Record]:
        """Resolve associations on records that are already loaded."""
        EagerLoadResolver(self).load_records(list(records), names, strategy)
        return records

    def adopt(self, record: R) -> R:
        """Bind a record built outside the session, enabling lazy loading."""
        record._session = self
        return record

    # --- locking configuration ---

    def locking_column(self, record_type: type[Record]) -> str | None:
        """Version column for *record_type*, or None when locking is off."""
        if not (self._settings.lock_optimistically and record_type.__lock_optimistically__):
            return None
        column = record_type.__locking_column__ or self._settings.locking_column
        if column not in record_type.__schema__.columns:
            return None
        return column

    # --- persistence ---

    def create(self, record_type: type[R], **attributes: Any) -> R:
        record = record_type(**attributes)
        self.save(record)
        return record

    def save(self, record: R) -> R:
        """Insert or update *record*, running its lifecycle hooks."""
        if record.destroyed:
            raise InvalidQueryError(f"Cannot save a destroyed {type(record).__name__}")
        record._session = self
        run_callbacks(Phase.BEFORE_VALIDATION, record)
        run_callbacks(Phase.AFTER_VALIDATION, record)
        with self.transaction():
            run_callbacks(Phase.BEFORE_SAVE, record)
            if record.new_record:
                run_callbacks(Phase.BEFORE_CREATE, record)
                self._insert(record)
                run_callbacks(Phase.AFTER_CREATE, record)
            else:
                run_callbacks(Phase.BEFORE_UPDATE, record)
                self._update(record)
                run_callbacks(Phase.AFTER_UPDATE, record)
            run_callbacks(Phase.AFTER_SAVE, record)
        return record

    def update(self, record: R, **attributes: Any) -> R:
        for name, value in attributes.items():
            setattr(record, name, value)
        return self.save(record)

    def _save_parents(self, record: Record) -> None:
        """Save unsaved BelongsTo targets and copy their keys."""
        cache = record._association_cache
        for name, association in type(record).__associations__.items():
            if association.macro != "belongs_to" or not cache.is_resolved(name):
                continue
            parent = cache.get(name)
            if parent is not None and parent.new_record:
                self.save(parent)
                write_belongs_to(record, association, parent)

    def _touch(self, record: Record, now: datetime, *, creating: bool) -> None:
        if not type(record).__timestamps__:
            return
        columns = type(record).__schema__.columns
        if creating and "created_at" in columns and record.read_attribute("created_at") is None:
            record.write_attribute("created_at", now)
        if "updated_at" in columns:
            record.write_attribute("updated_at", now)

    def _insert(self, record: Record) -> None:
        record_type = type(record)
        schema = record_type.__schema__
        self._save_parents(record)
        self._touch(record, datetime.now(), creating=True)
        version = self.locking_column(record_type)
        if version is not None and record.read_attribute(version) is None:
            record.write_attribute(version, 0)

        values = {
            name: record.read_attribute(name)
            for name in schema.columns
            if not (name == schema.primary_key and record.pk is None)
        }
        placeholders = ", ".join("?" for _ in values)
        sql = f"INSERT INTO {schema.table} ({', '.join(values)}) VALUES ({placeholders})"
        generated = self._engine.insert(
            sql, tuple(values.values()), pk=schema.primary_key if record.pk is None else None
        )
        if record.pk is None:
            record._attributes[schema.primary_key] = schema.columns[schema.primary_key].type.coerce(generated)
        record._mark_persisted()
        logger.debug("Inserted %s %r", record_type.__name__, record.pk)

    def _update(self, record: Record) -> None:
        record_type = type(record)
        schema = record_type.__schema__
        self._save_parents(record)
        if not record.changed:
            return
        self._touch(record, datetime.now(), creating=False)

        version = self.locking_column(record_type)
        changed = [name for name in record.changed if name != version]
        sets = [f"{name} = ?" for name in changed]
        params: list[Any] = [record.read_attribute(name) for name in changed]
        where = [f"{schema.primary_key} = ?"]
        where_params: list[Any] = [record.pk]

        expected = None
        if version is not None:
            expected = record._changed.get(version, record.read_attribute(version))
            sets.append(f"{version} = ?")
            params.append((expected or 0) + 1)
            if expected is None:
                where.append(f"{version} IS NULL")
            else:
                where.append(f"{version} = ?")
                where_params.append(expected)

        sql = f"UPDATE {schema.table} SET {', '.join(sets)} WHERE {' AND '.join(where)}"
        affected = self._engine.execute(sql, tuple(params + where_params))
        if version is not None and affected == 0:
            logger.warning(
                "Stale update of %s %r (expected %s=%r)", record_type.__name__, record.pk, version, expected
            )
            raise StaleObjectError(record, "update")
        if version is not None:
            record._attributes[version] = (expected or 0) + 1
        record._mark_persisted()

    def destroy(self, record: R) -> R:
        """Delete *record*, handling ``dependent`` associations and join rows."""
        record_type = type(record)
        schema = record_type.__schema__
        if record.new_record:
            raise InvalidQueryError(f"Cannot destroy an unsaved {record_type.__name__}")
        record._session = self
        with self.transaction():
            run_callbacks(Phase.BEFORE_DESTROY, record)
            self._destroy_dependents(record)

            where = [f"{schema.primary_key} = ?"]
            params: list[Any] = [record.pk]
            version = self.locking_column(record_type)
            expected = None
            if version is not None:
                expected = record._changed.get(version, record.read_attribute(version))
                if expected is None:
                    where.append(f"{version} IS NULL")
                else:
                    where.append(f"{version} = ?")
                    params.append(expected)
            affected = self._engine.execute(
                f"DELETE FROM {schema.table} WHERE {' AND '.join(where)}", tuple(params)
            )
            if version is not None and affected == 0:
                logger.warning(
                    "Stale destroy of %s %r (expected %s=%r)", record_type.__name__, record.pk, version, expected
                )
                raise StaleObjectError(record, "destroy")
            record._mark_destroyed()
            run_callbacks(Phase.AFTER_DESTROY, record)
        return record

    def _destroy_dependents(self, record: Record) -> None:
        for association in type(record).__associations__.values():
            if association.macro == "has_and_belongs_to_many":
                self._engine.execute(
                    f"DELETE FROM {association.join_table} WHERE {association.foreign_key} = ?",  # type: ignore[attr-defined]
                    (record.pk,),
                )
                continue
            dependent = getattr(association, "dependent", None)
            if dependent is None or association.macro not in ("has_many", "has_one"):
                continue
            target = association.target_type
            conditions = association.target_conditions(record.read_attribute(association.owner_key))
            table = target.__table__
            where = " AND ".join(f"{column} = ?" for column in conditions)
            params = tuple(conditions.values())
            if dependent == "destroy":
                for child in self.unscoped_query(target).where(**conditions).to_list():
                    self.destroy(child)
            elif dependent == "delete_all":
                self._engine.execute(f"DELETE FROM {table} WHERE {where}", params)
            else:
                cleared = ", ".join(f"{column} = NULL" for column in conditions)
                self._engine.execute(f"UPDATE {table} SET {cleared} WHERE {where}", params)
            record._association_cache.reset(association.name)

    def reload(self, record: R, *, lock: str | bool | None = None) -> R:
        """Re-read *record*'s row, discarding unsaved changes and cached associations."""
        record_type = type(record)
        query = self.unscoped_query(record_type).where(**{record_type.__schema__.primary_key: record.pk})
        if lock is not None:
            query = query.lock(lock)
        fresh = query.take()
        if fresh is None:
            raise NotFoundError(record_type.__name__, f"'{record_type.__schema__.primary_key}'={record.pk!r}")
        record._attributes.clear()
        record._attributes.update(fresh._attributes)
        record._extra.clear()
        record._changed.clear()
        record._association_cache.reset()
        record._persisted = True
        record._session = self
        return record

    def lock(self, record: R, mode: str | bool = True) -> R:
        """Reload *record* with a row lock; use inside ``transaction()``."""
        if not self._engine.in_transaction():
            logger.warning("Row lock on %s outside a transaction has no effect", type(record).__name__)
        return self.reload(record, lock=mode)
