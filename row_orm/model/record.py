"""Record base class.

Subclasses declare a table, typed columns and associations::

    class Book(Record):
        __table__ = "books"
        __timestamps__ = True

        id = Column(int, primary_key=True)
        title = Column(str, nullable=False)
        lock_version = Column(int)

        author = BelongsTo("Author")

        @scope
        def in_print(query):
            return query.where(out_of_print=False)

Class building collects the schema, associations, hooks and scopes,
registers the type and checks through-association paths whose types are
already known.

Integer columns declared with ``enum=`` also get, per value, a scope and
a negated ``not_<value>`` scope, an ``is_<value>`` property, a
``<column>_name`` property and a ``<column>_values`` list::

    class Order(Record):
        status = Column(int, enum=["shipped", "being_packaged", "complete"])

    session.query(Order).shipped().count()
    order.status_name = "complete"     # stores 2
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, ClassVar

from row_orm.associations.cache import AssociationCache
from row_orm.associations.descriptors import Association
from row_orm.core.exceptions import ColumnMismatchError, MappingError
from row_orm.model.callbacks import HookSpec, Phase, collect_hooks
from row_orm.model.columns import Column
from row_orm.model.registry import register_record

logger = logging.getLogger(__name__)


def scope(func: Callable[..., Any]) -> Any:
    """Declare a named scope: ``func(query, *args) -> Query``.

    Scopes become chainable methods on every Query of the record type.
    """
    func.__row_orm_scope__ = True  # type: ignore[attr-defined]
    return staticmethod(func)


def _enum_scope(column: str, stored: int, negate: bool) -> Callable[..., Any]:
    def enum_scope(query: Any) -> Any:
        if negate:
            return query.where_not(**{column: stored})
        return query.where(**{column: stored})

    return enum_scope


def _enum_test(column: str, stored: int) -> property:
    return property(lambda record: record._attributes.get(column) == stored)


def _enum_name(column: Column) -> property:
    def getter(record: Record) -> str | None:
        return column.name_of(record._attributes.get(column.name))

    def setter(record: Record, name: str) -> None:
        record.write_attribute(column.name, column.value_of(name))

    return property(getter, setter, doc=f"Name of the stored {column.name} value.")


@dataclass(frozen=True)
class TableSchema:
    table: str
    primary_key: str
    columns: dict[str, Column]

    @property
    def column_names(self) -> list[str]:
        return list(self.columns)


class Record:
    """Mutable attribute bag bound to one table row."""

    __table__: ClassVar[str]
    __schema__: ClassVar[TableSchema]
    __associations__: ClassVar[dict[str, Association]] = {}
    __hooks__: ClassVar[dict[Phase, list[HookSpec]]] = {}
    __scopes__: ClassVar[dict[str, Callable[..., Any]]] = {}
    __locking_column__: ClassVar[str | None] = None
    __lock_optimistically__: ClassVar[bool] = True
    __timestamps__: ClassVar[bool] = False

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if not getattr(cls, "__table__", None):
            # abstract intermediate class
            return

        columns: dict[str, Column] = {}
        associations: dict[str, Association] = {}
        scopes: dict[str, Callable[..., Any]] = {}
        for klass in reversed(cls.__mro__):
            for name, value in vars(klass).items():
                if isinstance(value, Column):
                    columns[name] = value
                elif isinstance(value, Association):
                    associations[name] = value
                elif isinstance(value, staticmethod) and getattr(
                    value.__func__, "__row_orm_scope__", False
                ):
                    scopes[name] = value.__func__

        primary = [name for name, col in columns.items() if col.primary_key]
        if len(primary) != 1:
            raise MappingError(
                f"{cls.__name__} must declare exactly one primary key column, found {primary}"
            )

        cls.__schema__ = TableSchema(cls.__table__, primary[0], columns)
        cls.__associations__ = associations
        cls.__scopes__ = scopes
        cls._declare_enums()
        cls.__hooks__ = collect_hooks(cls)

        for association in associations.values():
            association.validate(strict=False)
        register_record(cls)
        logger.debug("Declared record type %s -> %s", cls.__name__, cls.__table__)

    @classmethod
    def _declare_enums(cls) -> None:
        columns = cls.__schema__.columns
        explicit = dict(cls.__scopes__)
        for name, column in columns.items():
            if column.enum is None:
                continue
            generated = [f"{name}_values", f"{name}_name"]
            for value in column.enum:
                generated += [value, f"not_{value}", f"is_{value}"]
            clashes = [g for g in generated if g in columns or g in cls.__associations__ or g in explicit]
            if clashes:
                raise MappingError(f"{cls.__name__}.{name} enum names clash with {clashes}")
            for stored, value in enumerate(column.enum):
                cls.__scopes__[value] = _enum_scope(name, stored, negate=False)
                cls.__scopes__[f"not_{value}"] = _enum_scope(name, stored, negate=True)
                setattr(cls, f"is_{value}", _enum_test(name, stored))
            setattr(cls, f"{name}_values", list(column.enum))
            setattr(cls, f"{name}_name", _enum_name(column))

    def __init__(self, **attributes: Any) -> None:
        self._init_state()
        schema = self.__schema__
        for name, column in schema.columns.items():
            if name not in attributes:
                self._attributes[name] = column.default_value()
        unknown = [
            k for k in attributes if k not in schema.columns and k not in self.__associations__
        ]
        if unknown:
            raise ColumnMismatchError(type(self).__name__, unknown)
        for name, value in attributes.items():
            setattr(self, name, value)

    def _init_state(self) -> None:
        object.__setattr__(self, "_attributes", {})
        object.__setattr__(self, "_extra", {})
        object.__setattr__(self, "_changed", {})
        object.__setattr__(self, "_persisted", False)
        object.__setattr__(self, "_destroyed", False)
        object.__setattr__(self, "_association_cache", AssociationCache())
        object.__setattr__(self, "_session", None)

    @classmethod
    def hydrate(cls, row: dict[str, Any], session: Any = None) -> Record:
        """Build a persisted record from a result row.

        Schema columns are coerced to their declared types; any other
        column (aliases, aggregates) is kept read-only in ``record[name]``.
        """
        record = cls.__new__(cls)
        record._init_state()
        columns = cls.__schema__.columns
        for key, value in row.items():
            column = columns.get(key)
            if column is not None:
                record._attributes[key] = column.type.coerce(value)
            else:
                record._extra[key] = value
        record._persisted = True
        record._session = session
        return record

    # --- attribute access ---

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            object.__setattr__(self, name, value)
            return
        raise ColumnMismatchError(type(self).__name__, [name])

    def read_attribute(self, name: str) -> Any:
        if name not in self.__schema__.columns:
            raise ColumnMismatchError(type(self).__name__, [name])
        return self._attributes.get(name)

    def write_attribute(self, name: str, value: Any) -> None:
        """Type-check and assign; records the original value on first change."""
        column = self.__schema__.columns.get(name)
        if column is None:
            raise ColumnMismatchError(type(self).__name__, [name])
        if column.enum is not None and isinstance(value, str):
            value = column.value_of(value)
        column.check(type(self).__name__, value)
        current = self._attributes.get(name)
        if name in self._changed:
            if self._changed[name] == value:
                # back to the original value
                del self._changed[name]
        elif current != value or type(current) is not type(value):
            self._changed[name] = current
        self._attributes[name] = value

    def __getitem__(self, key: str) -> Any:
        if key in self.__schema__.columns:
            return self._attributes.get(key)
        return self._extra[key]

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except KeyError:
            return default

    @property
    def attributes(self) -> dict[str, Any]:
        return dict(self._attributes)

    @property
    def pk(self) -> Any:
        return self._attributes.get(self.__schema__.primary_key)

    # --- state ---

    @property
    def new_record(self) -> bool:
        return not self._persisted and not self._destroyed

    @property
    def persisted(self) -> bool:
        return self._persisted and not self._destroyed

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def changed(self) -> list[str]:
        """Names of modified attributes, in order of first change."""
        return list(self._changed)

    @property
    def changes(self) -> dict[str, tuple[Any, Any]]:
        return {name: (old, self._attributes.get(name)) for name, old in self._changed.items()}

    def is_changed(self, name: str | None = None) -> bool:
        return bool(self._changed) if name is None else name in self._changed

    def loaded(self, association: str) -> bool:
        """Whether *association* is resolved in this record's cache."""
        return self._association_cache.is_resolved(association)

    @property
    def session(self) -> Any:
        return self._session

    def _mark_persisted(self) -> None:
        self._persisted = True
        self._changed.clear()

    def _mark_destroyed(self) -> None:
        self._destroyed = True
        self._persisted = False

    # --- identity ---

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if type(other) is not type(self):
            return NotImplemented
        return self.persisted and other.persisted and self.pk == other.pk  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        if self.pk is None:
            return id(self)
        return hash((type(self).__name__, self.pk))

    def __repr__(self) -> str:
        fields = " ".join(f"{k}={v!r}" for k, v in self._attributes.items())
        return f"<{type(self).__name__} {fields}>"
