"""Association descriptors.

Each descriptor is declared as a class attribute on a Record type and is
immutable once the owning class is built. Targets may be classes or class
names; names are resolved through the record registry on first use.

Example::

    class Book(Record):
        __table__ = "books"
        id = Column(int, primary_key=True)
        author_id = Column(int)

        author = BelongsTo("Author")
        reviews = HasMany("Review", order="id")
        tags = HasAndBelongsToMany("Tag")
        reviewers = HasManyThrough("reviews", source="user")
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from row_orm.associations import runtime
from row_orm.core.exceptions import AssociationConfigurationError
from row_orm.model.registry import get_record
from row_orm.query.spec import AliasTracker, JoinStep

if TYPE_CHECKING:
    from row_orm.model.record import Record

_DEPENDENT_OPTIONS = (None, "destroy", "delete_all", "nullify")


def underscore(name: str) -> str:
    """``BookTag`` -> ``book_tag``."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def camelize(name: str) -> str:
    """``book_tag`` -> ``BookTag``."""
    return "".join(part.capitalize() for part in name.split("_"))


def singularize(name: str) -> str:
    if name.endswith("ies"):
        return name[:-3] + "y"
    if name.endswith(("sses", "xes", "ches", "shes")):
        return name[:-2]
    if name.endswith("s") and not name.endswith("ss"):
        return name[:-1]
    return name


class _PendingTarget(LookupError):
    """A target class name is not registered yet."""


class Association:
    """Base descriptor: a named relationship from an owner type to a target type."""

    macro: str = ""
    collection: bool = False
    polymorphic: bool = False

    def __init__(self, target: type[Record] | str | None = None) -> None:
        self._target = target
        self.name = ""
        self.owner: type[Record] | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.owner = owner  # type: ignore[assignment]
        self.name = name

    def __get__(self, instance: Record | None, owner: type) -> Any:
        if instance is None:
            return self
        if self.collection:
            return runtime.CollectionProxy(instance, self)
        return runtime.read_single(instance, self)

    def __set__(self, instance: Record, value: Any) -> None:
        raise AttributeError(f"{self.owner_name}.{self.name} is read-only")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.owner_name}.{self.name}>"

    # --- resolution ---

    @property
    def owner_name(self) -> str:
        return self.owner.__name__ if self.owner is not None else "?"

    def _error(self, detail: str) -> AssociationConfigurationError:
        return AssociationConfigurationError(self.owner_name, self.name, detail)

    def _default_target_name(self) -> str:
        return camelize(self.name)

    def _lookup(self) -> type[Record]:
        target = self._target if self._target is not None else self._default_target_name()
        if isinstance(target, str):
            found = get_record(target)
            if found is None:
                raise _PendingTarget(target)
            return found
        return target

    @property
    def target_type(self) -> type[Record]:
        """Resolved target record class."""
        try:
            return self._lookup()
        except _PendingTarget as e:
            raise self._error(f"unknown record type '{e.args[0]}'") from None

    @property
    def target_table(self) -> str:
        return self.target_type.__table__

    def validate(self, *, strict: bool) -> None:
        """Check the declaration.

        Non-strict checks skip targets that are not declared yet; strict
        checks (first use, ``configure_associations``) report them.
        """
        try:
            self._lookup()
        except _PendingTarget as e:
            if strict:
                raise self._error(f"unknown record type '{e.args[0]}'") from None

    # --- keys and joins ---

    @property
    def owner_key(self) -> str:
        """Column on the owner whose value identifies the associated rows."""
        raise NotImplementedError

    @property
    def target_key(self) -> str:
        """Column on the target matched against ``owner_key`` values."""
        raise NotImplementedError

    def chain(self) -> tuple[Association, ...]:
        """Direct (non-through) associations making up this path."""
        return (self,)

    def join_steps(self, source_alias: str, tracker: AliasTracker) -> list[JoinStep]:
        """Tables to join, in order, to reach the target from *source_alias*."""
        alias = tracker.alias_for(self.target_table)
        return [JoinStep(self.target_table, alias, self._on(source_alias, alias))]

    def _on(self, source_alias: str, target_alias: str) -> str:
        return (
            f"{target_alias}.{self.target_key} = {source_alias}.{self.owner_key}"
            f"{self.type_condition(target_alias)}"
        )

    def type_condition(self, target_alias: str) -> str:
        """Extra join condition on the target's type column, if any."""
        return ""

    def target_conditions(self, key: Any) -> dict[str, Any]:
        """Column equalities on the target selecting the rows owned by *key*."""
        return {self.target_key: key}

    def intermediate_tables(self) -> set[str]:
        return set()


class BelongsTo(Association):
    """Foreign key on the owner table pointing at the target's primary key.

    With ``polymorphic=True`` the owner also stores the target's class name
    in a type column (``<name>_type``) and the target is resolved per row::

        class Picture(Record):
            imageable_id = Column(int)
            imageable_type = Column(str)

            imageable = BelongsTo(polymorphic=True)
    """

    macro = "belongs_to"

    def __init__(
        self,
        target: type[Record] | str | None = None,
        *,
        foreign_key: str | None = None,
        primary_key: str | None = None,
        polymorphic: bool = False,
        foreign_type: str | None = None,
    ) -> None:
        if polymorphic and target is not None:
            raise AssociationConfigurationError(
                "?", str(target), "a polymorphic belongs_to takes no target type"
            )
        super().__init__(target)
        self._foreign_key = foreign_key
        self._primary_key = primary_key
        self._foreign_type = foreign_type
        self.polymorphic = polymorphic

    @property
    def foreign_type(self) -> str:
        """Owner column holding the target's class name (polymorphic only)."""
        return self._foreign_type or f"{self.name}_type"

    def _lookup(self) -> type[Record]:
        if self.polymorphic:
            raise self._error("polymorphic association has no single target type")
        return super()._lookup()

    def target_for(self, record: Record) -> type[Record] | None:
        """Target class for *record*; None when its type column names no known type."""
        if not self.polymorphic:
            return self.target_type
        type_name = record.read_attribute(self.foreign_type)
        return get_record(type_name) if type_name else None

    def validate(self, *, strict: bool) -> None:
        if not self.polymorphic:
            super().validate(strict=strict)
            return
        columns = self.owner.__schema__.columns  # type: ignore[union-attr]
        missing = [c for c in (self.foreign_key, self.foreign_type) if c not in columns]
        if missing:
            raise self._error(f"polymorphic columns {missing} are not declared")

    def join_steps(self, source_alias: str, tracker: AliasTracker) -> list[JoinStep]:
        if self.polymorphic:
            raise self._error("polymorphic associations cannot be joined; use preload")
        return super().join_steps(source_alias, tracker)

    @property
    def foreign_key(self) -> str:
        return self._foreign_key or f"{self.name}_id"

    @property
    def primary_key(self) -> str:
        return self._primary_key or self.target_type.__schema__.primary_key

    @property
    def owner_key(self) -> str:
        return self.foreign_key

    @property
    def target_key(self) -> str:
        return self.primary_key

    def __set__(self, instance: Record, value: Record | None) -> None:
        runtime.write_belongs_to(instance, self, value)


class HasMany(Association):
    """Foreign key on the target table pointing back at the owner.

    ``as_`` names the polymorphic belongs_to on the target: the target rows
    are matched on ``<as_>_id`` and on ``<as_>_type`` equal to the owner's
    class name.
    """

    macro = "has_many"
    collection = True

    def __init__(
        self,
        target: type[Record] | str | None = None,
        *,
        foreign_key: str | None = None,
        primary_key: str | None = None,
        order: str | None = None,
        dependent: str | None = None,
        as_: str | None = None,
    ) -> None:
        super().__init__(target)
        if dependent not in _DEPENDENT_OPTIONS:
            raise AssociationConfigurationError(
                "?", str(target), f"dependent must be one of {_DEPENDENT_OPTIONS[1:]}"
            )
        self._foreign_key = foreign_key
        self._primary_key = primary_key
        self.order = order
        self.dependent = dependent
        self.as_ = as_

    def _default_target_name(self) -> str:
        return camelize(singularize(self.name))

    @property
    def foreign_key(self) -> str:
        if self._foreign_key:
            return self._foreign_key
        if self.as_:
            return f"{self.as_}_id"
        return f"{underscore(self.owner_name)}_id"

    @property
    def type_column(self) -> str | None:
        return f"{self.as_}_type" if self.as_ else None

    @property
    def primary_key(self) -> str:
        return self._primary_key or self.owner.__schema__.primary_key  # type: ignore[union-attr]

    def type_condition(self, target_alias: str) -> str:
        if not self.as_:
            return ""
        return f" AND {target_alias}.{self.type_column} = '{self.owner_name}'"

    def target_conditions(self, key: Any) -> dict[str, Any]:
        conditions = {self.target_key: key}
        if self.as_:
            conditions[self.type_column] = self.owner_name  # type: ignore[index]
        return conditions

    @property
    def owner_key(self) -> str:
        return self.primary_key

    @property
    def target_key(self) -> str:
        return self.foreign_key


class HasOne(HasMany):
    """Like HasMany, resolving to the first matching row."""

    macro = "has_one"
    collection = False

    def _default_target_name(self) -> str:
        return camelize(self.name)


class HasAndBelongsToMany(Association):
    """Many-to-many through a bare join table with two foreign keys.

    The default join table is both table names in lexicographic order,
    joined with ``_`` (``books`` + ``tags`` -> ``books_tags``).
    """

    macro = "has_and_belongs_to_many"
    collection = True

    def __init__(
        self,
        target: type[Record] | str | None = None,
        *,
        join_table: str | None = None,
        foreign_key: str | None = None,
        association_foreign_key: str | None = None,
    ) -> None:
        super().__init__(target)
        self._join_table = join_table
        self._foreign_key = foreign_key
        self._association_foreign_key = association_foreign_key

    def _default_target_name(self) -> str:
        return camelize(singularize(self.name))

    @property
    def join_table(self) -> str:
        if self._join_table:
            return self._join_table
        return "_".join(sorted([self.owner.__table__, self.target_table]))  # type: ignore[union-attr]

    @property
    def foreign_key(self) -> str:
        """Join-table column referencing the owner."""
        return self._foreign_key or f"{underscore(self.owner_name)}_id"

    @property
    def association_foreign_key(self) -> str:
        """Join-table column referencing the target."""
        return self._association_foreign_key or f"{underscore(self.target_type.__name__)}_id"

    @property
    def owner_key(self) -> str:
        return self.owner.__schema__.primary_key  # type: ignore[union-attr]

    @property
    def target_key(self) -> str:
        return self.target_type.__schema__.primary_key

    def join_steps(self, source_alias: str, tracker: AliasTracker) -> list[JoinStep]:
        join_alias = tracker.alias_for(self.join_table)
        target_alias = tracker.alias_for(self.target_table)
        return [
            JoinStep(
                self.join_table,
                join_alias,
                f"{join_alias}.{self.foreign_key} = {source_alias}.{self.owner_key}",
            ),
            JoinStep(
                self.target_table,
                target_alias,
                f"{target_alias}.{self.target_key} = {join_alias}.{self.association_foreign_key}",
            ),
        ]

    def intermediate_tables(self) -> set[str]:
        return {self.join_table}


class HasManyThrough(Association):
    """Collection reached through another association on the owner.

    ``through`` names an association on the owner; ``source`` names an
    association on the intermediate type (defaults to this association's
    name, then its singular form). Sources may themselves be through
    associations.
    """

    macro = "has_many_through"
    collection = True

    def __init__(self, through: str, *, source: str | None = None) -> None:
        super().__init__(None)
        self.through = through
        self._source = source

    def _through_association(self) -> Association:
        found = self.owner.__associations__.get(self.through)  # type: ignore[union-attr]
        if found is None:
            raise self._error(f"through association '{self.through}' is not declared")
        return found  # type: ignore[no-any-return]

    def _find_source(self, intermediate: type[Record]) -> Association:
        candidates = [self._source] if self._source else [self.name, singularize(self.name)]
        for candidate in candidates:
            found = intermediate.__associations__.get(candidate)
            if found is not None:
                return found  # type: ignore[no-any-return]
        raise self._error(
            f"source association {' or '.join(repr(c) for c in candidates)} "
            f"not found on {intermediate.__name__}"
        )

    def source_association(self) -> Association:
        return self._find_source(self._through_association()._lookup())

    def _expand(self, stack: list[Association]) -> tuple[Association, ...]:
        if self in stack:
            path = " -> ".join(f"{a.owner_name}.{a.name}" for a in [*stack, self])
            raise self._error(f"cyclic through path: {path}")
        stack = [*stack, self]
        through = self._through_association()
        if isinstance(through, HasManyThrough):
            through_hops = through._expand(stack)
        else:
            through_hops = (through,)
        source = self._find_source(through_hops[-1]._lookup())
        if isinstance(source, HasManyThrough):
            source_hops = source._expand(stack)
        else:
            source_hops = (source,)
        return through_hops + source_hops

    def chain(self) -> tuple[Association, ...]:
        try:
            return self._expand([])
        except _PendingTarget as e:
            raise self._error(f"unknown record type '{e.args[0]}'") from None

    def _lookup(self) -> type[Record]:
        # the final hop decides the target type
        return self._expand([])[-1]._lookup()

    def validate(self, *, strict: bool) -> None:
        try:
            self._expand([])
        except _PendingTarget as e:
            if strict:
                raise self._error(f"unknown record type '{e.args[0]}'") from None

    @property
    def owner_key(self) -> str:
        return self.chain()[0].owner_key

    @property
    def target_key(self) -> str:
        return self.target_type.__schema__.primary_key

    def join_steps(self, source_alias: str, tracker: AliasTracker) -> list[JoinStep]:
        steps: list[JoinStep] = []
        alias = source_alias
        for hop in self.chain():
            hop_steps = hop.join_steps(alias, tracker)
            steps.extend(hop_steps)
            alias = hop_steps[-1].alias
        return steps

    def intermediate_tables(self) -> set[str]:
        tables: set[str] = set()
        hops = self.chain()
        for hop in hops:
            tables |= hop.intermediate_tables()
        for hop in hops[:-1]:
            tables.add(hop.target_table)
        return tables


def configure_associations(record_types: list[type[Record]] | None = None) -> None:
    """Resolve every association strictly.

    Raises AssociationConfigurationError for unknown targets and cyclic
    through paths that could not be checked when the classes were declared.
    """
    from row_orm.model.registry import registered_records

    for record_type in record_types or registered_records():
        for association in record_type.__associations__.values():
            association.validate(strict=True)
