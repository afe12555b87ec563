"""Joined-row mapping plan data classes.

Frozen dataclasses describing how a single eager-load query's rows are
split back into a base record and its associated records. Used by
JoinedRecordMapper at execution time.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class EntityPlan:
    """Columns of one record type inside a joined row, under a prefix."""

    record_type: type
    prefix: str
    key_column: str
    columns: tuple[str, ...]

    def projection(self, alias: str) -> list[str]:
        """``alias.col AS prefixcol`` select items for this entity."""
        return [f"{alias}.{col} AS {self.prefix}{col}" for col in self.columns]


@dataclass(frozen=True)
class AssociationPlan:
    """One eagerly joined association (collection or single)."""

    association_name: str
    entity_plan: EntityPlan
    alias: str
    collection: bool


@dataclass(frozen=True)
class JoinedQueryPlan:
    """Compiled plan for one eager-load query."""

    root_plan: EntityPlan
    association_plans: list[AssociationPlan] = field(default_factory=list)

    @property
    def has_collections(self) -> bool:
        return any(plan.collection for plan in self.association_plans)


def entity_plan(record_type: type, prefix: str) -> EntityPlan:
    schema = record_type.__schema__  # type: ignore[attr-defined]
    return EntityPlan(record_type, prefix, schema.primary_key, tuple(schema.column_names))
