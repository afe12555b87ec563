"""Mapping layer - turn result rows into Record instances."""

from __future__ import annotations

from row_orm.mapping.joined import JoinedRecordMapper
from row_orm.mapping.plan import AssociationPlan, EntityPlan, JoinedQueryPlan, entity_plan
from row_orm.mapping.record import RecordMapper

__all__ = [
    "RecordMapper",
    "JoinedRecordMapper",
    "EntityPlan",
    "AssociationPlan",
    "JoinedQueryPlan",
    "entity_plan",
]
