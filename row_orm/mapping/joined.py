"""Joined-row reconstruction mapper.

Single-pass O(n) reconstruction of base records and their eagerly joined
associations using identity maps.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from row_orm.mapping.plan import JoinedQueryPlan
from row_orm.mapping.record import RecordMapper

T = TypeVar("T")


class JoinedRecordMapper(Generic[T]):
    """Rebuild records from a LEFT OUTER JOIN result set.

    A base row appears once however many joined rows it fans out to.
    Associated records are deduplicated by primary key, per owner for
    collections, and shared across owners within one result set.
    """

    def __init__(self, plan: JoinedQueryPlan, session: Any = None) -> None:
        self._plan = plan
        self._session = session

    def map_many(self, rows: list[dict[str, Any]]) -> list[T]:
        """Reconstruct base records, resolving every planned association."""
        plan = self._plan
        root = plan.root_plan
        root_mapper: RecordMapper[Any] = RecordMapper(root.record_type, self._session)

        # Identity maps
        root_identity: dict[Any, Any] = {}
        root_order: list[Any] = []  # Preserve first-seen order

        # association name -> target key -> record, shared across owners
        targets: dict[str, dict[Any, Any]] = {a.association_name: {} for a in plan.association_plans}
        # root key -> association name -> ordered target keys
        members: dict[Any, dict[str, list[Any]]] = {}

        for row in rows:
            root_key = row.get(root.prefix + root.key_column)
            if root_key is None:
                continue

            if root_key not in root_identity:
                root_identity[root_key] = root_mapper.map_prefixed(row, root.prefix, root.columns)
                root_order.append(root_key)
                members[root_key] = {a.association_name: [] for a in plan.association_plans}

            for assoc in plan.association_plans:
                entity = assoc.entity_plan
                target_key = row.get(entity.prefix + entity.key_column)

                # Skip NULL target key (no match for this owner)
                if target_key is None:
                    continue

                seen = members[root_key][assoc.association_name]
                if target_key in seen:
                    continue
                identity = targets[assoc.association_name]
                if target_key not in identity:
                    mapper: RecordMapper[Any] = RecordMapper(entity.record_type, self._session)
                    identity[target_key] = mapper.map_prefixed(row, entity.prefix, entity.columns)
                seen.append(target_key)

        results = []
        for root_key in root_order:
            record = root_identity[root_key]
            cache = record._association_cache
            for assoc in plan.association_plans:
                identity = targets[assoc.association_name]
                found = [identity[k] for k in members[root_key][assoc.association_name]]
                if assoc.collection:
                    cache.set_collection(assoc.association_name, found)
                else:
                    cache.set_single(assoc.association_name, found[0] if found else None)
            results.append(record)
        return results
