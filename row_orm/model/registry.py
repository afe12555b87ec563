"""Record type registry.

Association targets may be given as class names; they are looked up here
once the named class has been declared.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from row_orm.model.record import Record

logger = logging.getLogger(__name__)

# Global record registry - maps class names to record classes
_record_registry: dict[str, type[Record]] = {}


def register_record(record_cls: type[Record]) -> None:
    """Register a record class for association resolution."""
    name = record_cls.__name__
    previous = _record_registry.get(name)
    if previous is not None and previous is not record_cls:
        logger.debug("Record type %s redeclared; replacing registry entry", name)
    _record_registry[name] = record_cls


def get_record(name: str) -> type[Record] | None:
    """Get a record class by class name."""
    return _record_registry.get(name)


def registered_records() -> list[type[Record]]:
    return list(_record_registry.values())
