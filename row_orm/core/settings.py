"""ORM behaviour settings.

OrmSettings is passed explicitly to a Session. Record types may narrow
it (e.g. `__lock_optimistically__ = False`) but never widen it.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from row_orm.core.enums import IncludesDetection


class OrmSettings(BaseModel):
    """Per-session configuration for locking, eager loading and batching."""

    model_config = ConfigDict(frozen=True)

    lock_optimistically: bool = True
    locking_column: str = "lock_version"
    includes_detection: IncludesDetection = IncludesDetection.STRUCTURAL
    default_batch_size: int = Field(1000, ge=1)
    log_statements: bool = False
