"""Database adapter protocol.

Every adapter module MUST implement this protocol so that the Engine can
stay backend-agnostic. Rows are returned as dicts or dict-convertible
objects; parameters are always positional.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from row_orm.adapters.dialect import Dialect
from row_orm.core.connection import ConnectionConfig


@runtime_checkable
class SyncAdapter(Protocol):
    """Synchronous database adapter protocol."""

    @property
    def paramstyle(self) -> str:
        """Positional marker style: 'qmark' (?), 'format' (%s) or 'numeric' (:1)."""
        ...

    @property
    def dialect(self) -> Dialect:
        """SQL dialect strategy for this backend."""
        ...

    def create_pool(self, config: ConnectionConfig) -> Any:
        """Create a connection pool."""
        ...

    def acquire_connection(self, pool: Any) -> Any:
        """Acquire a connection from the pool."""
        ...

    def release_connection(self, connection: Any, pool: Any) -> None:
        """Release a connection back to the pool."""
        ...

    def close_pool(self, pool: Any) -> None:
        """Close the pool and release all connections."""
        ...

    def execute(
        self,
        connection: Any,
        sql: str,
        params: Sequence[Any] = (),
    ) -> Any:
        """Execute SQL and return a cursor-like object."""
        ...

    def last_insert_id(self, cursor: Any) -> Any:
        """Generated key of the last INSERT executed on *cursor*."""
        ...
