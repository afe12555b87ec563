"""PostgreSQL adapter using psycopg (v3+)."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from row_orm.adapters.dialect import Dialect, PostgresqlDialect
from row_orm.core.connection import ConnectionConfig
from row_orm.core.exceptions import AdapterError, PoolError

_DIALECT = PostgresqlDialect()


def _build_conninfo(config: ConnectionConfig) -> str:
    """Build a libpq connection string from config fields."""
    parts: list[str] = []
    if config.host is not None:
        parts.append(f"host={config.host}")
    if config.port is not None:
        parts.append(f"port={config.port}")
    if config.user is not None:
        parts.append(f"user={config.user}")
    if config.password is not None:
        parts.append(f"password={config.password}")
    parts.append(f"dbname={config.database}")
    return " ".join(parts)


class PostgresqlSyncAdapter:
    """Synchronous PostgreSQL adapter using psycopg (v3+).

    Generated keys come back through ``INSERT ... RETURNING``, so
    ``last_insert_id`` reads the first column of the returned row.
    """

    @property
    def paramstyle(self) -> str:
        return "format"

    @property
    def dialect(self) -> Dialect:
        return _DIALECT

    def create_pool(self, config: ConnectionConfig) -> list[Any]:
        import psycopg
        import psycopg.rows

        conninfo = _build_conninfo(config)
        pool: list[Any] = []
        for _ in range(config.pool_size):
            conn = psycopg.connect(conninfo, row_factory=psycopg.rows.dict_row)
            pool.append(conn)
        return pool

    def acquire_connection(self, pool: list[Any]) -> Any:
        if not pool:
            raise PoolError("No connections available in pool")
        return pool.pop()

    def release_connection(self, connection: Any, pool: list[Any]) -> None:
        pool.append(connection)

    def close_pool(self, pool: list[Any]) -> None:
        for conn in pool:
            conn.close()
        pool.clear()

    def execute(
        self,
        connection: Any,
        sql: str,
        params: Sequence[Any] = (),
    ) -> Any:
        return connection.execute(sql, tuple(params) or None)

    def last_insert_id(self, cursor: Any) -> Any:
        row = cursor.fetchone()
        if row is None:
            raise AdapterError("INSERT ... RETURNING produced no row")
        return next(iter(row.values()))
