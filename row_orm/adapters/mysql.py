"""MySQL adapter using mysql-connector-python."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from row_orm.adapters.dialect import Dialect, MysqlDialect
from row_orm.core.connection import ConnectionConfig
from row_orm.core.exceptions import PoolError

_DIALECT = MysqlDialect()


class MysqlSyncAdapter:
    """Synchronous MySQL adapter using mysql-connector-python."""

    @property
    def paramstyle(self) -> str:
        return "format"

    @property
    def dialect(self) -> Dialect:
        return _DIALECT

    def create_pool(self, config: ConnectionConfig) -> list[Any]:
        """Create a pool (list of connections) for MySQL."""
        import mysql.connector

        pool: list[Any] = []
        for _ in range(config.pool_size):
            conn = mysql.connector.connect(
                host=config.host,
                port=config.port,
                user=config.user,
                password=config.password,
                database=config.database,
                **config.extra,
            )
            pool.append(conn)
        return pool

    def acquire_connection(self, pool: list[Any]) -> Any:
        """Acquire a connection from the pool."""
        if not pool:
            raise PoolError("No connections available in pool")
        return pool.pop()

    def release_connection(self, connection: Any, pool: list[Any]) -> None:
        """Release a connection back to the pool."""
        pool.append(connection)

    def close_pool(self, pool: list[Any]) -> None:
        """Close all connections in the pool."""
        for conn in pool:
            conn.close()
        pool.clear()

    def execute(
        self,
        connection: Any,
        sql: str,
        params: Sequence[Any] = (),
    ) -> Any:
        """Execute SQL and return a cursor with dictionary results."""
        cursor = connection.cursor(dictionary=True, buffered=True)
        cursor.execute(sql, tuple(params) or None)
        return cursor

    def last_insert_id(self, cursor: Any) -> Any:
        return cursor.lastrowid
