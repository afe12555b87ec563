"""Oracle adapter using oracledb."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from row_orm.adapters.dialect import Dialect, OracleDialect
from row_orm.core.connection import ConnectionConfig
from row_orm.core.exceptions import AdapterError, PoolError

_DIALECT = OracleDialect()


def _build_dsn(config: ConnectionConfig) -> str:
    """Build an Oracle DSN string from config fields (host:port/database)."""
    return f"{config.host}:{config.port}/{config.database}"


def _make_row_factory(cursor: Any) -> Any:
    """Create a row factory that converts tuples to dicts using column names."""
    columns = [col[0].lower() for col in cursor.description]

    def factory(*args: Any) -> dict[str, Any]:
        return dict(zip(columns, args, strict=True))

    return factory


class OracleSyncAdapter:
    """Synchronous Oracle adapter using oracledb."""

    @property
    def paramstyle(self) -> str:
        return "numeric"

    @property
    def dialect(self) -> Dialect:
        return _DIALECT

    def create_pool(self, config: ConnectionConfig) -> list[Any]:
        """Create a 'pool' (list of connections) for Oracle."""
        import oracledb

        dsn = _build_dsn(config)
        pool: list[Any] = []
        for _ in range(config.pool_size):
            conn = oracledb.connect(user=config.user, password=config.password, dsn=dsn)
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
        """Execute SQL and return a cursor with dict row factory."""
        cursor = connection.cursor()
        cursor.execute(sql, list(params))
        if cursor.description is not None:
            cursor.rowfactory = _make_row_factory(cursor)
        return cursor

    def last_insert_id(self, cursor: Any) -> Any:
        # cursor.lastrowid is a ROWID, not the primary key
        raise AdapterError("Oracle records must be saved with an explicit primary key")
