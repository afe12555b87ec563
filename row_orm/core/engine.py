"""Statement execution engine.

The Engine is the ORM's only path to the database: it rewrites canonical
``?`` placeholders to the adapter's param style, executes through the
adapter, converts rows to dicts and wraps driver errors. Statements run
on the thread's active transaction when there is one, otherwise on a
pooled connection that is committed right away.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from row_orm.core.connection import ConnectionConfig, ConnectionManager
from row_orm.core.exceptions import StatementError
from row_orm.core.log import STATEMENT_LOGGER
from row_orm.core.params import coerce_params, rewrite_placeholders
from row_orm.core.transaction import TransactionManager

logger = logging.getLogger(__name__)
statement_logger = logging.getLogger(STATEMENT_LOGGER)

StatementListener = Callable[[str, tuple[Any, ...]], None]


def _rows_to_dicts(cursor: Any) -> list[dict[str, Any]]:
    """Convert cursor results to list of dicts.

    Handles both tuple-like rows and dict-like rows from different adapters.
    """
    if cursor.description is None:
        return []
    columns = [desc[0] for desc in cursor.description]
    rows = cursor.fetchall()
    if not rows:
        return []

    # psycopg dict_row and the MySQL dictionary cursor already give dicts
    if isinstance(rows[0], dict):
        return [dict(row) for row in rows]

    return [dict(zip(columns, row, strict=True)) for row in rows]


class Engine:
    """Synchronous statement execution engine."""

    def __init__(
        self,
        connection_manager: ConnectionManager,
        *,
        log_statements: bool = False,
    ) -> None:
        self._connection_manager = connection_manager
        self._paramstyle: str = connection_manager.adapter.paramstyle
        self._log_level = logging.INFO if log_statements else logging.DEBUG
        self._listeners: list[StatementListener] = []
        self._local = threading.local()

    @property
    def log_statements(self) -> bool:
        """True when statements are logged at INFO rather than DEBUG."""
        return self._log_level == logging.INFO

    @log_statements.setter
    def log_statements(self, value: bool) -> None:
        self._log_level = logging.INFO if value else logging.DEBUG

    @classmethod
    def from_config(cls, config: ConnectionConfig, **kwargs: Any) -> Engine:
        """Create an Engine from a ConnectionConfig."""
        return cls(ConnectionManager(config), **kwargs)

    @property
    def connection_manager(self) -> ConnectionManager:
        return self._connection_manager

    @property
    def adapter(self) -> Any:
        return self._connection_manager.adapter

    @property
    def dialect(self) -> Any:
        return self._connection_manager.adapter.dialect

    # --- listeners ---

    def add_listener(self, listener: StatementListener) -> None:
        """Call *listener(sql, params)* before every statement."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StatementListener) -> None:
        self._listeners.remove(listener)

    # --- transactions ---

    def transaction(self) -> TransactionManager:
        """Create a new transaction context manager."""
        return TransactionManager(self)

    def current_transaction(self) -> TransactionManager | None:
        stack: list[TransactionManager] = getattr(self._local, "stack", [])
        return stack[-1] if stack else None

    def in_transaction(self) -> bool:
        return self.current_transaction() is not None

    def _push_transaction(self, tx: TransactionManager) -> None:
        if not hasattr(self._local, "stack"):
            self._local.stack = []
        self._local.stack.append(tx)

    def _pop_transaction(self, tx: TransactionManager) -> None:
        stack: list[TransactionManager] = getattr(self._local, "stack", [])
        if tx in stack:
            stack.remove(tx)

    # --- execution ---

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Execute a write statement. Returns affected row count."""
        with self._run(sql, params) as cursor:
            return int(cursor.rowcount)

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        """Execute a SELECT and return every row as a dict."""
        with self._run(sql, params) as cursor:
            return _rows_to_dicts(cursor)

    def scalar(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        """Fetch a single scalar value (first column of first row)."""
        rows = self.query(sql, params)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    def insert(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        pk: str | None = None,
    ) -> Any:
        """Execute an INSERT and return the generated primary key.

        When the dialect supports RETURNING and *pk* is given, the
        statement is extended with ``RETURNING pk``.
        """
        if pk is not None and self.dialect.supports_returning:
            sql = f"{sql} RETURNING {pk}"
        with self._run(sql, params) as cursor:
            if pk is None:
                return None
            return self.adapter.last_insert_id(cursor)

    def close(self) -> None:
        self._connection_manager.close_pool()

    @contextmanager
    def _run(self, sql: str, params: Sequence[Any] | None) -> Iterator[Any]:
        bound = tuple(self.dialect.bind_value(v) for v in coerce_params(params))
        final_sql = rewrite_placeholders(sql, self._paramstyle) if bound else sql
        for listener in self._listeners:
            listener(sql, bound)

        tx = self.current_transaction()
        if tx is not None:
            yield self._execute_on(tx.connection, final_sql, bound)
            return

        with self._connection_manager.get_connection() as conn:
            try:
                cursor = self._execute_on(conn, final_sql, bound)
                yield cursor
            except Exception:
                conn.rollback()
                raise
            conn.commit()

    def _execute_on(self, conn: Any, sql: str, params: tuple[Any, ...]) -> Any:
        started = time.perf_counter()
        try:
            cursor = self.adapter.execute(conn, sql, params)
        except Exception as e:
            logger.debug("Statement failed: %s", e)
            raise StatementError(sql, str(e)) from e
        elapsed_ms = round((time.perf_counter() - started) * 1000, 3)
        statement_logger.log(
            self._log_level,
            "%s %s",
            sql,
            list(params),
            extra={"sql": sql, "params": list(params), "elapsed_ms": elapsed_ms},
        )
        return cursor
