"""SQL dialect strategy.

The only wire-format differences the ORM cares about: row-lock clauses,
insert-if-absent syntax for join rows, RETURNING support for generated
keys, EXPLAIN prefixes and value binding.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Dialect:
    """Generic ANSI-ish dialect; backends override what differs."""

    name: str = "generic"
    supports_row_locks: bool = True
    supports_returning: bool = False
    explain_prefix: str = "EXPLAIN"

    def lock_clause(self, mode: str | bool) -> str:
        """Row-locking clause for *mode* (True means the default lock)."""
        if mode is True:
            return "FOR UPDATE" if self.supports_row_locks else ""
        return str(mode)

    def limit_clause(self, limit: int | None, offset: int | None) -> str:
        parts = []
        if limit is not None:
            parts.append(f"LIMIT {limit}")
        if offset is not None:
            parts.append(f"OFFSET {offset}")
        return " ".join(parts)

    def insert_ignore(self, table: str, columns: list[str]) -> str:
        """INSERT statement that is a no-op when the unique pair already exists."""
        cols = ", ".join(columns)
        marks = ", ".join("?" for _ in columns)
        conditions = " AND ".join(f"{c} = ?" for c in columns)
        return (
            f"INSERT INTO {table} ({cols}) SELECT {marks} "
            f"WHERE NOT EXISTS (SELECT 1 FROM {table} WHERE {conditions})"
        )

    def insert_ignore_params(self, values: list[Any]) -> list[Any]:
        return list(values) + list(values)

    def bind_value(self, value: Any) -> Any:
        return value


@dataclass(frozen=True)
class SqliteDialect(Dialect):
    name: str = "sqlite"
    supports_row_locks: bool = False
    explain_prefix: str = "EXPLAIN QUERY PLAN"

    def limit_clause(self, limit: int | None, offset: int | None) -> str:
        # SQLite only accepts OFFSET after a LIMIT
        if limit is None and offset is not None:
            return f"LIMIT -1 OFFSET {offset}"
        return super().limit_clause(limit, offset)

    def insert_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        marks = ", ".join("?" for _ in columns)
        return f"INSERT OR IGNORE INTO {table} ({cols}) VALUES ({marks})"

    def insert_ignore_params(self, values: list[Any]) -> list[Any]:
        return list(values)

    def bind_value(self, value: Any) -> Any:
        # sqlite3's default datetime adapter is deprecated
        if isinstance(value, datetime):
            return value.isoformat(sep=" ")
        return value


@dataclass(frozen=True)
class PostgresqlDialect(Dialect):
    name: str = "postgresql"
    supports_returning: bool = True

    def insert_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        marks = ", ".join("?" for _ in columns)
        return f"INSERT INTO {table} ({cols}) VALUES ({marks}) ON CONFLICT DO NOTHING"

    def insert_ignore_params(self, values: list[Any]) -> list[Any]:
        return list(values)


@dataclass(frozen=True)
class MysqlDialect(Dialect):
    name: str = "mysql"

    def limit_clause(self, limit: int | None, offset: int | None) -> str:
        if limit is None and offset is not None:
            return f"LIMIT 18446744073709551615 OFFSET {offset}"
        return super().limit_clause(limit, offset)

    def insert_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        marks = ", ".join("?" for _ in columns)
        return f"INSERT IGNORE INTO {table} ({cols}) VALUES ({marks})"

    def insert_ignore_params(self, values: list[Any]) -> list[Any]:
        return list(values)


@dataclass(frozen=True)
class OracleDialect(Dialect):
    name: str = "oracle"
    explain_prefix: str = "EXPLAIN PLAN FOR"

    def limit_clause(self, limit: int | None, offset: int | None) -> str:
        parts = []
        if offset is not None:
            parts.append(f"OFFSET {offset} ROWS")
        if limit is not None:
            parts.append(f"FETCH NEXT {limit} ROWS ONLY")
        return " ".join(parts)

    def insert_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        marks = ", ".join("?" for _ in columns)
        conditions = " AND ".join(f"{c} = ?" for c in columns)
        return (
            f"INSERT INTO {table} ({cols}) SELECT {marks} FROM dual "
            f"WHERE NOT EXISTS (SELECT 1 FROM {table} WHERE {conditions})"
        )
