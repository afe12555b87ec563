"""Enumerations shared across the package."""

from __future__ import annotations

from enum import Enum


class DatabaseBackend(Enum):
    """Supported database backends."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    ORACLE = "oracle"


class LoadStrategy(Enum):
    """How an association is resolved for a result set."""

    LAZY = "lazy"
    PRELOAD = "preload"
    EAGER_LOAD = "eager_load"
    INCLUDES = "includes"


class IncludesDetection(Enum):
    """How `includes` decides to fall back to a single joined query."""

    STRUCTURAL = "structural"
    EXPLICIT = "explicit"


class SortDirection(Enum):
    ASC = "ASC"
    DESC = "DESC"

    @classmethod
    def parse(cls, value: str | SortDirection) -> SortDirection:
        if isinstance(value, SortDirection):
            return value
        return cls(value.strip().upper())
