"""RowORM - relational mapping core with chainable queries and eager loading."""

from __future__ import annotations

from row_orm.associations.descriptors import (
    BelongsTo,
    HasAndBelongsToMany,
    HasMany,
    HasManyThrough,
    HasOne,
    configure_associations,
)
from row_orm.core.connection import ConnectionConfig, ConnectionManager
from row_orm.core.engine import Engine
from row_orm.core.enums import DatabaseBackend, IncludesDetection, LoadStrategy, SortDirection
from row_orm.core.exceptions import (
    AdapterError,
    AssociationConfigurationError,
    AttributeTypeError,
    ColumnMismatchError,
    ConnectionError,  # noqa: A004
    DetachedRecordError,
    ExecutionError,
    InvalidEnumValueError,
    InvalidQueryError,
    MappingError,
    NotFoundError,
    PoolError,
    RowOrmError,
    StaleObjectError,
    StatementError,
    TransactionError,
    TransactionStateError,
)
from row_orm.core.log import configure_logging
from row_orm.core.settings import OrmSettings
from row_orm.core.transaction import TransactionManager
from row_orm.model.callbacks import Phase, hook
from row_orm.model.columns import Column, ColumnType
from row_orm.model.record import Record, scope
from row_orm.query.builder import Query
from row_orm.session import Session

__all__ = [
    # Connection
    "ConnectionConfig",
    "ConnectionManager",
    # Engine
    "Engine",
    "TransactionManager",
    # Session
    "Session",
    "OrmSettings",
    "Query",
    # Records
    "Record",
    "Column",
    "ColumnType",
    "scope",
    "hook",
    "Phase",
    # Associations
    "BelongsTo",
    "HasMany",
    "HasOne",
    "HasManyThrough",
    "HasAndBelongsToMany",
    "configure_associations",
    # Enums
    "DatabaseBackend",
    "LoadStrategy",
    "IncludesDetection",
    "SortDirection",
    # Logging
    "configure_logging",
    # Exceptions
    "RowOrmError",
    "InvalidQueryError",
    "AssociationConfigurationError",
    "DetachedRecordError",
    "NotFoundError",
    "StaleObjectError",
    "ExecutionError",
    "StatementError",
    "MappingError",
    "ColumnMismatchError",
    "AttributeTypeError",
    "InvalidEnumValueError",
    "TransactionError",
    "TransactionStateError",
    "AdapterError",
    "ConnectionError",
    "PoolError",
]
