"""RowORM exception hierarchy.

All exceptions are RowORM-specific. Raw driver exceptions are never
exposed to callers; they are chained onto an ExecutionError instead.
"""

from __future__ import annotations

from typing import Any


class RowOrmError(Exception):
    """Base exception for all RowORM errors."""


# --- Query building ---


class InvalidQueryError(RowOrmError):
    """Raised for malformed or contradictory builder state, before execution."""


# --- Associations ---


class AssociationConfigurationError(RowOrmError):
    """Raised when an association cannot be resolved or forms a cycle."""

    def __init__(self, owner: str, name: str, detail: str) -> None:
        self.owner = owner
        self.name = name
        super().__init__(f"Invalid association {owner}.{name}: {detail}")


class DetachedRecordError(RowOrmError):
    """Raised when a lazy association is read on a record with no session."""

    def __init__(self, record_type: str, name: str) -> None:
        self.record_type = record_type
        self.name = name
        super().__init__(
            f"Cannot load '{name}' on a detached {record_type}: record has no session"
        )


# --- Finders ---


class NotFoundError(RowOrmError):
    """Raised by strict finders when no row matches."""

    def __init__(self, record_type: str, criteria: Any) -> None:
        self.record_type = record_type
        self.criteria = criteria
        super().__init__(f"Couldn't find {record_type} with {criteria}")


# --- Locking ---


class StaleObjectError(RowOrmError):
    """Raised when an optimistic-locking write affects zero rows."""

    def __init__(self, record: Any, attempted_action: str) -> None:
        self.record = record
        self.attempted_action = attempted_action
        super().__init__(
            f"Attempted to {attempted_action} a stale object: {type(record).__name__}"
        )


# --- Execution ---


class ExecutionError(RowOrmError):
    """Base for statement execution errors."""


class StatementError(ExecutionError):
    """Raised when the driver rejects a statement."""

    def __init__(self, sql: str, detail: str) -> None:
        self.sql = sql
        super().__init__(f"Statement failed: {detail} [SQL: {sql}]")


# --- Mapping ---


class MappingError(RowOrmError):
    """Base for mapping errors."""


class ColumnMismatchError(MappingError):
    """Raised when attributes do not correspond to declared columns."""

    def __init__(self, target_class: str, unknown_fields: list[str]) -> None:
        self.target_class = target_class
        self.unknown_fields = unknown_fields
        super().__init__(f"Cannot map to {target_class}: unknown columns {unknown_fields}")


class AttributeTypeError(MappingError):
    """Raised when a value does not match its column's declared type."""

    def __init__(self, target_class: str, column: str, expected: str, value: Any) -> None:
        self.target_class = target_class
        self.column = column
        super().__init__(
            f"{target_class}.{column} expects {expected}, got {type(value).__name__}"
        )


class InvalidEnumValueError(MappingError):
    """Raised when a name is not one of an enum column's values."""

    def __init__(self, target_class: str, column: str, value: Any) -> None:
        self.target_class = target_class
        self.column = column
        self.value = value
        super().__init__(f"Invalid {column} value: {value} for {target_class}")


# --- Transaction ---


class TransactionError(RowOrmError):
    """Base for transaction errors."""


class TransactionStateError(TransactionError):
    """Raised on invalid transaction state transitions."""

    def __init__(self, current_state: str, attempted_action: str) -> None:
        self.current_state = current_state
        self.attempted_action = attempted_action
        super().__init__(f"Cannot {attempted_action} transaction in state '{current_state}'")


# --- Adapter ---


class AdapterError(RowOrmError):
    """Base for adapter errors."""


class ConnectionError(AdapterError):  # noqa: A001
    """Raised on connection failures."""


class PoolError(AdapterError):
    """Raised on connection pool failures."""
