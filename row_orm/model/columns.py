"""Column declarations.

A column's type is one member of a closed tagged union. Values are
checked on the way in (construction and assignment) and coerced on the
way out of the driver (hydration).
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from row_orm.core.exceptions import AttributeTypeError, InvalidEnumValueError

if TYPE_CHECKING:
    from row_orm.model.record import Record


class ColumnType(Enum):
    INTEGER = "integer"
    FLOAT = "float"
    TEXT = "text"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"

    @classmethod
    def from_python(cls, value: ColumnType | type) -> ColumnType:
        """Accept either a ColumnType or the matching Python type."""
        if isinstance(value, ColumnType):
            return value
        try:
            return _PYTHON_TYPES[value]
        except KeyError:
            raise TypeError(f"Unsupported column type: {value!r}") from None

    def accepts(self, value: Any) -> bool:
        # bool is an int subclass, so it has to be ruled out explicitly
        if self is ColumnType.INTEGER:
            return isinstance(value, int) and not isinstance(value, bool)
        if self is ColumnType.FLOAT:
            return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)
        if self is ColumnType.TEXT:
            return isinstance(value, str)
        if self is ColumnType.BOOLEAN:
            return isinstance(value, bool)
        return isinstance(value, datetime)

    def coerce(self, value: Any) -> Any:
        """Convert a driver value to this type's Python representation."""
        if value is None:
            return None
        if self is ColumnType.INTEGER and not isinstance(value, int):
            return int(value)
        if self is ColumnType.FLOAT and not isinstance(value, float):
            return float(value)
        if self is ColumnType.BOOLEAN and not isinstance(value, bool):
            if isinstance(value, str):
                return value.strip().lower() in ("1", "t", "true", "yes")
            return bool(value)
        if self is ColumnType.TIMESTAMP:
            if isinstance(value, str):
                return datetime.fromisoformat(value)
            if isinstance(value, date) and not isinstance(value, datetime):
                return datetime(value.year, value.month, value.day)
        return value


_PYTHON_TYPES: dict[Any, ColumnType] = {
    int: ColumnType.INTEGER,
    float: ColumnType.FLOAT,
    str: ColumnType.TEXT,
    bool: ColumnType.BOOLEAN,
    datetime: ColumnType.TIMESTAMP,
}


class Column:
    """Typed attribute descriptor bound to one table column.

    Args:
        type_: A ColumnType member or one of ``int``, ``float``, ``str``,
            ``bool``, ``datetime``.
        primary_key: Marks the identity column.
        nullable: Whether ``None`` may be assigned.
        default: Value (or zero-argument callable) used by ``__init__``
            when the attribute is not given.
        enum: Value names for an integer column; a name's position is
            its stored value. Assigning a name stores its integer.
    """

    def __init__(
        self,
        type_: ColumnType | type,
        *,
        primary_key: bool = False,
        nullable: bool = True,
        default: Any = None,
        enum: Sequence[str] | None = None,
    ) -> None:
        self.type = ColumnType.from_python(type_)
        if enum is not None:
            if self.type is not ColumnType.INTEGER:
                raise TypeError("enum columns must be integer columns")
            if len(set(enum)) != len(enum):
                raise TypeError(f"Duplicate enum values in {list(enum)}")
        self.primary_key = primary_key
        self.nullable = nullable
        self.default = default
        self.enum = tuple(enum) if enum is not None else None
        self.name = ""
        self.owner_name = "?"

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name
        self.owner_name = owner.__name__

    def __get__(self, instance: Record | None, owner: type) -> Any:
        if instance is None:
            return self
        return instance._attributes.get(self.name)

    def __set__(self, instance: Record, value: Any) -> None:
        instance.write_attribute(self.name, value)

    def default_value(self) -> Any:
        return self.default() if callable(self.default) else self.default

    # --- enum values ---

    @property
    def mappings(self) -> dict[str, int]:
        """``{name: stored value}`` in declaration order."""
        return {name: i for i, name in enumerate(self.enum or ())}

    def value_of(self, name: str) -> int:
        if self.enum is None or name not in self.enum:
            raise InvalidEnumValueError(self.owner_name, self.name, name)
        return self.enum.index(name)

    def name_of(self, value: Any) -> str | None:
        """Name stored as *value*; None for NULL or values outside the enum."""
        if self.enum is None or not isinstance(value, int) or isinstance(value, bool):
            return None
        return self.enum[value] if 0 <= value < len(self.enum) else None

    def to_stored(self, value: Any) -> Any:
        """Replace enum names (alone or in a list) with their stored integers."""
        if self.enum is None:
            return value
        if isinstance(value, str):
            return self.value_of(value)
        if isinstance(value, (list, tuple, set, frozenset)):
            return [self.value_of(v) if isinstance(v, str) else v for v in value]
        return value

    def check(self, owner: str, value: Any) -> None:
        """Raise AttributeTypeError unless *value* fits this column."""
        if value is None:
            # primary keys stay empty until the first save
            if self.nullable or self.primary_key:
                return
            raise AttributeTypeError(owner, self.name, f"non-null {self.type.value}", value)
        if not self.type.accepts(value):
            raise AttributeTypeError(owner, self.name, self.type.value, value)

    def __repr__(self) -> str:
        flags = " primary_key" if self.primary_key else ""
        return f"<Column {self.name} {self.type.value}{flags}>"
