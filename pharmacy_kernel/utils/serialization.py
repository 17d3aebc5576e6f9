"""
Deterministic JSON conversion for audit snapshots.

Audit log entries store before/after images of ORM records in JSON columns.
The same record always produces the same snapshot, so two entries can be
compared field by field.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import inspect

# Bookkeeping columns that change on every write and carry no business meaning
_SNAPSHOT_EXCLUDE = frozenset({"created_at", "updated_at"})


def to_jsonable(value: Any) -> Any:
    """
    Convert a value to a JSON-serializable equivalent.

    Raises:
        TypeError: If the value has no JSON representation.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        if isinstance(value, Enum):
            return value.value
        return value
    if isinstance(value, Decimal):
        # Plain notation, trailing zeros removed: 12.50 -> "12.5", 100 -> "100"
        return format(value.normalize(), "f")
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]

    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def model_snapshot(instance: Any, exclude: frozenset[str] | set[str] = frozenset()) -> dict[str, Any]:
    """
    Column values of an ORM instance as a JSON-ready dict.

    Relationships are not followed; foreign keys appear as ids.
    """
    mapper = inspect(instance).mapper
    skip = _SNAPSHOT_EXCLUDE | set(exclude)
    return {
        attr.key: to_jsonable(getattr(instance, attr.key))
        for attr in mapper.column_attrs
        if attr.key not in skip
    }
