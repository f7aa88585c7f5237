from __future__ import annotations

from typing import Any, TypeAlias

from .exceptions import InvalidValueError

# The tagged variants a column value may hold.
SQLValue: TypeAlias = int | float | str | bool | bytes | None

SQL_VALUE_TYPES: tuple[type, ...] = (int, float, str, bool, bytes)


def check_value(value: Any, context: str) -> SQLValue:
    """
    Return ``value`` unchanged if it can be bound as a query parameter.

    Raises:
        InvalidValueError: For anything outside :data:`SQLValue`.
    """
    if value is None or isinstance(value, SQL_VALUE_TYPES):
        return value
    msg = (
        f"Unsupported value {value!r} of type {type(value).__name__} for "
        f"{context}; expected int, float, str, bool, bytes or None"
    )
    raise InvalidValueError(msg)
