"""
Typed-value marshalling for the Value store.

A Value row has six nullable storage columns. Exactly one of them is
populated, chosen by the attribute's DataType:

    STRING, EMAIL, PHONE, URL -> value_string
    NUMBER                    -> value_number
    BOOLEAN                   -> value_bool
    DATE                      -> value_date      (ISO YYYY-MM-DD)
    DATETIME                  -> value_datetime  (ISO-8601)
    TEXT                      -> value_text

Invariants:
    - TypedValue.columns() always yields all six columns, five of them None
    - marshal() never rejects a non-empty scalar: if it cannot be coerced to
      the declared type it is stored under its runtime type instead
    - coalesce() reads columns in a fixed order and never raises

How to change safely:
    - COALESCE_ORDER is part of the read contract; append, never reorder
    - Keep encode/decode symmetric for every column
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Any

from .types import DataType

logger = logging.getLogger(__name__)


class ValueColumn(Enum):
    """Storage columns of the entity_values table."""

    STRING = "value_string"
    NUMBER = "value_number"
    BOOL = "value_bool"
    DATE = "value_date"
    DATETIME = "value_datetime"
    TEXT = "value_text"


COALESCE_ORDER: tuple[ValueColumn, ...] = (
    ValueColumn.STRING,
    ValueColumn.NUMBER,
    ValueColumn.BOOL,
    ValueColumn.DATE,
    ValueColumn.DATETIME,
    ValueColumn.TEXT,
)

COLUMN_FOR_TYPE: dict[DataType, ValueColumn] = {
    DataType.STRING: ValueColumn.STRING,
    DataType.EMAIL: ValueColumn.STRING,
    DataType.PHONE: ValueColumn.STRING,
    DataType.URL: ValueColumn.STRING,
    DataType.NUMBER: ValueColumn.NUMBER,
    DataType.BOOLEAN: ValueColumn.BOOL,
    DataType.DATE: ValueColumn.DATE,
    DataType.DATETIME: ValueColumn.DATETIME,
    DataType.TEXT: ValueColumn.TEXT,
}

_TRUE_STRINGS = frozenset({"true", "yes", "1", "y", "on"})
_FALSE_STRINGS = frozenset({"false", "no", "0", "n", "off"})


@dataclass(frozen=True)
class TypedValue:
    """A raw value placed into exactly one storage column.

    Attributes:
        column: The populated storage column
        value: Python-native value (str, float, bool, date, datetime)
    """

    column: ValueColumn
    value: Any

    def encoded(self) -> Any:
        """Value as written to SQLite."""
        return encode(self.column, self.value)

    def columns(self) -> dict[str, Any]:
        """All six storage columns, the populated one encoded, the rest None."""
        row: dict[str, Any] = {column.value: None for column in ValueColumn}
        row[self.column.value] = self.encoded()
        return row


def is_empty(raw: Any) -> bool:
    """Whether an incoming value means "field not set"."""
    if raw is None:
        return True
    if isinstance(raw, str) and not raw.strip():
        return True
    return False


def infer_data_type(raw: Any) -> DataType:
    """Pick a DataType from a value's runtime type."""
    if isinstance(raw, bool):
        return DataType.BOOLEAN
    if isinstance(raw, (int, float)):
        return DataType.NUMBER
    if isinstance(raw, datetime):
        return DataType.DATETIME
    if isinstance(raw, date):
        return DataType.DATE
    return DataType.STRING


def _parse_iso_datetime(text: str) -> datetime:
    text = text.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _to_string(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, (date, datetime)):
        return raw.isoformat()
    if isinstance(raw, (dict, list, tuple)):
        return json.dumps(raw, default=str)
    return str(raw)


def _to_number(raw: Any) -> float | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        try:
            return float(raw.strip())
        except ValueError:
            return None
    return None


def _to_bool(raw: Any) -> bool | None:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def _to_date(raw: Any) -> date | None:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            if len(raw.strip()) == 10:
                return date.fromisoformat(raw.strip())
            return _parse_iso_datetime(raw).date()
        except ValueError:
            return None
    return None


def _to_datetime(raw: Any) -> datetime | None:
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, date):
        return datetime.combine(raw, time())
    if isinstance(raw, str):
        try:
            return _parse_iso_datetime(raw)
        except ValueError:
            return None
    return None


_COERCERS = {
    ValueColumn.STRING: _to_string,
    ValueColumn.TEXT: _to_string,
    ValueColumn.NUMBER: _to_number,
    ValueColumn.BOOL: _to_bool,
    ValueColumn.DATE: _to_date,
    ValueColumn.DATETIME: _to_datetime,
}


def marshal(raw: Any, data_type: DataType | None = None) -> TypedValue:
    """Place a raw value into one storage column.

    Args:
        raw: Non-empty incoming value
        data_type: The attribute's declared type; inferred from raw if None

    Returns:
        TypedValue for the declared type, or for the runtime type when the
        value cannot be coerced to the declared one
    """
    declared = data_type or infer_data_type(raw)
    column = COLUMN_FOR_TYPE[declared]
    coerced = _COERCERS[column](raw)
    if coerced is not None:
        return TypedValue(column, coerced)

    fallback = COLUMN_FOR_TYPE[infer_data_type(raw)]
    logger.debug(
        "Value not coercible to declared type, storing by runtime type",
        extra={"declared": declared.value, "column": fallback.value},
    )
    return TypedValue(fallback, _COERCERS[fallback](raw))


def encode(column: ValueColumn, value: Any) -> Any:
    """Encode a Python value for its SQLite column."""
    if value is None:
        return None
    if column is ValueColumn.BOOL:
        return 1 if value else 0
    if column in (ValueColumn.DATE, ValueColumn.DATETIME):
        return value.isoformat()
    return value


def decode(column: ValueColumn, stored: Any) -> Any:
    """Decode a SQLite column value back to a Python scalar.

    Undecodable date strings are returned as stored rather than raised.
    """
    if stored is None:
        return None
    if column is ValueColumn.NUMBER:
        number = float(stored)
        return int(number) if number.is_integer() else number
    if column is ValueColumn.BOOL:
        return bool(stored)
    try:
        if column is ValueColumn.DATE:
            return date.fromisoformat(stored)
        if column is ValueColumn.DATETIME:
            return _parse_iso_datetime(stored)
    except (TypeError, ValueError):
        return stored
    return stored


def coalesce(row: Mapping[str, Any]) -> Any:
    """Return the first populated column of a Value row, decoded.

    Only one column should be populated; if more are, the first in
    COALESCE_ORDER wins.
    """
    for column in COALESCE_ORDER:
        stored = row[column.value]
        if stored is not None:
            return decode(column, stored)
    return None


def read_typed(row: Mapping[str, Any], data_type: DataType) -> Any:
    """Read only the column matching data_type; None on mismatch."""
    column = COLUMN_FOR_TYPE[data_type]
    return decode(column, row[column.value])
