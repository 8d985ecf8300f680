"""Converts raw driver row values to Python types using column metadata."""
import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

DATE_TYPES = frozenset({"DATE", "DATETIME", "TIMESTAMP"})
FLOAT_TYPES = frozenset({"DECIMAL", "DOUBLE", "FLOAT"})
INTEGER_TYPES = frozenset({"INTEGER", "TINYINT", "SMALLINT", "MEDIUMINT", "BIGINT"})

# leading numeric prefix, the rest of the string is ignored
_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def parse_int(value: Any) -> Optional[int]:
    """Integer from a driver value; None when it has no integer prefix."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        try:
            return int(value)
        except (ValueError, OverflowError, InvalidOperation):
            return None
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    match = _INT_PREFIX.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def parse_float(value: Any) -> Optional[float]:
    """Float from a driver value; None when it has no numeric prefix."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            return float(value)
        except (ValueError, OverflowError):
            return None
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    match = _FLOAT_PREFIX.match(str(value))
    if not match:
        return None
    return float(match.group(1))


def parse_datetime(value: Any) -> Optional[date]:
    """Date/time from a driver value; None for invalid dates such as '0000-00-00'."""
    if value is None:
        return None
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # epoch milliseconds
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def convert_value(value: Any, column_type: Optional[str]) -> Any:
    if not column_type:
        return value
    column_type = column_type.upper()
    if column_type in DATE_TYPES:
        return parse_datetime(value)
    if column_type in FLOAT_TYPES:
        return parse_float(value)
    if column_type in INTEGER_TYPES:
        return parse_int(value)
    return value


def _column_type(meta: Any) -> Optional[str]:
    if meta is None:
        return None
    if isinstance(meta, Mapping):
        return meta.get("type")
    return getattr(meta, "type", None)


def convert_row(row: Dict[str, Any], metadata: Mapping[str, Any]) -> None:
    """
    Coerce the fields of row in place according to their declared column type.
    Fields without metadata and of other types are left untouched.
    """
    for key, value in row.items():
        column_type = _column_type(metadata.get(key))
        if column_type is None:
            continue
        row[key] = convert_value(value, column_type)
