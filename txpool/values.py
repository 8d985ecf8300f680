"""Value kinds accepted by insert() and the parameterized INSERT builder."""
import dataclasses
import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ValueKind(str, Enum):
    """Value kinds accepted by insert()."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    NULL = "null"
    TIMESTAMP = "timestamp"


def classify_value(value: Any) -> Optional[ValueKind]:
    """Kind of value, or None when insert() does not support it."""
    if value is None:
        return ValueKind.NULL
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, int):
        return ValueKind.INTEGER
    if isinstance(value, (float, Decimal)):
        return ValueKind.FLOAT
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, date):
        return ValueKind.TIMESTAMP
    return None


def sql_value(value: Any, kind: ValueKind) -> Any:
    if kind is ValueKind.TIMESTAMP:
        if not isinstance(value, datetime):
            value = datetime(value.year, value.month, value.day)
        return value.strftime(DATE_FORMAT)
    return value


def object_fields(obj: Any) -> Dict[str, Any]:
    """Own fields of a mapping, pydantic model or dataclass instance."""
    if isinstance(obj, Mapping):
        return dict(obj)
    if isinstance(obj, BaseModel):
        return obj.model_dump()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    if hasattr(obj, "__dict__"):
        return {k: v for k, v in vars(obj).items() if not k.startswith("_")}
    raise TypeError(f"Cannot insert object of type {type(obj).__name__}")


def eligible_fields(obj: Any) -> Dict[str, Any]:
    """Insertable fields of obj with values converted to their SQL representation."""
    values = {}
    for name, value in object_fields(obj).items():
        kind = classify_value(value)
        if kind is None:
            continue
        values[name] = sql_value(value, kind)
    return values


def check_identifier(name: str, allow_schema: bool = False) -> str:
    parts = name.split(".") if allow_schema else [name]
    if len(parts) > 2 or not all(_IDENTIFIER_RE.match(part) for part in parts):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def build_insert(table: str, values: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    INSERT statement with pyformat placeholders for values.

        build_insert("users", {"name": "x"})
        -> ("INSERT INTO users (name) VALUES (%(name)s)", {"name": "x"})
    """
    check_identifier(table, allow_schema=True)
    if not values:
        raise ValueError("No values to insert")
    columns = [check_identifier(column) for column in values]
    column_sql = ", ".join(columns)
    placeholders = ", ".join(f"%({column})s" for column in columns)
    sql = f"INSERT INTO {table} ({column_sql}) VALUES ({placeholders})"
    return sql, dict(values)
