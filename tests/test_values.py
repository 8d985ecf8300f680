from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

import pytest
from pydantic import BaseModel

from txpool.values import ValueKind, build_insert, check_identifier, classify_value, eligible_fields


@pytest.mark.parametrize(
    "value, kind",
    [
        ("x", ValueKind.STRING),
        (1, ValueKind.INTEGER),
        (1.5, ValueKind.FLOAT),
        (Decimal("1.5"), ValueKind.FLOAT),
        (False, ValueKind.BOOLEAN),
        (None, ValueKind.NULL),
        (datetime(2024, 1, 1), ValueKind.TIMESTAMP),
        (date(2024, 1, 1), ValueKind.TIMESTAMP),
        (["a"], None),
        ({"a": 1}, None),
        (b"raw", None),
        (object(), None),
    ],
)
def test_classify_value(value, kind):
    assert classify_value(value) is kind


def test_eligible_fields_formats_dates():
    fields = eligible_fields({
        "at": datetime(2020, 5, 6, 7, 8, 9),
        "day": date(2020, 5, 6),
        "tags": ("a",),
    })

    assert fields == {"at": "2020-05-06 07:08:09", "day": "2020-05-06 00:00:00"}


def test_eligible_fields_of_pydantic_model():
    class User(BaseModel):
        name: str
        roles: list = []
        active: bool = True

    assert eligible_fields(User(name="ann")) == {"name": "ann", "active": True}


def test_eligible_fields_of_plain_object_skips_private_attributes():
    class Row:
        def __init__(self):
            self.a = 1
            self._hidden = 2

    assert eligible_fields(Row()) == {"a": 1}


def test_eligible_fields_of_dataclass():
    @dataclass
    class Point:
        x: int
        y: int

    assert eligible_fields(Point(1, 2)) == {"x": 1, "y": 2}


def test_eligible_fields_rejects_non_objects():
    with pytest.raises(TypeError):
        eligible_fields(42)


def test_build_insert():
    sql, params = build_insert("users", {"name": "x", "age": 3})

    assert sql == "INSERT INTO users (name, age) VALUES (%(name)s, %(age)s)"
    assert params == {"name": "x", "age": 3}


def test_build_insert_requires_values():
    with pytest.raises(ValueError):
        build_insert("users", {})


@pytest.mark.parametrize("name", ["users", "_tmp1", "Users2"])
def test_valid_identifiers(name):
    assert check_identifier(name) == name


@pytest.mark.parametrize("name", ["1users", "us-ers", "users;", "", "a.b.c", "\"users\""])
def test_invalid_identifiers(name):
    with pytest.raises(ValueError):
        check_identifier(name, allow_schema=True)


def test_schema_qualified_table_only_when_allowed():
    assert check_identifier("shop.users", allow_schema=True) == "shop.users"
    with pytest.raises(ValueError):
        check_identifier("shop.users")
