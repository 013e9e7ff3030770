# tests/base/test_coercion.py

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Optional

import pytest
from pydantic import Field

from async_crud.base.coercion import (
    Char,
    ValueKind,
    coerce,
    coerce_array,
    kind_of,
    unwrap_type,
)
from async_crud.base.validation_exceptions import ValueCoercionError


class Color(Enum):
    RED = "red"
    DARK_BLUE = "dark-blue"


@pytest.mark.parametrize(
    "hint, kind",
    [
        (str, ValueKind.STRING),
        (int, ValueKind.INTEGER),
        (Annotated[int, Field(ge=0)], ValueKind.UNSIGNED),
        (float, ValueKind.FLOAT),
        (Decimal, ValueKind.DECIMAL),
        (bool, ValueKind.BOOLEAN),
        (datetime, ValueKind.DATETIME),
        (date, ValueKind.DATE),
        (uuid.UUID, ValueKind.UUID),
        (Char, ValueKind.CHAR),
        (Color, ValueKind.ENUM),
        (Optional[Color], ValueKind.ENUM),
        (Optional[int], ValueKind.INTEGER),
        (int | None, ValueKind.INTEGER),
    ],
)
def test_kind_of(hint, kind):
    assert kind_of(hint) is kind


@pytest.mark.parametrize("hint", [dict, List[str], bytes, object])
def test_unsupported_kinds(hint):
    assert kind_of(hint) is None
    assert coerce("x", hint) is None
    assert coerce_array("x|y", hint) is None


def test_unwrap_type_keeps_annotated_metadata():
    base, metadata = unwrap_type(Optional[Annotated[int, "meta"]])
    assert base is int
    assert "meta" in metadata


@pytest.mark.parametrize(
    "raw, hint, expected",
    [
        ("hello", str, "hello"),
        (" 42 ", int, 42),
        ("-7", int, -7),
        ("3", Annotated[int, Field(ge=0)], 3),
        ("2.5", float, 2.5),
        ("199.99", Decimal, Decimal("199.99")),
        ("TRUE", bool, True),
        ("false", bool, False),
        ("2024-03-01", date, date(2024, 3, 1)),
        ("x", Char, "x"),
    ],
)
def test_coerce_values(raw, hint, expected):
    typed = coerce(raw, hint)
    assert typed.value == expected
    assert typed.kind is kind_of(hint)


def test_datetime_with_z_suffix_is_utc():
    typed = coerce("2024-03-01T10:00:00Z", datetime)
    assert typed.value == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)


def test_naive_datetime_is_treated_as_utc():
    typed = coerce("2024-03-01T10:00:00", datetime)
    assert typed.value.tzinfo is not None
    assert typed.value == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)


def test_uuid():
    value = uuid.uuid4()
    assert coerce(str(value), uuid.UUID).value == value


@pytest.mark.parametrize("raw", ["RED", "red", "Red", "dark-blue", "DARK_BLUE"])
def test_enum_by_name_or_value(raw):
    assert coerce(raw, Color).value in (Color.RED, Color.DARK_BLUE)


@pytest.mark.parametrize(
    "raw, hint",
    [
        ("abc", int),
        ("-1", Annotated[int, Field(ge=0)]),
        ("x", float),
        ("ten", Decimal),
        ("yes", bool),
        ("not a date", datetime),
        ("2024-13-01", date),
        ("not-a-guid", uuid.UUID),
        ("xy", Char),
        ("PURPLE", Color),
    ],
)
def test_unparseable_values_raise(raw, hint):
    with pytest.raises(ValueCoercionError):
        coerce(raw, hint)


def test_coercion_error_message_names_value_and_target():
    with pytest.raises(ValueCoercionError, match="Cannot convert 'abc' to integer"):
        coerce("abc", int)


def test_coerce_array_splits_on_pipe():
    values = coerce_array("1|2|3", int)
    assert [v.value for v in values] == [1, 2, 3]


def test_coerce_array_fails_on_any_bad_element():
    with pytest.raises(ValueCoercionError):
        coerce_array("1|two", int)
