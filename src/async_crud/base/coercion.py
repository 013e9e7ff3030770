# src/async_crud/base/coercion.py
"""
Conversion of raw filter values into typed values.

Filter values arrive as text. Before they can be compared against an entity
field they are converted to the field's declared type. The result is a
``TypedValue`` tagged with its ``ValueKind`` so later stages can tell strings
from other kinds without inspecting Python types again.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from inspect import isclass
from types import UnionType
from typing import (
    Annotated,
    Any,
    Callable,
    Dict,
    NewType,
    Optional,
    Tuple,
    Type,
    Union,
    get_args,
    get_origin,
)

from async_crud.base.validation_exceptions import ValueCoercionError

log = logging.getLogger(__name__)

# Single-character string field type.
Char = NewType("Char", str)

ARRAY_SEPARATOR = "|"


class ValueKind(Enum):
    STRING = "string"
    INTEGER = "integer"
    UNSIGNED = "unsigned"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    DATE = "date"
    UUID = "uuid"
    CHAR = "char"
    ENUM = "enum"

    @property
    def is_textual(self) -> bool:
        """Whether case-insensitive comparison applies to this kind."""
        return self in (ValueKind.STRING, ValueKind.CHAR)


@dataclass(frozen=True)
class TypedValue:
    kind: ValueKind
    value: Any
    target: Type


# --- Type Unwrapping ---


def _is_none_type(t: Optional[Type]) -> bool:
    return t is type(None)


def unwrap_type(tp: Any) -> Tuple[Any, Tuple[Any, ...]]:
    """
    Strip ``Optional`` and ``Annotated`` wrappers from a type hint.

    Returns:
        The innermost type and the collected ``Annotated`` metadata.
    """
    metadata: Tuple[Any, ...] = ()
    while True:
        origin = get_origin(tp)
        if origin is Annotated:
            args = get_args(tp)
            tp, metadata = args[0], metadata + tuple(args[1:])
            continue
        if origin is Union or origin is UnionType:
            non_none = [a for a in get_args(tp) if not _is_none_type(a)]
            if len(non_none) == 1:
                tp = non_none[0]
                continue
        return tp, metadata


def _is_unsigned(metadata: Tuple[Any, ...]) -> bool:
    for item in metadata:
        # pydantic's Field(...) keeps its constraints in a nested metadata list
        nested = getattr(item, "metadata", None)
        if isinstance(nested, list) and _is_unsigned(tuple(nested)):
            return True
        ge = getattr(item, "ge", None)
        if ge is not None and ge >= 0:
            return True
        gt = getattr(item, "gt", None)
        if gt is not None and gt >= -1:
            return True
    return False


def kind_of(tp: Any) -> Optional[ValueKind]:
    """
    Classify a field type hint into a supported ``ValueKind``.

    ``Optional[...]`` and ``Annotated[...]`` are unwrapped first, so
    ``Optional[Color]`` is an enum kind and ``NonNegativeInt`` is unsigned.
    Returns None for unsupported types.
    """
    if tp is Char:
        return ValueKind.CHAR
    base, metadata = unwrap_type(tp)
    if base is Char:
        return ValueKind.CHAR
    if not isclass(base):
        return None
    if issubclass(base, Enum):
        return ValueKind.ENUM
    if base is bool:
        return ValueKind.BOOLEAN
    if issubclass(base, int):
        return ValueKind.UNSIGNED if _is_unsigned(metadata) else ValueKind.INTEGER
    if issubclass(base, float):
        return ValueKind.FLOAT
    if issubclass(base, Decimal):
        return ValueKind.DECIMAL
    if issubclass(base, datetime):
        return ValueKind.DATETIME
    if issubclass(base, date):
        return ValueKind.DATE
    if issubclass(base, uuid.UUID):
        return ValueKind.UUID
    if issubclass(base, str):
        return ValueKind.STRING
    return None


# --- Parsers ---


def _parse_string(raw: str, target: Type) -> str:
    return raw


def _parse_integer(raw: str, target: Type) -> int:
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ValueCoercionError(raw, "integer") from e


def _parse_unsigned(raw: str, target: Type) -> int:
    value = _parse_integer(raw, target)
    if value < 0:
        raise ValueCoercionError(raw, "unsigned integer", "value is negative")
    return value


def _parse_float(raw: str, target: Type) -> float:
    try:
        return float(raw.strip())
    except ValueError as e:
        raise ValueCoercionError(raw, "float") from e


def _parse_decimal(raw: str, target: Type) -> Decimal:
    try:
        return Decimal(raw.strip())
    except InvalidOperation as e:
        raise ValueCoercionError(raw, "decimal") from e


def _parse_boolean(raw: str, target: Type) -> bool:
    text = raw.strip().lower()
    if text == "true":
        return True
    if text == "false":
        return False
    raise ValueCoercionError(raw, "bool", "expected 'true' or 'false'")


def _parse_datetime(raw: str, target: Type) -> datetime:
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        value = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValueCoercionError(raw, "datetime") from e
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _parse_date(raw: str, target: Type) -> date:
    try:
        return date.fromisoformat(raw.strip())
    except ValueError as e:
        raise ValueCoercionError(raw, "date") from e


def _parse_uuid(raw: str, target: Type) -> uuid.UUID:
    try:
        return uuid.UUID(raw.strip())
    except ValueError as e:
        raise ValueCoercionError(raw, "GUID") from e


def _parse_char(raw: str, target: Type) -> str:
    if len(raw) != 1:
        raise ValueCoercionError(raw, "char", "expected exactly one character")
    return raw


def _parse_enum(raw: str, target: Type) -> Enum:
    enum_type, _ = unwrap_type(target)
    text = raw.strip()
    if text in enum_type.__members__:
        return enum_type.__members__[text]
    lowered = text.lower()
    for name, member in enum_type.__members__.items():
        if name.lower() == lowered:
            return member
    for member in enum_type:
        if str(member.value) == text:
            return member
    raise ValueCoercionError(raw, enum_type.__name__, "no matching member")


_PARSERS: Dict[ValueKind, Callable[[str, Type], Any]] = {
    ValueKind.STRING: _parse_string,
    ValueKind.INTEGER: _parse_integer,
    ValueKind.UNSIGNED: _parse_unsigned,
    ValueKind.FLOAT: _parse_float,
    ValueKind.DECIMAL: _parse_decimal,
    ValueKind.BOOLEAN: _parse_boolean,
    ValueKind.DATETIME: _parse_datetime,
    ValueKind.DATE: _parse_date,
    ValueKind.UUID: _parse_uuid,
    ValueKind.CHAR: _parse_char,
    ValueKind.ENUM: _parse_enum,
}

_missing = set(ValueKind) - set(_PARSERS)
if _missing:
    raise RuntimeError(f"No coercion parser registered for {sorted(k.name for k in _missing)}")


# --- Public API ---


def coerce(raw: str, target_type: Any) -> Optional[TypedValue]:
    """
    Convert a raw string into a value of the target type.

    Args:
        raw: The raw value taken from a filter clause.
        target_type: The declared type of the compared field.

    Returns:
        A TypedValue, or None when the target type is not supported.

    Raises:
        ValueCoercionError: If the target is supported but the text cannot be
            parsed as that type.
    """
    kind = kind_of(target_type)
    if kind is None:
        log.debug(f"Unsupported coercion target {target_type!r}; dropping value {raw!r}")
        return None
    return TypedValue(kind=kind, value=_PARSERS[kind](raw, target_type), target=target_type)


def coerce_array(raw: str, target_type: Any) -> Optional[Tuple[TypedValue, ...]]:
    """Split ``raw`` on ``|`` and coerce each element to ``target_type``."""
    if kind_of(target_type) is None:
        log.debug(f"Unsupported coercion target {target_type!r}; dropping array {raw!r}")
        return None
    values = []
    for part in raw.split(ARRAY_SEPARATOR):
        item = coerce(part, target_type)
        if item is not None:
            values.append(item)
    return tuple(values)
