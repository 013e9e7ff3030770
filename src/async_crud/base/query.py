# src/async_crud/base/query.py
"""
Textual filter and sort expressions.

Filters use the envelope ``$(clause;clause;...)``. Each clause is a property
path, a two-character operator token and a raw value::

    $(Price>>100;Name%=phone)
    $(Name|Code%=abc)          # OR-group of properties
    $(Color%>red|blue)         # IN with candidate values

Sorts use ``$(field==direction;...)`` with ``asc`` or ``desc`` directions.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    Union,
)

from .model_validator import ModelValidator

# --- Setup Logging ---
log = logging.getLogger(__name__)

ENVELOPE_PREFIX = "$("
ENVELOPE_SUFFIX = ")"
CLAUSE_SEPARATOR = ";"
OR_SEPARATOR = "|"


class FilterParseError(ValueError):
    """Raised when a filter or sort expression is malformed."""


# --- Filter Types ---


class FilterOperator(Enum):
    """Filter operators, declared in token matching precedence."""

    EQUAL = "=="
    GREATER_THAN_OR_EQUAL = ">="
    LESS_THAN_OR_EQUAL = "<="
    GREATER_THAN = ">>"
    LESS_THAN = "<<"
    CONTAINS = "%="
    IN = "%>"

    @property
    def token(self) -> str:
        return self.value


@dataclass(frozen=True)
class FilterClause:
    """
    One parsed clause of a filter expression.

    ``or_siblings`` holds the additional property paths of an OR-group; every
    path in ``property_paths`` is compared against the same operator and value.
    """

    property_path: str
    operator: FilterOperator
    value: str
    or_siblings: Tuple[str, ...] = ()

    @property
    def property_paths(self) -> Tuple[str, ...]:
        return (self.property_path,) + self.or_siblings

    def to_text(self) -> str:
        return f"{OR_SEPARATOR.join(self.property_paths)}{self.operator.token}{self.value}"


@dataclass(frozen=True)
class FilterExpression:
    """A parsed filter. An absent filter is represented by None, not by an empty expression."""

    clauses: Tuple[FilterClause, ...]

    def __iter__(self):
        return iter(self.clauses)

    def __len__(self) -> int:
        return len(self.clauses)

    def to_text(self) -> str:
        body = CLAUSE_SEPARATOR.join(c.to_text() for c in self.clauses)
        return f"{ENVELOPE_PREFIX}{body}{ENVELOPE_SUFFIX}"


@dataclass
class WhereClause:
    """Structured filter input: one property, one operator, one value."""

    property: str
    operator: Union[FilterOperator, str]
    value: Any

    def resolved_operator(self) -> FilterOperator:
        if isinstance(self.operator, FilterOperator):
            return self.operator
        text = str(self.operator).strip()
        for op in FilterOperator:
            if text == op.token or text.upper() == op.name:
                return op
        raise FilterParseError(f"Unknown filter operator '{self.operator}'")


# --- Filter Parsing ---


def _split_clause(clause: str) -> Tuple[str, FilterOperator, str]:
    for op in FilterOperator:
        position = clause.find(op.token)
        if position >= 0:
            return clause[:position], op, clause[position + len(op.token):]
    raise FilterParseError(f"No recognized operator in filter clause '{clause}'")


def _parse_clause(clause: str) -> FilterClause:
    left, operator, value = _split_clause(clause)
    paths = [p.strip() for p in left.split(OR_SEPARATOR)]
    if not paths or any(not p for p in paths):
        raise FilterParseError(f"Missing property path in filter clause '{clause}'")
    return FilterClause(
        property_path=paths[0],
        operator=operator,
        value=value,
        or_siblings=tuple(paths[1:]),
    )


def parse_filter(text: Optional[str]) -> Optional[FilterExpression]:
    """
    Parse a textual filter expression.

    Args:
        text: The expression, e.g. ``$(Price>>100;Name%=phone)``.

    Returns:
        The parsed expression, or None when no filter was supplied (None,
        empty or whitespace-only input).

    Raises:
        FilterParseError: If the envelope is wrong, a clause has no operator,
            or a clause has an empty property path.
    """
    if text is None or not text.strip():
        return None
    stripped = text.strip()
    if not (stripped.startswith(ENVELOPE_PREFIX) and stripped.endswith(ENVELOPE_SUFFIX)):
        raise FilterParseError(
            f"Filter must be wrapped in '{ENVELOPE_PREFIX}...{ENVELOPE_SUFFIX}': {text!r}"
        )
    body = stripped[len(ENVELOPE_PREFIX):-len(ENVELOPE_SUFFIX)]
    clauses = [
        _parse_clause(part.strip())
        for part in body.split(CLAUSE_SEPARATOR)
        if part.strip()
    ]
    log.debug(f"Parsed filter {text!r} into {len(clauses)} clause(s)")
    return FilterExpression(clauses=tuple(clauses))


def format_filter(where: Iterable[WhereClause]) -> Optional[str]:
    """
    Render structured where clauses in the textual filter form.

    Returns None when there are no clauses. Sequence values of an IN clause
    are joined with ``|``.
    """
    parts = []
    for clause in where:
        operator = clause.resolved_operator()
        value = clause.value
        if isinstance(value, (list, tuple, set, frozenset)):
            value = OR_SEPARATOR.join(str(v) for v in value)
        elif isinstance(value, Enum):
            value = value.name
        elif isinstance(value, bool):
            value = "true" if value else "false"
        parts.append(f"{clause.property}{operator.token}{value}")
    if not parts:
        return None
    return f"{ENVELOPE_PREFIX}{CLAUSE_SEPARATOR.join(parts)}{ENVELOPE_SUFFIX}"


def to_filter_expression(
    filter_input: Union[None, str, FilterExpression, Sequence[WhereClause]],
) -> Optional[FilterExpression]:
    """Normalize any accepted filter input into a FilterExpression (or None)."""
    if filter_input is None or isinstance(filter_input, FilterExpression):
        return filter_input
    if isinstance(filter_input, str):
        return parse_filter(filter_input)
    return parse_filter(format_filter(filter_input))


# --- Sorting ---


class SortDirection(Enum):
    ASCENDING = "asc"
    DESCENDING = "desc"

    @classmethod
    def parse(cls, text: Optional[str]) -> "SortDirection":
        if isinstance(text, SortDirection):
            return text
        if text is not None and str(text).strip().lower() in ("desc", "descending"):
            return cls.DESCENDING
        return cls.ASCENDING


@dataclass(frozen=True)
class SortClause:
    field: str
    direction: SortDirection = SortDirection.ASCENDING

    @property
    def descending(self) -> bool:
        return self.direction is SortDirection.DESCENDING


SortInput = Union[None, str, Sequence[Union[SortClause, Mapping[str, Any]]]]


def _parse_sort_text(text: str) -> List[SortClause]:
    cleaned = "".join(ch for ch in text if ch not in " $()")
    clauses = []
    for part in cleaned.split(CLAUSE_SEPARATOR):
        if not part:
            continue
        name, _, direction = part.partition("==")
        if not name:
            raise FilterParseError(f"Missing field name in sort clause '{part}'")
        clauses.append(SortClause(field=name, direction=SortDirection.parse(direction)))
    return clauses


def _parse_sort_item(item: Union[SortClause, Mapping[str, Any]]) -> SortClause:
    if isinstance(item, SortClause):
        return item
    if isinstance(item, Mapping):
        name = item.get("field")
        if not name:
            raise FilterParseError(f"Sort item {item!r} has no 'field'")
        direction = item.get("direction", item.get("dir"))
        return SortClause(field=str(name), direction=SortDirection.parse(direction))
    raise FilterParseError(f"Unsupported sort item {item!r}")


def parse_sort(spec: SortInput, entity_type: Optional[Type] = None) -> List[SortClause]:
    """
    Parse a textual or structured sort specification.

    An empty or missing spec yields an empty list, meaning the default
    ordering applies. When ``entity_type`` is given, field names are resolved
    case-insensitively to the exact attribute names.
    """
    if spec is None:
        return []
    if isinstance(spec, str):
        clauses = _parse_sort_text(spec)
    else:
        clauses = [_parse_sort_item(item) for item in spec]
    if entity_type is not None and clauses:
        validator = ModelValidator.for_type(entity_type)
        clauses = [
            SortClause(field=validator.resolve_name(c.field), direction=c.direction)
            for c in clauses
        ]
    return clauses
