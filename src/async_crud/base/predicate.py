# src/async_crud/base/predicate.py
"""
Compilation of parsed filter expressions into entity predicates.

A compiled ``Predicate`` is a callable ``entity -> bool``. Predicates compose
with ``&`` and ``|``; ``AlwaysTrue`` is the identity for ``&`` so callers can
combine optional filters without branching.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from functools import reduce
from typing import Any, FrozenSet, Generic, Optional, Sequence, Tuple, Type, TypeVar, Union

from .coercion import TypedValue, ValueKind, coerce, coerce_array
from .model_validator import FieldAccessor, ModelValidator, ResolvedPath
from .query import (
    FilterClause,
    FilterExpression,
    FilterOperator,
    WhereClause,
    to_filter_expression,
)
from .validation_exceptions import ValueTypeError

# --- Setup Logging ---
log = logging.getLogger(__name__)

T = TypeVar("T")


# --- Predicate Tree ---


class Predicate:
    """Base class for compiled predicates."""

    def __call__(self, entity: Any) -> bool:
        raise NotImplementedError

    @property
    def traversed_fields(self) -> FrozenSet[str]:
        """Top-level fields this predicate reads through: collections and nested objects."""
        return frozenset()

    def __and__(self, other: "Predicate") -> "Predicate":
        if isinstance(other, AlwaysTrue):
            return self
        return AllOf(_flatten(AllOf, self, other))

    def __or__(self, other: "Predicate") -> "Predicate":
        return AnyOf(_flatten(AnyOf, self, other))


class AlwaysTrue(Predicate):
    def __call__(self, entity: Any) -> bool:
        return True

    def __and__(self, other: Predicate) -> Predicate:
        return other

    def __or__(self, other: Predicate) -> Predicate:
        return self

    def __eq__(self, other: object) -> bool:
        return isinstance(other, AlwaysTrue)

    def __hash__(self) -> int:
        return hash(AlwaysTrue)

    def __repr__(self) -> str:
        return "AlwaysTrue()"


ALWAYS_TRUE = AlwaysTrue()


def _flatten(kind: type, *parts: Predicate) -> Tuple[Predicate, ...]:
    flat = []
    for part in parts:
        if type(part) is kind:
            flat.extend(part.parts)
        else:
            flat.append(part)
    return tuple(flat)


class AllOf(Predicate):
    def __init__(self, parts: Sequence[Predicate]):
        self.parts = tuple(parts)

    def __call__(self, entity: Any) -> bool:
        return all(p(entity) for p in self.parts)

    @property
    def traversed_fields(self) -> FrozenSet[str]:
        return frozenset().union(*(p.traversed_fields for p in self.parts))

    def __repr__(self) -> str:
        return f"AllOf({', '.join(map(repr, self.parts))})"


class AnyOf(Predicate):
    def __init__(self, parts: Sequence[Predicate]):
        self.parts = tuple(parts)

    def __call__(self, entity: Any) -> bool:
        return any(p(entity) for p in self.parts)

    @property
    def traversed_fields(self) -> FrozenSet[str]:
        return frozenset().union(*(p.traversed_fields for p in self.parts))

    def __repr__(self) -> str:
        return f"AnyOf({', '.join(map(repr, self.parts))})"


def _normalize(value: Any, kind: ValueKind, case_sensitive: bool) -> Any:
    if value is None:
        return None
    if kind.is_textual and not case_sensitive and isinstance(value, str):
        return value.lower()
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Comparison(Predicate):
    """Compares the value at ``path`` against one or more coerced values."""

    def __init__(
        self,
        path: ResolvedPath,
        operator: FilterOperator,
        values: Tuple[TypedValue, ...],
        case_sensitive: bool = False,
    ):
        self.path = path
        self.operator = operator
        self.values = values
        self.case_sensitive = case_sensitive
        self._expected = tuple(
            _normalize(v.value, v.kind, case_sensitive) for v in values
        )

    def __call__(self, target: Any) -> bool:
        kind = self.values[0].kind if self.values else None
        if kind is None:
            return False
        actual = self.path.read(target)
        if isinstance(actual, Enum) and kind is not ValueKind.ENUM:
            actual = actual.value
        actual = _normalize(actual, kind, self.case_sensitive)
        op = self.operator
        if op is FilterOperator.EQUAL or op is FilterOperator.IN:
            return any(actual == expected for expected in self._expected)
        if actual is None:
            return False
        expected = self._expected[0]
        if kind is ValueKind.ENUM:
            # Enum members are unordered; compare their underlying values.
            actual = actual.value if isinstance(actual, Enum) else actual
            expected = expected.value if isinstance(expected, Enum) else expected
        if op is FilterOperator.GREATER_THAN:
            return actual > expected
        if op is FilterOperator.GREATER_THAN_OR_EQUAL:
            return actual >= expected
        if op is FilterOperator.LESS_THAN:
            return actual < expected
        if op is FilterOperator.LESS_THAN_OR_EQUAL:
            return actual <= expected
        if op is FilterOperator.CONTAINS:
            return expected in actual
        raise ValueError(f"Unsupported filter operator {op!r}")

    def __repr__(self) -> str:
        values = "|".join(str(v.value) for v in self.values)
        return f"Comparison({self.path.path} {self.operator.token} {values!r})"

    @property
    def traversed_fields(self) -> FrozenSet[str]:
        if len(self.path.chain) > 1:
            return frozenset({self.path.chain[0].name})
        return frozenset()


class AnyElement(Predicate):
    """True when at least one element of a collection field satisfies ``inner``."""

    def __init__(self, collection: FieldAccessor, inner: Predicate):
        self.collection = collection
        self.inner = inner

    def __call__(self, entity: Any) -> bool:
        items = self.collection.get(entity) or ()
        return any(self.inner(item) for item in items)

    @property
    def traversed_fields(self) -> FrozenSet[str]:
        return frozenset({self.collection.name})

    def __repr__(self) -> str:
        return f"AnyElement({self.collection.name}, {self.inner!r})"


# --- Compiler ---


class PredicateCompiler(Generic[T]):
    """
    Compiles filter expressions into predicates over ``entity_type``.

    Property paths are resolved through the type's ModelValidator registry,
    so unknown properties fail at compile time rather than per row.
    """

    def __init__(self, entity_type: Type[T]):
        self.entity_type = entity_type
        self._validator = ModelValidator.for_type(entity_type)

    def compile(
        self,
        expression: Optional[FilterExpression],
        case_sensitive: bool = False,
    ) -> Predicate:
        """
        Compile a parsed expression.

        Clauses are AND-ed; the property paths of an OR-group are OR-ed.
        ``case_sensitive`` applies uniformly to every string comparison.

        Args:
            expression: The parsed filter, or None for no filter.
            case_sensitive: Whether string comparisons respect case.

        Returns:
            The compiled predicate. ``ALWAYS_TRUE`` when there is no filter.

        Raises:
            InvalidPathError: If a property path does not resolve.
            ValueTypeError: If CONTAINS targets a non-string property.
            ValueCoercionError: If a value cannot be parsed as the property type.
        """
        if not expression:
            return ALWAYS_TRUE
        result: Predicate = ALWAYS_TRUE
        for clause in expression:
            fragment = self._compile_clause(clause, case_sensitive)
            if fragment is not None:
                result = result & fragment
        log.debug(f"Compiled filter for {self.entity_type.__name__}: {result!r}")
        return result

    def _compile_clause(
        self, clause: FilterClause, case_sensitive: bool
    ) -> Optional[Predicate]:
        fragments = [
            fragment
            for fragment in (
                self._compile_path(path, clause, case_sensitive)
                for path in clause.property_paths
            )
            if fragment is not None
        ]
        if not fragments:
            return None
        return reduce(lambda left, right: left | right, fragments)

    def _compile_path(
        self, path: str, clause: FilterClause, case_sensitive: bool
    ) -> Optional[Predicate]:
        resolved = self._validator.resolve_path(path)
        if clause.operator is FilterOperator.IN:
            values = coerce_array(clause.value, resolved.value_type)
        else:
            single = coerce(clause.value, resolved.value_type)
            values = (single,) if single is not None else None
        if not values:
            log.debug(
                f"Dropping '{resolved.path}' from clause {clause.to_text()!r}: "
                f"unsupported type {resolved.value_type!r}"
            )
            return None
        if clause.operator is FilterOperator.CONTAINS and not values[0].kind.is_textual:
            raise ValueTypeError(
                f"Contains requires a string property, '{resolved.path}' is "
                f"{values[0].kind.value}"
            )
        comparison = Comparison(resolved, clause.operator, values, case_sensitive)
        if resolved.collection is not None:
            return AnyElement(resolved.collection, comparison)
        return comparison


FilterInput = Union[None, str, FilterExpression, Sequence[WhereClause], Predicate]


def compile_filter(
    filter_input: FilterInput,
    entity_type: Type[T],
    case_sensitive: bool = False,
) -> Predicate:
    """
    Compile any accepted filter input for ``entity_type``.

    Accepts a textual expression, a parsed expression, structured where
    clauses, an already compiled predicate, or None.
    """
    if isinstance(filter_input, Predicate):
        return filter_input
    expression = to_filter_expression(filter_input)
    return PredicateCompiler(entity_type).compile(expression, case_sensitive)
