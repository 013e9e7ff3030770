# src/async_crud/base/sorting.py
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .query import SortClause, SortDirection
from .validation_exceptions import InvalidPathError

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SORT = (SortClause(field="created_at", direction=SortDirection.DESCENDING),)


def _sort_key(field_name: str):
    def key(item: Any) -> Tuple[int, Any]:
        value = getattr(item, field_name)
        if value is None:
            return (0, 0)
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, datetime) and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (1, value)

    return key


def apply_sort(
    items: Iterable[T],
    clauses: Optional[Sequence[SortClause]] = None,
    default: Sequence[SortClause] = DEFAULT_SORT,
) -> List[T]:
    """
    Order items by a composite sort.

    The first clause is the primary ordering and each following clause breaks
    ties left by the ones before it. Field names must be exact attribute names.
    ``None`` sorts before any value in ascending order.

    Args:
        items: Entities to order.
        clauses: Sort clauses; falls back to ``default`` when empty.
        default: Ordering used when no clauses are given.

    Returns:
        A new, sorted list.

    Raises:
        InvalidPathError: If a clause names a field the items do not have.
    """
    ordered = list(items)
    effective = list(clauses) if clauses else list(default)
    if ordered:
        sample = ordered[0]
        fields = getattr(type(sample), "model_fields", None)
        for clause in effective:
            known = clause.field in fields if fields is not None else hasattr(sample, clause.field)
            if not known:
                raise InvalidPathError(
                    f"Cannot sort by '{clause.field}': no such field on "
                    f"{type(sample).__name__}"
                )
    # Stable sort, so keys are applied from last to first.
    for clause in reversed(effective):
        ordered.sort(key=_sort_key(clause.field), reverse=clause.descending)
    log.debug(f"Applied sort {[(c.field, c.direction.value) for c in effective]}")
    return ordered
