# src/async_crud/base/includes.py
from typing import Iterable, List, Optional, Type

from .entity import Entity
from .model_validator import ModelValidator
from .validation_exceptions import InvalidPathError


def _resolve_relation(entity_type: Type[Entity], segment: str) -> str:
    relations = entity_type.relations()
    name = ModelValidator.for_type(entity_type).resolve_name(segment)
    if name not in relations:
        raise InvalidPathError(
            f"'{segment}' is not a declared relation of {entity_type.__name__}"
        )
    return name


def normalize_includes(
    paths: Optional[Iterable[str]], entity_type: Type[Entity]
) -> List[str]:
    """
    Resolve include paths to exact relation names.

    Each dot-separated segment is matched case-insensitively against the
    relations declared on the type reached so far. Every prefix of a path is
    included too, so ``Order.Items`` also yields ``order``. The result is
    de-duplicated and ordered parents first.

    Raises:
        InvalidPathError: If a segment is not a declared relation.
    """
    if not paths:
        return []
    result: List[str] = []
    for path in paths:
        if not path or not path.strip():
            continue
        current = entity_type
        resolved: List[str] = []
        for segment in path.strip().split("."):
            name = _resolve_relation(current, segment.strip())
            resolved.append(name)
            prefix = ".".join(resolved)
            if prefix not in result:
                result.append(prefix)
            current = current.relations()[name].target
    return sorted(result, key=lambda p: p.count("."))
