# src/async_crud/base/patch.py
"""Whitelisted partial updates."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Type, TypeVar

from pydantic import ValidationError as PydanticValidationError

from .entity import BOOKKEEPING_FIELDS, Entity
from .exceptions import ObjectValidationException
from .model_validator import ModelValidator
from .validation_exceptions import InvalidPathError

log = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)


def mutable_fields(entity_type: Type[Entity]) -> FrozenSet[str]:
    """
    Fields a patch may change on ``entity_type``.

    A type may narrow the set with a ``__mutable_fields__`` class attribute.
    Bookkeeping and navigation fields are never mutable.
    """
    declared = getattr(entity_type, "__mutable_fields__", None)
    candidates = set(declared) if declared is not None else set(entity_type.model_fields)
    return frozenset(
        candidates - BOOKKEEPING_FIELDS - set(entity_type.relations())
    )


@dataclass(frozen=True)
class PatchDocument:
    """A set of property changes, keyed by property name."""

    changes: Mapping[str, Any] = field(default_factory=dict)

    def resolve(self, entity_type: Type[Entity]) -> Dict[str, Any]:
        """
        Map the document's property names onto mutable fields of ``entity_type``.

        Names resolve case-insensitively.

        Raises:
            ObjectValidationException: Listing every invalid property.
        """
        validator = ModelValidator.for_type(entity_type)
        allowed = mutable_fields(entity_type)
        resolved: Dict[str, Any] = {}
        invalid = []
        for name, value in self.changes.items():
            try:
                field_name = validator.resolve_name(name)
            except InvalidPathError:
                invalid.append(name)
                continue
            if field_name not in allowed:
                invalid.append(name)
                continue
            resolved[field_name] = value
        if invalid:
            raise ObjectValidationException(
                f"invalid property: {', '.join(sorted(invalid))}"
            )
        return resolved

    def apply(self, entity: E) -> E:
        """
        Return a copy of ``entity`` with the changes merged and re-validated.

        Raises:
            ObjectValidationException: For invalid properties or values.
        """
        entity_type = type(entity)
        changes = self.resolve(entity_type)
        data = entity.model_dump()
        data.update(changes)
        try:
            patched = entity_type.model_validate(data)
        except PydanticValidationError as e:
            raise ObjectValidationException(
                f"Patch produced an invalid {entity_type.__name__}: {e}"
            ) from e
        log.debug(f"Patched {entity_type.__name__} fields {sorted(changes)}")
        return patched
