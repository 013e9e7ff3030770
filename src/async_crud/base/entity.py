# src/async_crud/base/entity.py
"""
Entity base models and capability protocols.

Entities are pydantic models assembled from small capability mixins instead of
a deep inheritance chain. Repositories ask ``has_capability`` whether a type
carries tenant or soft-delete fields and adapt their behaviour accordingly.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import (
    Any,
    ClassVar,
    List,
    Dict,
    Optional,
    Protocol,
    Type,
    runtime_checkable,
)

from pydantic import BaseModel, ConfigDict, Field, model_validator

from async_crud.base.utils import to_snake_case


# --- Capability Protocols ---


@runtime_checkable
class Identifiable(Protocol):
    id: uuid.UUID


@runtime_checkable
class TenantScoped(Protocol):
    tenant_id: Optional[uuid.UUID]


@runtime_checkable
class SoftDeletable(Protocol):
    deleted: bool
    deleted_at: Optional[datetime]


def has_capability(entity_type: Type[Any], capability: Type[Any]) -> bool:
    """
    Check whether an entity type declares every field of a capability protocol.

    ``issubclass`` cannot be used with protocols that have data members, so the
    check compares the protocol's annotations against the model's fields.
    """
    fields = getattr(entity_type, "model_fields", None)
    if fields is None:
        return False
    required = getattr(capability, "__annotations__", {})
    return all(name in fields for name in required)


# --- Relations ---


@dataclass(frozen=True)
class Relation:
    """
    Declares a navigation field on an entity.

    Attributes:
        target: The related entity type.
        foreign_key: Name of the foreign key field. For ``many=False`` it lives
            on the declaring entity, for ``many=True`` on the target.
        many: Whether the navigation field holds a collection.
    """

    target: Type["Entity"]
    foreign_key: str
    many: bool = False


# --- Capability Mixins ---


class Entity(BaseModel):
    """Identifiable, timestamped entity."""

    model_config = ConfigDict(populate_by_name=True)

    __relations__: ClassVar[Dict[str, Relation]] = {}
    __table_name__: ClassVar[Optional[str]] = None

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def table_name(cls) -> str:
        return cls.__table_name__ or f"{to_snake_case(cls.__name__)}s"

    @classmethod
    def relations(cls) -> Dict[str, Relation]:
        return dict(cls.__relations__)


class TenantOwned(BaseModel):
    tenant_id: Optional[uuid.UUID] = None


class SoftDelete(BaseModel):
    deleted: bool = False
    deleted_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_deleted_stamp(self):
        if self.deleted != (self.deleted_at is not None):
            raise ValueError("deleted must be set if and only if deleted_at is set")
        return self


class BaseEntity(Entity, TenantOwned, SoftDelete):
    """Tenant-owned, soft-deletable entity with bookkeeping timestamps."""


def known_entity_types() -> List[Type[Entity]]:
    """All imported Entity subclasses, base classes excluded."""
    found: List[Type[Entity]] = []
    pending = list(Entity.__subclasses__())
    while pending:
        cls = pending.pop(0)
        if cls not in found:
            found.append(cls)
            pending.extend(cls.__subclasses__())
    return [cls for cls in found if cls is not BaseEntity]


def foreign_keys(entity_type: Type[Entity]) -> Dict[str, Type[Entity]]:
    """
    Foreign key fields stored on ``entity_type`` and the types they reference.

    Combines the type's own single-valued relations with collection relations
    declared on other types that point at it.
    """
    keys: Dict[str, Type[Entity]] = {}
    for relation in entity_type.relations().values():
        if not relation.many:
            keys[relation.foreign_key] = relation.target
    for owner in known_entity_types():
        for relation in owner.relations().values():
            if relation.many and relation.target is entity_type:
                keys.setdefault(relation.foreign_key, owner)
    return keys


# Fields maintained by the repository rather than by callers.
BOOKKEEPING_FIELDS = frozenset(
    {"id", "tenant_id", "created_at", "updated_at", "deleted", "deleted_at"}
)
