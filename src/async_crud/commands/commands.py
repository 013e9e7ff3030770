# src/async_crud/commands/commands.py
"""
Command objects accepted by ``CrudCommandHandler``.

Every command carries an optional ``cancel_event``; setting it asks the
handler to stop at the next cancellation checkpoint.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Generic, List, Optional, TypeVar

from async_crud.base.patch import PatchDocument
from async_crud.base.predicate import FilterInput
from async_crud.base.query import SortInput

T = TypeVar("T")


@dataclass
class GetCommand:
    id: uuid.UUID
    includes: List[str] = field(default_factory=list)
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class FindCommand:
    filter: FilterInput = None
    includes: List[str] = field(default_factory=list)
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class ListCommand:
    """
    Request one page of entities.

    ``page`` and ``per_page`` of None use the configured defaults. ``filter``
    accepts a filter expression string, where clauses or a compiled
    predicate; ``sort`` a sort expression string or ordered clauses.
    """

    page: Optional[int] = None
    per_page: Optional[int] = None
    filter: FilterInput = None
    sort: SortInput = None
    includes: List[str] = field(default_factory=list)
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class ListAllCommand(ListCommand):
    """Like ListCommand, but soft-deleted entities are included."""


@dataclass
class CreateCommand(Generic[T]):
    entity: T
    includes: List[str] = field(default_factory=list)
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class CreateManyCommand(Generic[T]):
    entities: List[T]
    includes: List[str] = field(default_factory=list)
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class UpdateCommand(Generic[T]):
    entity: T
    includes: List[str] = field(default_factory=list)
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class UpdateManyCommand(Generic[T]):
    entities: List[T]
    includes: List[str] = field(default_factory=list)
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class PatchCommand:
    id: uuid.UUID
    patch: PatchDocument
    includes: List[str] = field(default_factory=list)
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class SoftDeleteCommand:
    id: uuid.UUID
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class RemoveCommand:
    id: uuid.UUID
    cancel_event: Optional[asyncio.Event] = None
