# src/async_crud/db_implementations/memory_repository.py

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from logging import LoggerAdapter
from typing import (
    Any,
    AsyncGenerator,
    Dict,
    Generic,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
)

from async_crud.base.entity import Entity, foreign_keys
from async_crud.base.exceptions import (
    KeyAlreadyExistsException,
    ObjectNotFoundException,
    ReferentialIntegrityException,
)
from async_crud.base.interfaces import Criteria, Repository
from async_crud.base.tenancy import TenantContext
from async_crud.config import CrudSettings

T = TypeVar("T", bound=Entity)

# Staged operation: (kind, entity type, id, row data)
Operation = Tuple[str, Type[Entity], Any, Optional[Dict[str, Any]]]
Tables = Dict[Type[Entity], Dict[Any, Dict[str, Any]]]

_INSERT = "insert"
_REPLACE = "replace"
_DELETE = "delete"


def _matches(row: Dict[str, Any], criteria: Criteria) -> bool:
    for name, expected in criteria.items():
        value = row.get(name)
        if isinstance(expected, (set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class MemoryDatabase:
    """
    Shared in-memory storage for any number of entity types.

    Rows are stored as plain dictionaries without navigation fields. Foreign
    keys declared through entity relations are enforced whenever a set of
    changes is applied.
    """

    def __init__(self):
        self._tables: Tables = {}
        self._lock = asyncio.Lock()
        self._log = logging.getLogger(f"{__name__}.MemoryDatabase")

    def snapshot(self) -> Tables:
        """Shallow copy of every table; row dictionaries are never mutated in place."""
        return {entity_type: dict(rows) for entity_type, rows in self._tables.items()}

    def apply(
        self, tables: Tables, operations: Sequence[Operation], check: bool = True
    ) -> Tables:
        """
        Apply staged operations to a copy of ``tables`` and check constraints.

        Raises:
            KeyAlreadyExistsException: For inserts of an existing id.
            ObjectNotFoundException: For replacements of a missing id.
            ReferentialIntegrityException: If a foreign key would dangle.
        """
        state = {entity_type: dict(rows) for entity_type, rows in tables.items()}
        for kind, entity_type, key, data in operations:
            table = state.setdefault(entity_type, {})
            if kind == _INSERT:
                if key in table:
                    raise KeyAlreadyExistsException(
                        f"{entity_type.__name__} with ID {key} already exists"
                    )
                table[key] = data
            elif kind == _REPLACE:
                if key not in table:
                    raise ObjectNotFoundException(f"Id '{key}' not found")
                table[key] = data
            elif kind == _DELETE:
                table.pop(key, None)
        if check:
            self._check_foreign_keys(state)
        return state

    def _check_foreign_keys(self, state: Tables) -> None:
        for entity_type, rows in state.items():
            for fk_field, target in foreign_keys(entity_type).items():
                target_rows = state.get(target, {})
                for key, row in rows.items():
                    reference = row.get(fk_field)
                    if reference is not None and reference not in target_rows:
                        raise ReferentialIntegrityException(
                            f"{entity_type.__name__} '{key}' references missing "
                            f"{target.__name__} '{reference}' through '{fk_field}'"
                        )

    async def commit(self, operations: Sequence[Operation]) -> None:
        async with self._lock:
            self._tables = self.apply(self._tables, operations)
            self._log.debug(f"Committed {len(operations)} operation(s)")


class MemoryRepository(Repository[T], Generic[T]):
    """
    In-memory repository over a shared MemoryDatabase.

    Writes are staged in a per-repository unit of work and applied to the
    database atomically on commit. Reads see committed rows plus this
    repository's staged changes.
    """

    def __init__(
        self,
        entity_cls: Type[T],
        database: Optional[MemoryDatabase] = None,
        tenant: Optional[TenantContext] = None,
        settings: Optional[CrudSettings] = None,
    ):
        super().__init__(tenant=tenant, settings=settings)
        self._entity_cls = entity_cls
        self._database = database or MemoryDatabase()
        self._pending: List[Operation] = []

    @property
    def entity_type(self) -> Type[T]:
        return self._entity_cls

    @property
    def database(self) -> MemoryDatabase:
        return self._database

    async def create_schema(self, logger: LoggerAdapter) -> None:
        logger.debug(f"No schema required for in-memory {self._entity_cls.__name__}")

    def _view(self, check: bool = False) -> Tables:
        return self._database.apply(self._database.snapshot(), self._pending, check)

    def _entity_to_dict(self, entity: Entity) -> Dict[str, Any]:
        return copy.deepcopy(entity.model_dump(exclude=set(type(entity).relations())))

    async def _fetch_rows(
        self,
        entity_type: Type[Entity],
        logger: LoggerAdapter,
        include_deleted: bool,
        criteria: Criteria,
    ) -> List[Entity]:
        await asyncio.sleep(0)
        rows = self._view().get(entity_type, {})
        result = []
        for data in rows.values():
            if not include_deleted and data.get("deleted"):
                continue
            if not _matches(data, criteria):
                continue
            result.append(entity_type.model_validate(copy.deepcopy(data)))
        return result

    def _stage(self, kind: str, entities: Sequence[Entity]) -> None:
        """Stage operations and check them immediately, keeping nothing on failure."""
        marker = len(self._pending)
        for entity in entities:
            data = None if kind == _DELETE else self._entity_to_dict(entity)
            self._pending.append((kind, type(entity), entity.id, data))
        try:
            self._view(check=True)
        except Exception:
            del self._pending[marker:]
            raise

    async def _insert(self, entities: Sequence[Entity], logger: LoggerAdapter) -> None:
        self._stage(_INSERT, entities)

    async def _replace(self, entities: Sequence[Entity], logger: LoggerAdapter) -> None:
        self._stage(_REPLACE, entities)

    async def _delete(self, entities: Sequence[Entity], logger: LoggerAdapter) -> None:
        self._stage(_DELETE, entities)

    async def _flush(self, logger: LoggerAdapter) -> None:
        self._view(check=True)

    @asynccontextmanager
    async def _savepoint(self, logger: LoggerAdapter) -> AsyncGenerator[None, None]:
        marker = len(self._pending)
        logger.debug(f"Savepoint opened at operation {marker}")
        try:
            yield
        finally:
            del self._pending[marker:]
            logger.debug(f"Savepoint rolled back to operation {marker}")

    async def _commit(self, logger: LoggerAdapter) -> None:
        operations, self._pending = self._pending, []
        try:
            await self._database.commit(operations)
        except Exception:
            self._pending = operations
            raise

    async def _rollback(self, logger: LoggerAdapter) -> None:
        logger.debug(f"Discarding {len(self._pending)} staged operation(s)")
        self._pending = []
