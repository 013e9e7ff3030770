# src/async_crud/base/interfaces.py

import asyncio
import uuid
from abc import ABC, abstractmethod
from logging import LoggerAdapter
from typing import (
    Any,
    AsyncContextManager,
    Dict,
    Generic,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
)

from async_crud.base.entity import (
    Entity,
    SoftDeletable,
    TenantScoped,
    has_capability,
)
from async_crud.base.exceptions import (
    ObjectNotFoundException,
    SessionDiscardedException,
    TenantMismatchException,
)
from async_crud.base.includes import normalize_includes
from async_crud.base.pagination import Page, paginate
from async_crud.base.predicate import ALWAYS_TRUE, Predicate
from async_crud.base.query import SortClause, SortDirection
from async_crud.base.sorting import apply_sort
from async_crud.base.tenancy import TenantContext
from async_crud.base.utils import raise_if_cancelled, utcnow
from async_crud.config import CrudSettings, get_settings

# Type variable for any entity
T = TypeVar("T", bound=Entity)

# Criteria passed to storage: exact field values, or a set for membership.
Criteria = Mapping[str, Any]


class Repository(Generic[T], ABC):
    """
    Base repository for tenant-scoped, soft-delete aware CRUD.

    The generic operations (get, find, list*, add, update, soft_delete,
    remove, commit) are implemented here once. Backends only provide the
    storage primitives: fetching rows by exact criteria, staging inserts,
    replacements and deletes, a savepoint that is always rolled back, and
    commit/rollback.

    A repository instance is one unit of work for one caller: it is bound to
    a TenantContext for its whole lifetime and must be discarded after a
    failed commit.
    """

    def __init__(
        self,
        tenant: Optional[TenantContext] = None,
        settings: Optional[CrudSettings] = None,
    ):
        """
        Initialize the repository.

        Args:
            tenant: The caller's tenant. Defaults to an unscoped context.
            settings: Paging and ordering defaults. Defaults to the cached
                environment settings.
        """
        self._tenant = tenant or TenantContext()
        self._settings = settings or get_settings()
        self._identity_map: Dict[Tuple[type, uuid.UUID], Entity] = {}
        self._discarded = False

    @property
    @abstractmethod
    def entity_type(self) -> Type[T]:
        """The entity type this repository manages."""
        pass

    @property
    def tenant(self) -> TenantContext:
        return self._tenant

    @property
    def settings(self) -> CrudSettings:
        return self._settings

    @property
    def is_discarded(self) -> bool:
        return self._discarded

    # --- Schema Management ---

    @abstractmethod
    async def create_schema(self, logger: LoggerAdapter) -> None:
        """
        Create the storage structures for the entity type if they are missing.
        Should be idempotent.

        Args:
            logger: Logger adapter for recording creation steps.
        """
        pass

    # --- Storage Primitives ---

    @abstractmethod
    async def _fetch_rows(
        self,
        entity_type: Type[Entity],
        logger: LoggerAdapter,
        include_deleted: bool,
        criteria: Criteria,
    ) -> List[Entity]:
        """
        Fetch stored rows of ``entity_type`` matching ``criteria``, in storage order.

        Each criteria value is matched by equality, or by membership when it is
        a set or frozenset. Pending changes of this unit of work are visible.
        Soft-deleted rows are skipped unless ``include_deleted`` is True.
        Returned instances must be fresh objects the caller may mutate.
        """
        pass

    @abstractmethod
    async def _insert(self, entities: Sequence[Entity], logger: LoggerAdapter) -> None:
        pass

    @abstractmethod
    async def _replace(self, entities: Sequence[Entity], logger: LoggerAdapter) -> None:
        pass

    @abstractmethod
    async def _delete(self, entities: Sequence[Entity], logger: LoggerAdapter) -> None:
        pass

    @abstractmethod
    async def _flush(self, logger: LoggerAdapter) -> None:
        """Check staged changes against storage constraints without committing them."""
        pass

    @abstractmethod
    def _savepoint(self, logger: LoggerAdapter) -> AsyncContextManager[None]:
        """
        Open a nested scope whose changes are rolled back on every exit path.

        Exceptions raised inside the scope propagate after the rollback.
        """
        pass

    @abstractmethod
    async def _commit(self, logger: LoggerAdapter) -> None:
        pass

    @abstractmethod
    async def _rollback(self, logger: LoggerAdapter) -> None:
        pass

    # --- Helpers ---

    def _begin(self, operation: str, cancel_event: Optional[asyncio.Event]) -> None:
        if self._discarded:
            raise SessionDiscardedException()
        raise_if_cancelled(cancel_event, operation)

    def _criteria(self, entity_type: Type[Entity], **extra: Any) -> Dict[str, Any]:
        criteria = dict(extra)
        if self._tenant.is_scoped and has_capability(entity_type, TenantScoped):
            criteria["tenant_id"] = self._tenant.tenant_id
        return criteria

    def _check_entities(self, entities: Iterable[T]) -> List[T]:
        items = list(entities)
        for entity in items:
            if not isinstance(entity, self.entity_type):
                raise TypeError(
                    f"Expected {self.entity_type.__name__}, got {type(entity).__name__}"
                )
        return items

    def _stamp_tenant(self, entity: Entity, stored_tenant: Optional[uuid.UUID] = None) -> None:
        if not has_capability(type(entity), TenantScoped):
            return
        current = self._tenant.tenant_id
        if entity.tenant_id is None:
            entity.tenant_id = stored_tenant if stored_tenant is not None else current
            return
        if stored_tenant is not None and entity.tenant_id != stored_tenant:
            raise TenantMismatchException(
                f"Entity '{entity.id}' belongs to tenant '{stored_tenant}' and "
                f"cannot be moved to '{entity.tenant_id}'"
            )
        if current is not None and entity.tenant_id != current:
            raise TenantMismatchException(
                f"Entity '{entity.id}' has tenant '{entity.tenant_id}' but the "
                f"current tenant is '{current}'"
            )

    async def _fetch_stored(
        self,
        entities: Sequence[Entity],
        logger: LoggerAdapter,
        cancel_event: Optional[asyncio.Event],
    ) -> List[Entity]:
        """Re-fetch the stored row of every entity, failing if any id is missing."""
        stored_rows = []
        for entity in entities:
            raise_if_cancelled(cancel_event, "existence check")
            if entity.id is None:
                raise ObjectNotFoundException("Id '' not found")
            rows = await self._fetch_rows(
                type(entity),
                logger,
                include_deleted=False,
                criteria=self._criteria(type(entity), id=entity.id),
            )
            if not rows:
                logger.warning(
                    f"{type(entity).__name__} '{entity.id}' not found for tenant "
                    f"'{self._tenant.tenant_id}'"
                )
                raise ObjectNotFoundException(f"Id '{entity.id}' not found")
            stored_rows.append(rows[0])
        return stored_rows

    async def _query(
        self,
        logger: LoggerAdapter,
        predicate: Optional[Predicate],
        include_deleted: bool,
        cancel_event: Optional[asyncio.Event],
    ) -> List[T]:
        predicate = predicate or ALWAYS_TRUE
        raise_if_cancelled(cancel_event, "query")
        rows = await self._fetch_rows(
            self.entity_type,
            logger,
            include_deleted=include_deleted,
            criteria=self._criteria(self.entity_type),
        )
        # Relations must be loaded before predicates can read through them.
        relations = self.entity_type.relations()
        needed = [name for name in sorted(predicate.traversed_fields) if name in relations]
        for name in needed:
            raise_if_cancelled(cancel_event, "query")
            await self._load_relation(rows, self.entity_type, name, logger)
        matched = [row for row in rows if predicate(row)]
        default = self.entity_type.model_fields
        for row in matched:
            for name in needed:
                setattr(row, name, default[name].get_default(call_default_factory=True))
        logger.debug(
            f"Query on {self.entity_type.__name__} matched {len(matched)} of "
            f"{len(rows)} row(s)"
        )
        return matched

    async def _load_relation(
        self,
        rows: List[Entity],
        owner_type: Type[Entity],
        name: str,
        logger: LoggerAdapter,
    ) -> List[Entity]:
        """Populate navigation field ``name`` on ``rows`` and return the related rows."""
        if not rows:
            return []
        relation = owner_type.relations()[name]
        target = relation.target
        if relation.many:
            owner_ids = frozenset(row.id for row in rows)
            related = await self._fetch_rows(
                target,
                logger,
                include_deleted=False,
                criteria=self._criteria(target, **{relation.foreign_key: owner_ids}),
            )
            grouped: Dict[Any, List[Entity]] = {}
            for item in related:
                grouped.setdefault(getattr(item, relation.foreign_key), []).append(item)
            for row in rows:
                setattr(row, name, grouped.get(row.id, []))
            return related

        keys = frozenset(
            value
            for value in (getattr(row, relation.foreign_key) for row in rows)
            if value is not None
        )
        if not keys:
            for row in rows:
                setattr(row, name, None)
            return []
        related = await self._fetch_rows(
            target,
            logger,
            include_deleted=False,
            criteria=self._criteria(target, id=keys),
        )
        by_id = {item.id: item for item in related}
        for row in rows:
            setattr(row, name, by_id.get(getattr(row, relation.foreign_key)))
        return related

    async def _materialize(
        self,
        rows: List[T],
        logger: LoggerAdapter,
        tracking: bool,
        includes: Optional[Iterable[str]],
        cancel_event: Optional[asyncio.Event],
    ) -> List[T]:
        paths = normalize_includes(includes, self.entity_type)
        loaded: Dict[str, Tuple[Type[Entity], List[Entity]]] = {
            "": (self.entity_type, list(rows))
        }
        for path in paths:
            raise_if_cancelled(cancel_event, "include loading")
            parent_path, _, name = path.rpartition(".")
            owner_type, owners = loaded[parent_path]
            related = await self._load_relation(owners, owner_type, name, logger)
            loaded[path] = (owner_type.relations()[name].target, related)

        if not tracking:
            return rows
        tracked = []
        for row in rows:
            key = (type(row), row.id)
            tracked.append(self._identity_map.setdefault(key, row))
        return tracked

    # --- Read Operations ---

    async def get(
        self,
        id: uuid.UUID,
        logger: LoggerAdapter,
        tracking: bool = False,
        includes: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[T]:
        """
        Retrieve an entity by its id, excluding soft-deleted rows.

        Args:
            id: The entity id.
            logger: Logger adapter for recording operations.
            tracking: Return the session's tracked instance instead of a
                detached copy.
            includes: Relation paths to load alongside the entity.
            cancel_event: Cooperative cancellation signal.

        Returns:
            The entity, or None if it does not exist in the current tenant.

        Raises:
            OperationCancelledException: If ``cancel_event`` is set.
        """
        self._begin("get", cancel_event)
        logger.debug(f"Getting {self.entity_type.__name__} '{id}'")
        rows = await self._fetch_rows(
            self.entity_type,
            logger,
            include_deleted=False,
            criteria=self._criteria(self.entity_type, id=id),
        )
        entities = await self._materialize(rows[:1], logger, tracking, includes, cancel_event)
        return entities[0] if entities else None

    async def find(
        self,
        logger: LoggerAdapter,
        predicate: Optional[Predicate] = None,
        tracking: bool = False,
        includes: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[T]:
        """
        Return the first entity matching ``predicate``, excluding soft-deleted rows.

        Returns:
            The first match in storage order, or None.
        """
        self._begin("find", cancel_event)
        matched = await self._query(logger, predicate, False, cancel_event)
        entities = await self._materialize(matched[:1], logger, tracking, includes, cancel_event)
        return entities[0] if entities else None

    async def list(
        self,
        logger: LoggerAdapter,
        predicate: Optional[Predicate] = None,
        tracking: bool = False,
        includes: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[T]:
        """List every entity matching ``predicate``, excluding soft-deleted rows."""
        self._begin("list", cancel_event)
        matched = await self._query(logger, predicate, False, cancel_event)
        return await self._materialize(matched, logger, tracking, includes, cancel_event)

    async def list_all(
        self,
        logger: LoggerAdapter,
        predicate: Optional[Predicate] = None,
        tracking: bool = False,
        includes: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[T]:
        """Like ``list`` but soft-deleted rows are included."""
        self._begin("list_all", cancel_event)
        matched = await self._query(logger, predicate, True, cancel_event)
        return await self._materialize(matched, logger, tracking, includes, cancel_event)

    async def _paged(
        self,
        operation: str,
        page: int,
        per_page: int,
        logger: LoggerAdapter,
        predicate: Optional[Predicate],
        include_deleted: bool,
        sort: Optional[Sequence[SortClause]],
        sorted_: bool,
        tracking: bool,
        includes: Optional[Iterable[str]],
        cancel_event: Optional[asyncio.Event],
    ) -> Page[T]:
        self._begin(operation, cancel_event)
        matched = await self._query(logger, predicate, include_deleted, cancel_event)
        if sorted_:
            default = (
                SortClause(
                    field=self._settings.default_sort_field,
                    direction=SortDirection.DESCENDING,
                ),
            )
            matched = apply_sort(matched, sort, default=default)
        result = paginate(matched, page, per_page, self._settings.max_page_size)
        records = await self._materialize(
            result.records, logger, tracking, includes, cancel_event
        )
        logger.debug(
            f"{operation} {self.entity_type.__name__}: page {result.page}/"
            f"{result.page_count}, {len(records)} of {result.total_count} record(s)"
        )
        return Page(
            page=result.page,
            per_page=result.per_page,
            page_count=result.page_count,
            total_count=result.total_count,
            records=records,
        )

    async def list_paged(
        self,
        page: int,
        per_page: int,
        logger: LoggerAdapter,
        predicate: Optional[Predicate] = None,
        tracking: bool = False,
        includes: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Page[T]:
        """
        Return one page of entities matching ``predicate``, excluding soft-deleted rows.

        Args:
            page: 1-based page number; clamped to the valid range.
            per_page: Page size; values below 1 or above the configured maximum
                become the maximum.
            logger: Logger adapter for recording operations.
            predicate: Optional compiled filter.
            tracking: Return tracked instances.
            includes: Relation paths to load for the page's records.
            cancel_event: Cooperative cancellation signal.

        Returns:
            The page with its paging metadata. ``total_count`` counts every match.
        """
        return await self._paged(
            "list_paged", page, per_page, logger, predicate, False, None, False,
            tracking, includes, cancel_event,
        )

    async def list_all_paged(
        self,
        page: int,
        per_page: int,
        logger: LoggerAdapter,
        predicate: Optional[Predicate] = None,
        tracking: bool = False,
        includes: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Page[T]:
        """Like ``list_paged`` but soft-deleted rows are included."""
        return await self._paged(
            "list_all_paged", page, per_page, logger, predicate, True, None, False,
            tracking, includes, cancel_event,
        )

    async def list_sorted(
        self,
        page: int,
        per_page: int,
        logger: LoggerAdapter,
        predicate: Optional[Predicate] = None,
        sort: Optional[Sequence[SortClause]] = None,
        tracking: bool = False,
        includes: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Page[T]:
        """
        Like ``list_paged`` with ordering applied before paging.

        ``sort`` clauses must name exact fields. Without clauses the entities
        are ordered by the configured default field (``created_at``) descending.
        """
        return await self._paged(
            "list_sorted", page, per_page, logger, predicate, False, sort, True,
            tracking, includes, cancel_event,
        )

    async def list_all_sorted(
        self,
        page: int,
        per_page: int,
        logger: LoggerAdapter,
        predicate: Optional[Predicate] = None,
        sort: Optional[Sequence[SortClause]] = None,
        tracking: bool = False,
        includes: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Page[T]:
        """Like ``list_sorted`` but soft-deleted rows are included."""
        return await self._paged(
            "list_all_sorted", page, per_page, logger, predicate, True, sort, True,
            tracking, includes, cancel_event,
        )

    # --- Write Operations ---

    async def add(
        self,
        entities: Iterable[T],
        logger: LoggerAdapter,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[T]:
        """
        Stage new entities for insertion.

        Every entity is stamped in place: ``created_at`` and ``updated_at`` get
        the current UTC time, soft-delete fields are reset, and a missing
        ``tenant_id`` is set to the current tenant.

        Returns:
            The stamped entities.

        Raises:
            TenantMismatchException: If an entity names a different tenant.
            KeyAlreadyExistsException: If an id is already stored (backends may
                raise this at commit time).
        """
        self._begin("add", cancel_event)
        items = self._check_entities(entities)
        now = utcnow()
        for entity in items:
            self._stamp_tenant(entity)
            entity.created_at = now
            entity.updated_at = now
            if has_capability(type(entity), SoftDeletable):
                entity.deleted = False
                entity.deleted_at = None
        raise_if_cancelled(cancel_event, "add")
        await self._insert(items, logger)
        logger.debug(f"Staged {len(items)} new {self.entity_type.__name__} row(s)")
        return items

    async def update(
        self,
        entities: Iterable[T],
        logger: LoggerAdapter,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[T]:
        """
        Stage changes to existing entities.

        The stored row of every entity is re-fetched first. Bookkeeping fields
        (``created_at``, ``updated_at``, ``deleted``, ``deleted_at``) are copied
        from the stored row so callers cannot change them through an update;
        then ``updated_at`` is stamped.

        Raises:
            ObjectNotFoundException: If any id does not exist. Nothing is staged.
            TenantMismatchException: If an entity changes or conflicts with its tenant.
        """
        self._begin("update", cancel_event)
        items = self._check_entities(entities)
        stored_rows = await self._fetch_stored(items, logger, cancel_event)
        now = utcnow()
        for entity, stored in zip(items, stored_rows):
            self._copy_bookkeeping(entity, stored)
            entity.updated_at = now
        raise_if_cancelled(cancel_event, "update")
        await self._replace(items, logger)
        logger.debug(f"Staged update of {len(items)} {self.entity_type.__name__} row(s)")
        return items

    def _copy_bookkeeping(self, entity: Entity, stored: Entity) -> None:
        entity.created_at = stored.created_at
        entity.updated_at = stored.updated_at
        if has_capability(type(entity), SoftDeletable):
            entity.deleted = stored.deleted
            entity.deleted_at = stored.deleted_at
        self._stamp_tenant(
            entity, getattr(stored, "tenant_id", None)
        )

    async def soft_delete(
        self,
        entities: Iterable[T],
        logger: LoggerAdapter,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[T]:
        """
        Mark entities as deleted without removing their rows.

        After the existence check, a real delete of the rows is attempted
        inside a savepoint that is always rolled back. If that probe fails
        (typically a foreign key still references the row) the error
        propagates and nothing is changed.

        Raises:
            TypeError: If the entity type is not soft-deletable.
            ObjectNotFoundException: If any id does not exist.
            ReferentialIntegrityException: If the probe delete is rejected.
        """
        self._begin("soft_delete", cancel_event)
        if not has_capability(self.entity_type, SoftDeletable):
            raise TypeError(f"{self.entity_type.__name__} does not support soft delete")
        items = self._check_entities(entities)
        stored_rows = await self._fetch_stored(items, logger, cancel_event)
        for entity, stored in zip(items, stored_rows):
            self._copy_bookkeeping(entity, stored)

        raise_if_cancelled(cancel_event, "soft_delete")
        await self._probe_referential_integrity(items, logger)

        now = utcnow()
        for entity in items:
            entity.deleted = True
            entity.deleted_at = now
        await self._replace(items, logger)
        logger.debug(f"Staged soft delete of {len(items)} {self.entity_type.__name__} row(s)")
        return items

    async def _probe_referential_integrity(
        self, entities: Sequence[Entity], logger: LoggerAdapter
    ) -> None:
        try:
            async with self._savepoint(logger):
                await self._delete(entities, logger)
                await self._flush(logger)
        except Exception as e:
            logger.warning(
                f"Delete probe rejected for {self.entity_type.__name__} "
                f"{[str(e_.id) for e_ in entities]}: {e}"
            )
            raise

    async def remove(
        self,
        entities: Iterable[T],
        logger: LoggerAdapter,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Stage physical deletion of entities. No existence check is made."""
        self._begin("remove", cancel_event)
        items = self._check_entities(entities)
        await self._delete(items, logger)
        for entity in items:
            self._identity_map.pop((type(entity), entity.id), None)
        logger.debug(f"Staged removal of {len(items)} {self.entity_type.__name__} row(s)")

    async def commit(
        self,
        logger: LoggerAdapter,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Persist every staged change.

        On failure the staged changes are rolled back, the repository is marked
        discarded (further calls raise SessionDiscardedException) and the
        original error is re-raised.
        """
        self._begin("commit", cancel_event)
        try:
            await self._commit(logger)
        except Exception as e:
            logger.error(
                f"Commit failed for {self.entity_type.__name__}: {e}", exc_info=True
            )
            self._discarded = True
            self._identity_map.clear()
            try:
                await self._rollback(logger)
            except Exception as rollback_error:
                logger.error(f"Rollback after failed commit also failed: {rollback_error}")
            raise
        logger.debug(f"Committed changes for {self.entity_type.__name__}")
