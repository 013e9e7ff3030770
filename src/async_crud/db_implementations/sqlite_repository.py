# src/async_crud/db_implementations/sqlite_repository.py

import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from logging import LoggerAdapter
from typing import (
    Any,
    AsyncGenerator,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Sequence,
    Type,
    TypeVar,
)

# --- aiosqlite Driver Import ---
import aiosqlite

# --- Framework Imports ---
from async_crud.base.entity import Entity, SoftDeletable, foreign_keys, has_capability
from async_crud.base.exceptions import (
    KeyAlreadyExistsException,
    ObjectNotFoundException,
    ReferentialIntegrityException,
)
from async_crud.base.interfaces import Criteria, Repository
from async_crud.base.tenancy import TenantContext
from async_crud.base.utils import prepare_for_storage
from async_crud.config import CrudSettings

# --- Type Variables ---
T = TypeVar("T", bound=Entity)

# Columns every table carries; the full entity is kept as JSON in "data".
_FIXED_COLUMNS = ("id", "tenant_id", "deleted", "created_at", "data")


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _column_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Enum):
        return _column_value(value.value)
    return value


def _columns_for(entity_type: Type[Entity]) -> List[str]:
    return list(_FIXED_COLUMNS) + [
        fk for fk in foreign_keys(entity_type) if fk not in _FIXED_COLUMNS
    ]


async def create_tables(
    db_connection: aiosqlite.Connection,
    entity_types: Iterable[Type[Entity]],
    logger: LoggerAdapter,
) -> None:
    """Create the tables for several entity types, enabling foreign key enforcement."""
    await db_connection.execute("PRAGMA foreign_keys = ON")
    for entity_type in entity_types:
        await _create_table(db_connection, entity_type, logger)
    await db_connection.commit()


async def _create_table(
    db_connection: aiosqlite.Connection,
    entity_type: Type[Entity],
    logger: LoggerAdapter,
) -> None:
    cols_def = [
        '"id" TEXT PRIMARY KEY NOT NULL',
        '"tenant_id" TEXT',
        '"deleted" INTEGER NOT NULL DEFAULT 0',
        '"created_at" TEXT',
        '"data" TEXT NOT NULL',
    ]
    for fk_field, target in foreign_keys(entity_type).items():
        if fk_field in _FIXED_COLUMNS:
            continue
        cols_def.append(
            f"{quote_identifier(fk_field)} TEXT REFERENCES "
            f"{quote_identifier(target.table_name())}(\"id\")"
        )
    table = quote_identifier(entity_type.table_name())
    create_sql = f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(cols_def)})"
    logger.debug(f"Schema creation SQL: {create_sql}")
    await db_connection.execute(create_sql)
    if "tenant_id" in entity_type.model_fields:
        index = quote_identifier(f"ix_{entity_type.table_name()}_tenant_id")
        await db_connection.execute(
            f'CREATE INDEX IF NOT EXISTS {index} ON {table} ("tenant_id")'
        )
    logger.info(f"Schema creation/verification complete for {table}.")


class SqliteRepository(Repository[T], Generic[T]):
    """
    SQLite repository implementation using aiosqlite.

    This repository expects an active ``aiosqlite.Connection`` provided by the
    caller, which owns its lifetime. Every entity type gets its own table with
    the primary key, tenant, soft-delete flag, creation time and foreign key
    columns broken out for filtering and constraint enforcement; the complete
    entity (minus navigation fields) is stored as JSON in ``data``.

    Filter predicates and sort clauses are evaluated in Python after a SQL
    prefilter on tenant, soft-delete flag and key columns.

    Foreign keys come from entity relations and are enforced by SQLite
    (``PRAGMA foreign_keys = ON``), so the soft-delete probe runs a real
    ``DELETE`` inside a ``SAVEPOINT`` that is always rolled back.
    """

    # --- Initialization ---
    def __init__(
        self,
        db_connection: aiosqlite.Connection,
        entity_type: Type[T],
        tenant: Optional[TenantContext] = None,
        settings: Optional[CrudSettings] = None,
    ):
        """
        Initialize the SQLite repository with an existing connection.

        Args:
            db_connection: An active aiosqlite.Connection managed externally.
            entity_type: The entity class; its ``table_name()`` names the table.
            tenant: The caller's tenant context.
            settings: Paging and ordering defaults.
        """
        if not isinstance(db_connection, aiosqlite.Connection):
            raise TypeError("db_connection must be an instance of aiosqlite.Connection")
        super().__init__(tenant=tenant, settings=settings)
        self._conn = db_connection
        self._entity_type = entity_type
        self._pragmas_applied = False
        self._logger = logging.getLogger(
            f"{__name__}.{self.__class__.__name__}[{entity_type.__name__}]"
        )
        self._logger.debug(
            f"Repository instance created for {entity_type.__name__} using table "
            f"'{entity_type.table_name()}'"
        )

    # --- Abstract Property Implementations ---
    @property
    def entity_type(self) -> Type[T]:
        return self._entity_type

    # --- Connection/Session Management ---
    @asynccontextmanager
    async def _get_session(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """
        Provide the externally managed connection, with foreign keys enabled.
        Errors are logged and re-raised for the unit of work to handle.
        """
        if not self._pragmas_applied:
            await self._conn.execute("PRAGMA foreign_keys = ON")
            self._pragmas_applied = True
        try:
            yield self._conn
        except Exception as e:
            self._logger.error(f"Error during repository operation: {e}")
            raise

    # --- Schema Implementation ---

    async def create_schema(self, logger: LoggerAdapter) -> None:
        """Create the entity's table if it doesn't exist."""
        logger.info(f"Creating schema for '{self._entity_type.table_name()}'...")
        try:
            async with self._get_session() as conn:
                await _create_table(conn, self._entity_type, logger)
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"creating schema for {self._entity_type.table_name()}")

    # --- Serialization ---

    def _serialize_entity(self, entity: Entity) -> Dict[str, Any]:
        entity_type = type(entity)
        record = {
            "id": _column_value(entity.id),
            "tenant_id": _column_value(getattr(entity, "tenant_id", None)),
            "deleted": int(bool(getattr(entity, "deleted", False))),
            "created_at": _column_value(entity.created_at),
            "data": json.dumps(prepare_for_storage(entity, exclude=entity_type.relations())),
        }
        for fk_field in foreign_keys(entity_type):
            if fk_field not in record:
                record[fk_field] = _column_value(getattr(entity, fk_field, None))
        return record

    def _deserialize_record(self, entity_type: Type[Entity], data: str) -> Entity:
        return entity_type.model_validate_json(data)

    # --- Storage Primitives ---

    async def _fetch_rows(
        self,
        entity_type: Type[Entity],
        logger: LoggerAdapter,
        include_deleted: bool,
        criteria: Criteria,
    ) -> List[Entity]:
        columns = set(_columns_for(entity_type))
        clauses: List[str] = []
        params: List[Any] = []
        remaining: Dict[str, Any] = {}
        if not include_deleted and has_capability(entity_type, SoftDeletable):
            clauses.append('"deleted" = 0')
        for name, expected in criteria.items():
            if name not in columns or name == "data":
                remaining[name] = expected
                continue
            if isinstance(expected, (set, frozenset)):
                if not expected:
                    return []
                values = [_column_value(v) for v in expected]
                clauses.append(
                    f"{quote_identifier(name)} IN ({', '.join('?' for _ in values)})"
                )
                params.extend(values)
            elif expected is None:
                clauses.append(f"{quote_identifier(name)} IS NULL")
            else:
                clauses.append(f"{quote_identifier(name)} = ?")
                params.append(_column_value(expected))

        query = f'SELECT "data" FROM {quote_identifier(entity_type.table_name())}'
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY rowid"
        logger.debug(f"Executing query: {query} with params: {params}")

        try:
            async with self._get_session() as conn:
                async with conn.execute(query, params) as cursor:
                    records = await cursor.fetchall()
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"reading {entity_type.table_name()}")

        result = []
        for record in records:
            entity = self._deserialize_record(entity_type, record[0])
            if all(
                (getattr(entity, k, None) in v)
                if isinstance(v, (set, frozenset))
                else getattr(entity, k, None) == v
                for k, v in remaining.items()
            ):
                result.append(entity)
        return result

    async def _insert(self, entities: Sequence[Entity], logger: LoggerAdapter) -> None:
        for entity in entities:
            record = self._serialize_entity(entity)
            cols = ", ".join(quote_identifier(k) for k in record)
            placeholders = ", ".join("?" for _ in record)
            query = (
                f"INSERT INTO {quote_identifier(type(entity).table_name())} "
                f"({cols}) VALUES ({placeholders})"
            )
            logger.debug(f"Inserting {type(entity).__name__} '{entity.id}'")
            try:
                async with self._get_session() as conn:
                    await conn.execute(query, tuple(record.values()))
            except aiosqlite.Error as e:
                self._handle_db_error(e, f"inserting {type(entity).__name__} '{entity.id}'")

    async def _replace(self, entities: Sequence[Entity], logger: LoggerAdapter) -> None:
        for entity in entities:
            record = self._serialize_entity(entity)
            entity_id = record.pop("id")
            assignments = ", ".join(f"{quote_identifier(k)} = ?" for k in record)
            query = (
                f"UPDATE {quote_identifier(type(entity).table_name())} "
                f"SET {assignments} WHERE \"id\" = ?"
            )
            logger.debug(f"Replacing {type(entity).__name__} '{entity_id}'")
            try:
                async with self._get_session() as conn:
                    cursor = await conn.execute(query, tuple(record.values()) + (entity_id,))
                    affected = cursor.rowcount
                    await cursor.close()
            except aiosqlite.Error as e:
                self._handle_db_error(e, f"updating {type(entity).__name__} '{entity_id}'")
            if affected == 0:
                raise ObjectNotFoundException(f"Id '{entity_id}' not found")

    async def _delete(self, entities: Sequence[Entity], logger: LoggerAdapter) -> None:
        for entity in entities:
            query = (
                f"DELETE FROM {quote_identifier(type(entity).table_name())} "
                f'WHERE "id" = ?'
            )
            logger.debug(f"Deleting {type(entity).__name__} '{entity.id}'")
            try:
                async with self._get_session() as conn:
                    await conn.execute(query, (_column_value(entity.id),))
            except aiosqlite.Error as e:
                self._handle_db_error(e, f"deleting {type(entity).__name__} '{entity.id}'")

    async def _flush(self, logger: LoggerAdapter) -> None:
        # Constraints are immediate in SQLite; statements already failed if violated.
        return None

    @asynccontextmanager
    async def _savepoint(self, logger: LoggerAdapter) -> AsyncGenerator[None, None]:
        name = quote_identifier(f"probe_{uuid.uuid4().hex}")
        async with self._get_session() as conn:
            await conn.execute(f"SAVEPOINT {name}")
            logger.debug(f"Savepoint {name} opened")
            try:
                yield
            finally:
                await conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
                await conn.execute(f"RELEASE SAVEPOINT {name}")
                logger.debug(f"Savepoint {name} rolled back")

    async def _commit(self, logger: LoggerAdapter) -> None:
        try:
            await self._conn.commit()
        except aiosqlite.Error as e:
            self._handle_db_error(e, "committing transaction")

    async def _rollback(self, logger: LoggerAdapter) -> None:
        await self._conn.rollback()

    # --- Error Handling ---

    def _handle_db_error(self, error: Exception, context: str = "") -> None:
        """Maps aiosqlite errors to repository exceptions and raises them."""
        message = str(error)
        self._logger.error(f"Error during {context}: {message}")
        if isinstance(error, aiosqlite.IntegrityError):
            if "UNIQUE constraint failed" in message:
                raise KeyAlreadyExistsException(
                    f"Duplicate key during {context}. Detail: {message}"
                ) from error
            if "FOREIGN KEY constraint failed" in message:
                raise ReferentialIntegrityException(
                    f"Foreign key constraint violated during {context}. Detail: {message}"
                ) from error
            raise ValueError(
                f"Database integrity constraint violated during {context}. Detail: {message}"
            ) from error
        if isinstance(error, aiosqlite.OperationalError):
            raise RuntimeError(
                f"Database operational error during {context}: {message}"
            ) from error
        raise error
