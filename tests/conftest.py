# tests/conftest.py
import logging
import uuid

# Import necessary drivers
import aiosqlite
import pytest
import pytest_asyncio

from async_crud.base.tenancy import TenantContext
from async_crud.config import CrudSettings
from async_crud.db_implementations.memory_repository import (
    MemoryDatabase,
    MemoryRepository,
)
from async_crud.db_implementations.sqlite_repository import (
    SqliteRepository,
    create_tables,
)
from tests.entities import TEST_ENTITY_TYPES

# Silence verbose loggers
logging.getLogger("aiosqlite").setLevel(logging.WARNING)

# --- List of available implementation keys ---
REPOSITORY_IMPLEMENTATIONS = ["memory", "sqlite"]


# --- Logger Fixture ---
@pytest.fixture(scope="session")
def logger():
    """Create a test logger."""
    _logger = logging.getLogger("test_crud_logger")
    if not _logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.setLevel(logging.DEBUG)
        _logger.addHandler(handler)
        _logger.setLevel(logging.DEBUG)
        _logger.propagate = False
    return logging.LoggerAdapter(_logger, {})


# --- Settings and Tenancy ---
@pytest.fixture
def settings() -> CrudSettings:
    return CrudSettings(
        max_page_size=500,
        default_page=1,
        default_per_page=30,
        case_sensitive_filters=False,
        default_sort_field="created_at",
    )


@pytest.fixture
def tenant() -> TenantContext:
    return TenantContext(tenant_id=uuid.uuid4(), user_id="test-user")


@pytest.fixture
def other_tenant() -> TenantContext:
    return TenantContext(tenant_id=uuid.uuid4(), user_id="other-user")


# --- Storage Fixtures (Function Scoped) ---
@pytest.fixture
def memory_database() -> MemoryDatabase:
    return MemoryDatabase()


@pytest_asyncio.fixture(scope="function")
async def sqlite_memory_db_conn():
    """Provides an in-memory aiosqlite database connection for testing."""
    conn = None
    try:
        conn = await aiosqlite.connect(":memory:")
        conn.row_factory = aiosqlite.Row
        yield conn
    finally:
        if conn:
            await conn.close()


# --- Repository Factories (Function Scoped) ---
@pytest.fixture(scope="function")
def memory_repository_factory(memory_database, settings):
    """Factory for repositories sharing one in-memory database."""

    def _create(entity_cls, tenant=None):
        return MemoryRepository(
            entity_cls, database=memory_database, tenant=tenant, settings=settings
        )

    return _create


@pytest_asyncio.fixture(scope="function")
async def sqlite_repository_factory(sqlite_memory_db_conn, settings, logger):
    """Factory for SQLite repositories sharing one in-memory connection."""
    await create_tables(sqlite_memory_db_conn, TEST_ENTITY_TYPES, logger)

    def _create(entity_cls, tenant=None):
        return SqliteRepository(
            db_connection=sqlite_memory_db_conn,
            entity_type=entity_cls,
            tenant=tenant,
            settings=settings,
        )

    return _create


# --- Parametrized Factory ---
@pytest.fixture(params=REPOSITORY_IMPLEMENTATIONS)
def repository_factory(request):
    """Parametrized fixture to get the correct factory based on implementation key."""
    impl_key = request.param
    if impl_key == "memory":
        yield request.getfixturevalue("memory_repository_factory")
    elif impl_key == "sqlite":
        yield request.getfixturevalue("sqlite_repository_factory")
    else:
        raise ValueError(f"Unknown repository implementation key: {impl_key}")
