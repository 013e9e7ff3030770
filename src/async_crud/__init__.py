# src/async_crud/__init__.py

"""
Async CRUD Library Initialization.

This package provides tenant-scoped, soft-delete aware CRUD repositories,
a textual filter/sort language compiled into typed predicates, pagination,
and a command pipeline that turns repository outcomes into serializable
results.

It initializes a logger with a NullHandler and makes the core components
available at the top level.
"""

import logging

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
# Library logs are discarded unless the consuming application configures
# logging for "async_crud".
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False

# --------------------------------------------------------------------------
# Core Interface, Entity and Exception Exports
# --------------------------------------------------------------------------
from .base.interfaces import Repository
from .base.entity import BaseEntity, Entity, Relation, SoftDelete, TenantOwned
from .base.exceptions import (
    KeyAlreadyExistsException,
    ObjectNotFoundException,
    ObjectValidationException,
    OperationCancelledException,
    ReferentialIntegrityException,
    SessionDiscardedException,
    TenantMismatchException,
)
from .base.tenancy import TenantContext

# --------------------------------------------------------------------------
# Filtering, Sorting and Paging Exports
# --------------------------------------------------------------------------
# Filters are written as "$(Price>>100;Name%=phone)" and compiled per entity
# type; sorts as "$(name==asc;price==desc)".
from .base.query import (
    FilterOperator,
    FilterParseError,
    SortClause,
    SortDirection,
    WhereClause,
    parse_filter,
    parse_sort,
)
from .base.predicate import Predicate, PredicateCompiler, compile_filter
from .base.pagination import Page, paginate
from .base.patch import PatchDocument
from .base.validation import EntityValidator, RuleSet, ValidationNotification, ValidationResult

# --------------------------------------------------------------------------
# Repository Implementation Exports
# --------------------------------------------------------------------------
from .db_implementations.memory_repository import MemoryDatabase, MemoryRepository
from .db_implementations.sqlite_repository import SqliteRepository, create_tables

# --------------------------------------------------------------------------
# Command Pipeline Exports
# --------------------------------------------------------------------------
from .commands.commands import (
    CreateCommand,
    CreateManyCommand,
    FindCommand,
    GetCommand,
    ListAllCommand,
    ListCommand,
    PatchCommand,
    RemoveCommand,
    SoftDeleteCommand,
    UpdateCommand,
    UpdateManyCommand,
)
from .commands.handler import CrudCommandHandler, CrudOperation
from .commands.results import CommandResult, CommandResultStatus, ErrorCode, ListCommandResult
from .config import CrudSettings, get_settings

# --------------------------------------------------------------------------
# __all__ Definition
# --------------------------------------------------------------------------
__all__ = [
    # Core
    "Repository",
    "Entity",
    "BaseEntity",
    "TenantOwned",
    "SoftDelete",
    "Relation",
    "TenantContext",
    # Exceptions
    "ObjectNotFoundException",
    "KeyAlreadyExistsException",
    "ObjectValidationException",
    "TenantMismatchException",
    "ReferentialIntegrityException",
    "OperationCancelledException",
    "SessionDiscardedException",
    "FilterParseError",
    # Query
    "FilterOperator",
    "WhereClause",
    "SortClause",
    "SortDirection",
    "parse_filter",
    "parse_sort",
    "Predicate",
    "PredicateCompiler",
    "compile_filter",
    "Page",
    "paginate",
    "PatchDocument",
    # Validation
    "EntityValidator",
    "RuleSet",
    "ValidationNotification",
    "ValidationResult",
    # Implementations
    "MemoryDatabase",
    "MemoryRepository",
    "SqliteRepository",
    "create_tables",
    # Commands
    "GetCommand",
    "FindCommand",
    "ListCommand",
    "ListAllCommand",
    "CreateCommand",
    "CreateManyCommand",
    "UpdateCommand",
    "UpdateManyCommand",
    "PatchCommand",
    "SoftDeleteCommand",
    "RemoveCommand",
    "CrudCommandHandler",
    "CrudOperation",
    "CommandResult",
    "CommandResultStatus",
    "ListCommandResult",
    "ErrorCode",
    # Settings
    "CrudSettings",
    "get_settings",
    # Logging
    "logger",
]
