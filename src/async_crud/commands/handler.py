# src/async_crud/commands/handler.py
"""
Command orchestration for one entity type.

Each command runs the same pipeline: validate, check existence, mutate,
commit, then reload and respond. Exceptions never leave the handler; they
become ``ERROR`` results whose message is a generic per-operation message
followed by the exception text. Validation failures and missing entities are
reported as ``ALERT`` results instead.
"""

import asyncio
import uuid
from enum import Enum
from logging import LoggerAdapter
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from async_crud.base.entity import Entity
from async_crud.base.exceptions import (
    KeyAlreadyExistsException,
    ObjectValidationException,
    OperationCancelledException,
    ReferentialIntegrityException,
)
from async_crud.base.interfaces import Repository
from async_crud.base.predicate import compile_filter
from async_crud.base.query import parse_sort
from async_crud.base.utils import raise_if_cancelled
from async_crud.base.validation import (
    EntityValidator,
    RuleSet,
    ValidationResult,
    validate_structure,
)
from async_crud.commands.commands import (
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
from async_crud.commands.results import CommandResult, ErrorCode, ListCommandResult
from async_crud.config import CrudSettings

T = TypeVar("T", bound=Entity)


class CrudOperation(Enum):
    FIND = "find"
    LIST = "list"
    LIST_ALL = "list_all"
    GET = "get"
    CREATE = "create"
    CREATE_MANY = "create_many"
    UPDATE = "update"
    UPDATE_MANY = "update_many"
    SOFT_DELETE = "soft_delete"
    REMOVE = "remove"


# (past participle, gerund) per operation
_VERBS: Dict[CrudOperation, tuple] = {
    CrudOperation.FIND: ("found", "finding"),
    CrudOperation.LIST: ("listed", "listing"),
    CrudOperation.LIST_ALL: ("listed", "listing"),
    CrudOperation.GET: ("retrieved", "retrieving"),
    CrudOperation.CREATE: ("created", "creating"),
    CrudOperation.CREATE_MANY: ("created", "creating"),
    CrudOperation.UPDATE: ("updated", "updating"),
    CrudOperation.UPDATE_MANY: ("updated", "updating"),
    CrudOperation.SOFT_DELETE: ("deleted", "deleting"),
    CrudOperation.REMOVE: ("removed", "removing"),
}

_CONFLICT_ERRORS = (KeyAlreadyExistsException, ReferentialIntegrityException)


class CrudCommandHandler(Generic[T]):
    """
    Runs CRUD commands against a repository and converts outcomes to results.

    Subclasses customize messages by overriding ``get_success_message``,
    ``get_error_message`` and ``get_not_found_message``.

    Args:
        repository: The repository (unit of work) the commands run against.
        logger: Logger adapter for recording the pipeline steps.
        validator: Optional rule-set validator; without one only pydantic's
            structural validation runs.
        settings: Paging and filtering defaults; defaults to the repository's.
    """

    def __init__(
        self,
        repository: Repository[T],
        logger: LoggerAdapter,
        validator: Optional[EntityValidator[T]] = None,
        settings: Optional[CrudSettings] = None,
    ):
        self._repository = repository
        self._logger = logger
        self._validator = validator
        self._settings = settings or repository.settings
        self._dispatch: Dict[type, Callable[[Any], Awaitable[CommandResult]]] = {
            GetCommand: self.get,
            FindCommand: self.find,
            ListCommand: self.list,
            ListAllCommand: self.list_all,
            CreateCommand: self.create,
            CreateManyCommand: self.create_many,
            UpdateCommand: self.update,
            UpdateManyCommand: self.update_many,
            PatchCommand: self.patch,
            SoftDeleteCommand: self.soft_delete,
            RemoveCommand: self.remove,
        }

    @property
    def entity_type(self) -> Type[T]:
        return self._repository.entity_type

    @property
    def entity_name(self) -> str:
        return self.entity_type.__name__

    # --- Messages ---

    def get_success_message(self, operation: CrudOperation) -> str:
        return f"{self.entity_name} {_VERBS[operation][0]} successfully"

    def get_error_message(self, operation: CrudOperation) -> str:
        return f"Error {_VERBS[operation][1]} {self.entity_name}"

    def get_not_found_message(self, operation: CrudOperation, id: Optional[uuid.UUID]) -> str:
        if id is None:
            return f"No {self.entity_name} matches the filter"
        return f"Id '{id}' not found"

    def get_cancelled_message(self, operation: CrudOperation) -> str:
        return f"{_VERBS[operation][1].capitalize()} {self.entity_name} was cancelled"

    def get_validation_message(self, operation: CrudOperation) -> str:
        return f"{self.entity_name} validation failed"

    # --- Dispatch ---

    async def handle(self, command: Any) -> CommandResult:
        """Run ``command`` through the handler method for its type."""
        handler = self._dispatch.get(type(command))
        if handler is None:
            raise TypeError(f"Unsupported command type: {type(command).__name__}")
        return await handler(command)

    # --- Pipeline ---

    async def _run(
        self,
        operation: CrudOperation,
        body: Callable[[], Awaitable[CommandResult]],
        cancel_event: Optional[asyncio.Event],
        result_type: Type[CommandResult] = CommandResult,
    ) -> CommandResult:
        try:
            raise_if_cancelled(cancel_event, operation.value)
            return await body()
        except OperationCancelledException as e:
            self._logger.warning(f"{operation.value} {self.entity_name} cancelled: {e}")
            return result_type.error(
                self.get_cancelled_message(operation), ErrorCode.CLIENT_CLOSED_REQUEST
            )
        except Exception as e:
            self._logger.error(
                f"{operation.value} {self.entity_name} failed: {e}", exc_info=True
            )
            code = (
                ErrorCode.CONFLICT
                if isinstance(e, _CONFLICT_ERRORS)
                else ErrorCode.INTERNAL_SERVER_ERROR
            )
            return result_type.error(f"{self.get_error_message(operation)}: {e}", code)

    def _not_found(
        self,
        operation: CrudOperation,
        id: Optional[uuid.UUID],
        result_type: Type[CommandResult] = CommandResult,
    ) -> CommandResult:
        message = self.get_not_found_message(operation, id)
        self._logger.warning(f"{operation.value}: {message}")
        return result_type.alert(message, ErrorCode.NOT_FOUND)

    def _invalid(
        self, operation: CrudOperation, validation: ValidationResult
    ) -> CommandResult:
        self._logger.warning(
            f"{operation.value} {self.entity_name} rejected: {validation.messages()}"
        )
        return CommandResult.alert(
            self.get_validation_message(operation),
            ErrorCode.BAD_REQUEST,
            notifications=validation.notifications,
        )

    async def _validate(self, entities: Sequence[T], rule_set: RuleSet) -> ValidationResult:
        if self._validator is not None:
            if len(entities) == 1:
                return await self._validator.validate(entities[0], rule_set)
            return await self._validator.validate_many(entities, rule_set)
        combined = ValidationResult.success()
        for index, entity in enumerate(entities):
            outcome = validate_structure(entity)
            combined = combined.combine(
                outcome if len(entities) == 1 else outcome.prefixed(str(index))
            )
        return combined

    async def _reload(
        self,
        ids: Sequence[uuid.UUID],
        includes: Sequence[str],
        cancel_event: Optional[asyncio.Event],
    ) -> List[T]:
        reloaded = []
        for id in ids:
            entity = await self._repository.get(
                id, self._logger, includes=includes, cancel_event=cancel_event
            )
            reloaded.append(entity)
        return reloaded

    async def _find_missing(
        self, ids: Sequence[uuid.UUID], cancel_event: Optional[asyncio.Event]
    ) -> Optional[uuid.UUID]:
        for id in ids:
            if await self._repository.get(id, self._logger, cancel_event=cancel_event) is None:
                return id
        return None

    # --- Reads ---

    async def get(self, command: GetCommand) -> CommandResult:
        operation = CrudOperation.GET

        async def body() -> CommandResult:
            entity = await self._repository.get(
                command.id,
                self._logger,
                includes=command.includes,
                cancel_event=command.cancel_event,
            )
            if entity is None:
                return self._not_found(operation, command.id)
            return CommandResult.success(self.get_success_message(operation), entity)

        return await self._run(operation, body, command.cancel_event)

    async def find(self, command: FindCommand) -> CommandResult:
        operation = CrudOperation.FIND

        async def body() -> CommandResult:
            predicate = compile_filter(
                command.filter, self.entity_type, self._settings.case_sensitive_filters
            )
            entity = await self._repository.find(
                self._logger,
                predicate,
                includes=command.includes,
                cancel_event=command.cancel_event,
            )
            if entity is None:
                return self._not_found(operation, None)
            return CommandResult.success(self.get_success_message(operation), entity)

        return await self._run(operation, body, command.cancel_event)

    async def _list(self, command: ListCommand, operation: CrudOperation) -> CommandResult:
        async def body() -> CommandResult:
            predicate = compile_filter(
                command.filter, self.entity_type, self._settings.case_sensitive_filters
            )
            sort = parse_sort(command.sort, self.entity_type)
            page_number = (
                command.page if command.page is not None else self._settings.default_page
            )
            per_page = (
                command.per_page
                if command.per_page is not None
                else self._settings.default_per_page
            )
            list_sorted = (
                self._repository.list_all_sorted
                if operation is CrudOperation.LIST_ALL
                else self._repository.list_sorted
            )
            page = await list_sorted(
                page_number,
                per_page,
                self._logger,
                predicate=predicate,
                sort=sort,
                includes=command.includes,
                cancel_event=command.cancel_event,
            )
            return ListCommandResult.from_page(self.get_success_message(operation), page)

        return await self._run(operation, body, command.cancel_event, ListCommandResult)

    async def list(self, command: ListCommand) -> CommandResult:
        return await self._list(command, CrudOperation.LIST)

    async def list_all(self, command: ListAllCommand) -> CommandResult:
        return await self._list(command, CrudOperation.LIST_ALL)

    # --- Writes ---

    async def create(self, command: CreateCommand) -> CommandResult:
        operation = CrudOperation.CREATE

        async def body() -> CommandResult:
            validation = await self._validate([command.entity], RuleSet.CREATE)
            if not validation.valid:
                return self._invalid(operation, validation)
            await self._repository.add(
                [command.entity], self._logger, cancel_event=command.cancel_event
            )
            await self._repository.commit(self._logger, cancel_event=command.cancel_event)
            (entity,) = await self._reload(
                [command.entity.id], command.includes, command.cancel_event
            )
            return CommandResult.success(self.get_success_message(operation), entity)

        return await self._run(operation, body, command.cancel_event)

    async def create_many(self, command: CreateManyCommand) -> CommandResult:
        operation = CrudOperation.CREATE_MANY

        async def body() -> CommandResult:
            validation = await self._validate(command.entities, RuleSet.CREATE)
            if not validation.valid:
                return self._invalid(operation, validation)
            await self._repository.add(
                command.entities, self._logger, cancel_event=command.cancel_event
            )
            await self._repository.commit(self._logger, cancel_event=command.cancel_event)
            entities = await self._reload(
                [e.id for e in command.entities], command.includes, command.cancel_event
            )
            return CommandResult.success(self.get_success_message(operation), entities)

        return await self._run(operation, body, command.cancel_event)

    async def update(self, command: UpdateCommand) -> CommandResult:
        operation = CrudOperation.UPDATE

        async def body() -> CommandResult:
            validation = await self._validate([command.entity], RuleSet.UPDATE)
            if not validation.valid:
                return self._invalid(operation, validation)
            missing = await self._find_missing([command.entity.id], command.cancel_event)
            if missing is not None:
                return self._not_found(operation, missing)
            await self._repository.update(
                [command.entity], self._logger, cancel_event=command.cancel_event
            )
            await self._repository.commit(self._logger, cancel_event=command.cancel_event)
            (entity,) = await self._reload(
                [command.entity.id], command.includes, command.cancel_event
            )
            return CommandResult.success(self.get_success_message(operation), entity)

        return await self._run(operation, body, command.cancel_event)

    async def update_many(self, command: UpdateManyCommand) -> CommandResult:
        operation = CrudOperation.UPDATE_MANY

        async def body() -> CommandResult:
            validation = await self._validate(command.entities, RuleSet.UPDATE)
            if not validation.valid:
                return self._invalid(operation, validation)
            ids = [e.id for e in command.entities]
            missing = await self._find_missing(ids, command.cancel_event)
            if missing is not None:
                return self._not_found(operation, missing)
            await self._repository.update(
                command.entities, self._logger, cancel_event=command.cancel_event
            )
            await self._repository.commit(self._logger, cancel_event=command.cancel_event)
            entities = await self._reload(ids, command.includes, command.cancel_event)
            return CommandResult.success(self.get_success_message(operation), entities)

        return await self._run(operation, body, command.cancel_event)

    async def patch(self, command: PatchCommand) -> CommandResult:
        """Apply a whitelisted patch document; reported as an UPDATE."""
        operation = CrudOperation.UPDATE

        async def body() -> CommandResult:
            existing = await self._repository.get(
                command.id, self._logger, cancel_event=command.cancel_event
            )
            if existing is None:
                return self._not_found(operation, command.id)
            try:
                patched = command.patch.apply(existing)
            except ObjectValidationException as e:
                return self._invalid(
                    operation, ValidationResult.failure("patch", str(e))
                )
            validation = await self._validate([patched], RuleSet.UPDATE)
            if not validation.valid:
                return self._invalid(operation, validation)
            await self._repository.update(
                [patched], self._logger, cancel_event=command.cancel_event
            )
            await self._repository.commit(self._logger, cancel_event=command.cancel_event)
            (entity,) = await self._reload([command.id], command.includes, command.cancel_event)
            return CommandResult.success(self.get_success_message(operation), entity)

        return await self._run(operation, body, command.cancel_event)

    async def soft_delete(self, command: SoftDeleteCommand) -> CommandResult:
        operation = CrudOperation.SOFT_DELETE

        async def body() -> CommandResult:
            existing = await self._repository.get(
                command.id, self._logger, cancel_event=command.cancel_event
            )
            if existing is None:
                return self._not_found(operation, command.id)
            await self._repository.soft_delete(
                [existing], self._logger, cancel_event=command.cancel_event
            )
            await self._repository.commit(self._logger, cancel_event=command.cancel_event)
            return CommandResult.success(self.get_success_message(operation))

        return await self._run(operation, body, command.cancel_event)

    async def remove(self, command: RemoveCommand) -> CommandResult:
        operation = CrudOperation.REMOVE

        async def body() -> CommandResult:
            existing = await self._repository.get(
                command.id, self._logger, cancel_event=command.cancel_event
            )
            if existing is None:
                return self._not_found(operation, command.id)
            await self._repository.remove(
                [existing], self._logger, cancel_event=command.cancel_event
            )
            await self._repository.commit(self._logger, cancel_event=command.cancel_event)
            return CommandResult.success(self.get_success_message(operation))

        return await self._run(operation, body, command.cancel_event)
