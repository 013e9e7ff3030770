# src/async_crud/commands/results.py

from enum import Enum, IntEnum
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel

from async_crud.base.pagination import Page
from async_crud.base.validation import ValidationNotification

T = TypeVar("T")


class CommandResultStatus(str, Enum):
    SUCCESS = "SUCCESS"
    ALERT = "ALERT"
    ERROR = "ERROR"


class ErrorCode(IntEnum):
    """HTTP-style error codes; results carry the name."""

    BAD_REQUEST = 400
    NOT_FOUND = 404
    CONFLICT = 409
    CLIENT_CLOSED_REQUEST = 499
    INTERNAL_SERVER_ERROR = 500


class CommandResult(BaseModel, Generic[T]):
    """
    Outcome of a command.

    ``ALERT`` results are user-correctable (validation, not found) and never
    wrap an exception; ``ERROR`` results carry the exception text behind a
    generic message.

    Serializes as::

        {"status": "ALERT", "message": "...", "errorCode": "NOT_FOUND",
         "notifications": null, "result": null}
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: CommandResultStatus
    message: str = ""
    error_code: Optional[ErrorCode] = None
    notifications: Optional[List[ValidationNotification]] = None
    result: Optional[T] = None

    @field_serializer("error_code")
    def serialize_error_code(self, error_code: Optional[ErrorCode]) -> Optional[str]:
        return error_code.name if error_code is not None else None

    @property
    def succeeded(self) -> bool:
        return self.status is CommandResultStatus.SUCCESS

    @classmethod
    def success(cls, message: str, result: Any = None, **kwargs: Any):
        return cls(status=CommandResultStatus.SUCCESS, message=message, result=result, **kwargs)

    @classmethod
    def alert(
        cls,
        message: str,
        error_code: ErrorCode,
        notifications: Optional[Sequence[ValidationNotification]] = None,
    ):
        return cls(
            status=CommandResultStatus.ALERT,
            message=message,
            error_code=error_code,
            notifications=list(notifications) if notifications is not None else None,
        )

    @classmethod
    def error(cls, message: str, error_code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR):
        return cls(status=CommandResultStatus.ERROR, message=message, error_code=error_code)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ListCommandResult(CommandResult[List[T]], Generic[T]):
    """A page of results with its paging metadata."""

    page: int = 0
    per_page: int = 0
    page_count: int = 0
    total_count: int = 0

    @classmethod
    def from_page(cls, message: str, page: Page) -> "ListCommandResult[T]":
        return cls(
            status=CommandResultStatus.SUCCESS,
            message=message,
            result=list(page.records),
            page=page.page,
            per_page=page.per_page,
            page_count=page.page_count,
            total_count=page.total_count,
        )
