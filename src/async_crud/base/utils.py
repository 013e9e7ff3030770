import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from async_crud.base.exceptions import OperationCancelledException

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_snake_case(name: str) -> str:
    """
    Normalize a property name written in PascalCase, camelCase or snake_case.

    ``CreatedAt``, ``createdAt`` and ``created_at`` all become ``created_at``.
    """
    return _CAMEL_BOUNDARY.sub("_", name.strip()).lower()


def raise_if_cancelled(
    cancel_event: Optional[asyncio.Event], operation: str = "operation"
) -> None:
    """Raise OperationCancelledException when the caller signalled cancellation."""
    if cancel_event is not None and cancel_event.is_set():
        logger.debug(f"Cancellation observed during {operation}")
        raise OperationCancelledException(f"The {operation} was cancelled.")


def prepare_for_storage(entity: Any, exclude: Iterable[str] = ()) -> Any:
    """
    Convert an entity into a JSON-compatible dictionary for storage.

    Navigation fields named in ``exclude`` are dropped so related rows are
    never persisted inside their parent.

    Args:
        entity: A pydantic model instance (or a plain mapping).
        exclude: Field names to leave out.

    Returns:
        A dictionary containing only JSON-native values.
    """
    if entity is None:
        return None
    if hasattr(entity, "model_dump") and callable(getattr(entity, "model_dump")):
        return entity.model_dump(mode="json", by_alias=False, exclude=set(exclude))
    if isinstance(entity, dict):
        return {k: v for k, v in entity.items() if k not in set(exclude)}
    raise TypeError(f"Cannot prepare {type(entity).__name__} for storage")
