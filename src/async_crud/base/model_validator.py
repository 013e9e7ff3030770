# --- Required imports ---
import collections.abc
import logging
from dataclasses import dataclass
from inspect import isclass
from typing import (
    Any,
    ClassVar,
    Dict,
    FrozenSet,
    Generic,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Type,
    TypeVar,
    get_args,
    get_origin,
    get_type_hints,
)

from pydantic import BaseModel

from .coercion import ValueKind, kind_of, unwrap_type
from .validation_exceptions import InvalidPathError
from .utils import to_snake_case

# --- Setup Logging ---
log = logging.getLogger(__name__)

# --- Generic Type Variables ---
M = TypeVar("M")

_COLLECTION_ORIGINS = {
    list,
    List,
    tuple,
    Tuple,
    set,
    Set,
    frozenset,
    FrozenSet,
    Sequence,
    collections.abc.Sequence,
    collections.abc.Set,
    collections.abc.Collection,
    collections.abc.Iterable,
}


# --- Helper Functions ---
def _normalize_key(name: str) -> str:
    return to_snake_case(name).replace("_", "")


def _collection_element(tp: Any) -> Optional[Any]:
    """Return the element type if ``tp`` is a homogeneous collection hint."""
    base, _ = unwrap_type(tp)
    origin = get_origin(base)
    if origin is None:
        if base in (list, tuple, set, frozenset):
            return Any
        return None
    if origin not in _COLLECTION_ORIGINS:
        return None
    args = get_args(base)
    if not args:
        return Any
    if origin in (tuple, Tuple) and not (len(args) == 2 and args[1] is Ellipsis):
        return args[0] if len(set(args)) == 1 else None
    return args[0]


def _as_model(tp: Any) -> Optional[Type[BaseModel]]:
    base, _ = unwrap_type(tp)
    if isclass(base) and issubclass(base, BaseModel):
        return base
    return None


@dataclass(frozen=True)
class FieldAccessor:
    """
    Typed accessor for a single model field.

    Attributes:
        name: Exact attribute name on the model.
        field_type: The declared type hint.
        value_type: The compared type. For collections this is the element type.
        kind: Coercion kind of ``value_type``, None when unsupported.
        is_collection: Whether the field holds a collection.
        nested_model: Pydantic model type of ``value_type``, if any.
    """

    name: str
    field_type: Any
    value_type: Any
    kind: Optional[ValueKind]
    is_collection: bool
    nested_model: Optional[Type[BaseModel]]

    def get(self, obj: Any) -> Any:
        return getattr(obj, self.name, None)


@dataclass(frozen=True)
class ResolvedPath:
    """
    A dotted property path resolved against a model type.

    When the first segment is a collection, ``collection`` holds its accessor
    and ``chain`` is resolved against the element type. ``read`` then expects
    an element rather than the root entity.
    """

    path: str
    collection: Optional[FieldAccessor]
    chain: Tuple[FieldAccessor, ...]

    @property
    def value_type(self) -> Any:
        if self.chain:
            return self.chain[-1].value_type
        return self.collection.value_type

    @property
    def kind(self) -> Optional[ValueKind]:
        if self.chain:
            return self.chain[-1].kind
        return self.collection.kind

    def read(self, obj: Any) -> Any:
        current = obj
        for accessor in self.chain:
            if current is None:
                return None
            current = accessor.get(current)
        return current


# --- Model Validator ---
class ModelValidator(Generic[M]):
    """
    Property accessor registry for a pydantic model type.

    Field metadata is collected once when the registry is built, so an invalid
    model declaration fails at startup and path lookups during filtering are
    plain dictionary reads. Names resolve by exact field name, by alias, and
    case/format-insensitively (``CreatedAt``, ``createdAt`` and ``created_at``
    are the same field).
    """

    _instances: ClassVar[Dict[Type, "ModelValidator"]] = {}

    model_type: Type[M]

    def __init__(self, model_type: Type[M]):
        log.debug(f"Initializing ModelValidator for type: {model_type!r}")
        if not isclass(model_type) or not issubclass(model_type, BaseModel):
            log.error(f"Init failed: {model_type!r} is not a pydantic model")
            raise TypeError(
                f"model_type must be a pydantic model class, received {model_type!r}."
            )
        self.model_type = model_type
        self._fields: Dict[str, FieldAccessor] = {}
        self._lookup: Dict[str, str] = {}
        self._ambiguous: Set[str] = set()
        self._build()

    @classmethod
    def for_type(cls, model_type: Type[M]) -> "ModelValidator[M]":
        """Return the cached registry for ``model_type``, building it on first use."""
        validator = cls._instances.get(model_type)
        if validator is None:
            validator = cls(model_type)
            cls._instances[model_type] = validator
        return validator

    def _build(self) -> None:
        try:
            hints = get_type_hints(self.model_type, include_extras=True)
        except NameError as e:
            raise TypeError(
                f"Unresolved forward ref in {self.model_type.__name__}? Error: {e}"
            ) from e

        for name, info in self.model_type.model_fields.items():
            hint = hints.get(name, info.annotation)
            element = _collection_element(hint)
            value_type = element if element is not None else unwrap_type(hint)[0]
            self._fields[name] = FieldAccessor(
                name=name,
                field_type=hint,
                value_type=value_type,
                kind=kind_of(value_type),
                is_collection=element is not None,
                nested_model=_as_model(value_type),
            )
            self._lookup[name] = name
            if info.alias and info.alias != name:
                self._lookup.setdefault(info.alias, name)

        normalized: Dict[str, str] = {}
        for name in self._fields:
            key = _normalize_key(name)
            if key in normalized and normalized[key] != name:
                self._ambiguous.add(key)
            normalized.setdefault(key, name)
        for key, name in normalized.items():
            if key not in self._ambiguous:
                self._lookup.setdefault(key, name)
        log.debug(
            f"Registered {len(self._fields)} fields for {self.model_type.__name__}"
        )

    @property
    def field_names(self) -> List[str]:
        return list(self._fields)

    def resolve_name(self, name: str) -> str:
        """
        Resolve a free-text property name to the exact field name.

        Raises:
            InvalidPathError: If no field matches or the name is ambiguous.
        """
        text = name.strip()
        if text in self._lookup:
            return self._lookup[text]
        key = _normalize_key(text)
        if key in self._ambiguous:
            raise InvalidPathError(
                f"Property name '{name}' is ambiguous on {self.model_type.__name__}"
            )
        if key in self._lookup:
            return self._lookup[key]
        raise InvalidPathError(
            f"Property '{name}' does not exist on {self.model_type.__name__}; "
            f"valid properties: {', '.join(self.field_names)}"
        )

    def field(self, name: str) -> FieldAccessor:
        return self._fields[self.resolve_name(name)]

    def get_field_type(self, field_path: str) -> Any:
        """Declared type of the field at the end of ``field_path``."""
        return self.resolve_path(field_path).value_type

    def resolve_path(self, field_path: str) -> ResolvedPath:
        """
        Resolve a dotted property path.

        Only the first segment may be a collection. Intermediate segments must
        be nested models.

        Raises:
            InvalidPathError: For unknown segments, traversal through a scalar,
                or a collection beyond the first segment.
        """
        segments = [s.strip() for s in field_path.split(".")]
        if not segments or any(not s for s in segments):
            raise InvalidPathError(f"Invalid property path '{field_path}'")

        collection: Optional[FieldAccessor] = None
        chain: List[FieldAccessor] = []
        current: ModelValidator = self
        resolved_names: List[str] = []

        for index, segment in enumerate(segments):
            accessor = current.field(segment)
            resolved_names.append(accessor.name)
            is_last = index == len(segments) - 1
            if accessor.is_collection:
                if index != 0:
                    raise InvalidPathError(
                        f"Path '{field_path}' crosses a collection below the first "
                        f"segment; only one level of nested collections is supported"
                    )
                collection = accessor
            else:
                chain.append(accessor)
            if is_last:
                break
            if accessor.nested_model is None:
                raise InvalidPathError(
                    f"Cannot traverse '{segment}' in path '{field_path}': "
                    f"{accessor.value_type!r} has no fields"
                )
            current = ModelValidator.for_type(accessor.nested_model)

        return ResolvedPath(
            path=".".join(resolved_names), collection=collection, chain=tuple(chain)
        )
