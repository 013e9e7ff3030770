# src/async_crud/base/validation.py
"""
Rule-set based entity validation.

Validators register rules for one or more rule-sets (``CREATE``, ``UPDATE``).
Validating an entity first re-runs pydantic's structural validation, then
every rule registered for the requested rule-set. Rules may be plain or
async callables.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    FrozenSet,
    Generic,
    Iterable,
    List,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

log = logging.getLogger(__name__)

E = TypeVar("E", bound=BaseModel)

DEFAULT_ERROR_CODE = "VALIDATION_ERROR"


class RuleSet(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"


class ValidationNotification(BaseModel):
    """A single validation failure, serialized as ``{propertyName, errorMessage, errorCode}``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    property_name: str
    error_message: str
    error_code: str = DEFAULT_ERROR_CODE


@dataclass(frozen=True)
class ValidationResult:
    """Immutable outcome of a validation; compose results with ``combine``."""

    valid: bool
    notifications: Tuple[ValidationNotification, ...] = ()

    @staticmethod
    def success() -> "ValidationResult":
        return ValidationResult(valid=True)

    @staticmethod
    def failure(
        property_name: str, message: str, *, error_code: str = DEFAULT_ERROR_CODE
    ) -> "ValidationResult":
        return ValidationResult(
            valid=False,
            notifications=(
                ValidationNotification(
                    property_name=property_name,
                    error_message=message,
                    error_code=error_code,
                ),
            ),
        )

    @staticmethod
    def from_notifications(
        notifications: Iterable[ValidationNotification],
    ) -> "ValidationResult":
        items = tuple(notifications)
        if not items:
            return ValidationResult.success()
        return ValidationResult(valid=False, notifications=items)

    def combine(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult(
            valid=self.valid and other.valid,
            notifications=self.notifications + other.notifications,
        )

    def prefixed(self, prefix: str) -> "ValidationResult":
        """Copy with every property name prefixed, e.g. for batch item positions."""
        return ValidationResult(
            valid=self.valid,
            notifications=tuple(
                n.model_copy(update={"property_name": f"{prefix}.{n.property_name}"})
                for n in self.notifications
            ),
        )

    def messages(self) -> List[str]:
        return [f"{n.property_name}: {n.error_message}" for n in self.notifications]


RuleCheck = Callable[[Any], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class Rule:
    property_name: str
    check: RuleCheck
    message: str
    error_code: str = DEFAULT_ERROR_CODE
    rule_sets: FrozenSet[RuleSet] = frozenset(RuleSet)


def validate_structure(entity: BaseModel) -> ValidationResult:
    """Re-run pydantic validation on a model instance and map its errors."""
    try:
        type(entity).model_validate(entity.model_dump())
        return ValidationResult.success()
    except PydanticValidationError as exc:
        return ValidationResult.from_notifications(
            ValidationNotification(
                property_name=".".join(str(loc) for loc in e["loc"]) or "__root__",
                error_message=e["msg"],
                error_code=e["type"],
            )
            for e in exc.errors()
        )


class EntityValidator(Generic[E]):
    """
    Base class for entity validators.

    Subclasses register rules in ``configure``::

        class ProductValidator(EntityValidator[Product]):
            def configure(self):
                self.rule_for("name", lambda p: bool(p.name), "Name is required")
                self.rule_for(
                    "code", self.code_is_unique, "Code already used",
                    rule_sets=[RuleSet.CREATE],
                )
    """

    def __init__(self):
        self._rules: List[Rule] = []
        self.configure()

    def configure(self) -> None:
        """Register rules. Override in subclasses."""

    def rule_for(
        self,
        property_name: str,
        check: RuleCheck,
        message: str,
        *,
        error_code: str = DEFAULT_ERROR_CODE,
        rule_sets: Iterable[RuleSet] = (RuleSet.CREATE, RuleSet.UPDATE),
    ) -> "EntityValidator[E]":
        """
        Register a rule.

        Args:
            property_name: Property reported in the notification.
            check: Called with the entity; returns (or resolves to) True when valid.
            message: Notification message when the check fails.
            error_code: Machine readable code for the notification.
            rule_sets: Rule-sets the rule belongs to.

        Returns:
            The validator, for chaining.
        """
        self._rules.append(
            Rule(
                property_name=property_name,
                check=check,
                message=message,
                error_code=error_code,
                rule_sets=frozenset(rule_sets),
            )
        )
        return self

    def rules(self, rule_set: RuleSet) -> List[Rule]:
        return [r for r in self._rules if rule_set in r.rule_sets]

    async def validate(self, entity: E, rule_set: RuleSet) -> ValidationResult:
        """Validate one entity against ``rule_set``."""
        result = validate_structure(entity)
        for rule in self.rules(rule_set):
            outcome = rule.check(entity)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if not outcome:
                result = result.combine(
                    ValidationResult.failure(
                        rule.property_name, rule.message, error_code=rule.error_code
                    )
                )
        if not result.valid:
            log.debug(
                f"{type(entity).__name__} failed {rule_set.value} validation: "
                f"{result.messages()}"
            )
        return result

    async def validate_many(
        self, entities: Sequence[E], rule_set: RuleSet
    ) -> ValidationResult:
        """
        Validate a batch concurrently.

        Notifications of item ``i`` are prefixed with ``i``.
        """
        outcomes = await asyncio.gather(
            *(self.validate(entity, rule_set) for entity in entities)
        )
        combined = ValidationResult.success()
        for index, outcome in enumerate(outcomes):
            combined = combined.combine(outcome.prefixed(str(index)))
        return combined
