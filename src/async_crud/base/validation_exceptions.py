# validation_exceptions.py
class ValidationError(TypeError):
    """Base class for validation errors related to model types."""
    pass

class InvalidPathError(ValidationError, AttributeError):
    """Error raised when a field path does not exist or is invalid for the model."""
    pass

class ValueTypeError(ValidationError, TypeError):
    """Error raised when a value's type is incompatible with the expected field type."""
    pass

class ValueCoercionError(ValueError):
    """Error raised when a raw filter value cannot be parsed as the target type."""

    def __init__(self, raw: str, target: str, reason: str = ""):
        self.raw = raw
        self.target = target
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot convert {raw!r} to {target}{detail}")
