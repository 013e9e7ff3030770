class ObjectNotFoundException(Exception):
    """Exception raised when an object with the specified identifier does not exist."""

    def __init__(self, message: str = "The requested object was not found."):
        super().__init__(message)


class KeyAlreadyExistsException(Exception):
    """Exception raised when trying to insert an entity that would violate a unique constraint."""

    def __init__(self, message: str = "An object with the same key already exists."):
        super().__init__(message)


class ObjectValidationException(Exception):
    def __init__(self, message: str = "Object validation failed"):
        super().__init__(message)


class TenantMismatchException(Exception):
    """Raised when an entity belongs to a tenant other than the current one."""

    def __init__(self, message: str = "The entity belongs to a different tenant."):
        super().__init__(message)


class ReferentialIntegrityException(Exception):
    """Raised when a write or delete would break a foreign key reference."""

    def __init__(self, message: str = "A foreign key constraint would be violated."):
        super().__init__(message)


class OperationCancelledException(Exception):
    """Raised when a caller's cancellation signal is observed."""

    def __init__(self, message: str = "The operation was cancelled."):
        super().__init__(message)


class SessionDiscardedException(Exception):
    """Raised when a repository session is used after a failed commit."""

    def __init__(
        self,
        message: str = "The repository session was discarded after a failed commit.",
    ):
        super().__init__(message)
