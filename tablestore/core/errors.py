"""
Domain-specific exceptions for the single-table data-access layer.

These exceptions describe what went wrong in terms callers can act on.
They are mapped to HTTP-equivalent status codes at the API boundary,
which lives outside this package.
"""

from typing import Any


class TableStoreError(Exception):
    """Base exception for all data-access errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(TableStoreError):
    """
    Raised when input fails validation before any I/O happens.

    Examples:
    - Entity attribute out of range or wrong format
    - Unknown or immutable attribute in a partial update
    - Duplicate primary keys in one batch or transaction

    HTTP Status: 400 Bad Request
    """

    pass


class TokenDecodeError(ValidationError):
    """
    Raised when a continuation token cannot be decoded.

    Examples:
    - Not valid base64 / JSON
    - Token produced by a query against a different index

    HTTP Status: 400 Bad Request
    """

    pass


class NotFoundError(TableStoreError):
    """
    Raised by typed repositories when a named lookup finds nothing and
    absence is a business failure. The Store itself returns None.

    HTTP Status: 404 Not Found
    """

    pass


class ConflictError(TableStoreError):
    """
    Raised when a write precondition fails because of concurrent state.

    Examples:
    - Create of an id that already exists
    - Transaction condition check failed
    - Insufficient wallet balance guarded by a condition

    HTTP Status: 409 Conflict
    """

    pass


class ConditionFailedError(ConflictError):
    """
    Raised by an engine when a conditional single-item write is rejected.

    `item` holds the row as it was when the condition was evaluated, or
    None when the row did not exist (or the engine did not return it).
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        item: dict[str, Any] | None = None,
    ):
        super().__init__(message, details=details)
        self.item = item


class TransactionConflictError(ConflictError):
    """
    Raised when a transactional write is cancelled because at least one
    operation's condition failed. No operation in the transaction applied.
    """

    def __init__(
        self,
        message: str,
        reasons: list[str | None] | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.reasons = reasons or []
        super().__init__(message, details={"reasons": self.reasons, **(details or {})})


class UserAlreadyExistsError(ConflictError):
    """
    Raised when creating a user whose id is already taken.

    HTTP Status: 409 Conflict
    """

    pass


class TagGenerationError(ConflictError):
    """
    Raised when no unused tag could be generated within the attempt budget.

    HTTP Status: 409 Conflict
    """

    pass


class EngineError(TableStoreError):
    """
    Raised when the key-value engine fails in a way retrying will not fix.

    HTTP Status: 500 Internal Server Error
    """

    pass


class TransientEngineError(EngineError):
    """
    Raised for throttling, timeouts and connectivity failures.

    Safe to retry with backoff at the caller's discretion. The Store never
    retries single-item operations itself.

    HTTP Status: 503 Service Unavailable
    """

    pass


class DeadlineExceededError(TransientEngineError):
    """Raised when a caller deadline expires while a single-item call is in flight."""

    pass


class OperationCancelledError(EngineError):
    """Raised when the caller cancelled before a single-item call was issued."""

    pass


# HTTP Status Code Mapping, most specific first
ERROR_STATUS_MAP: dict[type[TableStoreError], int] = {
    TokenDecodeError: 400,
    ValidationError: 400,
    NotFoundError: 404,
    UserAlreadyExistsError: 409,
    TagGenerationError: 409,
    TransactionConflictError: 409,
    ConditionFailedError: 409,
    ConflictError: 409,
    OperationCancelledError: 499,
    DeadlineExceededError: 503,
    TransientEngineError: 503,
    EngineError: 500,
}


def get_status_code(error: Exception) -> int:
    """
    Get the HTTP status code for a given exception.

    Subclasses without their own entry inherit the code of the nearest
    mapped ancestor.

    Args:
        error: The exception instance

    Returns:
        HTTP status code (defaults to 500 for unknown errors)
    """
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS_MAP:
            return ERROR_STATUS_MAP[error_type]
    return 500
