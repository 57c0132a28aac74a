"""
Error taxonomy for remote task service failures.

Every failure that reaches the mutation layer is mapped onto one of four kinds:

- network: transport errors, timeouts, 408/429/5xx. Retryable.
- validation: any other 4xx. The server message is surfaced, no retry.
- permission: 401/403. Longer-lived warning, no retry.
- conflict: 409 (concurrent modification). Rolled back, resolution is external.
"""

from models.responses import ErrorCodes


class TaskServiceError(Exception):
    """Base error raised by the task service client."""

    kind = "network"
    retryable = True
    default_code = ErrorCodes.NETWORK_ERROR

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        details: list[str] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.default_code
        self.details = details or []
        super().__init__(message)


class NetworkError(TaskServiceError):
    """Transport failure, timeout or transient server error."""


class ValidationError(TaskServiceError):
    """Request rejected by the server (4xx, non-permission)."""

    kind = "validation"
    retryable = False
    default_code = ErrorCodes.VALIDATION_ERROR


class PermissionDeniedError(TaskServiceError):
    """Caller lacks the role required for this write."""

    kind = "permission"
    retryable = False
    default_code = ErrorCodes.FORBIDDEN


class ConflictError(TaskServiceError):
    """Server reported a concurrent modification."""

    kind = "conflict"
    retryable = False
    default_code = ErrorCodes.CONFLICT


def error_for_status(status_code: int, message: str, code: str | None = None,
                     details: list[str] | None = None) -> TaskServiceError:
    """Build the taxonomy error matching an HTTP status code."""
    if status_code == 401:
        cls = PermissionDeniedError
        code = code or ErrorCodes.UNAUTHORIZED
    elif status_code == 403:
        cls = PermissionDeniedError
    elif status_code == 409:
        cls = ConflictError
    elif status_code in (408, 429) or status_code >= 500:
        cls = NetworkError
    elif 400 <= status_code < 500:
        cls = ValidationError
    else:
        cls = NetworkError
    return cls(message, status_code=status_code, code=code, details=details)


def classify_error(error: BaseException) -> TaskServiceError:
    """
    Map any exception raised by a remote call onto the taxonomy.

    Unknown exceptions (including timeouts raised outside the client) are
    treated as network errors.
    """
    if isinstance(error, TaskServiceError):
        return error
    status_code = getattr(error, "status", None) or getattr(error, "status_code", None)
    message = str(error) or error.__class__.__name__
    if isinstance(status_code, int):
        return error_for_status(status_code, message)
    return NetworkError(message)
