from __future__ import annotations

from starlette import status


class SchoolhouseError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(SchoolhouseError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"

    def __init__(self, message: str | None = None, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ConflictError(SchoolhouseError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class AccessDenied(SchoolhouseError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class AuthenticationFailed(SchoolhouseError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication failed"


class TransientError(SchoolhouseError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Service temporarily unavailable, please retry"


class DependencyFailure(SchoolhouseError):
    """A step of a multi-step workflow failed after earlier steps committed.

    ``message`` is safe to show to callers; ``step`` and ``cause`` are for logs.
    """

    default_message = "Operation failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        step: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.step = step
        self.cause = cause
