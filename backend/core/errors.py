"""
Service error taxonomy.

Every service operation raises one of these; the API layer maps them to
HTTP responses and workers log them.
"""

from fastapi import status


class ServiceError(Exception):
    """Base class for errors raised by the domain services."""

    kind = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.context = context

    def to_response(self) -> dict:
        body = {"error": self.kind, "detail": self.message}
        if self.context:
            body["context"] = {k: str(v) for k, v in self.context.items()}
        return body


class Unauthenticated(ServiceError):
    kind = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(ServiceError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(ServiceError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(ServiceError):
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class InvalidArgument(ServiceError):
    kind = "invalid_argument"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class Internal(ServiceError):
    kind = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
