"""Error taxonomy for change request workflow operations.

Every workflow violation is raised as a ``ChangeRequestError`` subclass with
a stable ``kind``. The API layer maps them to HTTP responses of the form
``{"detail": <message>, "error": <kind>}``; services never raise
``HTTPException`` directly so they stay usable outside a request.
"""

from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse


class ChangeRequestError(Exception):
    """Base class for workflow errors surfaced to callers."""

    kind = "error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnauthorizedError(ChangeRequestError):
    """Caller lacks the relationship an operation requires (e.g. team membership)."""

    kind = "unauthorized"
    status_code = status.HTTP_403_FORBIDDEN


class ForbiddenError(ChangeRequestError):
    """Caller lacks the capability or ownership an operation requires."""

    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ChangeRequestError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateError(ChangeRequestError):
    """Operation is not legal for the change request's current status."""

    kind = "invalid_state"
    status_code = status.HTTP_409_CONFLICT


class InvalidValueError(ChangeRequestError):
    kind = "invalid_value"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidDecisionError(InvalidValueError):
    kind = "invalid_decision"


class InvalidPayloadError(InvalidValueError):
    kind = "invalid_payload"


class ConflictError(ChangeRequestError):
    """Uniqueness violation, e.g. granting a role twice."""

    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class InternalError(ChangeRequestError):
    """Storage failure; the operation was rolled back."""

    kind = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


async def change_request_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Render workflow errors with their stable kind."""
    assert isinstance(exc, ChangeRequestError)  # noqa: S101
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.kind},
    )


__all__ = [
    "ChangeRequestError",
    "ConflictError",
    "ForbiddenError",
    "InternalError",
    "InvalidDecisionError",
    "InvalidPayloadError",
    "InvalidStateError",
    "InvalidValueError",
    "NotFoundError",
    "UnauthorizedError",
    "change_request_error_handler",
]
