"""Domain error types mapped onto HTTP responses by the API layer."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class RequestDeskError(Exception):
    """Base class for errors raised by request desk services."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadRequestError(RequestDeskError):
    """Malformed input that fails a format check, e.g. an unusable phone number."""

    status_code = status.HTTP_400_BAD_REQUEST


class RequestValidationError(RequestDeskError):
    """Input rejected before any write was attempted."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotAuthenticatedError(RequestDeskError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "User not authenticated") -> None:
        super().__init__(message)


class PermissionDeniedError(RequestDeskError):
    status_code = status.HTTP_403_FORBIDDEN


class RequestNotFoundError(RequestDeskError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStageTransitionError(RequestDeskError):
    status_code = status.HTTP_409_CONFLICT


class RateLimitedError(RequestDeskError):
    """Caller exceeded a rolling-window quota and should retry later."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class UpstreamServiceError(RequestDeskError):
    """A required third-party provider call failed."""

    status_code = status.HTTP_502_BAD_GATEWAY


async def _handle_request_desk_error(_request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, RequestDeskError):  # pragma: no cover - registration guard
        raise exc
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def install_error_handlers(app: FastAPI) -> None:
    """Register domain error translation on an application instance."""
    app.add_exception_handler(RequestDeskError, _handle_request_desk_error)
