"""API error taxonomy and the JSON error envelope."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from starlette.responses import JSONResponse

from waydroid_api.models import ErrorCode

_STATUS: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.INVALID_JSON: 400,
    ErrorCode.REQUEST_TOO_LARGE: 413,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.COMMAND_FAILED: 502,
    ErrorCode.INTERNAL_ERROR: 500,
}


def status_for(code: ErrorCode) -> int:
    return _STATUS[code]


def error_response(
    code: ErrorCode,
    message: str,
    details: dict[str, Any] | None = None,
    status_code: int | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render the ``{"error": {...}}`` envelope shared by every failure."""
    error: dict[str, Any] = {
        "code": code.value,
        "message": message,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    if details:
        error["details"] = details
    return JSONResponse(
        {"error": error},
        status_code=status_code or status_for(code),
        headers=headers,
    )


class ApiError(Exception):
    """Base for errors surfaced to clients as an error envelope."""

    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> JSONResponse:
        return error_response(self.code, self.message, self.details)


class UnauthorizedError(ApiError):
    code = ErrorCode.UNAUTHORIZED


class ForbiddenError(ApiError):
    code = ErrorCode.FORBIDDEN


class NotFoundError(ApiError):
    code = ErrorCode.NOT_FOUND


class InvalidInputError(ApiError):
    """Raised by validators; ``field`` names the offending input."""

    code = ErrorCode.INVALID_INPUT

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message, {"field": field})
        self.field = field


class InvalidJSONError(ApiError):
    code = ErrorCode.INVALID_JSON


class RequestTooLargeError(ApiError):
    code = ErrorCode.REQUEST_TOO_LARGE


class CommandTimeoutError(ApiError):
    code = ErrorCode.TIMEOUT


class CommandFailedError(ApiError):
    code = ErrorCode.COMMAND_FAILED


class StorageError(ApiError):
    """A persisted file could not be written; prior state is left intact."""

    code = ErrorCode.INTERNAL_ERROR
