"""
Error taxonomy for the API.

Every failure a request can legitimately hit is an APIError subclass tagged
with an ErrorKind. Components raise them; create_app() registers a single
handler that turns the kind into an HTTP status and a JSON body, so no
component needs to know about status codes.
"""
import logging
from enum import Enum
from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Request-scoped failure categories. None of them is retryable by the server."""

    UNAUTHENTICATED = "unauthenticated"
    PRINCIPAL_NOT_FOUND = "principal_not_found"
    MALFORMED_ID = "malformed_id"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    VALIDATION_FAILED = "validation_failed"
    CONFLICT = "conflict"
    MEDIA_UNAVAILABLE = "media_unavailable"


ERROR_STATUS = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.PRINCIPAL_NOT_FOUND: 401,
    ErrorKind.MALFORMED_ID: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.VALIDATION_FAILED: 422,
    ErrorKind.CONFLICT: 409,
    ErrorKind.MEDIA_UNAVAILABLE: 502,
}


class APIError(Exception):
    """Base class for errors that map onto a response."""

    kind: ErrorKind = ErrorKind.VALIDATION_FAILED
    default_detail = "Request failed"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    @property
    def status_code(self) -> int:
        return ERROR_STATUS[self.kind]


class Unauthenticated(APIError):
    kind = ErrorKind.UNAUTHENTICATED
    default_detail = "Authentication required"


class PrincipalNotFound(APIError):
    kind = ErrorKind.PRINCIPAL_NOT_FOUND
    default_detail = "User for this token no longer exists"


class MalformedId(APIError):
    kind = ErrorKind.MALFORMED_ID
    default_detail = "Malformed identifier"


class NotFound(APIError):
    kind = ErrorKind.NOT_FOUND
    default_detail = "Resource not found"


class Forbidden(APIError):
    kind = ErrorKind.FORBIDDEN
    default_detail = "You do not have permission to modify this resource"


class ValidationFailed(APIError):
    kind = ErrorKind.VALIDATION_FAILED
    default_detail = "Invalid request"


class Conflict(APIError):
    kind = ErrorKind.CONFLICT
    default_detail = "Resource already exists"


class MediaUploadError(APIError):
    """The media host rejected or failed an upload."""

    kind = ErrorKind.MEDIA_UNAVAILABLE
    default_detail = "Media service unavailable"


def truncate_string(value: Optional[str], max_length: int, suffix: str = "...") -> Optional[str]:
    """
    Truncate a string to max_length, appending suffix when something was cut.

    Returns None for None input.
    """
    if value is None:
        return None
    if len(value) <= max_length:
        return value
    if max_length <= len(suffix):
        return value[:max_length]
    return value[: max_length - len(suffix)] + suffix


def is_unique_violation(exc: BaseException, column: Optional[str] = None) -> bool:
    """
    Check whether an exception is a unique constraint violation.

    Works for SQLite ("UNIQUE constraint failed: likes.liked_by, likes.video_id")
    and PostgreSQL (SQLSTATE 23505, "duplicate key value violates unique constraint").
    When column is given, the message must also mention it.
    """
    error_str = str(exc).lower()
    matched = (
        "unique constraint" in error_str
        or "duplicate key" in error_str
        or getattr(exc, "sqlstate", None) == "23505"
    )
    if matched and (column is None or column.lower() in error_str):
        return True

    # databases wraps the driver exception
    if exc.__cause__ is not None and exc.__cause__ is not exc:
        return is_unique_violation(exc.__cause__, column=column)

    return False


def error_body(kind: ErrorKind, detail) -> dict:
    return {"detail": detail, "error": kind.value}


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Translate an APIError into its JSON response."""
    if exc.status_code >= 500:
        logger.error(f"{exc.kind.value} on {request.method} {request.url.path}: {exc.detail}")
    else:
        logger.debug(f"{exc.kind.value} on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.kind, exc.detail))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Pydantic validation failures keep FastAPI's 422 and error list, tagged with a kind."""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=422, content=error_body(ErrorKind.VALIDATION_FAILED, errors))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log the traceback, never leak it."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "error": "internal"})
