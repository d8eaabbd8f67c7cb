"""
Domain exceptions and global exception handlers for Talesy Comments.
All comment-engine errors are defined here so the store, the services,
the HTTP layer and the client library share one taxonomy.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ── Custom exception classes ──────────────────────────────────────────────────

class TalesyError(Exception):
    """Base exception for all Talesy domain errors."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        self.error_code = error_code or "TALESY_ERROR"
        super().__init__(detail)


class ValidationError(TalesyError):
    """Content or a parent reference that breaks a comment rule."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code="VALIDATION_ERROR",
        )


class NotFoundError(TalesyError):
    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        detail = f"{resource} not found"
        if resource_id:
            detail = f"{resource} with id '{resource_id}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code="NOT_FOUND",
        )


class AuthenticationError(TalesyError):
    def __init__(
        self,
        detail: str = "Authentication required",
        error_code: str = "UNAUTHORIZED",
    ) -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code=error_code,
        )


class InvalidTokenError(AuthenticationError):
    def __init__(self, detail: str = "Invalid or expired token") -> None:
        super().__init__(detail=detail, error_code="INVALID_TOKEN")


class AuthorizationError(TalesyError):
    def __init__(self, detail: str = "You do not have permission to perform this action") -> None:
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN",
        )


class WriteConflictError(TalesyError):
    def __init__(self, detail: str = "The store could not apply the change, try again") -> None:
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="WRITE_CONFLICT",
        )


# error_code → exception factory, used by the client library to rebuild
# typed errors from JSON error bodies.
ERROR_CODE_MAP: dict[str, type[TalesyError]] = {
    "VALIDATION_ERROR": ValidationError,
    "NOT_FOUND": NotFoundError,
    "UNAUTHORIZED": AuthenticationError,
    "INVALID_TOKEN": InvalidTokenError,
    "FORBIDDEN": AuthorizationError,
    "WRITE_CONFLICT": WriteConflictError,
}


def error_from_response(status_code: int, body: dict) -> TalesyError:
    """Rebuild a domain exception from an `{"error", "detail"}` response body."""
    code = body.get("error") or "TALESY_ERROR"
    detail = body.get("detail") or "Request failed"
    cls = ERROR_CODE_MAP.get(code, TalesyError)
    # Subclass constructors build their own detail; bypass them to keep the server's.
    exc = cls.__new__(cls)
    TalesyError.__init__(exc, status_code, detail, code)
    return exc


# ── Exception handlers ────────────────────────────────────────────────────────

def _error_response(status_code: int, detail: str, error_code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error_code,
            "detail": detail,
        },
    )


async def talesy_exception_handler(
    request: Request, exc: TalesyError
) -> JSONResponse:
    return _error_response(exc.status_code, exc.detail, exc.error_code)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({"field": field, "message": error["msg"]})
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "VALIDATION_ERROR",
            "detail": "Request validation failed",
            "errors": errors,
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected internal server error occurred",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI application."""
    app.add_exception_handler(TalesyError, talesy_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
