"""Error handlers for API routes.

Every error leaves the service as an ``ErrorResponse`` body:

- ChatNotFoundError    -> 404
- DSLValidationError   -> 422 (one detail line per problem)
- ConfigurationError   -> 400
- request validation   -> 422
- anything else        -> 500
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from chorus.core.exceptions import ChatNotFoundError, ConfigurationError, DSLValidationError


logger = logging.getLogger(__name__)


# =============================================================================
# Error Response Model
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response model.

    Attributes:
        error: Error type/category
        detail: Human-readable error description
        code: Optional machine-readable error code
        path: Optional request path that caused the error
    """

    error: str = Field(..., description="Error type or category")
    detail: str = Field(..., description="Human-readable error description")
    code: str | None = Field(default=None, description="Machine-readable error code")
    path: str | None = Field(default=None, description="Request path that caused the error")


def _error(status_code: int, request: Request, error: str, detail: str, code: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            detail=detail,
            code=code,
            path=str(request.url.path),
        ).model_dump(),
    )


# =============================================================================
# Exception Handlers
# =============================================================================

async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    error_type = {
        400: "BadRequest",
        404: "NotFound",
        409: "Conflict",
        422: "ValidationError",
        500: "InternalServerError",
    }.get(exc.status_code, "Error")
    return _error(exc.status_code, request, error_type, str(exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    field_errors = []
    for error in exc.errors():
        loc = ".".join(str(x) for x in error.get("loc", []))
        field_errors.append(f"{loc}: {error.get('msg', 'Invalid value')}")

    detail = "; ".join(field_errors) if field_errors else "Validation error"
    return _error(422, request, "ValidationError", detail, "VALIDATION_ERROR")


async def chat_not_found_handler(request: Request, exc: ChatNotFoundError) -> JSONResponse:
    return _error(404, request, "NotFound", str(exc), "CHAT_NOT_FOUND")


async def dsl_validation_handler(request: Request, exc: DSLValidationError) -> JSONResponse:
    return _error(422, request, "DSLValidationError", str(exc), "DSL_VALIDATION_ERROR")


async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return _error(400, request, "ConfigurationError", str(exc), "CONFIGURATION_ERROR")


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled exception",
        extra={
            "path": str(request.url.path),
            "error_type": type(exc).__name__,
        },
    )
    return _error(500, request, "InternalServerError", "An unexpected error occurred", "INTERNAL_ERROR")


# =============================================================================
# Registration Function
# =============================================================================

def register_error_handlers(app: FastAPI) -> None:
    """Register all error handlers with the FastAPI app."""
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ChatNotFoundError, chat_not_found_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DSLValidationError, dsl_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ConfigurationError, configuration_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = ["ErrorResponse", "register_error_handlers"]
