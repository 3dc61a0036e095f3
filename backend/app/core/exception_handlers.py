"""Exception handlers for converting custom exceptions to HTTP responses."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from backend.app.core.exceptions import (
    InvalidPayloadError,
    LeanCoffeeException,
    MissingFieldError,
    NotFoundError,
    SessionCodeConflictError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


def status_code_for(exc: Exception) -> int:
    """Map an exception to the HTTP status code it is reported with."""
    if isinstance(exc, UpstreamError):
        return exc.status_code or status.HTTP_500_INTERNAL_SERVER_ERROR
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (MissingFieldError, InvalidPayloadError)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, SessionCodeConflictError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(exc: Exception) -> dict:
    """
    Build the uniform error envelope.

    Args:
        exc: The exception that was raised

    Returns:
        ``{"error": message}`` plus ``details`` when the exception carries any
    """
    if isinstance(exc, LeanCoffeeException):
        body = {"error": exc.message}
        if exc.details is not None:
            body["details"] = exc.details
        return body
    return {"error": str(exc) or "Internal Server Error"}


async def lean_coffee_exception_handler(request: Request, exc: LeanCoffeeException) -> JSONResponse:
    """Convert Lean Coffee exceptions raised inside FastAPI routes."""
    return JSONResponse(status_code=status_code_for(exc), content=error_body(exc))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Report unexpected failures with the same envelope."""
    logger.exception(f"[ERROR] Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(exc),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all custom exception handlers with the FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(LeanCoffeeException, lean_coffee_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
