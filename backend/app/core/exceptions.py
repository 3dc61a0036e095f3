"""Custom exception classes for the Lean Coffee application."""

from typing import Any


class LeanCoffeeException(Exception):
    """Base exception for all Lean Coffee-specific errors."""

    def __init__(self, message: str, details: Any = None):
        self.message = message
        self.details = details
        super().__init__(self.message)


class NotFoundError(LeanCoffeeException):
    """Raised when a requested record does not exist."""


class RecordNotFoundError(NotFoundError):
    """Raised when the record store has no record with the given id."""

    def __init__(self, table: str, record_id: str, payload: Any = None):
        super().__init__(
            message=f"Record not found: {record_id}",
            details=payload,
        )
        self.table = table
        self.record_id = record_id


class SessionNotFoundError(NotFoundError):
    """Raised when a session cannot be resolved by id or code."""

    def __init__(self, lookup: str | None = None):
        super().__init__(message="Session not found")
        self.lookup = lookup


class MissingFieldError(LeanCoffeeException):
    """Raised when a request lacks a required correlation field."""

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message=message)
        self.fields = fields or []


class InvalidPayloadError(LeanCoffeeException):
    """Raised when a request body is not a JSON object."""

    def __init__(self, message: str = "Invalid JSON payload", details: Any = None):
        super().__init__(message=message, details=details)


class SessionCodeConflictError(LeanCoffeeException):
    """Raised when creating a session with a code another session already uses."""

    def __init__(self, code: str):
        super().__init__(
            message=f"Session code already in use: {code}",
            details="Choose a different code or omit it to have one generated",
        )
        self.code = code


class UpstreamError(LeanCoffeeException):
    """Raised when the record store answers with a non-success status."""

    def __init__(self, status_code: int, payload: Any = None):
        super().__init__(message=_upstream_message(payload), details=payload)
        self.status_code = status_code
        self.payload = payload


def _upstream_message(payload: Any) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if payload.get("message"):
            return str(payload["message"])
    return "Airtable request failed"
