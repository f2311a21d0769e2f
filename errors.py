# errors.py — Typed API errors with machine-readable codes
from typing import Any, Optional

from fastapi import HTTPException


class AppError(HTTPException):
    """HTTPException carrying a stable error code for clients."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, details: Optional[Any] = None, headers: Optional[dict] = None):
        super().__init__(status_code=self.status_code, detail=message, headers=headers)
        self.message = message
        self.details = details


class ValidationFailed(AppError):
    status_code = 400
    code = "validation_error"


class IllegalTransition(AppError):
    status_code = 400
    code = "illegal_transition"


class AuthenticationFailed(AppError):
    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "Not authenticated", details: Optional[Any] = None):
        super().__init__(message, details, headers={"WWW-Authenticate": "Bearer"})


class PermissionDenied(AppError):
    status_code = 403
    code = "forbidden"


class NotFound(AppError):
    status_code = 404
    code = "not_found"


class Conflict(AppError):
    status_code = 409
    code = "conflict"


class TooManyAttempts(AppError):
    status_code = 429
    code = "too_many_attempts"


# Codes for plain HTTPExceptions raised by the framework itself
STATUS_CODES = {
    400: "validation_error",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    429: "too_many_attempts",
}


def code_for_status(status_code: int) -> str:
    return STATUS_CODES.get(status_code, "internal_error" if status_code >= 500 else "http_error")
