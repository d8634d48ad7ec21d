"""Error taxonomy for the data layer and its API error envelope."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from flask import jsonify


class CMSError(Exception):
    """Base class for every error raised by a repository."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Any = None, operation: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.operation = operation

    def annotate(self, operation: str) -> "CMSError":
        """Return a copy of this error prefixed with the failed operation."""
        return self.__class__(
            f"{operation} failed: {self.message}",
            details=self.details,
            operation=operation,
        )


class ValidationError(CMSError):
    code = "VALIDATION_ERROR"
    status_code = 400


class UnauthorizedError(CMSError):
    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(CMSError):
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(CMSError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(CMSError):
    """Duplicate slug, username, email or setting key."""

    code = "DUPLICATE_SLUG"
    status_code = 409


class StorageError(CMSError):
    """Unexpected database failure."""

    code = "INTERNAL_ERROR"
    status_code = 500


def error_envelope(error: Exception) -> tuple[dict[str, Any], int]:
    """Map an exception onto the standard API error envelope."""
    if isinstance(error, CMSError):
        code, status, message, details = error.code, error.status_code, error.message, error.details
    else:
        code, status, message, details = "INTERNAL_ERROR", 500, "Internal server error", None

    body = {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return body, status


def register_error_handlers(app):
    @app.errorhandler(CMSError)
    def handle_cms_error(error):
        if error.status_code >= 500:
            app.logger.error(f"Unhandled storage failure: {error.message}")
        body, status = error_envelope(error)
        response = jsonify(body)
        response.status_code = status
        return response


__all__ = [
    "CMSError",
    "ValidationError",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "StorageError",
    "error_envelope",
    "register_error_handlers",
]
