# errors.py
from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base for errors rendered as ``{"message": ..., "errors": [...]}``."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[list[dict]] = None) -> None:
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)

    def to_body(self) -> dict:
        body: dict = {"message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationFailed(AppError):
    status_code = 400
    default_message = "Validation failed"


class InvalidCredentials(AppError):
    status_code = 401
    default_message = "Invalid credentials"


class PermissionDenied(AppError):
    # never says which check failed
    status_code = 403
    default_message = "You do not have permission to perform this action"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class Conflict(AppError):
    status_code = 409
    default_message = "Conflict"
