"""Error types raised by the food-log services and rendered by the API layer."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


class FoodLogError(Exception):
    """Base class for user-visible failures.

    Attributes:
        message: human-readable message shown to the user
        details: optional mapping with extra context
        http_status: suggested HTTP status code for handlers
    """

    http_status = 500
    default_message = "Unexpected error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.details = dict(details) if details else None
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ok": False,
            "status": self.http_status,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return self.message


class ValidationFailed(FoodLogError):
    http_status = 400
    default_message = "Invalid input"


class PayloadTooLarge(FoodLogError):
    http_status = 413
    default_message = "File size must be less than 5MB"


class UnsupportedMediaType(FoodLogError):
    http_status = 415
    default_message = "Only image files are allowed (JPEG, PNG, GIF, WebP)"


class _CausedError(FoodLogError):
    """Failure wrapping a lower-level cause; the cause text is part of the message."""

    prefix = "Operation failed"

    def __init__(
        self,
        cause: Any = None,
        details: Optional[Mapping[str, Any]] = None,
        prefix: Optional[str] = None,
    ):
        self.cause = cause
        prefix = prefix or self.prefix
        message = f"{prefix}: {cause}" if cause else prefix
        super().__init__(message, details)


class UploadFailed(_CausedError):
    http_status = 502
    prefix = "Failed to upload image"


class RecordPersistFailed(_CausedError):
    http_status = 502
    prefix = "Failed to save data"


class NotFound(FoodLogError):
    http_status = 404
    default_message = "Not found"


class AuthenticationFailed(FoodLogError):
    http_status = 401
    default_message = "Invalid email or password."


class Conflict(FoodLogError):
    http_status = 409
    default_message = "Resource already exists"


class BackendUnavailable(FoodLogError):
    http_status = 503
    default_message = "Storage backend is not configured"
