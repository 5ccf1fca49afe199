"""
Shared error handling for the caching service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    code: str
    details: Dict[str, Any] = {}


class CacheLayerException(Exception):
    """Base exception for the caching service."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=self.message,
            code=self.code,
            details=self.details
        )


class AuthenticationError(CacheLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(CacheLayerException):
    """Role check failures on gated actions."""

    status_code = 403

    def __init__(self, message: str = "Forbidden: Admin or DevOps access required",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class ValidationError(CacheLayerException):
    """Malformed strategy config or request input."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ConflictError(CacheLayerException):
    """Duplicate identifier on create."""

    status_code = 409

    def __init__(self, message: str = "Resource already exists", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFLICT_ERROR", message, details)


class NotFoundError(CacheLayerException):
    """Unknown key, strategy or suggestion."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class CapacityError(CacheLayerException):
    """Eviction could not free a slot."""

    status_code = 507

    def __init__(self, message: str = "Cache strategy is full", details: Optional[Dict[str, Any]] = None):
        super().__init__("CAPACITY_ERROR", message, details)


class BackendTimeoutError(CacheLayerException):
    """External cache backend did not answer in time."""

    status_code = 504

    def __init__(self, backend: str, message: str = "Backend call timed out",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("BACKEND_TIMEOUT", f"{backend}: {message}", details)
