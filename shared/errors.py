"""
Shared error handling for the metadata cache layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class CacheLayerException(Exception):
    """Base exception for the cache layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(CacheLayerException):
    """Invalid cache topology or TTL configuration."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class ValidationError(CacheLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ChangeFeedError(CacheLayerException):
    """Upstream change feed could not be fetched."""

    def __init__(self, message: str = "Change feed fetch failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("CHANGE_FEED_ERROR", message, details)


class MalformedChangeRecordError(CacheLayerException):
    """A change-feed record could not be interpreted."""

    def __init__(self, message: str = "Malformed change record", details: Optional[Dict[str, Any]] = None):
        super().__init__("MALFORMED_CHANGE_RECORD", message, details)
