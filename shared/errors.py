"""
Shared error handling for RouteWise services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class RouteWiseException(Exception):
    """Base exception for RouteWise services."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(RouteWiseException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class CacheError(RouteWiseException):
    """Base class for cache subsystem failures.

    These never cross the public cache facade; they are raised inside the
    subsystem and converted into misses or no-ops at the boundary.
    """

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class CacheConnectionError(CacheError):
    """Remote cache backend is unreachable."""

    def __init__(self, message: str = "Cache backend unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_CONNECTION_ERROR", message, details)


class CacheSerializationError(CacheError):
    """A cached value could not be encoded or decoded."""

    def __init__(self, message: str = "Cache value could not be serialized", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_SERIALIZATION_ERROR", message, details)

