"""
Centralized Exceptions.
Error taxonomy and structured error handling.
"""

import re
from typing import Dict, Any, Optional
from fastapi import HTTPException, status


class PriceWatchError(Exception):
    """Base exception for PriceWatch."""

    def __init__(self, message: str, error_code: str = "UNKNOWN", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(PriceWatchError):
    """User input rejected (symbol format, numbers, favorites limit, duplicates)."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class NetworkError(PriceWatchError):
    """Outbound request failed."""

    def __init__(self, message: str = "Network error", details: Optional[Dict[str, Any]] = None,
                 error_code: str = "NETWORK_ERROR"):
        super().__init__(message, error_code, details)


class HTTPStatusError(NetworkError):
    """Non-success HTTP status from an endpoint."""

    def __init__(self, status_code: int, endpoint: str, details: Optional[Dict[str, Any]] = None):
        self.status = status_code
        self.endpoint = endpoint
        super().__init__(f"HTTP {status_code} — {endpoint}",
                         {"status": status_code, "endpoint": endpoint, **(details or {})},
                         error_code="HTTP_STATUS")


class RequestTimeoutError(NetworkError):
    """Request aborted by its timeout."""

    def __init__(self, endpoint: str, timeout_ms: int):
        self.endpoint = endpoint
        super().__init__(f"Timeout after {timeout_ms} ms — {endpoint}",
                         {"endpoint": endpoint, "timeout_ms": timeout_ms},
                         error_code="TIMEOUT")


class RequestCancelledError(NetworkError):
    """Request aborted by cancel_inflight()."""

    def __init__(self, endpoint: str, reason: str = "refresh-cancelled"):
        self.endpoint = endpoint
        super().__init__(f"Request cancelled ({reason}) — {endpoint}",
                         {"endpoint": endpoint, "reason": reason},
                         error_code="CANCELLED")


class ResponseShapeError(NetworkError):
    """Payload did not have the expected shape."""

    def __init__(self, message: str = "Unexpected response shape", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, error_code="RESPONSE_SHAPE")


class SuspendedOperationError(PriceWatchError):
    """Network attempted while a favorites reorder holds the exclusive flag."""

    def __init__(self, message: str = "reorder-active", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SUSPENDED", details)


class ConfigurationError(PriceWatchError):
    """Configuration error."""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", details)


# Error mapping to HTTP responses
ERROR_TO_HTTP_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NetworkError: status.HTTP_503_SERVICE_UNAVAILABLE,
    SuspendedOperationError: status.HTTP_409_CONFLICT,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def http_status_for(error: PriceWatchError) -> int:
    """Most specific HTTP status for an error (subclasses inherit their base mapping)."""
    for cls in type(error).__mro__:
        if cls in ERROR_TO_HTTP_STATUS:
            return ERROR_TO_HTTP_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_http_exception(error: PriceWatchError) -> HTTPException:
    """Convert PriceWatchError to HTTPException with proper status code."""
    return HTTPException(
        status_code=http_status_for(error),
        detail={
            "error": error.error_code,
            "message": sanitize_error_message(error.message),
            "details": error.details
        }
    )


_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)
_API_PATH_RE = re.compile(r"(?:^|\s)/api/\S+", re.IGNORECASE)
_SPACES_RE = re.compile(r"\s{2,}")

SENSITIVE_PATTERNS = ("password", "secret", "api_key", "access_token", "refresh_token", "private")


def strip_urls(text: Any) -> str:
    """Remove URL-like and /api/... substrings and collapse whitespace."""
    cleaned = _URL_RE.sub("", str(text or ""))
    cleaned = _API_PATH_RE.sub("", cleaned)
    return _SPACES_RE.sub(" ", cleaned).strip()


def sanitize_error_message(message: Any) -> str:
    """Sanitize error messages to prevent endpoint and credential leakage."""
    sanitized = strip_urls(message)
    lowered = sanitized.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in lowered:
            sanitized = re.sub(re.escape(pattern), "***", sanitized, flags=re.IGNORECASE)
            lowered = sanitized.lower()
    return sanitized


def create_structured_error_response(error: Exception) -> Dict[str, Any]:
    """Create structured error response for logging and API responses."""
    if isinstance(error, PriceWatchError):
        return {
            "error_type": error.error_code,
            "message": sanitize_error_message(error.message),
            "details": error.details,
        }
    return {
        "error_type": "UNKNOWN_ERROR",
        "message": sanitize_error_message(str(error)),
        "details": {},
    }
