"""
Exceptions for DAO Radar.

Provides a hierarchy of exceptions with HTTP-like error codes so that
invalid input, missing accounts and transient upstream failures stay
distinguishable all the way to the API layer.
"""
import asyncio
from typing import Optional

import httpx


class DaoRadarError(Exception):
    """Base exception for all DAO Radar errors."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        retryable: bool = True,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        result = {
            "error_code": self.code,
            "error_message": self.message,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        return result


# ============================================
# 4xx Client Errors
# ============================================

class InvalidInputError(DaoRadarError):
    """400 Bad Request - Malformed identifier or request body."""

    def __init__(self, message: str = "Invalid request data"):
        super().__init__(message, code=400, retryable=False)


class ForbiddenMethodError(DaoRadarError):
    """403 Forbidden - RPC method is not on the proxy allowlist."""

    def __init__(self, method: str = ""):
        message = f"Method not allowed: {method}" if method else "Method not allowed"
        super().__init__(message, code=403, retryable=False)


class ResourceNotFoundError(DaoRadarError):
    """404 Not Found - Requested account doesn't exist."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, code=404, retryable=False)


class VoteInProgressError(DaoRadarError):
    """409 Conflict - A vote for this proposal and wallet is already pending."""

    def __init__(self, message: str = "A vote for this proposal is already being submitted"):
        super().__init__(message, code=409, retryable=False)


class RateLimitError(DaoRadarError):
    """429 Too Many Requests - Rate limit exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after: float = 1.0,
    ):
        super().__init__(message, code=429, retryable=True, retry_after=retry_after)


# ============================================
# 5xx Server Errors
# ============================================

class InternalError(DaoRadarError):
    """500 Internal Server Error - Unexpected error."""

    def __init__(self, message: str = "An unexpected error occurred."):
        super().__init__(message, code=500, retryable=True)


class UpstreamError(DaoRadarError):
    """502 Bad Gateway - RPC node, registry or other upstream failed."""

    def __init__(self, message: str = "A downstream service is unavailable."):
        super().__init__(message, code=502, retryable=True)


class UpstreamTimeoutError(DaoRadarError):
    """504 Gateway Timeout - A bounded wait on an upstream expired."""

    def __init__(self, message: str = "Upstream request timed out."):
        super().__init__(message, code=504, retryable=True)


# ============================================
# Control Flow
# ============================================

class AggregationCancelled(DaoRadarError):
    """An aggregation pass observed its cancellation flag."""

    def __init__(self, message: str = "Aggregation pass cancelled"):
        super().__init__(message, code=499, retryable=False)


# ============================================
# Exception Classification Helpers
# ============================================

def classify_exception(error: BaseException) -> DaoRadarError:
    """
    Convert a generic exception to a DaoRadarError.

    Walks the ``__cause__`` chain first, since RPC client libraries wrap
    transport errors in their own exception types.
    """
    if isinstance(error, DaoRadarError):
        return error

    cause = error.__cause__
    if cause is not None and cause is not error:
        classified = classify_exception(cause)
        if not isinstance(classified, InternalError):
            return classified

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        return UpstreamTimeoutError(f"Operation timed out: {error}")

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 429:
            retry_after = error.response.headers.get("retry-after")
            try:
                return RateLimitError(f"Rate limited by upstream: {error}", retry_after=float(retry_after or 1.0))
            except ValueError:
                return RateLimitError(f"Rate limited by upstream: {error}")
        return UpstreamError(f"Upstream returned HTTP {status}")

    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return UpstreamError(f"Connection error: {error}")

    error_type = type(error).__name__
    error_msg = str(error)

    if "timeout" in error_type.lower() or "timed out" in error_msg.lower():
        return UpstreamTimeoutError(f"Operation timed out: {error_msg}")

    if "429" in error_msg or ("rate" in error_msg.lower() and "limit" in error_msg.lower()):
        return RateLimitError(f"Rate limit: {error_msg}")

    if "rpc" in error_type.lower() or "solana" in error_type.lower():
        return UpstreamError(f"RPC error: {error_msg}")

    # Default to internal error
    return InternalError(f"Unexpected error: {error_msg}")
