"""
clustercache - Core Error Types

Defines the exception hierarchy for the cluster cache client.
All exceptions inherit from ClusterCacheError for consistent error handling.

Taxonomy:
- DiscoveryError: transient, retried internally by the node registry
- CacheError: everything the cache client can surface to a caller
  - CacheTimeoutError / PoolTimeoutError: deadline exceeded
  - TransportError / NodeConnectionError: broken or unreachable node (retried)
  - NodeUnavailableError: retry budget exhausted
  - ProtocolError: malformed wire response (never retried)
- PoolError: misuse of the connection pool API
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """
    Standard error codes for cache results.

    Used for structured error handling and caller-side error recovery.
    """

    # Input validation errors
    INVALID_KEY = "INVALID_KEY"
    VALUE_TOO_LARGE = "VALUE_TOO_LARGE"

    # Node errors
    NODE_UNAVAILABLE = "NODE_UNAVAILABLE"
    NO_NODES_AVAILABLE = "NO_NODES_AVAILABLE"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"

    # Timeouts
    TIMEOUT = "TIMEOUT"
    POOL_EXHAUSTED = "POOL_EXHAUSTED"

    # Wire protocol
    PROTOCOL_ERROR = "PROTOCOL_ERROR"

    # Discovery
    DISCOVERY_FAILED = "DISCOVERY_FAILED"

    # Configuration
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"

    # Internal errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ClusterCacheError(Exception):
    """Base exception for all clustercache errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for structured logging and results."""
        return {
            "error": self.__class__.__name__,
            "error_code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(ClusterCacheError):
    """Raised when configuration is invalid or missing."""

    code = ErrorCode.INVALID_CONFIGURATION


class DiscoveryError(ClusterCacheError):
    """Raised when the discovery source cannot be queried or parsed."""

    code = ErrorCode.DISCOVERY_FAILED

    def __init__(self, source: str, reason: str, details: dict[str, Any] | None = None):
        message = f"Discovery failed for {source}: {reason}"
        error_details = {"source": source, "reason": reason}
        error_details.update(details or {})
        super().__init__(message, error_details)
        self.source = source


class PoolError(ClusterCacheError):
    """Raised when the connection pool API is misused (e.g. double checkin)."""


class CacheError(ClusterCacheError):
    """Base exception for errors surfaced by the cache client."""


class CacheTimeoutError(CacheError):
    """Raised when a request exceeds its deadline."""

    code = ErrorCode.TIMEOUT

    def __init__(self, operation: str, timeout: float, details: dict[str, Any] | None = None):
        message = f"{operation} timed out after {timeout}s"
        error_details: dict[str, Any] = {"operation": operation, "timeout": timeout}
        error_details.update(details or {})
        super().__init__(message, error_details)
        self.timeout = timeout


class PoolTimeoutError(CacheTimeoutError):
    """Raised when no pooled connection frees up before the checkout timeout."""

    code = ErrorCode.POOL_EXHAUSTED

    def __init__(self, address: str, timeout: float, max_size: int):
        super().__init__(
            f"checkout from {address}",
            timeout,
            {"address": address, "max_pool_size": max_size},
        )
        self.address = address


class TransportError(CacheError):
    """Raised when the connection to a node breaks during a request."""

    code = ErrorCode.TRANSPORT_ERROR

    def __init__(self, address: str, reason: str, connection_id: int | None = None):
        message = f"Transport error on {address}: {reason}"
        details: dict[str, Any] = {"address": address, "reason": reason}
        if connection_id is not None:
            details["connection_id"] = connection_id
        super().__init__(message, details)
        self.address = address


class NodeConnectionError(TransportError):
    """Raised when a new connection to a node cannot be established."""

    def __init__(self, address: str, reason: str):
        super().__init__(address, f"connect failed: {reason}")


class NodeUnavailableError(CacheError):
    """Raised when every attempt allowed by the retry budget failed."""

    code = ErrorCode.NODE_UNAVAILABLE

    def __init__(self, key: str, attempts: int, last_error: Exception | None = None):
        message = f"No node could serve key '{key}' after {attempts} attempt(s)"
        details: dict[str, Any] = {"key": key, "attempts": attempts}
        if last_error is not None:
            details["last_error"] = str(last_error)
            details["last_error_type"] = type(last_error).__name__
        super().__init__(message, details)
        self.attempts = attempts


class NoNodesAvailableError(CacheError):
    """Raised when the ring holds no routable node."""

    code = ErrorCode.NO_NODES_AVAILABLE

    def __init__(self, message: str = "No cache nodes available"):
        super().__init__(message)


class ProtocolError(CacheError):
    """Raised when a node sends a malformed or unexpected response."""

    code = ErrorCode.PROTOCOL_ERROR

    def __init__(self, message: str, response: bytes | None = None):
        details: dict[str, Any] = {}
        if response is not None:
            details["response"] = response[:64].decode("latin-1")
        super().__init__(message, details)


class InvalidKeyError(CacheError):
    """Raised when a key cannot be sent over the wire protocol."""

    code = ErrorCode.INVALID_KEY

    def __init__(self, key: str, reason: str):
        super().__init__(f"Invalid key {key[:64]!r}: {reason}", {"reason": reason})


class ValueTooLargeError(CacheError):
    """Raised when a value exceeds the configured maximum item size."""

    code = ErrorCode.VALUE_TOO_LARGE

    def __init__(self, key: str, size: int, limit: int):
        message = f"Value for key '{key}' is {size} bytes (limit {limit})"
        super().__init__(message, {"key": key, "size": size, "limit": limit})


def make_error_response(
    error_code: ErrorCode,
    message: str,
    context: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Create a standardized error payload.

    Example:
        >>> make_error_response(ErrorCode.INVALID_KEY, "key contains whitespace")
        {
            "success": False,
            "error_code": "INVALID_KEY",
            "message": "key contains whitespace",
            "details": {}
        }
    """
    return {
        "success": False,
        "error_code": error_code.value,
        "message": message,
        "details": context or {},
    }


def is_retryable_error(error: Exception) -> bool:
    """
    Check if an error is transient and the request may be retried on another node.

    Only transport failures qualify; protocol errors are never retried.
    """
    return isinstance(error, TransportError)


def extract_error_code(error: Exception) -> ErrorCode:
    """Map an exception to its ErrorCode."""
    if isinstance(error, ClusterCacheError):
        return error.code
    if isinstance(error, TimeoutError):
        return ErrorCode.TIMEOUT
    return ErrorCode.INTERNAL_ERROR
