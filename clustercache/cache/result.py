"""
clustercache — Cache Results

Every cache client operation returns a CacheResult instead of raising. A miss
is a successful result whose value is None.
"""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ..errors import ClusterCacheError, ErrorCode, extract_error_code, make_error_response

T = TypeVar("T")


@dataclass(frozen=True)
class CacheResult(Generic[T]):
    """Outcome of a cache operation."""

    success: bool
    value: T | None = None
    error: Exception | None = None

    @classmethod
    def ok(cls, value: T | None = None) -> "CacheResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: Exception, value: T | None = None) -> "CacheResult[T]":
        return cls(success=False, value=value, error=error)

    @property
    def error_code(self) -> ErrorCode | None:
        if self.error is None:
            return None
        return extract_error_code(self.error)

    def unwrap(self) -> T | None:
        """
        Return the value, raising the stored error for a failed result.

        Raises:
            Exception: The error carried by a failed result
        """
        if self.error is not None:
            raise self.error
        return self.value

    def to_dict(self) -> dict[str, Any]:
        """Render as the standard error payload, or a success payload."""
        if self.success:
            return {"success": True, "value": self.value}
        assert self.error is not None
        details = self.error.details if isinstance(self.error, ClusterCacheError) else {}
        message = self.error.message if isinstance(self.error, ClusterCacheError) else str(self.error)
        return make_error_response(extract_error_code(self.error), message, details)
