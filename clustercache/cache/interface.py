"""
clustercache — Cache Interface

Defines the abstract interface of the cache client.
"""

from abc import ABC, abstractmethod
from typing import Any

from .result import CacheResult

Value = bytes | str


class CacheInterface(ABC):
    """
    Abstract base class for cache clients.

    Operations never raise for cache or node failures; they return a
    CacheResult carrying the error instead.
    """

    @abstractmethod
    async def get(self, key: str) -> CacheResult[bytes]:
        """
        Retrieve a value from the cache.

        Args:
            key: Cache key

        Returns:
            Result holding the stored bytes, or None on a miss
        """

    @abstractmethod
    async def set(self, key: str, value: Value, ttl: int | None = None) -> CacheResult[None]:
        """
        Store a value in the cache.

        Args:
            key: Cache key
            value: bytes, or str (stored as UTF-8)
            ttl: Time-to-live in seconds (None = use default, 0 = no expiry)
        """

    @abstractmethod
    async def delete(self, key: str) -> CacheResult[bool]:
        """
        Delete a key from the cache.

        Returns:
            Result holding True if the key existed
        """

    @abstractmethod
    async def get_stats(self) -> dict[str, Any]:
        """Get cache statistics (hits, misses, nodes, pools, ...)."""

    @abstractmethod
    async def close(self) -> None:
        """
        Release every connection and stop background tasks.

        Should be called during graceful shutdown.
        """

    async def get_many(self, keys: list[str]) -> dict[str, CacheResult[bytes]]:
        """
        Retrieve multiple values from the cache.

        Default implementation calls get() for each key.
        Clients can override for better performance.
        """
        return {key: await self.get(key) for key in keys}

    async def set_many(self, items: dict[str, Value], ttl: int | None = None) -> int:
        """
        Store multiple values in the cache.

        Returns:
            Number of items successfully stored
        """
        count = 0
        for key, value in items.items():
            if (await self.set(key, value, ttl)).success:
                count += 1
        return count

    async def delete_many(self, keys: list[str]) -> int:
        """
        Delete multiple keys from the cache.

        Returns:
            Number of keys that existed and were deleted
        """
        count = 0
        for key in keys:
            if (await self.delete(key)).value:
                count += 1
        return count
