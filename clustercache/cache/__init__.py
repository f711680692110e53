"""
clustercache — Cache Module

The cache client and its factory.

Usage:
    from clustercache.cache import create_client

    async with create_client() as client:
        await client.set("key", "value", ttl=3600)
        result = await client.get("key")
"""

from .client import CacheClient, ComputeFn
from .factory import create_client, create_discovery_source, create_observability
from .interface import CacheInterface, Value
from .result import CacheResult

__all__ = [
    # Factory
    "create_client",
    "create_discovery_source",
    "create_observability",
    # Client
    "CacheClient",
    "CacheInterface",
    "CacheResult",
    "ComputeFn",
    "Value",
]
