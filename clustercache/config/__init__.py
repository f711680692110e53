"""
clustercache — Configuration Module

Provides typed configuration loading and validation.
"""

from .loader import load_config
from .schemas import (
    BreakerConfig,
    ClientConfig,
    ClusterCacheConfig,
    DiscoveryConfig,
    LogLevel,
    ObservabilityConfig,
    PoolConfig,
    RouterConfig,
)

__all__ = [
    # Loader
    "load_config",
    # Main config
    "ClusterCacheConfig",
    # Enums
    "LogLevel",
    # Config sections
    "DiscoveryConfig",
    "PoolConfig",
    "RouterConfig",
    "BreakerConfig",
    "ClientConfig",
    "ObservabilityConfig",
]
