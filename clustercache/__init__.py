"""
clustercache — Cluster Cache Client

Client-side cache layer for a cluster of memcached nodes: node discovery,
consistent hashing, per-node connection pools and retrying requests.
"""

__version__ = "1.0.0"

from .cache import CacheClient, CacheInterface, CacheResult, create_client
from .config import ClusterCacheConfig, load_config
from .errors import ClusterCacheError, ErrorCode
from .observability import ObservabilityAdapter, setup_logging

__all__ = [
    "CacheClient",
    "CacheInterface",
    "CacheResult",
    "ClusterCacheConfig",
    "ClusterCacheError",
    "ErrorCode",
    "ObservabilityAdapter",
    "create_client",
    "load_config",
    "setup_logging",
]
