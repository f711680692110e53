"""
clustercache — Observability Module

Single observability adapter type for the client. Every component receives an
adapter at construction and emits its events and metrics through it.

Usage:
    from clustercache.observability import ObservabilityAdapter

    obs = ObservabilityAdapter()
    obs.increment("cache.hits")
    obs.event("node.added", {"address": "10.0.0.1:11211"})
"""

from .monitoring import (
    JSONFormatter,
    ObservabilityAdapter,
    create_statsd_client,
    setup_logging,
)

__all__ = [
    "ObservabilityAdapter",
    "JSONFormatter",
    "create_statsd_client",
    "setup_logging",
]
