"""
clustercache — Client Factory

Canonical factory for building a CacheClient from configuration.

Key points:
- Discovery source is selected by configuration: a config endpoint
  (CLUSTERCACHE_ENDPOINT) or a static server list (CLUSTERCACHE_SERVERS)
- All configuration is typed and validated via Pydantic models
- The returned client is not started; call `await client.start()` or use it
  as an async context manager

Examples:
    from clustercache import create_client

    # Uses env-configured discovery
    client = create_client()

    # Or explicitly supply a configuration (e.g., for tests)
    from clustercache.config import ClusterCacheConfig, DiscoveryConfig
    cfg = ClusterCacheConfig(discovery=DiscoveryConfig(servers=["127.0.0.1:11211"]))
    async with create_client(cfg) as client:
        await client.set("key", b"value", ttl=60)
"""

import logging

from ..cluster import ConfigEndpointDiscoverySource, DiscoverySource, NodeRegistry, StaticDiscoverySource
from ..config import ClusterCacheConfig, DiscoveryConfig, ObservabilityConfig, load_config
from ..errors import ConfigurationError, DiscoveryError
from ..observability import ObservabilityAdapter, create_statsd_client
from ..pool import ConnectionPool, Connector, open_connection
from ..resilience import CircuitBreakerManager, RetryConfig
from ..routing import KeyRouter
from .client import CacheClient

logger = logging.getLogger(__name__)


def create_discovery_source(config: DiscoveryConfig) -> DiscoverySource:
    """
    Build the discovery source selected by configuration.

    Raises:
        ConfigurationError: If an address cannot be parsed
    """
    try:
        if config.endpoint:
            return ConfigEndpointDiscoverySource(config.endpoint, timeout=config.discovery_timeout)
        return StaticDiscoverySource(config.servers)
    except DiscoveryError as e:
        raise ConfigurationError(
            f"Invalid discovery address: {e.message}",
            details={"endpoint": config.endpoint, "servers": config.servers, **e.details},
        ) from e


def create_observability(config: ObservabilityConfig) -> ObservabilityAdapter:
    """
    Build the observability adapter, with a statsd exporter when an address
    is configured.

    Raises:
        ConfigurationError: If the statsd address is malformed
    """
    exporter = None
    if config.statsd_address:
        try:
            exporter = create_statsd_client(config.statsd_address, config.statsd_prefix)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid statsd address: {config.statsd_address}",
                details={"statsd_address": config.statsd_address},
            ) from e
        logger.info(
            f"Sending metrics to statsd at {config.statsd_address}",
            extra={"statsd_address": config.statsd_address, "prefix": config.statsd_prefix},
        )
    return ObservabilityAdapter(enable_metrics=config.enable_metrics, exporter=exporter)


def create_client(
    config: ClusterCacheConfig | None = None,
    observability: ObservabilityAdapter | None = None,
    connector: Connector = open_connection,
) -> CacheClient:
    """
    Create a cache client wired to its registry, router, pool and breakers.

    Args:
        config: Client configuration (loaded from the environment if not provided)
        observability: Observability sink (a new adapter if not provided)
        connector: Coroutine opening node connections

    Returns:
        Configured, not yet started, cache client

    Raises:
        ConfigurationError: If configuration is invalid
    """
    if config is None:
        config = load_config()
    if observability is None:
        observability = create_observability(config.observability)

    source = create_discovery_source(config.discovery)
    logger.info(
        f"Creating cache client with {source.name}",
        extra={"source": source.name, "max_pool_size": config.pool.max_pool_size},
    )

    registry = NodeRegistry(
        source,
        observability,
        refresh_interval=config.discovery.refresh_interval,
        removal_grace_refreshes=config.discovery.removal_grace_refreshes,
        backoff_base_delay=config.discovery.backoff_base_delay,
        backoff_max_delay=config.discovery.backoff_max_delay,
    )
    router = KeyRouter(observability, virtual_nodes=config.router.virtual_nodes)
    pool = ConnectionPool(
        observability,
        connector=connector,
        min_pool_size=config.pool.min_pool_size,
        max_pool_size=config.pool.max_pool_size,
        connect_timeout=config.pool.connect_timeout,
        idle_timeout=config.pool.idle_timeout,
        maintain_interval=config.pool.maintain_interval,
    )
    breakers = CircuitBreakerManager(
        registry,
        observability,
        fail_max=config.breaker.fail_max,
        reset_timeout=config.breaker.reset_timeout,
    )

    return CacheClient(
        registry,
        router,
        pool,
        breakers,
        observability,
        request_timeout=config.client.request_timeout,
        retry_budget=config.client.retry_budget,
        default_ttl=config.client.default_ttl,
        max_value_size=config.client.max_value_size,
        namespace=config.client.namespace,
        health_check_interval=config.breaker.health_check_interval,
        discovery_retry=RetryConfig(
            max_retries=3,
            base_delay=config.discovery.backoff_base_delay,
            max_delay=config.discovery.backoff_max_delay,
        ),
    )
