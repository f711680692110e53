"""
clustercache — Configuration Schemas

Defines typed configuration models using Pydantic for validation and type safety.
All options are enumerated here and validated at construction; components receive
their section of the configuration explicitly.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DiscoveryConfig(BaseModel):
    """Node discovery configuration."""

    endpoint: str | None = Field(
        default=None,
        description="Cluster configuration endpoint (host[:port]) answering 'config get cluster'",
    )
    servers: list[str] = Field(
        default_factory=list,
        description="Static node list (host:port or /path/to/socket) used when no endpoint is set",
    )
    refresh_interval: float = Field(default=60.0, gt=0, description="Seconds between discovery refreshes")
    removal_grace_refreshes: int = Field(
        default=2,
        ge=1,
        description="Consecutive refreshes a node must be missing from before it is removed",
    )
    discovery_timeout: float = Field(default=5.0, gt=0, description="Timeout for one discovery query in seconds")
    backoff_base_delay: float = Field(default=1.0, gt=0, description="Initial retry delay after a failed refresh")
    backoff_max_delay: float = Field(default=60.0, gt=0, description="Maximum retry delay after failed refreshes")

    @model_validator(mode="after")
    def validate_source(self) -> "DiscoveryConfig":
        """Exactly one discovery source must be configured."""
        if self.endpoint and self.servers:
            raise ValueError("configure either a discovery endpoint or a static server list, not both")
        if not self.endpoint and not self.servers:
            raise ValueError("a discovery endpoint or at least one static server is required")
        if self.backoff_max_delay < self.backoff_base_delay:
            raise ValueError("backoff_max_delay must be >= backoff_base_delay")
        return self


class PoolConfig(BaseModel):
    """Per-node connection pool configuration."""

    min_pool_size: int = Field(default=0, ge=0, description="Idle connections kept open per node")
    max_pool_size: int = Field(default=10, ge=1, description="Maximum connections per node")
    connect_timeout: float = Field(default=1.0, gt=0, description="Connection establishment timeout in seconds")
    idle_timeout: float = Field(default=300.0, gt=0, description="Seconds before an idle connection is closed")
    maintain_interval: float = Field(default=30.0, gt=0, description="Seconds between idle eviction sweeps")

    @model_validator(mode="after")
    def validate_sizes(self) -> "PoolConfig":
        """Ensure min_pool_size does not exceed max_pool_size."""
        if self.min_pool_size > self.max_pool_size:
            raise ValueError("min_pool_size must be <= max_pool_size")
        return self


class RouterConfig(BaseModel):
    """Consistent hashing configuration."""

    virtual_nodes: int = Field(default=160, ge=1, le=4096, description="Ring positions per physical node")


class BreakerConfig(BaseModel):
    """Per-node circuit breaker configuration."""

    fail_max: int = Field(default=3, ge=1, description="Consecutive transport failures before a node is dead")
    reset_timeout: float = Field(default=30.0, gt=0, description="Seconds before a dead node is tried again")
    health_check_interval: float = Field(
        default=5.0, gt=0, description="Seconds between health checks of suspect nodes"
    )


class ClientConfig(BaseModel):
    """Cache client request configuration."""

    request_timeout: float = Field(default=1.0, gt=0, description="Per-request deadline in seconds")
    retry_budget: int = Field(default=2, ge=1, description="Total attempts per request across nodes")
    default_ttl: int = Field(default=0, ge=0, description="TTL used when none is given (0 = no expiry)")
    max_value_size: int = Field(default=1024 * 1024, ge=1, description="Largest value accepted, in bytes")
    namespace: str | None = Field(default=None, description="Optional prefix applied to every key")


class ObservabilityConfig(BaseModel):
    """Logging and metrics configuration."""

    enable_metrics: bool = Field(default=True, description="Enable in-memory metrics collection")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    pretty_logs: bool = Field(default=False, description="Human-readable logs instead of JSON")
    statsd_address: str | None = Field(
        default=None, description="host[:port] of a statsd server receiving every metric (port defaults to 8125)"
    )
    statsd_prefix: str = Field(default="clustercache", min_length=1, description="Prefix of metric names sent to statsd")


class ClusterCacheConfig(BaseModel):
    """Root configuration for a clustercache client."""

    discovery: DiscoveryConfig
    pool: PoolConfig = Field(default_factory=PoolConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)
    breaker: BreakerConfig = Field(default_factory=BreakerConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)
