"""
clustercache — Client Factory Integration Tests

Tests for the factory that wires a CacheClient from configuration.
"""

import pytest

from clustercache.cache import CacheInterface, create_client, create_discovery_source, create_observability
from clustercache.cluster import ConfigEndpointDiscoverySource, HostPortAddress, StaticDiscoverySource
from clustercache.config import ClusterCacheConfig, DiscoveryConfig, ObservabilityConfig
from clustercache.errors import ConfigurationError
from clustercache.observability import ObservabilityAdapter
from tests.conftest import FakeMemcached, make_config


class TestDiscoverySourceSelection:
    """Test choosing the discovery source from configuration."""

    def test_static_servers(self) -> None:
        source = create_discovery_source(DiscoveryConfig(servers=["10.0.0.1:11211", "10.0.0.2"]))
        assert isinstance(source, StaticDiscoverySource)

    def test_config_endpoint(self) -> None:
        source = create_discovery_source(DiscoveryConfig(endpoint="cfg.internal:11210"))
        assert isinstance(source, ConfigEndpointDiscoverySource)

    def test_bad_address_is_a_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            create_discovery_source(DiscoveryConfig(servers=["10.0.0.1:notaport"]))
        assert exc_info.value.details["servers"] == ["10.0.0.1:notaport"]


class TestObservabilityWiring:
    """Test building the observability adapter from configuration."""

    def test_no_exporter_by_default(self) -> None:
        assert create_observability(ObservabilityConfig()).exporter is None

    def test_statsd_exporter(self) -> None:
        obs = create_observability(ObservabilityConfig(statsd_address="127.0.0.1:9125", statsd_prefix="mc"))
        assert obs.exporter is not None
        assert (obs.exporter.host, obs.exporter.port) == ("127.0.0.1", 9125)
        assert obs.exporter.namespace == "mc"

    def test_bad_statsd_address(self) -> None:
        with pytest.raises(ConfigurationError):
            create_observability(ObservabilityConfig(statsd_address="127.0.0.1:statsd"))

    def test_client_gets_configured_exporter(self) -> None:
        config = make_config(servers=["127.0.0.1:11211"])
        config.observability = ObservabilityConfig(statsd_address="127.0.0.1:9125")
        client = create_client(config)
        assert client.obs.exporter is not None
        assert client.obs.exporter.namespace == "clustercache"


class TestCreateClient:
    """Test client construction and wiring."""

    def test_configuration_is_applied(self) -> None:
        config = make_config(servers=["127.0.0.1:11211"], retry_budget=3, namespace="app")
        client = create_client(config)

        assert isinstance(client, CacheInterface)
        assert client.retry_budget == 3
        assert client.namespace == "app"
        assert client.request_timeout == 1.0
        assert client.registry.removal_grace_refreshes == config.discovery.removal_grace_refreshes
        assert client.health_check_interval == config.breaker.health_check_interval

    def test_shared_observability(self) -> None:
        observability = ObservabilityAdapter()
        client = create_client(make_config(servers=["127.0.0.1:11211"]), observability)
        assert client.obs is observability
        assert client.registry.obs is observability

    def test_loads_environment_config(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("CLUSTERCACHE_SERVERS", "127.0.0.1:11299")
        client = create_client()
        assert isinstance(client.registry.source, StaticDiscoverySource)

    async def test_started_client_routes_to_configured_nodes(self, memcached_cluster: list[FakeMemcached]) -> None:
        config = ClusterCacheConfig.model_validate(
            {"discovery": {"servers": [s.address for s in memcached_cluster]}}
        )
        async with create_client(config) as client:
            expected = {HostPortAddress("127.0.0.1", s.port) for s in memcached_cluster}
            assert client.router.addresses == frozenset(expected)
            assert (await client.set("factory", b"built")).success
            assert (await client.get("factory")).value == b"built"

    async def test_close_is_idempotent(self, memcached: FakeMemcached) -> None:
        client = create_client(make_config(servers=[memcached.address]))
        await client.start()
        await client.close()
        await client.close()
