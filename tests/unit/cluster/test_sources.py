"""
clustercache — Discovery Source Tests

Tests the static source and the "config get cluster" endpoint source against
the fake memcached server.
"""

import pytest

from clustercache.cluster import (
    ConfigEndpointDiscoverySource,
    HostPortAddress,
    SocketAddress,
    StaticDiscoverySource,
)
from clustercache.errors import DiscoveryError
from tests.conftest import FakeMemcached, unused_address


class TestStaticDiscoverySource:
    """Test the static node list."""

    async def test_returns_parsed_addresses(self) -> None:
        source = StaticDiscoverySource(["10.0.0.1:11211", "/tmp/mc.sock", "10.0.0.1:11211"])
        assert await source.discover() == (HostPortAddress("10.0.0.1", 11211), SocketAddress("/tmp/mc.sock"))
        assert source.name == "static"

    def test_invalid_address(self) -> None:
        with pytest.raises(DiscoveryError):
            StaticDiscoverySource(["host:notaport"])


class TestConfigEndpointDiscoverySource:
    """Test discovery through a configuration endpoint."""

    async def test_discovers_nodes(self, memcached: FakeMemcached) -> None:
        memcached.cluster_nodes = "cache-1|10.0.0.1|11211 /tmp/mc.sock|| |10.0.0.3|11300"
        memcached.config_version = 4
        source = ConfigEndpointDiscoverySource(memcached.address)

        nodes = await source.discover()

        assert nodes == (
            HostPortAddress("cache-1", 11211),
            SocketAddress("/tmp/mc.sock"),
            HostPortAddress("10.0.0.3", 11300),
        )
        assert source.last_version == 4
        assert memcached.commands == ["config"]

    def test_endpoint_without_port_uses_default(self) -> None:
        source = ConfigEndpointDiscoverySource("cache.internal")
        assert source.endpoint == HostPortAddress("cache.internal", 11211)

    async def test_error_reply(self, memcached: FakeMemcached) -> None:
        memcached.cluster_nodes = None
        source = ConfigEndpointDiscoverySource(memcached.address)
        with pytest.raises(DiscoveryError) as exc_info:
            await source.discover()
        assert "malformed reply" in exc_info.value.message

    async def test_empty_node_list(self, memcached: FakeMemcached) -> None:
        memcached.cluster_nodes = ""
        source = ConfigEndpointDiscoverySource(memcached.address)
        with pytest.raises(DiscoveryError) as exc_info:
            await source.discover()
        assert "no nodes" in exc_info.value.message

    async def test_unparseable_node_list(self, memcached: FakeMemcached) -> None:
        memcached.cluster_nodes = "a|b"
        source = ConfigEndpointDiscoverySource(memcached.address)
        with pytest.raises(DiscoveryError) as exc_info:
            await source.discover()
        assert "unparseable" in exc_info.value.message

    async def test_unreachable_endpoint(self) -> None:
        source = ConfigEndpointDiscoverySource(unused_address(), timeout=0.5)
        with pytest.raises(DiscoveryError):
            await source.discover()

    async def test_slow_endpoint_times_out(self, memcached: FakeMemcached) -> None:
        memcached.cluster_nodes = "10.0.0.1:11211"
        memcached.delay = 0.5
        source = ConfigEndpointDiscoverySource(memcached.address, timeout=0.05)
        with pytest.raises(DiscoveryError) as exc_info:
            await source.discover()
        assert "timed out" in exc_info.value.message
