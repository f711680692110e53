"""
clustercache — Node Record Tests
"""

from clustercache.cluster import HostPortAddress, Node, NodeHealth, SocketAddress


class TestNode:
    """Test immutable node records."""

    def test_defaults(self) -> None:
        node = Node(HostPortAddress("a"))
        assert node.health is NodeHealth.HEALTHY
        assert node.routable
        assert node.missed_refreshes == 0

    def test_only_healthy_nodes_are_routable(self) -> None:
        node = Node(HostPortAddress("a"))
        assert not node.with_health(NodeHealth.SUSPECT).routable
        assert not node.with_health(NodeHealth.DEAD).routable
        assert node.with_health(NodeHealth.SUSPECT).with_health(NodeHealth.HEALTHY).routable

    def test_missed_and_seen(self) -> None:
        node = Node(HostPortAddress("a")).missed().missed()
        assert node.missed_refreshes == 2
        seen = node.seen(42.0)
        assert seen.missed_refreshes == 0
        assert seen.last_seen == 42.0

    def test_records_are_hashable_values(self) -> None:
        assert Node(SocketAddress("/tmp/a")) == Node(SocketAddress("/tmp/a"))
        assert len({Node(SocketAddress("/tmp/a")), Node(SocketAddress("/tmp/a"))}) == 1

    def test_str_is_address(self) -> None:
        assert str(Node(HostPortAddress("10.0.0.1", 11212))) == "10.0.0.1:11212"
