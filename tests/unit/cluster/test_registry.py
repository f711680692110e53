"""
clustercache — Node Registry Tests

Tests membership diffing, removal grace, health updates, subscriber
notification and refresh failure handling.
"""

import asyncio

import pytest

from clustercache.cluster import HostPortAddress, Node, NodeHealth, NodeRegistry, parse_address
from clustercache.errors import DiscoveryError
from clustercache.observability import ObservabilityAdapter

A = HostPortAddress("10.0.0.1", 11211)
B = HostPortAddress("10.0.0.2", 11211)
C = HostPortAddress("10.0.0.3", 11211)


class ScriptedSource:
    """Discovery source returning queued responses (addresses or errors)."""

    def __init__(self, *responses: list[str] | Exception):
        self.responses = list(responses)
        self.calls = 0
        self.gate: asyncio.Event | None = None

    @property
    def name(self) -> str:
        return "scripted"

    async def discover(self) -> tuple[HostPortAddress, ...]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return tuple(parse_address(a) for a in response)  # type: ignore[misc]


def make_registry(source: ScriptedSource, obs: ObservabilityAdapter, **kwargs: float) -> NodeRegistry:
    return NodeRegistry(source, obs, clock=lambda: 1000.0, **kwargs)  # type: ignore[arg-type]


class TestMembership:
    """Test applying discovery responses."""

    async def test_initial_refresh_adds_nodes(self, observability: ObservabilityAdapter) -> None:
        registry = make_registry(ScriptedSource(["10.0.0.1:11211", "10.0.0.2:11211"]), observability)
        await registry.refresh()

        nodes = registry.resolve()
        assert {n.address for n in nodes} == {A, B}
        assert all(n.health is NodeHealth.HEALTHY for n in nodes)
        assert all(n.last_seen == 1000.0 for n in nodes)
        assert registry.initialized
        assert observability.get_counter("events.node.added") == 2

    async def test_removal_waits_for_grace_refreshes(self, observability: ObservabilityAdapter) -> None:
        source = ScriptedSource(
            ["10.0.0.1:11211", "10.0.0.2:11211"],
            ["10.0.0.1:11211"],
            ["10.0.0.1:11211"],
        )
        registry = make_registry(source, observability, removal_grace_refreshes=2)

        await registry.refresh()
        await registry.refresh()
        node_b = registry.get(B)
        assert node_b is not None
        assert node_b.missed_refreshes == 1

        await registry.refresh()
        assert registry.get(B) is None
        assert {n.address for n in registry.resolve()} == {A}
        assert observability.get_counter("events.node.removed") == 1

    async def test_reappearing_node_resets_miss_count(self, observability: ObservabilityAdapter) -> None:
        source = ScriptedSource(
            ["10.0.0.1:11211", "10.0.0.2:11211"],
            ["10.0.0.1:11211"],
            ["10.0.0.1:11211", "10.0.0.2:11211"],
        )
        registry = make_registry(source, observability, removal_grace_refreshes=2)
        for _ in range(3):
            await registry.refresh()

        node_b = registry.get(B)
        assert node_b is not None
        assert node_b.missed_refreshes == 0

    def test_apply_returns_diff(self, observability: ObservabilityAdapter) -> None:
        registry = make_registry(ScriptedSource([]), observability, removal_grace_refreshes=1)
        assert registry.apply([A, B]) == ([A, B], [])
        assert registry.apply([B, C]) == ([C], [A])


class TestSubscribers:
    """Test node set change notification."""

    def test_subscribe_calls_back_immediately(self, observability: ObservabilityAdapter) -> None:
        registry = make_registry(ScriptedSource([]), observability)
        registry.apply([A])
        seen: list[frozenset[Node]] = []
        registry.subscribe(seen.append)
        assert len(seen) == 1
        assert {n.address for n in seen[0]} == {A}

    def test_notified_on_membership_change_only(self, observability: ObservabilityAdapter) -> None:
        registry = make_registry(ScriptedSource([]), observability)
        seen: list[frozenset[Node]] = []
        registry.subscribe(seen.append)

        registry.apply([A])
        registry.apply([A])
        assert len(seen) == 2

    def test_unsubscribe(self, observability: ObservabilityAdapter) -> None:
        registry = make_registry(ScriptedSource([]), observability)
        seen: list[frozenset[Node]] = []
        unsubscribe = registry.subscribe(seen.append)
        unsubscribe()
        registry.apply([A])
        assert len(seen) == 1

    def test_failing_subscriber_does_not_block_others(self, observability: ObservabilityAdapter) -> None:
        registry = make_registry(ScriptedSource([]), observability)
        seen: list[frozenset[Node]] = []

        def broken(nodes: frozenset[Node]) -> None:
            if nodes:
                raise RuntimeError("boom")

        registry.subscribe(broken)
        registry.subscribe(seen.append)
        registry.apply([A])
        assert len(seen) == 2


class TestHealth:
    """Test health transitions."""

    def test_mark_dead_and_back(self, observability: ObservabilityAdapter) -> None:
        registry = make_registry(ScriptedSource([]), observability)
        registry.apply([A])
        seen: list[frozenset[Node]] = []
        registry.subscribe(seen.append)

        assert registry.mark_suspect(A)
        assert registry.mark_dead(A)
        node = registry.get(A)
        assert node is not None
        assert node.health is NodeHealth.DEAD
        assert not node.routable

        assert registry.mark_healthy(A)
        assert len(seen) == 4
        assert observability.get_counter("events.node.health_changed") == 3

    def test_unchanged_or_unknown_is_noop(self, observability: ObservabilityAdapter) -> None:
        registry = make_registry(ScriptedSource([]), observability)
        registry.apply([A])
        assert not registry.mark_healthy(A)
        assert not registry.mark_dead(B)

    def test_refresh_keeps_health(self, observability: ObservabilityAdapter) -> None:
        registry = make_registry(ScriptedSource([]), observability)
        registry.apply([A])
        registry.mark_suspect(A)
        registry.apply([A])
        node = registry.get(A)
        assert node is not None
        assert node.health is NodeHealth.SUSPECT


class TestRefreshFailures:
    """Test discovery failure handling."""

    async def test_initial_failure_raises(self, observability: ObservabilityAdapter) -> None:
        registry = make_registry(ScriptedSource(DiscoveryError("scripted", "down")), observability)
        with pytest.raises(DiscoveryError):
            await registry.refresh()
        assert not registry.initialized
        assert registry.consecutive_failures == 1

    async def test_later_failure_keeps_previous_nodes(self, observability: ObservabilityAdapter) -> None:
        source = ScriptedSource(["10.0.0.1:11211"], DiscoveryError("scripted", "down"))
        registry = make_registry(source, observability)
        await registry.refresh()
        await registry.refresh()

        assert {n.address for n in registry.resolve()} == {A}
        assert registry.consecutive_failures == 1
        assert observability.get_counter("discovery.failures", {"source": "scripted"}) == 1

    async def test_backoff_after_failures(self, observability: ObservabilityAdapter) -> None:
        source = ScriptedSource(["10.0.0.1:11211"], DiscoveryError("scripted", "down"))
        registry = make_registry(
            source, observability, refresh_interval=60.0, backoff_base_delay=1.0, backoff_max_delay=4.0
        )
        await registry.refresh()
        assert registry.next_delay() == 60.0

        for _ in range(5):
            await registry.refresh()
        assert 0 < registry.next_delay() <= 4.0

    async def test_concurrent_refreshes_are_coalesced(self, observability: ObservabilityAdapter) -> None:
        source = ScriptedSource(["10.0.0.1:11211"])
        source.gate = asyncio.Event()
        registry = make_registry(source, observability)

        tasks = [asyncio.create_task(registry.refresh()) for _ in range(5)]
        await asyncio.sleep(0)
        source.gate.set()
        await asyncio.gather(*tasks)

        assert source.calls == 1
        assert len(registry) == 1


class TestBackgroundRefresh:
    """Test the periodic refresh task."""

    async def test_start_and_stop(self, observability: ObservabilityAdapter) -> None:
        source = ScriptedSource(["10.0.0.1:11211"])
        registry = make_registry(source, observability, refresh_interval=0.01)
        registry.start()
        await asyncio.sleep(0.05)
        await registry.stop()

        assert source.calls >= 2
        calls = source.calls
        await asyncio.sleep(0.03)
        assert source.calls == calls
