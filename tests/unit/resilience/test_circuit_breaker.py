"""
clustercache — Circuit Breaker Tests

Tests that per-node breakers drive node health in the registry and, through
it, ring membership.
"""

import asyncio

import pybreaker
import pytest

from clustercache.cluster import HostPortAddress, NodeHealth, NodeRegistry, StaticDiscoverySource
from clustercache.errors import TransportError
from clustercache.observability import ObservabilityAdapter
from clustercache.resilience import CircuitBreakerManager
from clustercache.routing import KeyRouter
from tests.conftest import FakeClock

A = HostPortAddress("10.0.0.1", 11211)
B = HostPortAddress("10.0.0.2", 11211)


def failure(address: HostPortAddress = A) -> TransportError:
    return TransportError(str(address), "connection reset")


@pytest.fixture
def registry(observability: ObservabilityAdapter) -> NodeRegistry:
    registry = NodeRegistry(StaticDiscoverySource([A, B]), observability)
    registry.apply([A, B])
    return registry


@pytest.fixture
def breaker_clock() -> FakeClock:
    return FakeClock(0.0)


@pytest.fixture
def breakers(
    registry: NodeRegistry, observability: ObservabilityAdapter, breaker_clock: FakeClock
) -> CircuitBreakerManager:
    return CircuitBreakerManager(registry, observability, fail_max=3, reset_timeout=30.0, clock=breaker_clock)


def health(registry: NodeRegistry, address: HostPortAddress) -> NodeHealth:
    node = registry.get(address)
    assert node is not None
    return node.health


class TestNodeHealthTransitions:
    """Test health changes driven by breaker events."""

    def test_first_failure_marks_suspect(self, registry: NodeRegistry, breakers: CircuitBreakerManager) -> None:
        assert breakers.record_failure(A, failure()) is False
        assert health(registry, A) is NodeHealth.SUSPECT
        assert health(registry, B) is NodeHealth.HEALTHY

    def test_opening_marks_dead(self, registry: NodeRegistry, breakers: CircuitBreakerManager) -> None:
        results = [breakers.record_failure(A, failure()) for _ in range(3)]
        assert results == [False, False, True]
        assert health(registry, A) is NodeHealth.DEAD
        assert breakers.get_state(A) == pybreaker.STATE_OPEN

    def test_success_recovers_suspect_node(self, registry: NodeRegistry, breakers: CircuitBreakerManager) -> None:
        breakers.record_failure(A, failure())
        breakers.record_success(A)
        assert health(registry, A) is NodeHealth.HEALTHY

    def test_success_on_untracked_node_is_noop(self, breakers: CircuitBreakerManager) -> None:
        breakers.record_success(A)
        assert breakers.get_stats() == {}

    def test_dead_node_leaves_ring(
        self, registry: NodeRegistry, breakers: CircuitBreakerManager, observability: ObservabilityAdapter
    ) -> None:
        router = KeyRouter(observability)
        registry.subscribe(router)
        assert router.addresses == frozenset({A, B})

        for _ in range(3):
            breakers.record_failure(A, failure())
        assert router.addresses == frozenset({B})


class TestRevival:
    """Test trial requests after reset_timeout."""

    def test_not_revived_before_timeout(
        self, registry: NodeRegistry, breakers: CircuitBreakerManager, breaker_clock: FakeClock
    ) -> None:
        for _ in range(3):
            breakers.record_failure(A, failure())
        breaker_clock.advance(10)
        assert breakers.revive_expired() == []
        assert health(registry, A) is NodeHealth.DEAD

    def test_revived_as_suspect_after_timeout(
        self, registry: NodeRegistry, breakers: CircuitBreakerManager, breaker_clock: FakeClock
    ) -> None:
        for _ in range(3):
            breakers.record_failure(A, failure())
        breaker_clock.advance(31)
        assert breakers.revive_expired() == [A]
        assert health(registry, A) is NodeHealth.SUSPECT

    async def test_successful_trial_returns_node_to_ring(
        self, registry: NodeRegistry, observability: ObservabilityAdapter
    ) -> None:
        breakers = CircuitBreakerManager(registry, observability, fail_max=2, reset_timeout=0.05)
        router = KeyRouter(observability)
        registry.subscribe(router)
        for _ in range(2):
            breakers.record_failure(A, failure())
        assert router.addresses == frozenset({B})

        await asyncio.sleep(0.1)
        assert breakers.revive_expired() == [A]
        assert health(registry, A) is NodeHealth.SUSPECT
        assert router.addresses == frozenset({B})

        breakers.record_success(A)
        assert breakers.get_state(A) == pybreaker.STATE_CLOSED
        assert health(registry, A) is NodeHealth.HEALTHY
        assert router.addresses == frozenset({A, B})

    async def test_failed_trial_reopens(self, registry: NodeRegistry, observability: ObservabilityAdapter) -> None:
        breakers = CircuitBreakerManager(registry, observability, fail_max=2, reset_timeout=0.05)
        for _ in range(2):
            breakers.record_failure(A, failure())

        await asyncio.sleep(0.1)
        breakers.revive_expired()
        assert breakers.record_failure(A, failure()) is True
        assert health(registry, A) is NodeHealth.DEAD

    def test_forgotten_when_node_left(
        self, registry: NodeRegistry, breakers: CircuitBreakerManager, breaker_clock: FakeClock
    ) -> None:
        for _ in range(3):
            breakers.record_failure(A, failure())
        registry.apply([B])
        registry.apply([B])
        breaker_clock.advance(31)
        assert breakers.revive_expired() == []
        assert A not in breakers.opened_at


class TestManagement:
    """Test stats and pruning."""

    def test_stats(self, breakers: CircuitBreakerManager) -> None:
        breakers.record_failure(A, failure())
        stats = breakers.get_stats()
        assert stats[str(A)]["state"] == pybreaker.STATE_CLOSED
        assert stats[str(A)]["fail_count"] == 1
        assert stats[str(A)]["fail_max"] == 3

    def test_retain_drops_other_breakers(self, breakers: CircuitBreakerManager) -> None:
        breakers.record_failure(A, failure())
        breakers.record_failure(B, failure(B))
        breakers.retain([B])
        assert set(breakers.get_stats()) == {str(B)}

    def test_state_change_metric(self, breakers: CircuitBreakerManager, observability: ObservabilityAdapter) -> None:
        for _ in range(3):
            breakers.record_failure(A, failure())
        assert observability.get_counter("circuit_breaker.state_change") == 1
        assert observability.get_counter("circuit_breaker.failure") == 3
