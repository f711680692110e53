"""
clustercache - Per-Node Circuit Breakers

Tracks transport failures per cache node with pybreaker and feeds the outcome
back into the node registry:

- first failure            -> node SUSPECT (leaves the ring, gets health checks)
- fail_max failures        -> breaker opens, node DEAD
- reset_timeout elapsed    -> node SUSPECT again, next health check is the trial call
- successful trial / call  -> breaker closes, node HEALTHY (back on the ring)
"""

import logging
import time
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

import pybreaker

from ..cluster.nodes import NodeAddress, NodeHealth
from ..errors import TransportError
from ..observability import ObservabilityAdapter

if TYPE_CHECKING:
    from ..cluster.registry import NodeRegistry

logger = logging.getLogger(__name__)


def _reraise(error: Exception) -> None:
    raise error


class NodeBreakerListener(pybreaker.CircuitBreakerListener):  # type: ignore[misc]
    """
    Listener for circuit breaker events of one node.

    Logs state changes, emits observability metrics and updates node health.
    """

    def __init__(self, manager: "CircuitBreakerManager", address: NodeAddress):
        """Initialize listener."""
        self.manager = manager
        self.address = address

    def state_change(self, cb: Any, old_state: Any, new_state: Any) -> None:
        """Called when circuit breaker state changes."""
        old_name = getattr(old_state, "name", str(old_state))
        new_name = getattr(new_state, "name", str(new_state))
        logger.warning(
            f"Circuit breaker for {self.address}: {old_name} -> {new_name}",
            extra={
                "address": str(self.address),
                "old_state": old_name,
                "new_state": new_name,
                "fail_count": cb.fail_counter,
            },
        )
        self.manager.obs.increment(
            "circuit_breaker.state_change",
            tags={"address": str(self.address), "old_state": old_name, "new_state": new_name},
        )

        if new_name == pybreaker.STATE_OPEN:
            self.manager.opened_at[self.address] = self.manager.clock()
            self.manager.registry.mark_dead(self.address)
        elif new_name == pybreaker.STATE_CLOSED:
            self.manager.opened_at.pop(self.address, None)
            self.manager.registry.mark_healthy(self.address)

    def failure(self, cb: Any, exc: BaseException) -> None:
        """Called when a call fails."""
        logger.debug(
            "Circuit breaker failure recorded",
            extra={
                "address": str(self.address),
                "error": str(exc),
                "error_type": type(exc).__name__,
                "fail_count": cb.fail_counter,
            },
        )
        self.manager.obs.increment(
            "circuit_breaker.failure",
            tags={"address": str(self.address), "error_type": type(exc).__name__},
        )
        if cb.current_state == pybreaker.STATE_CLOSED:
            self.manager.registry.mark_suspect(self.address)

    def success(self, cb: Any) -> None:
        """Called when a call succeeds."""
        node = self.manager.registry.get(self.address)
        if node is not None and node.health is NodeHealth.SUSPECT and cb.current_state == pybreaker.STATE_CLOSED:
            logger.info(
                f"Node {self.address} recovered",
                extra={"address": str(self.address)},
            )
            self.manager.registry.mark_healthy(self.address)


class CircuitBreakerManager:
    """
    Manages circuit breakers for all cache nodes.

    Each node address gets its own breaker, created on first use and dropped
    when the node leaves the cluster.
    """

    def __init__(
        self,
        registry: "NodeRegistry",
        observability: ObservabilityAdapter,
        fail_max: int = 3,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker manager.

        Args:
            registry: Registry whose node health the breakers drive
            observability: Observability sink
            fail_max: Consecutive failures before a node is considered dead
            reset_timeout: Seconds before a dead node gets a trial request
            clock: Monotonic clock used to time open breakers
        """
        self.registry = registry
        self.obs = observability
        self.fail_max = fail_max
        self.reset_timeout = reset_timeout
        self.clock = clock

        self._breakers: dict[NodeAddress, pybreaker.CircuitBreaker] = {}
        self.opened_at: dict[NodeAddress, float] = {}

    def get_breaker(self, address: NodeAddress) -> pybreaker.CircuitBreaker:
        """Get or create the breaker for a node."""
        breaker = self._breakers.get(address)
        if breaker is None:
            breaker = pybreaker.CircuitBreaker(
                fail_max=self.fail_max,
                reset_timeout=self.reset_timeout,
                name=str(address),
                listeners=[NodeBreakerListener(self, address)],
            )
            self._breakers[address] = breaker
            logger.debug(
                f"Created circuit breaker for {address}",
                extra={"address": str(address), "fail_max": self.fail_max, "reset_timeout": self.reset_timeout},
            )
        return breaker

    def record_success(self, address: NodeAddress) -> None:
        """Record a successful request to a node."""
        breaker = self._breakers.get(address)
        if breaker is None:
            return
        try:
            breaker.call(lambda: None)
        except pybreaker.CircuitBreakerError:
            logger.debug(
                f"Success on {address} ignored while its circuit is open",
                extra={"address": str(address)},
            )

    def record_failure(self, address: NodeAddress, error: TransportError) -> bool:
        """
        Record a transport failure against a node.

        Returns:
            True if the node's circuit is open after this failure
        """
        breaker = self.get_breaker(address)
        try:
            breaker.call(_reraise, error)
        except pybreaker.CircuitBreakerError:
            # Raised when this failure trips the breaker; state is checked below.
            pass
        except TransportError as echoed:
            if echoed is not error:
                raise
        return breaker.current_state == pybreaker.STATE_OPEN

    def revive_expired(self) -> list[NodeAddress]:
        """
        Put dead nodes whose reset_timeout has elapsed back into rotation.

        They return as SUSPECT; the next health check of one is the breaker's
        half-open trial call.
        """
        now = self.clock()
        revived = []
        for address, opened in list(self.opened_at.items()):
            if now - opened < self.reset_timeout:
                continue
            node = self.registry.get(address)
            if node is None:
                self.forget(address)
                continue
            if node.health is NodeHealth.DEAD and self.registry.mark_suspect(address):
                revived.append(address)
                logger.info(f"Node {address} eligible for a trial request", extra={"address": str(address)})
        return revived

    def forget(self, address: NodeAddress) -> None:
        """Drop the breaker of a node that left the cluster."""
        self._breakers.pop(address, None)
        self.opened_at.pop(address, None)

    def retain(self, addresses: Iterable[NodeAddress]) -> None:
        """Drop the breakers of every node not in addresses."""
        keep = set(addresses)
        for address in [a for a in self._breakers if a not in keep]:
            self.forget(address)

    def get_state(self, address: NodeAddress) -> str:
        """Return "closed", "open" or "half-open"."""
        breaker = self._breakers.get(address)
        if breaker is None:
            return pybreaker.STATE_CLOSED
        state: str = breaker.current_state
        return state

    def get_stats(self) -> dict[str, Any]:
        """Get circuit breaker statistics per node."""
        return {
            str(address): {
                "state": breaker.current_state,
                "fail_count": breaker.fail_counter,
                "fail_max": self.fail_max,
                "reset_timeout": self.reset_timeout,
            }
            for address, breaker in self._breakers.items()
        }
