"""
Node Registry Module

Keeps the current set of cache nodes, refreshed from a discovery source on a
fixed interval.

- The node set is an immutable mapping swapped atomically; resolve() never
  blocks and never raises.
- Nodes missing from a discovery response are removed only after
  removal_grace_refreshes consecutive misses.
- A failed refresh keeps the previous node set and is retried with
  exponential backoff.
- Subscribers are called synchronously with the new node set whenever
  membership or health changes.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType

from ..errors import DiscoveryError
from ..observability import ObservabilityAdapter
from ..resilience.retry import exponential_backoff
from .nodes import Node, NodeAddress, NodeHealth
from .sources import DiscoverySource

logger = logging.getLogger(__name__)

NodeSetListener = Callable[[frozenset[Node]], None]


class NodeRegistry:
    """Tracks cluster membership and node health."""

    def __init__(
        self,
        source: DiscoverySource,
        observability: ObservabilityAdapter,
        refresh_interval: float = 60.0,
        removal_grace_refreshes: int = 2,
        backoff_base_delay: float = 1.0,
        backoff_max_delay: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the registry.

        Args:
            source: Discovery source queried on every refresh
            observability: Observability sink for node events
            refresh_interval: Seconds between successful refreshes
            removal_grace_refreshes: Consecutive misses before a node is removed
            backoff_base_delay: First retry delay after a failed refresh
            backoff_max_delay: Cap on the retry delay
            clock: Wall clock used for last-seen timestamps
        """
        self.source = source
        self.obs = observability
        self.refresh_interval = refresh_interval
        self.removal_grace_refreshes = removal_grace_refreshes
        self.backoff_base_delay = backoff_base_delay
        self.backoff_max_delay = backoff_max_delay
        self._clock = clock

        self._nodes: Mapping[NodeAddress, Node] = MappingProxyType({})
        self._subscribers: list[NodeSetListener] = []
        self._refresh_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

        self.initialized = False
        self.consecutive_failures = 0
        self.refresh_count = 0

    # ------------ Reads ------------

    def resolve(self) -> frozenset[Node]:
        """Return the current node set."""
        return frozenset(self._nodes.values())

    def get(self, address: NodeAddress) -> Node | None:
        return self._nodes.get(address)

    def __len__(self) -> int:
        return len(self._nodes)

    def subscribe(self, callback: NodeSetListener) -> Callable[[], None]:
        """
        Register a callback for node set changes.

        The callback is invoked immediately with the current node set.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)
        callback(self.resolve())

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # ------------ Updates ------------

    def _publish(self, nodes: dict[NodeAddress, Node]) -> None:
        self._nodes = MappingProxyType(nodes)
        snapshot = self.resolve()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Node set subscriber failed: {e}", exc_info=True)

    def set_health(self, address: NodeAddress, health: NodeHealth) -> bool:
        """
        Change a node's health.

        Returns:
            True if the node exists and its health changed
        """
        node = self._nodes.get(address)
        if node is None or node.health is health:
            return False

        nodes = dict(self._nodes)
        nodes[address] = node.with_health(health)
        self.obs.event(
            "node.health_changed",
            {"address": str(address), "old_health": node.health.value, "new_health": health.value},
            level=logging.WARNING if health is NodeHealth.DEAD else logging.INFO,
        )
        self._publish(nodes)
        return True

    def mark_healthy(self, address: NodeAddress) -> bool:
        return self.set_health(address, NodeHealth.HEALTHY)

    def mark_suspect(self, address: NodeAddress) -> bool:
        return self.set_health(address, NodeHealth.SUSPECT)

    def mark_dead(self, address: NodeAddress) -> bool:
        return self.set_health(address, NodeHealth.DEAD)

    def apply(self, addresses: Iterable[NodeAddress]) -> tuple[list[NodeAddress], list[NodeAddress]]:
        """
        Merge a discovery response into the node set.

        Returns:
            (added, removed) addresses
        """
        now = self._clock()
        latest = list(dict.fromkeys(addresses))
        latest_set = set(latest)
        nodes = dict(self._nodes)
        added: list[NodeAddress] = []
        removed: list[NodeAddress] = []

        for address in latest:
            existing = nodes.get(address)
            if existing is None:
                nodes[address] = Node(address=address, health=NodeHealth.HEALTHY, last_seen=now)
                added.append(address)
            else:
                nodes[address] = existing.seen(now)

        for address, node in list(nodes.items()):
            if address in latest_set:
                continue
            node = node.missed()
            if node.missed_refreshes >= self.removal_grace_refreshes:
                del nodes[address]
                removed.append(address)
            else:
                nodes[address] = node
                logger.debug(
                    f"Node {address} missing from discovery ({node.missed_refreshes}/{self.removal_grace_refreshes})",
                    extra={"address": str(address), "missed_refreshes": node.missed_refreshes},
                )

        for address in added:
            self.obs.event("node.added", {"address": str(address)})
        for address in removed:
            self.obs.event("node.removed", {"address": str(address)})
        self.obs.gauge("registry.nodes", len(nodes))

        if added or removed:
            self._publish(nodes)
        else:
            self._nodes = MappingProxyType(nodes)
        return added, removed

    async def refresh(self) -> None:
        """
        Query the discovery source once and merge the result.

        Concurrent callers share a single in-flight refresh. After the first
        successful refresh, failures are logged and the previous node set is
        kept.

        Raises:
            DiscoveryError: Only if no node set has ever been obtained
        """
        if self._refresh_lock.locked():
            async with self._refresh_lock:
                return

        async with self._refresh_lock:
            try:
                addresses = await self.source.discover()
            except DiscoveryError as e:
                self.consecutive_failures += 1
                self.obs.increment("discovery.failures", tags={"source": self.source.name})
                logger.warning(
                    f"Discovery refresh failed ({self.consecutive_failures} in a row): {e.message}",
                    extra={"source": self.source.name, "failures": self.consecutive_failures, **e.details},
                )
                if not self.initialized:
                    raise
                return

            self.consecutive_failures = 0
            self.refresh_count += 1
            self.initialized = True
            self.apply(addresses)

    def next_delay(self) -> float:
        """Delay before the next scheduled refresh."""
        if self.consecutive_failures == 0:
            return self.refresh_interval
        return exponential_backoff(
            attempt=self.consecutive_failures - 1,
            base_delay=self.backoff_base_delay,
            max_delay=self.backoff_max_delay,
        )

    # ------------ Background refresh ------------

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.next_delay())
            try:
                await self.refresh()
            except DiscoveryError:
                # Still uninitialized; refresh() already logged it.
                continue

    def start(self) -> None:
        """Start the periodic refresh task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="clustercache-registry-refresh")
            logger.info(
                f"Node registry refresh started (every {self.refresh_interval}s)",
                extra={"source": self.source.name, "refresh_interval": self.refresh_interval},
            )

    async def stop(self) -> None:
        """Stop the periodic refresh task."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Node registry refresh stopped", extra={"source": self.source.name})
