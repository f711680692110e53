"""
Connection Pool Module

Per-node pools of reusable connections.

Each node has its own NodePool with its own lock and a semaphore bounding the
number of checked-out connections; there is no lock shared across nodes.
Callers wait on the semaphore when a node's pool is exhausted and give up with
PoolTimeoutError once their timeout elapses.
"""

import asyncio
import contextlib
import logging
import time
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any

from ..cluster.nodes import Node, NodeAddress
from ..errors import PoolError, PoolTimeoutError
from ..observability import ObservabilityAdapter
from .connection import Connection, Connector, open_connection

logger = logging.getLogger(__name__)


class NodePool:
    """Bounded pool of connections to a single node."""

    def __init__(
        self,
        address: NodeAddress,
        observability: ObservabilityAdapter,
        connector: Connector = open_connection,
        min_size: int = 0,
        max_size: int = 10,
        connect_timeout: float = 1.0,
        idle_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if min_size > max_size:
            raise ValueError("min_size must be <= max_size")

        self.address = address
        self.obs = observability
        self.connector = connector
        self.min_size = min_size
        self.max_size = max_size
        self.connect_timeout = connect_timeout
        self.idle_timeout = idle_timeout
        self._clock = clock

        self._idle: deque[Connection] = deque()
        self._checked_out: set[Connection] = set()
        self._lock = asyncio.Lock()
        self._slots = asyncio.Semaphore(max_size)
        self.closed = False

    @property
    def _tags(self) -> dict[str, str]:
        return {"address": str(self.address)}

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def checked_out_count(self) -> int:
        return len(self._checked_out)

    @property
    def open_count(self) -> int:
        return len(self._idle) + len(self._checked_out)

    def _expired(self, conn: Connection, now: float) -> bool:
        return conn.closed or conn.broken or now - conn.idle_since >= self.idle_timeout

    def _closed_event(self, conn: Connection, reason: str) -> None:
        self.obs.event(
            "connection.closed",
            {"address": str(self.address), "connection_id": conn.id, "reason": reason},
            level=logging.DEBUG if reason == "idle" else logging.INFO,
        )

    async def _discard(self, connections: Iterable[Connection], reason: str) -> None:
        for conn in connections:
            await conn.close()
            self._closed_event(conn, reason)

    async def _connect(self) -> Connection:
        conn = await self.connector(self.address, self.connect_timeout)
        self.obs.event(
            "connection.created",
            {"address": str(self.address), "connection_id": conn.id},
            level=logging.DEBUG,
        )
        return conn

    async def _take_idle(self) -> Connection | None:
        # No await between popping a connection and returning it to checkout.
        stale: list[Connection] = []
        conn = None
        async with self._lock:
            now = self._clock()
            while self._idle:
                candidate = self._idle.pop()
                if self._expired(candidate, now):
                    stale.append(candidate)
                    continue
                conn = candidate
                break
        for old in stale:
            old.close_nowait()
            self._closed_event(old, "idle")
        return conn

    async def checkout(self, timeout: float) -> Connection:
        """
        Check out a connection, opening one if no idle connection is available.

        Raises:
            PoolTimeoutError: If every connection stays busy for timeout seconds
            NodeConnectionError: If a new connection cannot be established
            PoolError: If the pool has been closed
        """
        if self.closed:
            raise PoolError(f"Pool for {self.address} is closed", {"address": str(self.address)})

        try:
            async with asyncio.timeout(timeout):
                await self._slots.acquire()
        except TimeoutError as e:
            self.obs.increment("pool.checkout_failed", tags={**self._tags, "reason": "timeout"})
            logger.warning(
                f"Checkout from {self.address} timed out after {timeout}s",
                extra={"address": str(self.address), "timeout": timeout, "checked_out": self.checked_out_count},
            )
            raise PoolTimeoutError(str(self.address), timeout, self.max_size) from e

        try:
            conn = await self._take_idle()
            if conn is None:
                conn = await self._connect()
        except BaseException:
            self._slots.release()
            self.obs.increment("pool.checkout_failed", tags={**self._tags, "reason": "connect"})
            raise

        conn.checked_out = True
        conn.pool = self
        self._checked_out.add(conn)
        self.obs.increment("pool.checkout", tags=self._tags)
        return conn

    def _release(self, conn: Connection, action: str) -> None:
        if conn not in self._checked_out:
            raise PoolError(
                f"Connection {conn.id} is not checked out from the pool for {self.address}",
                {"address": str(self.address), "connection_id": conn.id, "action": action},
            )
        self._checked_out.discard(conn)
        conn.checked_out = False
        conn.pool = None
        self._slots.release()

    async def checkin(self, conn: Connection) -> None:
        """
        Return a connection to the free set.

        Broken connections, and any connection returned after close(), are
        closed instead.

        Raises:
            PoolError: If conn is not currently checked out from this pool
        """
        if conn.broken or conn.closed or self.closed:
            await self.invalidate(conn, reason="shutdown" if self.closed else "broken")
            return

        self._release(conn, "checkin")
        conn.idle_since = self._clock()
        async with self._lock:
            self._idle.append(conn)
        self.obs.increment("pool.checkin", tags=self._tags)

    async def invalidate(self, conn: Connection, reason: str = "invalidated") -> None:
        """
        Remove a connection from circulation and close it.

        Raises:
            PoolError: If conn is not currently checked out from this pool
        """
        self._release(conn, "invalidate")
        await self._discard([conn], reason)

    async def evict_idle(self) -> int:
        """
        Close idle connections past idle_timeout, keeping at least min_size.

        Returns:
            Number of connections closed
        """
        stale: list[Connection] = []
        async with self._lock:
            now = self._clock()
            keep: deque[Connection] = deque()
            for conn in self._idle:
                if self._expired(conn, now) and self.open_count - len(stale) > self.min_size:
                    stale.append(conn)
                else:
                    keep.append(conn)
            self._idle = keep
        await self._discard(stale, "idle")
        return len(stale)

    async def fill_min(self) -> int:
        """Open connections until min_size are open. Returns the number opened."""
        opened = 0
        while not self.closed and self.open_count < self.min_size:
            conn = await self._connect()
            conn.idle_since = self._clock()
            async with self._lock:
                self._idle.append(conn)
            opened += 1
        return opened

    async def close(self) -> None:
        """Close all idle connections; checked-out ones close when returned."""
        self.closed = True
        async with self._lock:
            idle, self._idle = list(self._idle), deque()
        await self._discard(idle, "shutdown")

    def get_stats(self) -> dict[str, Any]:
        return {
            "open": self.open_count,
            "idle": self.idle_count,
            "checked_out": self.checked_out_count,
            "max_size": self.max_size,
            "min_size": self.min_size,
        }


class ConnectionPool:
    """
    Connection pools for every node, created lazily on first checkout.

    Pools of nodes that leave the cluster are closed when the registry reports
    the new node set.
    """

    def __init__(
        self,
        observability: ObservabilityAdapter,
        connector: Connector = open_connection,
        min_pool_size: int = 0,
        max_pool_size: int = 10,
        connect_timeout: float = 1.0,
        idle_timeout: float = 300.0,
        maintain_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.obs = observability
        self.connector = connector
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.connect_timeout = connect_timeout
        self.idle_timeout = idle_timeout
        self.maintain_interval = maintain_interval
        self._clock = clock

        self._pools: dict[NodeAddress, NodePool] = {}
        self._task: asyncio.Task[None] | None = None
        self._closing: set[asyncio.Task[None]] = set()

    def pool_for(self, address: NodeAddress) -> NodePool:
        pool = self._pools.get(address)
        if pool is None:
            pool = NodePool(
                address,
                self.obs,
                connector=self.connector,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                connect_timeout=self.connect_timeout,
                idle_timeout=self.idle_timeout,
                clock=self._clock,
            )
            self._pools[address] = pool
        return pool

    @property
    def addresses(self) -> frozenset[NodeAddress]:
        return frozenset(self._pools)

    async def checkout(self, address: NodeAddress, timeout: float) -> Connection:
        """Check out a connection to address. See NodePool.checkout."""
        return await self.pool_for(address).checkout(timeout)

    def _owner(self, conn: Connection) -> NodePool:
        # The pool a connection came from, even if its node has since been removed.
        if conn.pool is None:
            raise PoolError(
                f"Connection {conn.id} to {conn.address} is not checked out",
                {"address": str(conn.address), "connection_id": conn.id},
            )
        return conn.pool

    async def checkin(self, conn: Connection) -> None:
        """Return a connection to the pool it was checked out from; closed if that pool is closed."""
        await self._owner(conn).checkin(conn)

    async def invalidate(self, conn: Connection) -> None:
        """Close a connection and remove it from circulation."""
        await self._owner(conn).invalidate(conn)

    async def remove_node(self, address: NodeAddress) -> None:
        """Close and forget the pool of a node."""
        pool = self._pools.pop(address, None)
        if pool is not None:
            await pool.close()

    def on_nodes_changed(self, nodes: frozenset[Node]) -> None:
        """Registry subscriber: close pools of nodes no longer in the cluster."""
        present = {node.address for node in nodes}
        gone = [address for address in self._pools if address not in present]
        for address in gone:
            pool = self._pools.pop(address)
            pool.closed = True
            task = asyncio.get_running_loop().create_task(pool.close())
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
            logger.info(f"Closing pool for removed node {address}", extra={"address": str(address)})

    async def maintain(self) -> None:
        """Evict idle connections and top every pool up to min_pool_size."""
        for address, pool in list(self._pools.items()):
            evicted = await pool.evict_idle()
            if evicted:
                logger.debug(
                    f"Evicted {evicted} idle connection(s) to {address}",
                    extra={"address": str(address), "evicted": evicted},
                )
            if self.min_pool_size:
                try:
                    await pool.fill_min()
                except Exception as e:
                    logger.warning(
                        f"Could not open minimum connections to {address}: {e}",
                        extra={"address": str(address), "error": str(e)},
                    )
            self.obs.gauge("pool.open_connections", pool.open_count, tags={"address": str(address)})

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.maintain_interval)
            await self.maintain()

    def start(self) -> None:
        """Start the periodic maintenance task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="clustercache-pool-maintenance")

    async def close(self) -> None:
        """Stop maintenance and close every pool."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        pools, self._pools = list(self._pools.values()), {}
        for pool in pools:
            await pool.close()
        if self._closing:
            await asyncio.gather(*self._closing)

    def get_stats(self) -> dict[str, Any]:
        return {str(address): pool.get_stats() for address, pool in self._pools.items()}
