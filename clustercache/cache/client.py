"""
clustercache — Cache Client

The public entry point. Routes each key to its node through the hash ring,
checks out a pooled connection, runs the wire request and retries transport
failures on the next node clockwise until the retry budget is spent. Nodes
that failed leave the ring until a background health check gets an answer
from them.

Operations return a CacheResult and never raise for cache or node failures.
"""

import asyncio
import contextlib
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..cluster import NodeRegistry
from ..cluster.nodes import Node, NodeAddress, NodeHealth
from ..errors import (
    CacheError,
    CacheTimeoutError,
    DiscoveryError,
    InvalidKeyError,
    NodeUnavailableError,
    NoNodesAvailableError,
    TransportError,
    ValueTooLargeError,
    is_retryable_error,
)
from ..observability import ObservabilityAdapter
from ..pool import ConnectionPool
from ..protocol import Request, Response, ResponseStatus, exptime_for_ttl, validate_key
from ..resilience import CircuitBreakerManager, RetryConfig, with_retry
from ..routing import KeyRouter
from .interface import CacheInterface, Value
from .result import CacheResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

ComputeFn = Callable[[], Value | Awaitable[Value]]


class CacheClient(CacheInterface):
    """
    Client for a cluster of memcached nodes.

    Wire the collaborators with create_client(), then `await client.start()`
    (or use `async with client:`) before issuing requests.
    """

    def __init__(
        self,
        registry: NodeRegistry,
        router: KeyRouter,
        pool: ConnectionPool,
        breakers: CircuitBreakerManager,
        observability: ObservabilityAdapter,
        request_timeout: float = 1.0,
        retry_budget: int = 2,
        default_ttl: int = 0,
        max_value_size: int = 1024 * 1024,
        namespace: str | None = None,
        discovery_retry: RetryConfig | None = None,
        health_check_interval: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the client and subscribe router, pool and breakers to
        node set changes.

        Args:
            registry: Node registry holding cluster membership
            router: Key router rebuilt on every node set change
            pool: Per-node connection pools
            breakers: Per-node circuit breakers
            observability: Observability sink
            request_timeout: Deadline for one operation, retries included
            retry_budget: Total attempts per operation
            default_ttl: TTL used when an operation passes ttl=None
            max_value_size: Largest value accepted, in bytes
            namespace: Optional prefix applied to every key
            discovery_retry: Retry policy for the initial discovery in start()
            health_check_interval: Seconds between health checks of suspect nodes
            clock: Wall clock used for absolute expiry times
        """
        if retry_budget < 1:
            raise ValueError("retry_budget must be >= 1")

        self.registry = registry
        self.router = router
        self.pool = pool
        self.breakers = breakers
        self.obs = observability
        self.request_timeout = request_timeout
        self.retry_budget = retry_budget
        self.default_ttl = default_ttl
        self.max_value_size = max_value_size
        self.namespace = namespace
        self.discovery_retry = discovery_retry or RetryConfig(max_retries=3)
        self.health_check_interval = health_check_interval
        self._clock = clock

        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._retries = 0
        self._failures = 0

        self._started = False
        self._closed = False
        self._health_task: asyncio.Task[None] | None = None
        self._unsubscribe = [
            registry.subscribe(router),
            registry.subscribe(pool.on_nodes_changed),
            registry.subscribe(self._prune_breakers),
        ]

    # ------------ Lifecycle ------------

    async def start(self) -> None:
        """
        Run the initial discovery, then start the background tasks.

        Raises:
            DiscoveryError: If no node set could be discovered
        """
        if self._started:
            return
        await with_retry(self.registry.refresh, retry_on=(DiscoveryError,), config=self.discovery_retry)
        self.registry.start()
        self.pool.start()
        self._health_task = asyncio.create_task(self._run_health_checks(), name="clustercache-health-check")
        self._started = True
        logger.info(
            f"Cache client started with {len(self.registry)} node(s)",
            extra={"nodes": sorted(str(n.address) for n in self.registry.resolve())},
        )

    async def close(self) -> None:
        """Stop background tasks and close every connection."""
        if self._closed:
            return
        self._closed = True
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        task, self._health_task = self._health_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.registry.stop()
        await self.pool.close()
        logger.info("Cache client closed")

    async def __aenter__(self) -> "CacheClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _prune_breakers(self, nodes: frozenset[Node]) -> None:
        self.breakers.retain(node.address for node in nodes)

    # ------------ Request execution ------------

    def _wire_key(self, key: str) -> str:
        """Apply the namespace and validate the resulting key."""
        if not isinstance(key, str):
            raise InvalidKeyError(repr(key), "key must be a string")
        wire_key = f"{self.namespace}:{key}" if self.namespace else key
        validate_key(wire_key)
        return wire_key

    def _encode_value(self, key: str, value: Value) -> bytes:
        if isinstance(value, str):
            data = value.encode("utf-8")
        elif isinstance(value, (bytes, bytearray, memoryview)):
            data = bytes(value)
        else:
            raise TypeError(f"cache values must be bytes or str, not {type(value).__name__}")
        if len(data) > self.max_value_size:
            raise ValueTooLargeError(key, len(data), self.max_value_size)
        return data

    async def _send(self, address: NodeAddress, request: Request) -> Response:
        conn = await self.pool.checkout(address, self.request_timeout)
        try:
            with self.obs.trace(f"cache.{request.type.value}", tags={"address": str(address)}):
                response = await conn.send(request)
        except BaseException:
            # Stream state is unknown after any failure, including cancellation.
            await self.pool.invalidate(conn)
            raise
        await self.pool.checkin(conn)
        self.breakers.record_success(address)
        return response

    def _attempt_failed(
        self, command: str, address: NodeAddress, error: TransportError, failed: list[NodeAddress]
    ) -> None:
        """Count a transport failure against a node and log the retry, if any is left."""
        failed.append(address)
        self.breakers.record_failure(address, error)
        if len(failed) < self.retry_budget:
            self._retries += 1
            self.obs.event(
                "request.retried",
                {"command": command, "address": str(address), "attempt": len(failed), "error": error.message},
                level=logging.WARNING,
            )

    def _gave_up(
        self, command: str, key: str, failed: list[NodeAddress], last_error: TransportError | None
    ) -> NodeUnavailableError:
        self.obs.event(
            "request.failed",
            {
                "command": command,
                "attempts": len(failed),
                "nodes": [str(a) for a in failed],
                "error": last_error.message if last_error else None,
            },
            level=logging.ERROR,
        )
        return NodeUnavailableError(key, len(failed), last_error)

    async def _execute(self, request: Request) -> Response:
        """
        Route and send a request, retrying transport failures on other nodes.

        Raises:
            NodeUnavailableError: If every attempt failed with a transport error
            CacheTimeoutError: If request_timeout elapsed
            ProtocolError: If a node answered with a malformed response
            NoNodesAvailableError: If the ring is empty
        """
        key = request.key
        failed: list[NodeAddress] = []
        last_error: TransportError | None = None

        try:
            async with asyncio.timeout(self.request_timeout):
                while len(failed) < self.retry_budget:
                    try:
                        address = self.router.route(key, exclude=failed)
                    except NoNodesAvailableError:
                        if not failed:
                            raise
                        break

                    try:
                        return await self._send(address, request)
                    except CacheError as e:
                        if not is_retryable_error(e):
                            raise
                        assert isinstance(e, TransportError)
                        last_error = e
                        self._attempt_failed(request.type.value, address, e, failed)
        except TimeoutError as e:
            raise CacheTimeoutError(request.type.value, self.request_timeout, {"key": key}) from e

        raise self._gave_up(request.type.value, key, failed, last_error)

    def _failed(self, operation: str, key: str, error: CacheError, value: T | None = None) -> CacheResult[T]:
        self._failures += 1
        self.obs.increment("cache.errors", tags={"operation": operation, "error_code": error.code.value})
        logger.warning(
            f"Cache {operation} failed for key '{key}': {error.message}",
            extra={"operation": operation, "key": key, "error_code": error.code.value, **error.details},
        )
        return CacheResult.fail(error, value)

    # ------------ Node health ------------

    async def _check_node(self, address: NodeAddress) -> bool:
        try:
            async with asyncio.timeout(self.request_timeout):
                await self._send(address, Request.version())
        except TimeoutError:
            error = TransportError(str(address), f"health check timed out after {self.request_timeout}s")
        except TransportError as e:
            error = e
        except CacheError as e:
            error = TransportError(str(address), e.message)
        else:
            return True

        self.breakers.record_failure(address, error)
        logger.info(
            f"Health check of {address} failed: {error.message}",
            extra={"address": str(address), "error": error.message},
        )
        return False

    async def check_nodes(self) -> dict[NodeAddress, bool]:
        """
        Send a version request to every suspect node.

        Dead nodes whose reset_timeout has elapsed become suspect first, so
        this check is their trial request. A node that answers is healthy
        again and rejoins the ring; a failure counts against its breaker.

        Returns:
            Whether each checked node answered
        """
        self.breakers.revive_expired()
        suspects = [node.address for node in self.registry.resolve() if node.health is NodeHealth.SUSPECT]
        outcomes = await asyncio.gather(*(self._check_node(address) for address in suspects))
        return dict(zip(suspects, outcomes, strict=True))

    async def _run_health_checks(self) -> None:
        while True:
            await asyncio.sleep(self.health_check_interval)
            await self.check_nodes()

    # ------------ Operations ------------

    async def get(self, key: str) -> CacheResult[bytes]:
        try:
            wire_key = self._wire_key(key)
            response = await self._execute(Request.get(wire_key))
        except CacheError as e:
            return self._failed("get", key, e)

        item = response.items.get(wire_key)
        if item is None:
            self._misses += 1
            self.obs.increment("cache.misses")
            return CacheResult.ok(None)

        self._hits += 1
        self.obs.increment("cache.hits")
        return CacheResult.ok(item.value)

    async def set(self, key: str, value: Value, ttl: int | None = None) -> CacheResult[None]:
        ttl = self.default_ttl if ttl is None else ttl
        try:
            wire_key = self._wire_key(key)
            data = self._encode_value(key, value)
            exptime = exptime_for_ttl(ttl, now=self._clock())
            response = await self._execute(Request.set(wire_key, data, exptime=exptime))
        except CacheError as e:
            return self._failed("set", key, e)

        if response.status is not ResponseStatus.STORED:
            return self._failed("set", key, CacheError(f"Node did not store key '{key}'", {"key": key}))

        self._sets += 1
        self.obs.increment("cache.sets")
        return CacheResult.ok(None)

    async def delete(self, key: str) -> CacheResult[bool]:
        try:
            wire_key = self._wire_key(key)
            response = await self._execute(Request.delete(wire_key))
        except CacheError as e:
            return self._failed("delete", key, e)

        existed = response.status is ResponseStatus.DELETED
        if existed:
            self._deletes += 1
            self.obs.increment("cache.deletes")
        return CacheResult.ok(existed)

    async def fetch(self, key: str, ttl: int | None, compute_fn: ComputeFn) -> CacheResult[bytes]:
        """
        Get a value, computing and storing it on a miss.

        compute_fn may be a plain or a coroutine function and is called at
        most once. An exception raised by compute_fn propagates unchanged and
        nothing is stored. If the computed value cannot be stored (too large,
        or the set failed), the result is a failure carrying that error, with
        the computed bytes in its value.

        Returns:
            Result holding the cached or computed bytes
        """
        cached = await self.get(key)
        if cached.success and cached.value is not None:
            return cached
        if isinstance(cached.error, InvalidKeyError):
            return cached

        computed = compute_fn()
        if inspect.isawaitable(computed):
            computed = await computed

        try:
            data = self._encode_value(key, computed)
        except ValueTooLargeError as e:
            raw = computed.encode("utf-8") if isinstance(computed, str) else bytes(computed)
            return self._failed("fetch", key, e, raw)

        stored = await self.set(key, data, ttl)
        if stored.error is not None:
            return CacheResult.fail(stored.error, data)
        return CacheResult.ok(data)

    def _fail_keys(self, keys: list[str], error: CacheError) -> dict[str, CacheResult[bytes]]:
        return {key: self._failed("get_many", key, error) for key in keys}

    async def _get_group(
        self, address: NodeAddress, keys: list[str], failed: list[NodeAddress]
    ) -> dict[str, CacheResult[bytes]]:
        """
        Send one multi-key get to a node.

        When the node fails, its keys are regrouped by their next owner
        clockwise and each regrouped batch is retried on its own node.
        """
        try:
            response = await self._send(address, Request.get(*keys))
        except CacheError as e:
            if not is_retryable_error(e):
                return self._fail_keys(keys, e)
            assert isinstance(e, TransportError)
            failed = list(failed)
            self._attempt_failed("get", address, e, failed)
            regrouped: dict[NodeAddress, list[str]] = {}
            if len(failed) < self.retry_budget:
                try:
                    regrouped = self.router.route_many(keys, exclude=failed)
                except NoNodesAvailableError:
                    regrouped = {}
            if not regrouped:
                return self._fail_keys(keys, self._gave_up("get", keys[0], failed, e))
            batches = await asyncio.gather(
                *(self._get_group(next_address, group, failed) for next_address, group in regrouped.items())
            )
            return {key: result for batch in batches for key, result in batch.items()}

        results: dict[str, CacheResult[bytes]] = {}
        for key in keys:
            item = response.items.get(key)
            if item is None:
                self._misses += 1
                self.obs.increment("cache.misses")
                results[key] = CacheResult.ok(None)
            else:
                self._hits += 1
                self.obs.increment("cache.hits")
                results[key] = CacheResult.ok(item.value)
        return results

    async def _get_batch(self, address: NodeAddress, keys: list[str]) -> dict[str, CacheResult[bytes]]:
        try:
            async with asyncio.timeout(self.request_timeout):
                return await self._get_group(address, keys, [])
        except TimeoutError:
            return self._fail_keys(keys, CacheTimeoutError("get", self.request_timeout, {"keys": len(keys)}))

    async def get_many(self, keys: list[str]) -> dict[str, CacheResult[bytes]]:
        """
        Retrieve multiple values with one multi-key get per node.

        Returns:
            Result per requested key (misses hold None)
        """
        results: dict[str, CacheResult[bytes]] = {}
        wire_keys: dict[str, str] = {}
        for key in dict.fromkeys(keys):
            try:
                wire_keys[self._wire_key(key)] = key
            except CacheError as e:
                results[key] = self._failed("get_many", key, e)

        try:
            groups = self.router.route_many(wire_keys)
        except NoNodesAvailableError as e:
            for key in wire_keys.values():
                results[key] = self._failed("get_many", key, e)
            return results

        batches = await asyncio.gather(*(self._get_batch(address, group) for address, group in groups.items()))
        for batch in batches:
            for wire_key, result in batch.items():
                results[wire_keys[wire_key]] = result
        return {key: results[key] for key in dict.fromkeys(keys)}

    async def set_many(self, items: dict[str, Value], ttl: int | None = None) -> int:
        results = await asyncio.gather(*(self.set(key, value, ttl) for key, value in items.items()))
        return sum(1 for result in results if result.success)

    async def delete_many(self, keys: list[str]) -> int:
        results = await asyncio.gather(*(self.delete(key) for key in keys))
        return sum(1 for result in results if result.value)

    async def get_stats(self) -> dict[str, Any]:
        total_requests = self._hits + self._misses
        hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0.0
        nodes = sorted(self.registry.resolve(), key=lambda n: str(n.address))
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(hit_rate, 2),
            "sets": self._sets,
            "deletes": self._deletes,
            "retries": self._retries,
            "failures": self._failures,
            "nodes": {str(node.address): node.health.value for node in nodes},
            "ring_nodes": len(self.router.addresses),
            "pools": self.pool.get_stats(),
            "circuit_breakers": self.breakers.get_stats(),
            "namespace": self.namespace,
        }
