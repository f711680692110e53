"""
clustercache — Test Configuration and Shared Fixtures

Provides an in-process fake memcached server (asyncio) speaking the subset of
the text protocol the client uses, including "config get cluster", plus an
injectable clock so TTL expiry can be tested without sleeping.
"""

import asyncio
import socket
from collections import deque
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio

from clustercache.config import ClusterCacheConfig
from clustercache.observability import ObservabilityAdapter

RELATIVE_EXPTIME_LIMIT = 60 * 60 * 24 * 30


class FakeClock:
    """A manually advanced clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMemcached:
    """
    Minimal memcached server for tests.

    Knobs:
        cluster_nodes: node line returned by "config get cluster" (None = ERROR)
        raw_replies: raw bytes sent instead of the next normal replies
        delay: seconds to wait before each reply
    """

    def __init__(self, clock: FakeClock | None = None, host: str = "127.0.0.1"):
        self.clock = clock or FakeClock()
        self.host = host
        self.port = 0
        self.data: dict[str, tuple[int, bytes, float | None]] = {}
        self.cluster_nodes: str | None = None
        self.config_version = 1
        self.raw_replies: deque[bytes] = deque()
        self.delay = 0.0
        self.commands: list[str] = []
        self.connections_accepted = 0

        self._server: asyncio.Server | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def open_connections(self) -> int:
        return len(self._writers)

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        # Let handlers of just-accepted connections register their writers.
        await asyncio.sleep(0.01)
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()
        self._server = None

    def _expires_at(self, exptime: int) -> float | None:
        if exptime == 0:
            return None
        if exptime > RELATIVE_EXPTIME_LIMIT:
            return float(exptime)
        return self.clock() + exptime

    def _lookup(self, key: str) -> tuple[int, bytes] | None:
        entry = self.data.get(key)
        if entry is None:
            return None
        flags, value, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self.data[key]
            return None
        return flags, value

    def _config_reply(self) -> bytes:
        if self.cluster_nodes is None:
            return b"ERROR\r\n"
        body = f"{self.config_version}\n{self.cluster_nodes}\n".encode()
        return b"CONFIG cluster 0 %d\r\n%s\r\nEND\r\n" % (len(body), body)

    async def _reply_for(self, parts: list[str], reader: asyncio.StreamReader) -> bytes:
        command = parts[0]
        if command == "get":
            out = []
            for key in parts[1:]:
                found = self._lookup(key)
                if found is not None:
                    flags, value = found
                    out.append(b"VALUE %s %d %d\r\n%s\r\n" % (key.encode(), flags, len(value), value))
            return b"".join(out) + b"END\r\n"
        if command == "set":
            key, flags, exptime, size = parts[1], int(parts[2]), int(parts[3]), int(parts[4])
            payload = await reader.readexactly(size + 2)
            self.data[key] = (flags, payload[:-2], self._expires_at(exptime))
            return b"STORED\r\n"
        if command == "delete":
            return b"DELETED\r\n" if self.data.pop(parts[1], None) is not None else b"NOT_FOUND\r\n"
        if command == "version":
            return b"VERSION 1.6.21\r\n"
        if parts[:3] == ["config", "get", "cluster"]:
            return self._config_reply()
        return b"ERROR\r\n"

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.add(writer)
        self.connections_accepted += 1
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                parts = line.decode().split()
                if not parts:
                    continue
                self.commands.append(parts[0])

                reply = await self._reply_for(parts, reader)
                if self.raw_replies:
                    reply = self.raw_replies.popleft()
                if self.delay:
                    await asyncio.sleep(self.delay)
                writer.write(reply)
                await writer.drain()
        except (ConnectionError, asyncio.IncompleteReadError):
            pass
        finally:
            self._writers.discard(writer)
            writer.close()


def unused_address() -> str:
    """A localhost address nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"127.0.0.1:{port}"


def make_config(servers: list[str] | None = None, endpoint: str | None = None, **client: Any) -> ClusterCacheConfig:
    """Build a configuration for tests with short timeouts."""
    return ClusterCacheConfig.model_validate(
        {
            "discovery": {"servers": servers or [], "endpoint": endpoint, "backoff_base_delay": 0.01},
            "pool": {"max_pool_size": 4, "connect_timeout": 0.5},
            "breaker": {"fail_max": 2, "reset_timeout": 30},
            "client": {"request_timeout": 1.0, **client},
        }
    )


@pytest.fixture
def clock() -> FakeClock:
    """Clock shared by the fake servers of a test."""
    return FakeClock()


@pytest.fixture
def observability() -> ObservabilityAdapter:
    """Fresh observability adapter with metrics enabled."""
    return ObservabilityAdapter(enable_metrics=True)


@pytest_asyncio.fixture
async def memcached(clock: FakeClock) -> AsyncGenerator[FakeMemcached, None]:
    """A running fake memcached node."""
    server = FakeMemcached(clock)
    await server.start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def memcached_cluster(clock: FakeClock) -> AsyncGenerator[list[FakeMemcached], None]:
    """Three running fake memcached nodes sharing one clock."""
    servers = [FakeMemcached(clock) for _ in range(3)]
    for server in servers:
        await server.start()
    yield servers
    for server in servers:
        await server.stop()
