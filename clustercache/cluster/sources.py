"""
Discovery Sources Module

Where the node registry gets its node list from: a static list, or a cluster
configuration endpoint queried with "config get cluster".
"""

import asyncio
import logging
from collections.abc import Iterable
from typing import Protocol

from ..errors import DiscoveryError, ProtocolError
from ..protocol import Request, encode_request, read_response
from .nodes import HostPortAddress, NodeAddress, SocketAddress, parse_address
from .parser import parse_cluster_config

logger = logging.getLogger(__name__)


class DiscoverySource(Protocol):
    """Anything that can produce the current list of cache nodes."""

    @property
    def name(self) -> str: ...

    async def discover(self) -> tuple[NodeAddress, ...]:
        """
        Return the current node addresses.

        Raises:
            DiscoveryError: If the source cannot be queried or parsed
        """
        ...


class StaticDiscoverySource:
    """A fixed node list."""

    def __init__(self, servers: Iterable[str | NodeAddress]):
        try:
            self._nodes = tuple(dict.fromkeys(parse_address(s) for s in servers))
        except ValueError as e:
            raise DiscoveryError("static", str(e)) from e

    @property
    def name(self) -> str:
        return "static"

    async def discover(self) -> tuple[NodeAddress, ...]:
        return self._nodes


class ConfigEndpointDiscoverySource:
    """
    Queries a cluster configuration endpoint for its node list.

    The endpoint answers "config get cluster" with
    "CONFIG cluster 0 <len>\\r\\n<version>\\n<nodes>\\n\\r\\nEND\\r\\n".
    """

    def __init__(self, endpoint: str | NodeAddress, timeout: float = 5.0):
        try:
            self.endpoint = parse_address(endpoint)
        except ValueError as e:
            raise DiscoveryError(str(endpoint), str(e)) from e
        self.timeout = timeout
        self.last_version: int | None = None

    @property
    def name(self) -> str:
        return str(self.endpoint)

    async def _open(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        if isinstance(self.endpoint, SocketAddress):
            return await asyncio.open_unix_connection(self.endpoint.path)
        assert isinstance(self.endpoint, HostPortAddress)
        return await asyncio.open_connection(self.endpoint.host, self.endpoint.port)

    async def describe_cluster(self) -> str:
        """Send "config get cluster" and return the raw configuration body."""
        request = Request.config_get_cluster()
        try:
            async with asyncio.timeout(self.timeout):
                reader, writer = await self._open()
                try:
                    writer.write(encode_request(request))
                    await writer.drain()
                    response = await read_response(reader, request)
                finally:
                    writer.close()
                    try:
                        await writer.wait_closed()
                    except OSError as e:
                        logger.debug(f"Error closing discovery connection to {self.name}: {e}")
        except TimeoutError as e:
            raise DiscoveryError(self.name, f"timed out after {self.timeout}s") from e
        except ProtocolError as e:
            raise DiscoveryError(self.name, f"malformed reply: {e.message}") from e
        except (OSError, asyncio.IncompleteReadError, asyncio.LimitOverrunError) as e:
            raise DiscoveryError(self.name, f"{type(e).__name__}: {e}") from e

        return response.text

    async def discover(self) -> tuple[NodeAddress, ...]:
        blob = await self.describe_cluster()
        try:
            config = parse_cluster_config(blob)
        except ValueError as e:
            raise DiscoveryError(self.name, f"unparseable node list: {e}", {"blob": blob[:200]}) from e

        if not config.nodes:
            raise DiscoveryError(self.name, "configuration lists no nodes", {"blob": blob[:200]})

        if config.version is not None and config.version != self.last_version:
            logger.debug(
                f"Cluster configuration version {config.version} from {self.name}",
                extra={"endpoint": self.name, "version": config.version, "node_count": len(config.nodes)},
            )
            self.last_version = config.version
        return config.nodes
