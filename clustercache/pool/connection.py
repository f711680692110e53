"""
Connection Module

A single transport connection to a cache node. Handles request/response
exchange over an asyncio stream and converts stream failures into
TransportError so callers never see raw socket exceptions.
"""

import asyncio
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from ..cluster.nodes import HostPortAddress, NodeAddress, SocketAddress
from ..errors import NodeConnectionError, ProtocolError, TransportError
from ..protocol import Request, Response, encode_request, read_response

if TYPE_CHECKING:
    from .pool import NodePool

logger = logging.getLogger(__name__)

_connection_ids = itertools.count(1)


class Connection:
    """
    A pooled connection (the ConnectionHandle handed out by the pool).

    Owned by exactly one caller between checkout and checkin. Once a transport
    or protocol error occurs the connection is marked broken and must be
    invalidated rather than returned.
    """

    def __init__(
        self,
        address: NodeAddress,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.address = address
        self.id = next(_connection_ids)
        self._reader = reader
        self._writer = writer
        self._clock = clock

        self.created_at = clock()
        self.last_used_at = self.created_at
        # Set by the owning pool, on its clock, whenever the connection goes idle.
        self.idle_since = self.created_at
        self.broken = False
        self.closed = False
        self.checked_out = False
        # Pool the connection was checked out from; None while idle.
        self.pool: "NodePool | None" = None

    def __repr__(self) -> str:
        return f"Connection(id={self.id}, address={self.address}, broken={self.broken})"

    async def send(self, request: Request) -> Response:
        """
        Send a request and read its response.

        Raises:
            TransportError: If the stream fails
            ProtocolError: If the response is malformed
        """
        if self.closed or self.broken:
            raise TransportError(str(self.address), "connection is no longer usable", self.id)

        payload = encode_request(request)
        try:
            self._writer.write(payload)
            await self._writer.drain()
            response = await read_response(self._reader, request)
        except ProtocolError:
            self.broken = True
            raise
        except asyncio.IncompleteReadError as e:
            self.broken = True
            reason = "connection closed by peer" if not e.partial else "incomplete read of response"
            raise TransportError(str(self.address), reason, self.id) from e
        except asyncio.LimitOverrunError as e:
            self.broken = True
            raise TransportError(str(self.address), "response line too long", self.id) from e
        except OSError as e:
            self.broken = True
            raise TransportError(str(self.address), f"{type(e).__name__}: {e}", self.id) from e
        except asyncio.CancelledError:
            # Request state on the wire is unknown.
            self.broken = True
            raise

        self.last_used_at = self._clock()
        logger.debug(
            f"{request.type.value} on {self.address}",
            extra={"address": str(self.address), "connection_id": self.id, "length": len(payload)},
        )
        return response

    def close_nowait(self) -> None:
        """Mark the connection closed and start closing the stream."""
        if self.closed:
            return
        self.closed = True
        self._writer.close()

    async def close(self) -> None:
        """Close the underlying stream."""
        if self.closed:
            return
        self.close_nowait()
        try:
            await self._writer.wait_closed()
        except (OSError, asyncio.IncompleteReadError) as e:
            logger.debug(
                f"Error closing connection {self.id} to {self.address}: {e}",
                extra={"address": str(self.address), "connection_id": self.id},
            )


Connector = Callable[[NodeAddress, float], Awaitable[Connection]]


async def open_connection(address: NodeAddress, timeout: float) -> Connection:
    """
    Open a connection to a node.

    Raises:
        NodeConnectionError: If the node cannot be reached within timeout
    """
    try:
        async with asyncio.timeout(timeout):
            if isinstance(address, SocketAddress):
                reader, writer = await asyncio.open_unix_connection(address.path)
            else:
                assert isinstance(address, HostPortAddress)
                reader, writer = await asyncio.open_connection(address.host, address.port)
    except TimeoutError as e:
        raise NodeConnectionError(str(address), f"timed out after {timeout}s") from e
    except OSError as e:
        raise NodeConnectionError(str(address), f"{type(e).__name__}: {e}") from e

    return Connection(address, reader, writer)
