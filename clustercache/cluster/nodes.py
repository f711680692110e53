"""
Cluster Nodes Module

Node addresses and node records.

An address is a tagged variant: a local socket path or a host/port pair.
Both are routed and pooled uniformly; str(address) is the canonical form used
for ordering, hashing and logging.
"""

from dataclasses import dataclass, replace
from enum import Enum

DEFAULT_PORT = 11211


@dataclass(frozen=True, order=True)
class SocketAddress:
    """A local (unix domain) socket path."""

    path: str

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True, order=True)
class HostPortAddress:
    """A TCP host and port."""

    host: str
    port: int = DEFAULT_PORT

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


NodeAddress = SocketAddress | HostPortAddress


def parse_address(raw: str | NodeAddress, default_port: int = DEFAULT_PORT) -> NodeAddress:
    """
    Parse "host:port", "host", "[v6]:port" or "/socket/path" into a NodeAddress.

    Raises:
        ValueError: If the address is empty or the port is not a valid number
    """
    if isinstance(raw, SocketAddress | HostPortAddress):
        return raw

    text = raw.strip()
    if not text:
        raise ValueError("empty node address")

    if text.startswith("/"):
        return SocketAddress(text)

    if text.startswith("["):
        host, sep, rest = text[1:].partition("]")
        if not sep:
            raise ValueError(f"unterminated IPv6 address: {raw!r}")
        port_text = rest[1:] if rest.startswith(":") else ""
    elif text.count(":") == 1:
        host, _, port_text = text.partition(":")
    else:
        host, port_text = text, ""

    if not host:
        raise ValueError(f"missing host in address: {raw!r}")
    if not port_text:
        return HostPortAddress(host, default_port)

    try:
        port = int(port_text)
    except ValueError as e:
        raise ValueError(f"invalid port in address: {raw!r}") from e
    if not 0 < port < 65536:
        raise ValueError(f"port out of range in address: {raw!r}")
    return HostPortAddress(host, port)


class NodeHealth(str, Enum):
    """Health of a cache node as seen by this client."""

    HEALTHY = "healthy"
    SUSPECT = "suspect"
    DEAD = "dead"


@dataclass(frozen=True)
class Node:
    """
    A cache node known to the registry.

    Nodes are immutable; the registry replaces a node record whenever its
    health, last-seen time or miss count changes.
    """

    address: NodeAddress
    health: NodeHealth = NodeHealth.HEALTHY
    last_seen: float = 0.0
    missed_refreshes: int = 0

    @property
    def routable(self) -> bool:
        return self.health is NodeHealth.HEALTHY

    def with_health(self, health: NodeHealth) -> "Node":
        return replace(self, health=health)

    def seen(self, now: float) -> "Node":
        return replace(self, last_seen=now, missed_refreshes=0)

    def missed(self) -> "Node":
        return replace(self, missed_refreshes=self.missed_refreshes + 1)

    def __str__(self) -> str:
        return str(self.address)
