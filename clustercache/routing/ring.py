"""
Consistent Hashing Module

Maps cache keys to nodes with a hash ring of virtual nodes.

Position of virtual node i of a node: first 8 bytes (big endian) of
md5("<address>-<i>"). Position of a key: first 8 bytes of md5(key). A key
belongs to the first ring position >= its hash, wrapping around to the start.
Colliding positions are ordered by address string.
"""

import bisect
import hashlib
import logging
from collections.abc import Collection, Iterable
from dataclasses import dataclass

from ..cluster.nodes import Node, NodeAddress
from ..errors import NoNodesAvailableError
from ..observability import ObservabilityAdapter

logger = logging.getLogger(__name__)

DEFAULT_VIRTUAL_NODES = 160


def hash_key(data: str) -> int:
    """64-bit ring position of a string."""
    digest = hashlib.md5(data.encode("utf-8"), usedforsecurity=False).digest()
    return int.from_bytes(digest[:8], byteorder="big")


@dataclass(frozen=True, order=True)
class RingEntry:
    """One virtual node position on the ring."""

    position: int
    label: str
    address: NodeAddress


class HashRing:
    """
    An immutable consistent hashing ring.

    Built once from a set of addresses and never modified; membership changes
    produce a new ring.
    """

    def __init__(self, addresses: Iterable[NodeAddress], virtual_nodes: int = DEFAULT_VIRTUAL_NODES):
        if virtual_nodes < 1:
            raise ValueError("virtual_nodes must be >= 1")

        self.virtual_nodes = virtual_nodes
        self.addresses: frozenset[NodeAddress] = frozenset(addresses)

        entries = [
            RingEntry(hash_key(f"{address}-{i}"), str(address), address)
            for address in self.addresses
            for i in range(virtual_nodes)
        ]
        entries.sort()
        self._entries: tuple[RingEntry, ...] = tuple(entries)
        self._positions: tuple[int, ...] = tuple(e.position for e in entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    @property
    def entries(self) -> tuple[RingEntry, ...]:
        return self._entries

    def lookup(self, key: str, exclude: Collection[NodeAddress] = ()) -> NodeAddress:
        """
        Return the node owning a key.

        With exclude, the walk continues clockwise past excluded nodes, so a
        retry lands on the node that would own the key without them.

        Raises:
            NoNodesAvailableError: If the ring is empty or every node is excluded
        """
        if not self._entries:
            raise NoNodesAvailableError()
        count = len(self._entries)
        index = bisect.bisect_left(self._positions, hash_key(key)) % count
        if not exclude:
            return self._entries[index].address

        for offset in range(count):
            address = self._entries[(index + offset) % count].address
            if address not in exclude:
                return address
        raise NoNodesAvailableError("All cache nodes were excluded")


class KeyRouter:
    """
    Routes keys to nodes through a consistent hashing ring.

    rebuild() swaps in a new ring in a single assignment; route() reads the
    current ring without locking.
    """

    def __init__(
        self,
        observability: ObservabilityAdapter,
        virtual_nodes: int = DEFAULT_VIRTUAL_NODES,
    ):
        self.obs = observability
        self.virtual_nodes = virtual_nodes
        self._ring = HashRing((), virtual_nodes)

    @property
    def ring(self) -> HashRing:
        return self._ring

    @property
    def addresses(self) -> frozenset[NodeAddress]:
        return self._ring.addresses

    def route(self, key: str, exclude: Collection[NodeAddress] = ()) -> NodeAddress:
        """
        Return the node for a key, skipping nodes in exclude.

        Raises:
            NoNodesAvailableError: If no routable node is left
        """
        return self._ring.lookup(key, exclude)

    def route_many(
        self, keys: Iterable[str], exclude: Collection[NodeAddress] = ()
    ) -> dict[NodeAddress, list[str]]:
        """Group keys by the node that owns them, skipping nodes in exclude."""
        ring = self._ring
        grouped: dict[NodeAddress, list[str]] = {}
        for key in keys:
            grouped.setdefault(ring.lookup(key, exclude), []).append(key)
        return grouped

    def rebuild(self, nodes: Iterable[Node]) -> None:
        """Replace the ring with one holding every healthy node in nodes."""
        addresses = frozenset(node.address for node in nodes if node.routable)
        if addresses == self._ring.addresses:
            return

        previous = self._ring.addresses
        self._ring = HashRing(addresses, self.virtual_nodes)

        self.obs.gauge("router.nodes", len(addresses))
        logger.info(
            f"Hash ring rebuilt with {len(addresses)} node(s)",
            extra={
                "nodes": sorted(str(a) for a in addresses),
                "joined": sorted(str(a) for a in addresses - previous),
                "left": sorted(str(a) for a in previous - addresses),
            },
        )

    def __call__(self, nodes: frozenset[Node]) -> None:
        self.rebuild(nodes)
