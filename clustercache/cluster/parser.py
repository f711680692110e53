"""
Cluster Configuration Parser

Parses the node list returned by a cluster configuration endpoint.

Grammar of the node line (entries separated by spaces and/or commas):

    nodes   := entry ((" " | ",") entry)* [","]
    entry   := hostname "|" ip "|" port     ; host/port node
             | "/" path "||"                ; local socket node
             | "/" path                     ; static socket entry
             | host [":" port]              ; static host/port entry

A full "config get cluster" body is "<version>\n<nodes>"; parse_cluster_config
accepts either the full body or just the node line.
"""

import re
from dataclasses import dataclass

from .nodes import DEFAULT_PORT, HostPortAddress, NodeAddress, SocketAddress, parse_address

_ENTRY_SPLIT = re.compile(r"[\s,]+")


@dataclass(frozen=True)
class ClusterConfig:
    """Parsed cluster configuration."""

    version: int | None
    nodes: tuple[NodeAddress, ...]


def parse_node_entry(entry: str, default_port: int = DEFAULT_PORT) -> NodeAddress:
    """
    Parse one node entry.

    Raises:
        ValueError: If the entry is malformed
    """
    if "|" not in entry:
        return parse_address(entry, default_port)

    fields = entry.split("|")
    if len(fields) != 3:
        raise ValueError(f"expected 'hostname|ip|port', got {entry!r}")

    hostname, ip, port_text = fields
    if hostname.startswith("/") and not port_text:
        return SocketAddress(hostname)

    host = hostname or ip
    if not host:
        raise ValueError(f"node entry has neither hostname nor ip: {entry!r}")
    try:
        port = int(port_text)
    except ValueError as e:
        raise ValueError(f"invalid port in node entry: {entry!r}") from e
    if not 0 < port < 65536:
        raise ValueError(f"port out of range in node entry: {entry!r}")
    return HostPortAddress(host, port)


def parse_nodes(line: str, default_port: int = DEFAULT_PORT) -> tuple[NodeAddress, ...]:
    """
    Parse a node line into addresses, preserving order and dropping duplicates.

    An empty line (or one made only of delimiters) yields no nodes.
    """
    addresses: list[NodeAddress] = []
    seen: set[NodeAddress] = set()
    for entry in _ENTRY_SPLIT.split(line.strip()):
        if not entry:
            continue
        address = parse_node_entry(entry, default_port)
        if address not in seen:
            seen.add(address)
            addresses.append(address)
    return tuple(addresses)


def parse_cluster_config(blob: str, default_port: int = DEFAULT_PORT) -> ClusterConfig:
    """
    Parse a cluster configuration body.

    If the first non-empty line is a bare integer it is taken as the
    configuration version and the following non-empty line as the node line.
    Otherwise the whole blob is treated as a node list.

    Raises:
        ValueError: If a node entry is malformed
    """
    lines = [line.strip() for line in blob.splitlines() if line.strip()]
    if not lines:
        return ClusterConfig(version=None, nodes=())

    if lines[0].isdigit():
        version = int(lines[0])
        node_line = " ".join(lines[1:])
    else:
        version = None
        node_line = " ".join(lines)

    return ClusterConfig(version=version, nodes=parse_nodes(node_line, default_port))
