"""
Cluster package - node addresses, discovery sources and the node registry.
"""

from .nodes import (
    DEFAULT_PORT,
    HostPortAddress,
    Node,
    NodeAddress,
    NodeHealth,
    SocketAddress,
    parse_address,
)
from .parser import ClusterConfig, parse_cluster_config, parse_node_entry, parse_nodes
from .registry import NodeRegistry, NodeSetListener
from .sources import ConfigEndpointDiscoverySource, DiscoverySource, StaticDiscoverySource

__all__ = [
    "DEFAULT_PORT",
    "HostPortAddress",
    "SocketAddress",
    "NodeAddress",
    "Node",
    "NodeHealth",
    "parse_address",
    "ClusterConfig",
    "parse_cluster_config",
    "parse_node_entry",
    "parse_nodes",
    "NodeRegistry",
    "NodeSetListener",
    "DiscoverySource",
    "StaticDiscoverySource",
    "ConfigEndpointDiscoverySource",
]
