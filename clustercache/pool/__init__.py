"""
Pool package - per-node pools of memcached connections.
"""

from .connection import Connection, Connector, open_connection
from .pool import ConnectionPool, NodePool

__all__ = [
    "Connection",
    "ConnectionPool",
    "Connector",
    "NodePool",
    "open_connection",
]
