"""
Routing package - consistent hashing from keys to cache nodes.
"""

from .ring import DEFAULT_VIRTUAL_NODES, HashRing, KeyRouter, RingEntry, hash_key

__all__ = [
    "DEFAULT_VIRTUAL_NODES",
    "HashRing",
    "KeyRouter",
    "RingEntry",
    "hash_key",
]
