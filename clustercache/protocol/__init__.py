"""
Protocol package - memcached text protocol requests, responses and codec.
"""

from .codec import encode_request, exptime_for_ttl, read_response, validate_key
from .commands import CommandType, Item, Request, Response, ResponseStatus

__all__ = [
    "CommandType",
    "Item",
    "Request",
    "Response",
    "ResponseStatus",
    "encode_request",
    "exptime_for_ttl",
    "read_response",
    "validate_key",
]
