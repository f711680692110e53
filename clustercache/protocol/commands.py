"""
Wire Commands Module

Request and response types for the memcached text protocol.

Requests:
    get <key>*\r\n
    set <key> <flags> <exptime> <bytes>\r\n<data>\r\n
    delete <key>\r\n
    version\r\n
    config get cluster\r\n

Responses:
    VALUE <key> <flags> <bytes>\r\n<data>\r\n ... END\r\n
    STORED | NOT_STORED | DELETED | NOT_FOUND | VERSION <v>
    ERROR | CLIENT_ERROR <msg> | SERVER_ERROR <msg>
"""

from dataclasses import dataclass, field
from enum import Enum


class CommandType(Enum):
    """Supported wire commands."""

    GET = "get"
    SET = "set"
    DELETE = "delete"
    VERSION = "version"
    CONFIG_GET_CLUSTER = "config get cluster"


@dataclass(frozen=True)
class Request:
    """A single wire request."""

    type: CommandType
    keys: tuple[str, ...] = ()
    value: bytes = b""
    flags: int = 0
    exptime: int = 0

    @property
    def key(self) -> str:
        return self.keys[0]

    @classmethod
    def get(cls, *keys: str) -> "Request":
        return cls(type=CommandType.GET, keys=tuple(keys))

    @classmethod
    def set(cls, key: str, value: bytes, exptime: int = 0, flags: int = 0) -> "Request":
        return cls(type=CommandType.SET, keys=(key,), value=value, flags=flags, exptime=exptime)

    @classmethod
    def delete(cls, key: str) -> "Request":
        return cls(type=CommandType.DELETE, keys=(key,))

    @classmethod
    def version(cls) -> "Request":
        return cls(type=CommandType.VERSION)

    @classmethod
    def config_get_cluster(cls) -> "Request":
        return cls(type=CommandType.CONFIG_GET_CLUSTER)


class ResponseStatus(Enum):
    """Terminal status of a wire response."""

    VALUES = "END"
    STORED = "STORED"
    NOT_STORED = "NOT_STORED"
    DELETED = "DELETED"
    NOT_FOUND = "NOT_FOUND"
    VERSION = "VERSION"
    CONFIG = "CONFIG"


@dataclass(frozen=True)
class Item:
    """A value returned by a get."""

    key: str
    value: bytes
    flags: int = 0


@dataclass(frozen=True)
class Response:
    """A parsed wire response."""

    status: ResponseStatus
    items: dict[str, Item] = field(default_factory=dict)
    text: str = ""

    @property
    def hit(self) -> bool:
        return bool(self.items)
