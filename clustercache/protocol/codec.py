"""
Protocol Codec Module

Encodes requests to memcached text-protocol bytes and parses responses from an
asyncio stream. Malformed or error responses raise ProtocolError; stream
failures (EOF, reset) propagate as the underlying OSError /
asyncio.IncompleteReadError so the connection layer can classify them.
"""

import asyncio
import time

from ..errors import InvalidKeyError, ProtocolError
from .commands import CommandType, Item, Request, Response, ResponseStatus

CRLF = b"\r\n"
MAX_KEY_LENGTH = 250

# memcached treats exptime values above 30 days as absolute unix timestamps
RELATIVE_EXPTIME_LIMIT = 60 * 60 * 24 * 30

_SIMPLE_STATUSES = {
    b"STORED": ResponseStatus.STORED,
    b"NOT_STORED": ResponseStatus.NOT_STORED,
    b"DELETED": ResponseStatus.DELETED,
    b"NOT_FOUND": ResponseStatus.NOT_FOUND,
}

_EXPECTED_STATUSES = {
    CommandType.SET: {ResponseStatus.STORED, ResponseStatus.NOT_STORED},
    CommandType.DELETE: {ResponseStatus.DELETED, ResponseStatus.NOT_FOUND},
}


def validate_key(key: str) -> bytes:
    """
    Validate a key for the text protocol and return its encoded form.

    Keys must be 1-250 bytes of UTF-8 without whitespace or control characters.

    Raises:
        InvalidKeyError: If the key cannot be sent
    """
    if not isinstance(key, str):
        raise InvalidKeyError(repr(key), "key must be a string")
    if not key:
        raise InvalidKeyError(key, "key is empty")

    encoded = key.encode("utf-8")
    if len(encoded) > MAX_KEY_LENGTH:
        raise InvalidKeyError(key, f"key is longer than {MAX_KEY_LENGTH} bytes")
    if any(b <= 0x20 or b == 0x7F for b in encoded):
        raise InvalidKeyError(key, "key contains whitespace or control characters")
    return encoded


def exptime_for_ttl(ttl: int, now: float | None = None) -> int:
    """
    Convert a TTL in seconds to a wire exptime.

    0 means never expires. A negative TTL is sent unchanged, which memcached
    treats as already expired.
    """
    if ttl <= 0:
        return ttl
    if ttl > RELATIVE_EXPTIME_LIMIT:
        return int(now if now is not None else time.time()) + ttl
    return ttl


def encode_request(request: Request) -> bytes:
    """Encode a request to wire bytes."""
    if request.type is CommandType.GET:
        if not request.keys:
            raise ValueError("get requires at least one key")
        return b"get " + b" ".join(validate_key(k) for k in request.keys) + CRLF

    if request.type is CommandType.SET:
        header = b"set %s %d %d %d" % (
            validate_key(request.key),
            request.flags,
            request.exptime,
            len(request.value),
        )
        return header + CRLF + request.value + CRLF

    if request.type is CommandType.DELETE:
        return b"delete " + validate_key(request.key) + CRLF

    if request.type is CommandType.VERSION:
        return b"version" + CRLF

    if request.type is CommandType.CONFIG_GET_CLUSTER:
        return b"config get cluster" + CRLF

    raise ValueError(f"unsupported command: {request.type}")


async def _read_line(reader: asyncio.StreamReader) -> bytes:
    line = await reader.readuntil(b"\n")
    return line.rstrip(b"\r\n")


def _raise_for_error_line(line: bytes) -> None:
    if line == b"ERROR":
        raise ProtocolError("server rejected the command", line)
    if line.startswith(b"CLIENT_ERROR") or line.startswith(b"SERVER_ERROR"):
        raise ProtocolError(line.decode("utf-8", "replace"), line)


async def _read_values(reader: asyncio.StreamReader) -> Response:
    items: dict[str, Item] = {}
    while True:
        line = await _read_line(reader)
        if line == b"END":
            return Response(status=ResponseStatus.VALUES, items=items)
        _raise_for_error_line(line)

        parts = line.split()
        if len(parts) not in (4, 5) or parts[0] != b"VALUE":
            raise ProtocolError("expected VALUE or END", line)
        try:
            flags = int(parts[2])
            size = int(parts[3])
        except ValueError as e:
            raise ProtocolError("non-numeric VALUE header field", line) from e
        if size < 0:
            raise ProtocolError("negative value length", line)

        data = await reader.readexactly(size + 2)
        if data[-2:] != CRLF:
            raise ProtocolError("value block not terminated by CRLF", data[-2:])

        try:
            key = parts[1].decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError("non-UTF-8 key in VALUE header", line) from e
        items[key] = Item(key=key, value=data[:-2], flags=flags)


async def _read_config(reader: asyncio.StreamReader) -> Response:
    header = await _read_line(reader)
    _raise_for_error_line(header)
    if not header.startswith(b"CONFIG"):
        raise ProtocolError("expected CONFIG header", header)

    body: list[str] = []
    while True:
        line = await _read_line(reader)
        if line == b"END":
            break
        body.append(line.decode("utf-8", "replace"))
    return Response(status=ResponseStatus.CONFIG, text="\n".join(body))


async def read_response(reader: asyncio.StreamReader, request: Request) -> Response:
    """
    Read and parse the response to a request.

    Raises:
        ProtocolError: If the server answered with an error or unexpected data
    """
    if request.type is CommandType.GET:
        return await _read_values(reader)

    if request.type is CommandType.CONFIG_GET_CLUSTER:
        return await _read_config(reader)

    line = await _read_line(reader)
    _raise_for_error_line(line)

    if request.type is CommandType.VERSION:
        if not line.startswith(b"VERSION "):
            raise ProtocolError("expected VERSION", line)
        return Response(status=ResponseStatus.VERSION, text=line[8:].decode("utf-8", "replace"))

    status = _SIMPLE_STATUSES.get(line)
    if status is None or status not in _EXPECTED_STATUSES[request.type]:
        raise ProtocolError(f"unexpected reply to {request.type.value}", line)
    return Response(status=status)
