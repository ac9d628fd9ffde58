"""
StreamTransport — one broker connection, framed by redis-py.

Disque speaks RESP2, so the wire codec, socket handling and reply parsing
come from redis.asyncio.connection.Connection. This module adds what the
pool needs on top of it: a count of unread replies, poisoning, and the
mapping of redis-py exceptions onto disq's error hierarchy.

One StreamTransport owns one socket. It is not safe for concurrent use;
the ConnectionPool hands each transport to exactly one borrower at a time.

Poisoning
---------
Any failure while a frame is partially written or partially read leaves the
wire in an unknown state: a connection error, EOF, a malformed frame, or a
task cancellation arriving mid-I/O. The transport then marks itself
`poisoned`, refuses further commands, and the pool closes it instead of
reusing it. An error *reply* from the broker is a complete frame and does
not poison.

Endpoints
---------
parse_endpoint() accepts "host", "host:port", "[v6addr]:port" and the same
forms prefixed with "disque://". The default port is 7711.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Awaitable
from datetime import timedelta
from typing import Any, TypeVar

from redis._parsers import _AsyncRESP2Parser
from redis.asyncio.connection import Connection
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import DataError, InvalidResponse, RedisError, ResponseError

from disq.domain.errors import ProtocolError, ReplyError, TransportError
from disq.log import get_logger
from disq.ports.transport import Arg, Reply

logger = get_logger(__name__)

DEFAULT_PORT = 7711
_SCHEME = "disque://"

T = TypeVar("T")


class _VerbatimErrorParser(_AsyncRESP2Parser):
    """RESP2 parser that keeps error replies whole ("ERR ...", "NOREPL ...")."""

    @classmethod
    def parse_error(cls, response: str) -> ResponseError:
        return ResponseError(response)


def _to_reply(value: Any) -> Reply:
    match value:
        case ResponseError():
            return ReplyError(str(value))
        case list():
            return [_to_reply(item) for item in value]
        case _:
            return value


def parse_endpoint(endpoint: str) -> tuple[str, int]:
    """Split an endpoint string into (host, port). Raises ValueError if malformed."""
    raw = endpoint.strip()
    if raw.startswith(_SCHEME):
        raw = raw[len(_SCHEME):]
    raw = raw.rstrip("/")
    if not raw:
        raise ValueError(f"Empty broker endpoint: {endpoint!r}")

    port_str: str | None = None
    if raw.startswith("["):
        host, sep, rest = raw[1:].partition("]")
        if not sep or (rest and not rest.startswith(":")):
            raise ValueError(f"Malformed IPv6 endpoint: {endpoint!r}")
        port_str = rest[1:] or None
    elif raw.count(":") == 1:
        host, port_str = raw.split(":")
    else:
        # bare hostname, or an IPv6 literal without brackets (no port)
        host = raw

    if not host:
        raise ValueError(f"Missing host in endpoint: {endpoint!r}")
    if port_str is None:
        return host, DEFAULT_PORT
    if not port_str.isdigit() or not 0 < int(port_str) < 65536:
        raise ValueError(f"Invalid port in endpoint: {endpoint!r}")
    return host, int(port_str)


@dataclasses.dataclass
class StreamTransport:
    """
    TransportPort implementation over a connected redis-py Connection.

    Parameters
    ----------
    connection : an already connected redis.asyncio Connection
    endpoint   : "host:port" label used in log events and error messages
    """

    connection: Connection
    endpoint: str = ""

    _poisoned: bool = dataclasses.field(default=False, init=False, repr=False)
    _pending: int = dataclasses.field(default=0, init=False, repr=False)
    _closed: bool = dataclasses.field(default=False, init=False, repr=False)

    @property
    def poisoned(self) -> bool:
        return self._poisoned

    @property
    def pending(self) -> int:
        return self._pending

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------ #
    # Framing primitives                                                   #
    # ------------------------------------------------------------------ #

    async def do(self, command: str, *args: Arg) -> Reply:
        """Write one request, read one reply. Error frames raise ReplyError."""
        await self.drain()
        await self._write(command, args)
        return await self._read()

    async def send(self, command: str, *args: Arg) -> None:
        """Write one request and leave its reply on the wire for drain()."""
        await self._write(command, args)
        self._pending += 1

    async def drain(self) -> None:
        """Consume replies owed to earlier send() calls."""
        if self._pending:
            self._check_usable()
        while self._pending:
            try:
                await self._read()
            except ReplyError as exc:
                logger.debug(
                    "disq.transport.discarded_error_reply",
                    endpoint=self.endpoint,
                    error=exc.message,
                )
            self._pending -= 1

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.connection.disconnect()
        except (RedisError, OSError) as exc:
            # peer already gone
            logger.debug("disq.transport.close_failed", endpoint=self.endpoint, error=str(exc))

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    async def _write(self, command: str, args: tuple[Arg, ...]) -> None:
        self._check_usable()
        await self._guard(self.connection.send_command(command, *args))

    async def _read(self) -> Reply:
        return _to_reply(await self._guard(self.connection.read_response()))

    def _check_usable(self) -> None:
        # Connection.send_command reconnects on its own; a closed or poisoned
        # transport must not.
        if self._closed:
            raise TransportError(f"Transport to {self.endpoint} is closed")
        if self._poisoned:
            raise TransportError(f"Transport to {self.endpoint} is poisoned")

    async def _guard(self, aw: Awaitable[T]) -> T:
        """Await `aw`, translating redis-py failures; wire failures poison."""
        try:
            return await aw
        except ResponseError as exc:
            raise ReplyError(str(exc)) from None
        except DataError as exc:
            # argument rejected while packing, before anything was written
            raise TypeError(str(exc)) from exc
        except (InvalidResponse, ValueError) as exc:
            self._poison(exc)
            raise ProtocolError(f"Malformed reply from {self.endpoint}: {exc}") from exc
        except (RedisError, OSError) as exc:
            self._poison(exc)
            raise TransportError(f"I/O error on {self.endpoint}", exc) from exc
        except BaseException as exc:
            self._poison(exc)
            raise

    def _poison(self, exc: BaseException) -> None:
        if not self._poisoned:
            logger.debug(
                "disq.transport.poisoned",
                endpoint=self.endpoint,
                error=type(exc).__name__,
            )
        self._poisoned = True


@dataclasses.dataclass
class TcpDialer:
    """
    Dialer that opens a StreamTransport to a broker endpoint.

    Parameters
    ----------
    endpoint        : broker address, see parse_endpoint()
    connect_timeout : upper bound on the TCP handshake (None = OS default)
    """

    endpoint: str
    connect_timeout: timedelta | None = None

    host: str = dataclasses.field(init=False)
    port: int = dataclasses.field(init=False)

    def __post_init__(self) -> None:
        self.host, self.port = parse_endpoint(self.endpoint)
        if self.connect_timeout is not None and self.connect_timeout <= timedelta(0):
            raise ValueError("connect_timeout must be positive")

    @property
    def address(self) -> str:
        return f"[{self.host}]:{self.port}" if ":" in self.host else f"{self.host}:{self.port}"

    async def __call__(self) -> StreamTransport:
        timeout = (
            self.connect_timeout.total_seconds()
            if self.connect_timeout is not None
            else None
        )
        # no CLIENT SETINFO handshake, no reconnect retries
        connection = Connection(
            host=self.host,
            port=self.port,
            socket_connect_timeout=timeout,
            retry=Retry(NoBackoff(), 0),
            parser_class=_VerbatimErrorParser,
            lib_name=None,
            lib_version=None,
        )
        try:
            await connection.connect()
        except (RedisError, OSError) as exc:
            raise TransportError(f"Could not connect to {self.address}", exc) from exc
        logger.debug("disq.transport.dialed", endpoint=self.address)
        return StreamTransport(connection=connection, endpoint=self.address)
