import asyncio
from collections.abc import AsyncIterator, Callable

import pytest

import disq
from disq.domain.errors import ReplyError

# ---------------------------------------------------------------------------
# Fake broker
# ---------------------------------------------------------------------------


class Raw(bytes):
    """Handler result written to the socket as-is (for malformed-frame tests)."""


DISCONNECT = object()
"""Handler result that drops the connection without replying."""

NO_REPLY = object()
"""Handler result that leaves the request unanswered (connection stays open)."""


def encode_reply(value: object) -> bytes:
    match value:
        case Raw():
            return bytes(value)
        case None:
            return b"$-1\r\n"
        case ReplyError():
            return b"-" + value.message.encode() + b"\r\n"
        case bool():
            raise TypeError("bool reply")
        case int():
            return b":%d\r\n" % value
        case str():
            return b"+" + value.encode() + b"\r\n"
        case bytes():
            return b"$%d\r\n" % len(value) + value + b"\r\n"
        case list():
            return b"*%d\r\n" % len(value) + b"".join(encode_reply(v) for v in value)
        case _:
            raise TypeError(f"cannot encode {value!r}")


async def read_request(reader: asyncio.StreamReader) -> list[bytes] | None:
    """Read one request (an array of bulk strings); None at a clean EOF."""
    header = await reader.readline()
    if not header:
        return None
    assert header.startswith(b"*"), header
    args = []
    for _ in range(int(header[1:])):
        size = await reader.readline()
        assert size.startswith(b"$"), size
        args.append((await reader.readexactly(int(size[1:]) + 2))[:-2])
    return args


Handler = Callable[[list[bytes]], object]


class FakeBroker:
    """
    In-process RESP server. Records every request and answers from handlers.

    A handler receives the request arguments (verb excluded) and returns the
    reply value; a non-callable handler is returned as-is for every call.
    """

    def __init__(self) -> None:
        self.commands: list[list[bytes]] = []
        self.connections = 0
        self.handlers: dict[str, Handler | object] = {"PING": "PONG"}
        self._server: asyncio.Server | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    def on(self, command: str, reply: Handler | object) -> None:
        self.handlers[command.upper()] = reply

    @property
    def endpoint(self) -> str:
        assert self._server is not None
        host, port = self._server.sockets[0].getsockname()[:2]
        return f"{host}:{port}"

    def verbs(self) -> list[str]:
        return [c[0].decode() for c in self.commands]

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._serve, "127.0.0.1", 0)

    async def stop(self) -> None:
        assert self._server is not None
        self._server.close()
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()

    async def _serve(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self.connections += 1
        self._writers.add(writer)
        try:
            while True:
                try:
                    request = await read_request(reader)
                except (asyncio.IncompleteReadError, ConnectionError):
                    break
                if request is None:
                    break
                self.commands.append(request)
                verb = request[0].decode().upper()
                handler = self.handlers.get(
                    verb, ReplyError(f"ERR unknown command '{verb}'")
                )
                reply = handler(request[1:]) if callable(handler) else handler
                if reply is DISCONNECT:
                    break
                if reply is NO_REPLY:
                    continue
                writer.write(encode_reply(reply))
                await writer.drain()
        finally:
            self._writers.discard(writer)
            writer.close()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def broker() -> AsyncIterator[FakeBroker]:
    fake = FakeBroker()
    await fake.start()
    yield fake
    await fake.stop()


@pytest.fixture
async def client(broker: FakeBroker) -> AsyncIterator[disq.DisqueClient]:
    c = disq.new(broker.endpoint)
    yield c
    await c.close()
