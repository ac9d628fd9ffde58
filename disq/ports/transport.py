"""
TransportPort — the connection seam in disq.

Any object satisfying this structural Protocol can be pooled and driven by
the command surface. No base class or registration is required.

Framing contract
----------------
do(command, *args)
  - writes one RESP request frame, reads one reply frame
  - a RESP error frame is raised as ReplyError (framing stays clean)
  - any I/O or framing failure raises TransportError and sets `poisoned`

send(command, *args)
  - writes one request frame and leaves its reply unread
  - `pending` counts the replies still on the wire; drain() consumes them

A poisoned transport must be closed, never handed to another caller.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, TypeAlias, runtime_checkable

from disq.domain.errors import ReplyError

Reply: TypeAlias = "str | int | bytes | None | ReplyError | list[Reply]"
"""A decoded RESP reply frame. StreamTransport returns simple and bulk strings as bytes."""

Arg: TypeAlias = str | bytes | int | float


@runtime_checkable
class TransportPort(Protocol):
    """
    One duplex connection to the broker.

    Implementing adapters (built-in):
      - StreamTransport — a redis-py Connection over TCP
    """

    @property
    def poisoned(self) -> bool:
        """True once the wire state is no longer known to be clean."""
        ...

    @property
    def pending(self) -> int:
        """Number of replies sent for but not yet read."""
        ...

    async def do(self, command: str, *args: Arg) -> Reply:
        """
        Write one request and return its reply.

        Raises
        ------
        ReplyError      if the broker answered with an error frame
        TransportError  for any I/O failure (the transport becomes poisoned)
        """
        ...

    async def send(self, command: str, *args: Arg) -> None:
        """Write one request without reading its reply."""
        ...

    async def drain(self) -> None:
        """Read and discard every pending reply."""
        ...

    async def close(self) -> None:
        """Close the underlying connection. Safe to call more than once."""
        ...


Dialer = Callable[[], Awaitable[TransportPort]]
"""Zero-argument coroutine factory returning a freshly connected transport."""

HealthCheck = Callable[[TransportPort], Awaitable[bool]]
"""Per-borrow predicate; False (or an exception) evicts the transport."""
