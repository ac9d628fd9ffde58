"""
Exception hierarchy for disq.

DisqError
├── TransportError         — dial / write / read failure (wraps original exception)
│   └── ProtocolError      — malformed RESP frame on the wire
├── ReplyError             — broker answered with a RESP error frame
├── UnexpectedReplyError   — reply shape does not fit the command
└── PoolClosedError        — borrow attempted on a closed ConnectionPool

A TransportError (and therefore a ProtocolError) means the connection's wire
state is unknown: the transport that raised it is poisoned and never reused.
ReplyError and UnexpectedReplyError leave the framing clean.
"""

from __future__ import annotations


class DisqError(Exception):
    """Base class for all disq exceptions."""


class TransportError(DisqError):
    """
    Connection-level failure: dial refused, broken pipe, EOF mid-frame.

    Attributes
    ----------
    cause : Exception | None
        The original exception from the socket layer, when there is one.
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ProtocolError(TransportError):
    """Raised when bytes read from the broker are not a valid RESP frame."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ReplyError(DisqError):
    """
    The broker replied with a RESP error frame.

    str(err) is the broker's text verbatim, e.g.
    ``NOREPL Not enough reachable nodes for the requested replication level``.
    Callers discriminate by ``code``.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    @property
    def code(self) -> str:
        """Leading word of the error text (``ERR``, ``NOREPL``, ...)."""
        return self.message.split(" ", 1)[0] if self.message else ""


class UnexpectedReplyError(DisqError):
    """Raised when a reply decodes cleanly but has the wrong shape for its command."""

    def __init__(self, command: str, reply: object) -> None:
        self.command = command
        self.reply = reply
        super().__init__(f"Unexpected reply to {command}: {reply!r}")


class PoolClosedError(DisqError):
    """Raised when borrowing from a ConnectionPool after close()."""
