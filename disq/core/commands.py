"""
Per-command argument encoders and reply decoders.

Pure functions with no I/O, so every byte of an argument vector and every
reply shape can be tested without a broker.

ADDJOB argument order
---------------------
    queue body timeout_ms [MAXLEN n] [REPLICATE n] [ASYNC]
                          [DELAY s] [RETRY s] [TTL s]

GETJOB argument order
---------------------
    [COUNT n] [NOHANG] [TIMEOUT ms] [WITHCOUNTERS] FROM queue [queue ...]

Unit conversions truncate toward zero, so a 999 ms DELAY is omitted and
exactly one second encodes ``DELAY 1``. Numeric options equal to zero are
omitted entirely.

GETJOB reply shapes
-------------------
    nil                                              → []
    [[queue, id, body], ...]                         → without WITHCOUNTERS
    [[queue, id, body, "nacks", n,
      "additional-deliveries", m], ...]              → with WITHCOUNTERS

QSTAT reply shape
-----------------
A flat array of alternating field names and values. Values are typed by
their RESP frame, not by field name: bulk → str, integer → int,
array of bulks → tuple[str, ...]. Unknown fields decode the same way.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import timedelta

from pydantic import ValidationError

from disq.domain.errors import UnexpectedReplyError
from disq.domain.models import AddOptions, GetOptions, Job, QueueStats, StatValue
from disq.ports.transport import Arg, Reply

_SECOND = timedelta(seconds=1)
_MILLISECOND = timedelta(milliseconds=1)


def to_timedelta(value: timedelta | float) -> timedelta:
    """Accept a timedelta, or a plain number of seconds."""
    td = value if isinstance(value, timedelta) else timedelta(seconds=value)
    if td < timedelta(0):
        raise ValueError(f"duration must not be negative, got {value!r}")
    return td


def _seconds(td: timedelta) -> int:
    return td // _SECOND


def _millis(td: timedelta) -> int:
    return td // _MILLISECOND


# ---------------------------------------------------------------------- #
# Encoders                                                                 #
# ---------------------------------------------------------------------- #


def encode_add(
    queue: str,
    body: bytes | str,
    timeout: timedelta | float,
    options: AddOptions | None = None,
) -> list[Arg]:
    """Build the ADDJOB argument vector (command verb excluded)."""
    if not queue:
        raise ValueError("queue name must not be empty")
    args: list[Arg] = [queue, body, _millis(to_timedelta(timeout))]
    if options is None:
        return args

    if options.max_len > 0:
        args += ["MAXLEN", options.max_len]
    if options.replicate > 0:
        args += ["REPLICATE", options.replicate]
    if options.async_:
        args.append("ASYNC")
    if options.delay >= _SECOND:
        args += ["DELAY", _seconds(options.delay)]
    if options.retry >= _SECOND:
        args += ["RETRY", _seconds(options.retry)]
    if options.ttl >= _SECOND:
        args += ["TTL", _seconds(options.ttl)]
    return args


def encode_get(options: GetOptions | None, queues: Sequence[str]) -> list[Arg]:
    """
    Build the GETJOB argument vector (command verb excluded).

    An empty `queues` is not rejected here; the broker answers it with
    ``ERR syntax error`` and that reply reaches the caller unchanged.
    """
    args: list[Arg] = []
    if options is not None:
        if options.count > 0:
            args += ["COUNT", options.count]
        if options.no_hang:
            args.append("NOHANG")
        if options.timeout >= _MILLISECOND:
            args += ["TIMEOUT", _millis(options.timeout)]
        if options.with_counters:
            args.append("WITHCOUNTERS")
    args.append("FROM")
    args.extend(queues)
    return args


def job_ids(jobs: Iterable[Job | str]) -> list[str]:
    """Extract ids for ACKJOB / FASTACK / NACK; raw id strings pass through."""
    return [j if isinstance(j, str) else j.id for j in jobs]


# ---------------------------------------------------------------------- #
# Decoders                                                                 #
# ---------------------------------------------------------------------- #


def _text(command: str, value: Reply) -> str:
    match value:
        case bytes():
            return value.decode("utf-8", errors="replace")
        case str():
            return value
        case _:
            raise UnexpectedReplyError(command, value)


def decode_jobs(reply: Reply, with_counters: bool) -> list[Job]:
    """Project a GETJOB reply into Job records (nil → empty list)."""
    if reply is None:
        return []
    if not isinstance(reply, list):
        raise UnexpectedReplyError("GETJOB", reply)

    jobs: list[Job] = []
    for row in reply:
        width = 7 if with_counters else 3
        if not isinstance(row, list) or len(row) < width:
            raise UnexpectedReplyError("GETJOB", row)
        body = row[2]
        if not isinstance(body, bytes | str):
            raise UnexpectedReplyError("GETJOB", row)

        nacks = additional = 0
        if with_counters:
            nacks, additional = row[4], row[6]
            if not isinstance(nacks, int) or not isinstance(additional, int):
                raise UnexpectedReplyError("GETJOB", row)

        try:
            job = Job(
                queue=_text("GETJOB", row[0]),
                id=_text("GETJOB", row[1]),
                body=body,
                nacks=nacks,
                additional_deliveries=additional,
            )
        except ValidationError as exc:
            raise UnexpectedReplyError("GETJOB", row) from exc
        jobs.append(job)
    return jobs


def _stat_value(value: Reply) -> StatValue:
    match value:
        case int():
            return value
        case bytes() | str():
            return _text("QSTAT", value)
        case list():
            return tuple(_text("QSTAT", item) for item in value)
        case _:
            raise UnexpectedReplyError("QSTAT", value)


def decode_stat(reply: Reply) -> QueueStats | None:
    """Project a QSTAT reply into a field → value mapping (non-array → None)."""
    if not isinstance(reply, list):
        return None
    if len(reply) % 2:
        raise UnexpectedReplyError("QSTAT", reply)
    return {
        _text("QSTAT", reply[i]): _stat_value(reply[i + 1])
        for i in range(0, len(reply), 2)
    }


def decode_int(command: str, reply: Reply) -> int:
    if not isinstance(reply, int):
        raise UnexpectedReplyError(command, reply)
    return reply


def decode_text(command: str, reply: Reply) -> str:
    return _text(command, reply)
