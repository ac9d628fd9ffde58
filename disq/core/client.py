"""
DisqueClient — typed command surface over a ConnectionPool.

Each method leases exactly one transport from the pool, issues one request,
reads at most one reply, and returns the transport on every exit path.
Methods are safe to call from many tasks at once: concurrent calls lease
distinct transports.

Usage
-----
    import disq
    from disq import AddOptions, GetOptions

    async with disq.new("127.0.0.1:7711") as client:
        job_id = await client.add("emails", b'{"to": "a@b.c"}', timedelta(seconds=1))

        jobs = await client.get(GetOptions(count=10, timeout=timedelta(seconds=5)), "emails")
        for job in jobs:
            async with WorkingManager(client, job):
                await process(job.body)
        await client.ack(*jobs)

Errors
------
ReplyError carries the broker's text verbatim (``ERR ...``, ``NOREPL ...``).
TransportError means the connection failed; the transport is discarded.
Nothing is retried by the client.
"""

from __future__ import annotations

import dataclasses
from datetime import timedelta
from types import TracebackType

from disq.adapters.transport.tcp import TcpDialer
from disq.core import commands
from disq.core.pool import DEFAULT_IDLE_TIMEOUT, DEFAULT_MAX_IDLE, ConnectionPool
from disq.domain.models import AddOptions, GetOptions, Job, QueueStats
from disq.ports.transport import Arg, HealthCheck


@dataclasses.dataclass
class DisqueClient:
    """
    Async client for the Disque job broker.

    Parameters
    ----------
    pool : the ConnectionPool every command leases its transport from
    """

    pool: ConnectionPool

    async def __aenter__(self) -> DisqueClient:
        await self.pool.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the pool and every idle connection."""
        await self.pool.close()

    # ------------------------------------------------------------------ #
    # Producing                                                            #
    # ------------------------------------------------------------------ #

    async def add(
        self,
        queue: str,
        body: bytes | str,
        timeout: timedelta | float,
        options: AddOptions | None = None,
    ) -> str:
        """
        Enqueue one job with ADDJOB and return the broker-assigned id.

        `timeout` bounds how long the broker waits for replication; it is
        sent in whole milliseconds.
        """
        args = commands.encode_add(queue, body, timeout, options)
        async with self.pool.lease() as transport:
            reply = await transport.do("ADDJOB", *args)
        return commands.decode_text("ADDJOB", reply)

    # ------------------------------------------------------------------ #
    # Consuming                                                            #
    # ------------------------------------------------------------------ #

    async def get(self, options: GetOptions | None = None, *queues: str) -> list[Job]:
        """
        Fetch up to `options.count` jobs from the given queues with GETJOB.

        Blocks until a job arrives unless NOHANG or a TIMEOUT is set. An
        empty list means nothing was available.
        """
        args = commands.encode_get(options, queues)
        async with self.pool.lease() as transport:
            reply = await transport.do("GETJOB", *args)
        with_counters = options is not None and options.with_counters
        return commands.decode_jobs(reply, with_counters)

    async def ack(self, *jobs: Job | str, confirm: bool = True) -> int | None:
        """ACKJOB: acknowledge jobs cluster-wide. Returns the broker's count when confirmed."""
        return await self._acknowledge("ACKJOB", jobs, confirm)

    async def fast_ack(self, *jobs: Job | str, confirm: bool = True) -> int | None:
        """FASTACK: delete jobs locally, leaving other nodes to garbage-collect."""
        return await self._acknowledge("FASTACK", jobs, confirm)

    async def nack(self, *jobs: Job | str, confirm: bool = True) -> int | None:
        """NACK: requeue jobs for immediate redelivery, incrementing their nack counters."""
        return await self._acknowledge("NACK", jobs, confirm)

    async def working(self, job: Job | str) -> timedelta:
        """WORKING: postpone redelivery; returns how long the job is safe from it."""
        (job_id,) = commands.job_ids([job])
        async with self.pool.lease() as transport:
            reply = await transport.do("WORKING", job_id)
        return timedelta(seconds=commands.decode_int("WORKING", reply))

    # ------------------------------------------------------------------ #
    # Introspection                                                        #
    # ------------------------------------------------------------------ #

    async def len(self, queue: str) -> int:
        """QLEN: number of jobs queued in `queue`."""
        async with self.pool.lease() as transport:
            reply = await transport.do("QLEN", queue)
        return commands.decode_int("QLEN", reply)

    async def stat(self, queue: str) -> QueueStats | None:
        """
        QSTAT: queue statistics, or None when the queue does not exist.

        Values keep their wire type: ``len`` and ``age`` are ints, ``name``
        and ``pause`` are str, ``import-from`` is a tuple of node ids.
        """
        async with self.pool.lease() as transport:
            reply = await transport.do("QSTAT", queue)
        return commands.decode_stat(reply)

    async def ping(self) -> str:
        """PING: returns the broker's reply verbatim (``PONG``)."""
        async with self.pool.lease() as transport:
            reply = await transport.do("PING")
        return commands.decode_text("PING", reply)

    async def flushall(self) -> None:
        """DEBUG FLUSHALL: wipe every queue and job. For test harnesses only."""
        async with self.pool.lease() as transport:
            await transport.do("DEBUG", "FLUSHALL")

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    async def _acknowledge(
        self, command: str, jobs: tuple[Job | str, ...], confirm: bool
    ) -> int | None:
        ids: list[Arg] = list(commands.job_ids(jobs))
        async with self.pool.lease() as transport:
            if not confirm:
                await transport.send(command, *ids)
                return None
            reply = await transport.do(command, *ids)
        return commands.decode_int(command, reply)


def new(
    endpoint: str,
    idle_timeout: timedelta | None = DEFAULT_IDLE_TIMEOUT,
    *,
    max_idle: int = DEFAULT_MAX_IDLE,
    health_check: HealthCheck | None = None,
    connect_timeout: timedelta | None = None,
) -> DisqueClient:
    """
    Create a DisqueClient for the broker at `endpoint` ("host:port").

    No connection is opened until the first command runs.
    """
    pool = ConnectionPool(
        dial=TcpDialer(endpoint, connect_timeout=connect_timeout),
        max_idle=max_idle,
        idle_timeout=idle_timeout,
        health_check=health_check,
    )
    return DisqueClient(pool)
