"""
disq — asyncio client for the Disque distributed job queue.

Disque speaks RESP, the Redis wire protocol, so connections and framing are
redis-py's. disq maps its job commands (ADDJOB, GETJOB, ACKJOB, FASTACK,
NACK, WORKING, QLEN, QSTAT, PING) onto a typed async API and runs every call
over a pooled TCP connection.

The broker owns replication, TTLs, delays, and at-least-once redelivery.
disq only encodes requests, decodes replies, and manages connections. Job
bodies are opaque bytes.

Quick start
-----------
    import asyncio
    from datetime import timedelta

    import disq
    from disq import GetOptions, WorkingManager

    async def main():
        async with disq.new("127.0.0.1:7711") as client:
            # Produce
            await client.add("send_email", b'{"to": "user@example.com"}', timedelta(seconds=1))

            # Consume and acknowledge
            jobs = await client.get(GetOptions(no_hang=True), "send_email")
            for job in jobs:
                async with WorkingManager(client, job):
                    print(f"Processing job {job.id}")
            await client.ack(*jobs)

    asyncio.run(main())

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — pure value types (Job, AddOptions, GetOptions) and errors
  ports/    — Protocol interfaces (TransportPort, Dialer, HealthCheck)
  core/     — ConnectionPool, command encoders and decoders, DisqueClient
  adapters/ — concrete transports (redis-py asyncio connections)
"""
from __future__ import annotations

from disq.adapters.transport.tcp import StreamTransport, TcpDialer, parse_endpoint
from disq.core.client import DisqueClient, new
from disq.core.pool import ConnectionPool, ping_health_check
from disq.core.working import WorkingManager
from disq.domain.errors import (
    DisqError,
    PoolClosedError,
    ProtocolError,
    ReplyError,
    TransportError,
    UnexpectedReplyError,
)
from disq.domain.models import AddOptions, GetOptions, Job, QueueStats, StatValue
from disq.ports.transport import TransportPort

__all__ = [
    # Domain models
    "Job",
    "AddOptions",
    "GetOptions",
    "QueueStats",
    "StatValue",
    # Errors
    "DisqError",
    "TransportError",
    "ProtocolError",
    "ReplyError",
    "UnexpectedReplyError",
    "PoolClosedError",
    # Port (for typing custom transports)
    "TransportPort",
    # High-level API
    "new",
    "DisqueClient",
    "WorkingManager",
    # Connection management
    "ConnectionPool",
    "ping_health_check",
    "StreamTransport",
    "TcpDialer",
    "parse_endpoint",
]
