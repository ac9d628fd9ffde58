"""
ConnectionPool — a bounded reserve of idle transports.

Only the *idle* set is bounded (max_idle). Transports in use are unbounded:
a burst of N concurrent calls dials up to N connections, and whatever does
not fit back into the idle set on release is closed.

  borrow()  ──► idle transport (stale ones evicted, health-checked)
            └─► otherwise dial a new one
  release() ──► back to the idle set if clean and there is room
            └─► otherwise close it

Lock discipline
---------------
The idle set is the only shared mutable state. Every mutation of it happens
under an asyncio.Lock; dialing, health checks and closing all happen with
the lock released, so one slow socket never stalls other borrowers.

Scoped acquisition
------------------
Use lease() rather than calling borrow()/release() directly. It pairs them
on every exit path, including exceptions and task cancellation:

    async with pool.lease() as transport:
        reply = await transport.do("PING")
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import time
from collections.abc import AsyncIterator, Callable, Iterable
from datetime import timedelta

from disq.domain.errors import PoolClosedError
from disq.log import get_logger
from disq.ports.transport import Dialer, HealthCheck, TransportPort

logger = get_logger(__name__)

DEFAULT_MAX_IDLE: int = 3
DEFAULT_IDLE_TIMEOUT = timedelta(seconds=240)


@dataclasses.dataclass
class _IdleEntry:
    """An idle transport and the clock reading when it was returned."""

    transport: TransportPort
    since: float


async def ping_health_check(transport: TransportPort) -> bool:
    """Health check that round-trips PING and expects PONG."""
    return await transport.do("PING") == b"PONG"


@dataclasses.dataclass
class ConnectionPool:
    """
    Pool of reusable broker transports.

    Parameters
    ----------
    dial           : coroutine factory that connects a new transport
    max_idle       : cap on simultaneously idle transports (default 3)
    idle_timeout   : idle transports older than this are evicted
                     (None disables eviction)
    health_check   : optional per-borrow predicate for idle transports
    sweep_interval : period of the background eviction sweep started by
                     start() (default: half of idle_timeout)
    clock          : monotonic time source, in seconds
    """

    dial: Dialer
    max_idle: int = DEFAULT_MAX_IDLE
    idle_timeout: timedelta | None = DEFAULT_IDLE_TIMEOUT
    health_check: HealthCheck | None = None
    sweep_interval: timedelta | None = None
    clock: Callable[[], float] = dataclasses.field(default=time.monotonic, repr=False)

    _idle: list[_IdleEntry] = dataclasses.field(
        default_factory=list, init=False, repr=False
    )
    _lock: asyncio.Lock = dataclasses.field(
        default_factory=asyncio.Lock, init=False, repr=False
    )
    _active: int = dataclasses.field(default=0, init=False, repr=False)
    _closed: bool = dataclasses.field(default=False, init=False, repr=False)
    _task: asyncio.Task[None] | None = dataclasses.field(
        default=None, init=False, repr=False
    )

    def __post_init__(self) -> None:
        if self.max_idle < 0:
            raise ValueError(f"max_idle must be >= 0, got {self.max_idle}")
        if self.idle_timeout is not None and self.idle_timeout <= timedelta(0):
            raise ValueError("idle_timeout must be positive (or None to disable)")
        if self.sweep_interval is not None and self.sweep_interval <= timedelta(0):
            raise ValueError("sweep_interval must be positive")

    # ------------------------------------------------------------------ #
    # Observation                                                          #
    # ------------------------------------------------------------------ #

    @property
    def active(self) -> int:
        """Transports currently checked out."""
        return self._active

    @property
    def idle_count(self) -> int:
        """Transports currently parked in the idle set."""
        return len(self._idle)

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        """Start the background eviction sweep (no-op when eviction is disabled)."""
        if self._task is not None:
            raise RuntimeError("ConnectionPool sweeper is already running")
        if self._closed:
            raise PoolClosedError("ConnectionPool is closed")
        interval = self.sweep_interval
        if interval is None and self.idle_timeout is not None:
            interval = self.idle_timeout / 2
        if interval is None:
            return
        self._task = asyncio.create_task(
            self._sweeper(interval.total_seconds()), name="disq-pool-sweeper"
        )

    async def close(self) -> None:
        """
        Stop the sweeper and close every idle transport.

        Transports still checked out are closed when they are released.
        """
        async with self._lock:
            self._closed = True
            entries = list(self._idle)
            self._idle.clear()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await _close_all(e.transport for e in entries)

    # ------------------------------------------------------------------ #
    # Borrow / release                                                     #
    # ------------------------------------------------------------------ #

    @contextlib.asynccontextmanager
    async def lease(self) -> AsyncIterator[TransportPort]:
        """Borrow a transport for the duration of an `async with` block."""
        transport = await self.borrow()
        try:
            yield transport
        finally:
            await self.release(transport)

    async def borrow(self) -> TransportPort:
        """
        Hand out an idle transport, or dial a new one.

        Idle transports are taken most-recently-returned first. A transport
        that fails the health check is closed and the next one is tried.
        """
        while True:
            async with self._lock:
                if self._closed:
                    raise PoolClosedError("ConnectionPool is closed")
                stale = self._take_stale()
                entry = self._idle.pop() if self._idle else None
                self._active += 1

            try:
                await _close_all(stale)
                if entry is None:
                    return await self.dial()
                healthy = await self._is_healthy(entry.transport)
            except BaseException:
                if entry is None:
                    await self._forget()
                else:
                    await self._discard(entry.transport)
                raise

            if healthy:
                return entry.transport
            await self._discard(entry.transport)

    async def release(self, transport: TransportPort) -> None:
        """
        Return a borrowed transport.

        Never reads from the wire. A transport that still owes replies to
        fire-and-forget sends is parked as-is; its next do() reads and
        discards them before writing. Poisoned transports, transports that
        do not fit under max_idle, and any transport released after close()
        are closed instead of parked.
        """
        async with self._lock:
            self._active -= 1
            reuse = (
                not transport.poisoned
                and not self._closed
                and len(self._idle) < self.max_idle
            )
            if reuse:
                self._idle.append(_IdleEntry(transport, self.clock()))
        if not reuse:
            if transport.poisoned:
                logger.debug("disq.pool.closed_poisoned_transport")
            await transport.close()

    async def sweep(self) -> int:
        """Evict idle transports older than idle_timeout. Returns the number evicted."""
        async with self._lock:
            stale = self._take_stale()
        await _close_all(stale)
        if stale:
            logger.debug("disq.pool.evicted", count=len(stale))
        return len(stale)

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    def _take_stale(self) -> list[TransportPort]:
        """Remove and return idle transports past idle_timeout. Caller holds the lock."""
        if self.idle_timeout is None or not self._idle:
            return []
        cutoff = self.clock() - self.idle_timeout.total_seconds()
        stale = [e.transport for e in self._idle if e.since < cutoff]
        if stale:
            self._idle[:] = [e for e in self._idle if e.since >= cutoff]
        return stale

    async def _is_healthy(self, transport: TransportPort) -> bool:
        if transport.poisoned:
            return False
        if self.health_check is None:
            return True
        try:
            ok = await self.health_check(transport)
        except Exception as exc:
            logger.warning("disq.pool.health_check_failed", error=str(exc))
            return False
        if not ok:
            logger.warning("disq.pool.health_check_rejected")
        return bool(ok)

    async def _forget(self) -> None:
        async with self._lock:
            self._active -= 1

    async def _discard(self, transport: TransportPort) -> None:
        await self._forget()
        await transport.close()

    async def _sweeper(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.sweep()


async def _close_all(transports: Iterable[TransportPort]) -> None:
    for transport in transports:
        await transport.close()
