"""
WorkingManager — async context manager that keeps a job from being redelivered.

A consumer holding a long-running job wraps its work in WorkingManager. A
background task calls WORKING for the job; each reply says for how long the
broker will hold off redelivery, and the next call is scheduled at half of
that (or at a fixed `interval` when one is given).

Usage
-----
    [job] = await client.get(GetOptions(timeout=timedelta(seconds=5)), "video")

    async with WorkingManager(client, job):
        await transcode(job.body)

    await client.ack(job)

If the body raises, the background task is cancelled. Callers should nack()
the job in an except/finally block. If WORKING itself fails (for example the
connection drops), a warning is logged right away and the error is raised
again from __aexit__.

WorkingManager is typed against the structural Protocol _HasWorking, so any
object with an async working(job) method can drive it.
"""
from __future__ import annotations

import asyncio
import dataclasses
from datetime import timedelta
from types import TracebackType
from typing import Protocol

from disq.domain.errors import DisqError, ReplyError
from disq.domain.models import Job
from disq.log import get_logger

logger = get_logger(__name__)

_MIN_INTERVAL = timedelta(milliseconds=100)


class _HasWorking(Protocol):
    """Structural Protocol — any object with an async working(job) method."""

    async def working(self, job: Job | str) -> timedelta: ...


@dataclasses.dataclass
class WorkingManager:
    """
    Periodically postpones redelivery of a single job.

    Parameters
    ----------
    client   : any object with async working(job) -> timedelta
    job      : the job (or job id) to keep alive
    interval : fixed time between WORKING calls; when None, half of the
               broker-granted duration is used
    """

    client: _HasWorking
    job: Job | str
    interval: timedelta | None = None

    _task: asyncio.Task[None] | None = dataclasses.field(
        default=None, init=False, repr=False
    )

    @property
    def job_id(self) -> str:
        return self.job if isinstance(self.job, str) else self.job.id

    async def __aenter__(self) -> WorkingManager:
        self._task = asyncio.create_task(
            self._refresh(), name=f"disq-working-{self.job_id}"
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _refresh(self) -> None:
        while True:
            try:
                granted = await self.client.working(self.job)
            except ReplyError as exc:
                # job already acked or unknown to this node
                logger.debug("disq.working.stopped", job_id=self.job_id, error=exc.message)
                return
            except DisqError as exc:
                # redelivery protection is gone from here on
                logger.warning("disq.working.failed", job_id=self.job_id, error=str(exc))
                raise
            delay = self.interval if self.interval is not None else granted / 2
            await asyncio.sleep(max(delay, _MIN_INTERVAL).total_seconds())
