import asyncio
from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from disq.core.working import WorkingManager
from disq.domain.errors import ReplyError, TransportError
from disq.domain.models import Job

# ---------------------------------------------------------------------------
# Minimal client stub
# ---------------------------------------------------------------------------


class _MockClient:
    def __init__(
        self,
        granted: timedelta = timedelta(seconds=300),
        side_effect: Exception | None = None,
    ) -> None:
        self.calls: list[str] = []
        self._granted = granted
        self._side_effect = side_effect

    async def working(self, job: Job | str) -> timedelta:
        self.calls.append(job if isinstance(job, str) else job.id)
        if self._side_effect is not None:
            raise self._side_effect
        return self._granted


# ---------------------------------------------------------------------------
# Basic operation
# ---------------------------------------------------------------------------


async def test_working_called_immediately_on_enter() -> None:
    client = _MockClient()
    async with WorkingManager(client, "D-1"):
        await asyncio.sleep(0.01)
    assert client.calls == ["D-1"]


async def test_working_repeats_at_fixed_interval() -> None:
    client = _MockClient()
    async with WorkingManager(client, "D-1", interval=timedelta(milliseconds=100)):
        await asyncio.sleep(0.35)
    assert len(client.calls) >= 3


async def test_default_interval_is_half_the_granted_time() -> None:
    client = _MockClient(granted=timedelta(milliseconds=400))
    async with WorkingManager(client, "D-1"):
        await asyncio.sleep(0.3)
    # calls at ~0 and ~0.2s
    assert len(client.calls) == 2


async def test_interval_has_a_floor() -> None:
    client = _MockClient(granted=timedelta(0))
    async with WorkingManager(client, "D-1"):
        await asyncio.sleep(0.05)
    assert len(client.calls) == 1


async def test_accepts_job_instances() -> None:
    client = _MockClient()
    job = Job(queue="q", id="D-42", body=b"x")
    manager = WorkingManager(client, job)
    assert manager.job_id == "D-42"
    async with manager:
        await asyncio.sleep(0.01)
    assert client.calls == ["D-42"]


async def test_stops_after_context_exit() -> None:
    client = _MockClient()
    async with WorkingManager(client, "D-1", interval=timedelta(milliseconds=100)):
        await asyncio.sleep(0.15)

    calls_at_exit = len(client.calls)
    await asyncio.sleep(0.15)
    assert len(client.calls) == calls_at_exit


# ---------------------------------------------------------------------------
# Task lifecycle
# ---------------------------------------------------------------------------


async def test_task_is_running_inside_context() -> None:
    manager = WorkingManager(_MockClient(), "D-1")
    async with manager:
        assert manager._task is not None
        assert not manager._task.done()


async def test_task_is_none_after_exit() -> None:
    manager = WorkingManager(_MockClient(), "D-1")
    async with manager:
        pass
    assert manager._task is None


async def test_exception_in_body_still_cancels_task() -> None:
    manager = WorkingManager(_MockClient(), "D-1")
    with pytest.raises(ValueError):
        async with manager:
            raise ValueError("worker error")
    assert manager._task is None


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


async def test_reply_error_stops_silently() -> None:
    client = _MockClient(side_effect=ReplyError("NOJOB Job not known"))
    async with WorkingManager(client, "D-1", interval=timedelta(milliseconds=100)):
        await asyncio.sleep(0.25)
    assert len(client.calls) == 1


async def test_other_errors_propagate_through_exit() -> None:
    client = _MockClient(side_effect=RuntimeError("unexpected"))
    manager = WorkingManager(client, "D-1")
    with pytest.raises(RuntimeError, match="unexpected"):
        async with manager:
            await asyncio.sleep(0.02)


async def test_transport_failure_is_logged_when_it_happens() -> None:
    client = _MockClient(side_effect=TransportError("I/O error on 127.0.0.1:7711"))
    manager = WorkingManager(client, "D-1")
    with capture_logs() as logs:
        with pytest.raises(TransportError):
            async with manager:
                await asyncio.sleep(0.05)
                logged_before_exit = [e["event"] for e in logs]
    assert logged_before_exit == ["disq.working.failed"]
    assert logs[0]["log_level"] == "warning"
    assert logs[0]["job_id"] == "D-1"
