"""Tests for the daemon's timer scheduler."""

import asyncio

import pytest

from tmz.errors import RefreshError
from tmz.services.scheduler import Scheduler


class Recorder:
    """Task pair that records calls and detects overlap."""

    def __init__(self):
        self.calls: list[str] = []
        self.running = False
        self.overlapped = False
        self.scheduler: Scheduler | None = None

    def task(self, name, fail_with=None, stop_after=None, duration=0.0):
        async def _run():
            if self.running:
                self.overlapped = True
            self.running = True
            try:
                self.calls.append(name)
                if duration:
                    await asyncio.sleep(duration)
                if stop_after is not None and self.calls.count(name) >= stop_after:
                    self.scheduler.request_shutdown()
                if fail_with is not None:
                    raise fail_with
            finally:
                self.running = False

        return _run


def _scheduler(recorder, refresh, sync, refresh_interval=3000, sync_interval=300) -> Scheduler:
    scheduler = Scheduler(refresh, sync, refresh_interval=refresh_interval, sync_interval=sync_interval)
    recorder.scheduler = scheduler
    return scheduler


class TestScheduler:
    """Tests for ordering, intervals, failures and shutdown."""

    @pytest.mark.asyncio
    async def test_both_tasks_run_immediately(self):
        rec = Recorder()
        scheduler = _scheduler(rec, rec.task("refresh"), rec.task("sync", stop_after=1))
        await asyncio.wait_for(scheduler.run(), timeout=5)
        assert rec.calls == ["refresh", "sync"]
        assert scheduler.completed == {"refresh": 1, "sync": 1}

    @pytest.mark.asyncio
    async def test_shutdown_before_start_runs_nothing(self):
        rec = Recorder()
        scheduler = _scheduler(rec, rec.task("refresh"), rec.task("sync"))
        scheduler.request_shutdown()
        await asyncio.wait_for(scheduler.run(), timeout=5)
        assert rec.calls == []

    @pytest.mark.asyncio
    async def test_shutdown_during_task_prevents_next(self):
        """A shutdown requested mid-task lets it finish and starts nothing else."""
        rec = Recorder()
        scheduler = _scheduler(rec, rec.task("refresh", stop_after=1, duration=0.05), rec.task("sync"))
        await asyncio.wait_for(scheduler.run(), timeout=5)
        assert rec.calls == ["refresh"]
        assert scheduler.completed["refresh"] == 1

    @pytest.mark.asyncio
    async def test_intervals_repeat(self):
        rec = Recorder()
        scheduler = _scheduler(
            rec,
            rec.task("refresh"),
            rec.task("sync", stop_after=4),
            refresh_interval=60,
            sync_interval=0.02,
        )
        await asyncio.wait_for(scheduler.run(), timeout=5)
        assert rec.calls.count("sync") == 4
        assert rec.calls.count("refresh") == 1

    @pytest.mark.asyncio
    async def test_tasks_never_overlap(self):
        rec = Recorder()
        scheduler = _scheduler(
            rec,
            rec.task("refresh", duration=0.03),
            rec.task("sync", duration=0.03, stop_after=3),
            refresh_interval=0.01,
            sync_interval=0.01,
        )
        await asyncio.wait_for(scheduler.run(), timeout=5)
        assert not rec.overlapped
        assert rec.calls.count("refresh") >= 2

    @pytest.mark.asyncio
    async def test_failures_are_logged_and_loop_continues(self, caplog):
        rec = Recorder()
        scheduler = _scheduler(
            rec,
            rec.task("refresh", fail_with=RefreshError("login script timed out after 60s")),
            rec.task("sync", fail_with=RuntimeError("boom"), stop_after=2),
            refresh_interval=60,
            sync_interval=0.01,
        )
        await asyncio.wait_for(scheduler.run(), timeout=5)

        assert rec.calls.count("sync") == 2
        assert scheduler.completed == {"refresh": 0, "sync": 0}
        assert "E-3201: login script timed out after 60s." in caplog.text
        assert "sync pass crashed" in caplog.text

    @pytest.mark.asyncio
    async def test_external_shutdown_wakes_idle_loop(self):
        """A shutdown request ends the wait without waiting for the next deadline."""
        rec = Recorder()
        scheduler = _scheduler(rec, rec.task("refresh"), rec.task("sync"))
        runner = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0.05)
        scheduler.request_shutdown()
        await asyncio.wait_for(runner, timeout=1)
        assert rec.calls == ["refresh", "sync"]
        assert scheduler.shutdown_requested
