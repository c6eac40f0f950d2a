"""Single-loop timer scheduler for the background daemon.

The loop waits on exactly one thing at a time: the earlier of the two
task deadlines, or the shutdown event, whichever comes first. A due task
runs to completion before the loop selects again, so refresh and sync
never overlap. Shutdown is cooperative: a request made during a task
takes effect once that task returns, and no task starts afterwards.

Example:
    scheduler = Scheduler(refresh_pass, sync_pass, refresh_interval=3000, sync_interval=300)
    scheduler.install_signal_handlers()
    await scheduler.run()
"""

import asyncio
import logging
import signal
import time
from collections.abc import Awaitable, Callable

from tmz.errors import TmzError, format_error

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[object]]


class Scheduler:
    """Runs a refresh task and a sync task on independent intervals."""

    def __init__(
        self,
        refresh: Task,
        sync: Task,
        refresh_interval: float,
        sync_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tasks: dict[str, Task] = {"refresh": refresh, "sync": sync}
        self._intervals = {"refresh": refresh_interval, "sync": sync_interval}
        self._clock = clock
        self._shutdown = asyncio.Event()
        self._next_due: dict[str, float] = {}
        self.completed: dict[str, int] = {"refresh": 0, "sync": 0}

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    def request_shutdown(self) -> None:
        """Ask the loop to stop after the current task."""
        if not self._shutdown.is_set():
            logger.info("Shutdown requested")
        self._shutdown.set()

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to request_shutdown on the running loop."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)

    async def _run_task(self, name: str) -> None:
        started = self._clock()
        try:
            await self._tasks[name]()
        except TmzError as e:
            logger.error("%s pass failed: %s", name, format_error(e))
        except Exception:
            logger.exception("%s pass crashed", name)
        else:
            self.completed[name] += 1
            logger.debug("%s pass finished in %.1fs", name, self._clock() - started)
        self._next_due[name] = self._clock() + self._intervals[name]

    def _seconds_until_next(self) -> tuple[str, float]:
        name = min(self._next_due, key=self._next_due.__getitem__)
        return name, max(0.0, self._next_due[name] - self._clock())

    async def run(self) -> None:
        """Run both tasks immediately, then on their intervals until shutdown."""
        logger.info(
            "Scheduler started (refresh every %ss, sync every %ss)",
            self._intervals["refresh"],
            self._intervals["sync"],
        )
        for name in ("refresh", "sync"):
            if self._shutdown.is_set():
                break
            await self._run_task(name)

        while not self._shutdown.is_set():
            name, wait = self._seconds_until_next()
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=wait)
            except TimeoutError:
                await self._run_task(name)

        logger.info("Scheduler stopped")
