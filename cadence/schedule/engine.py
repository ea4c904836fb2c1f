"""
SchedulerLoop — the background asyncio task that fires jobs.

Design:
- Wakes on minute boundaries (every ``tick_seconds``, default 60)
- Each tick reads the job store live and evaluates every job against
  the offset-shifted wall clock
- A match is handed to the execution queue as a separate task, so a
  slow run never delays the next tick
- One-shot jobs are deleted right after they are enqueued, not after
  the run completes, so a long run cannot make them fire twice
- A given minute is processed at most once; the same job fires again
  only when its expression genuinely matches the next minute
- No missed-job replay: minutes during which the daemon was down are
  simply skipped
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable

from cadence.core.bus import EventBus, emit_if
from cadence.core.errors import QueueClosedError
from cadence.core.events import Event, EventType
from cadence.notifications.base import Notification
from cadence.notifications.router import NotificationRouter
from cadence.runner.queue import ExecutionQueue
from cadence.schedule.expression import clamp_offset, matches
from cadence.schedule.job import Job
from cadence.schedule.store import JobStore

logger = logging.getLogger(__name__)


def _minute_key(now: datetime) -> int:
    return int(now.timestamp()) // 60


class SchedulerLoop:
    """
    Usage:
        loop = SchedulerLoop(store, queue, router, offset_minutes=60)
        await loop.start()
        ...
        await loop.stop()

    ``tick(now)`` can be driven directly (tests, catch-up tooling).
    """

    def __init__(
        self,
        store: JobStore,
        queue: ExecutionQueue,
        router: NotificationRouter | None = None,
        offset_minutes: int = 0,
        tick_seconds: int = 60,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._router = router
        self._offset = clamp_offset(offset_minutes)
        self._tick_seconds = max(1, tick_seconds)
        self._bus = bus
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._task: asyncio.Task | None = None
        self._running = False
        self._last_minute: int | None = None
        self._in_flight: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def offset_minutes(self) -> int:
        return self._offset

    async def start(self) -> None:
        """Start the background tick loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="scheduler")
        logger.info(f"SchedulerLoop started (offset {self._offset:+d} min)")

    async def stop(self) -> None:
        """Stop ticking. Runs already handed to the queue are left to finish."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("SchedulerLoop stopped")

    async def wait_idle(self) -> None:
        """Wait until every run fired so far has completed and been routed."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    # ── Internal loop ─────────────────────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick(self._clock())
            except Exception as e:
                logger.warning(f"Scheduler tick error (non-fatal): {e}")
            # Sleep to the next boundary so ticks land at second :00
            delay = self._tick_seconds - (time.time() % self._tick_seconds)
            await asyncio.sleep(delay)

    async def tick(self, now: datetime) -> list[str]:
        """
        Evaluate all jobs at *now*; enqueue the matching ones.

        Returns the names of the jobs fired. A second call for the same
        minute fires nothing.
        """
        minute = _minute_key(now)
        if minute == self._last_minute:
            logger.debug("Tick for an already processed minute, skipping")
            return []
        jobs = await self._store.list()
        self._last_minute = minute

        fired: list[str] = []
        for job in jobs:
            if not matches(job.schedule, now, self._offset):
                continue
            fired.append(job.name)
            logger.info(f"Firing scheduled job: {job.name!r}")
            self._spawn(self._fire(job))
            if not job.recurring:
                await self._store.remove(job.name)
                logger.debug(f"One-shot job {job.name!r} deleted after firing")
            await emit_if(self._bus, Event(
                type=EventType.JOB_FIRED,
                source="scheduler",
                data={"name": job.name, "recurring": job.recurring},
            ))
        return fired

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _fire(self, job: Job) -> None:
        try:
            result = await self._queue.run(job.name, job.prompt)
        except QueueClosedError:
            logger.info(f"Job {job.name!r} dropped: queue is shutting down")
            return
        if result.ok:
            logger.info(f"Job {job.name!r} completed")
        else:
            logger.warning(f"Job {job.name!r} failed (exit {result.exit_code})")
        if self._router is not None:
            await self._router.route(Notification.from_result(job.name, result))
