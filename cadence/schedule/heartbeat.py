"""
HeartbeatRunner — a periodic check-in, the second timer trigger source.

Every ``interval`` minutes (1..1440) the heartbeat prompt is sent through
the execution queue under the name "heartbeat", unless:

- the heartbeat is disabled or its prompt is empty
- the offset-shifted wall clock falls inside an exclude window

Exclude windows:

    {"start": "22:00", "end": "07:00"}                 every night
    {"start": "12:00", "end": "13:00", "days": [1, 2]}  Mon/Tue lunch

A window covers start <= HH:MM < end and wraps past midnight when start
is later than end. ``days`` uses 0 = Sunday; absent or empty means every
day. A window with an unparseable time never matches.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from cadence.core.bus import EventBus, emit_if
from cadence.core.errors import QueueClosedError
from cadence.core.events import Event, EventType
from cadence.notifications.base import Notification
from cadence.notifications.router import NotificationRouter
from cadence.runner.queue import ExecutionQueue
from cadence.schedule.expression import clamp_offset, day_of_week, parse_clock, shift

logger = logging.getLogger(__name__)

HEARTBEAT_NAME = "heartbeat"
MIN_INTERVAL = 1
MAX_INTERVAL = 1440


@dataclass
class ExcludeWindow:
    start: str
    end: str
    days: list[int] = field(default_factory=list)

    @classmethod
    def from_config(cls, cfg) -> "ExcludeWindow":
        return cls(start=cfg.start, end=cfg.end, days=list(cfg.days or []))

    def contains(self, wall_clock: datetime) -> bool:
        """Whether *wall_clock* (already offset-shifted) falls inside this window."""
        start = parse_clock(self.start)
        end = parse_clock(self.end)
        if start is None or end is None:
            return False
        if self.days and day_of_week(wall_clock) not in self.days:
            return False

        now = wall_clock.hour * 60 + wall_clock.minute
        lo = start[0] * 60 + start[1]
        hi = end[0] * 60 + end[1]
        if lo <= hi:
            return lo <= now < hi
        return now >= lo or now < hi


class HeartbeatRunner:
    """
    Usage:
        heartbeat = HeartbeatRunner(queue, interval=15, prompt="Anything new?")
        await heartbeat.start()
        heartbeat.next_at     # epoch seconds of the next beat
        await heartbeat.stop()
    """

    def __init__(
        self,
        queue: ExecutionQueue,
        interval: int = 15,
        prompt: str = "",
        enabled: bool = True,
        exclude_windows: list[ExcludeWindow] | None = None,
        offset_minutes: int = 0,
        router: NotificationRouter | None = None,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._queue = queue
        self._interval = max(MIN_INTERVAL, min(MAX_INTERVAL, int(interval)))
        self._prompt = prompt
        self._enabled = enabled
        self._windows = list(exclude_windows or [])
        self._offset = clamp_offset(offset_minutes)
        self._router = router
        self._bus = bus
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._task: asyncio.Task | None = None
        self._next_at: datetime | None = None
        self._in_flight: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._enabled and bool(self._prompt.strip())

    @property
    def interval(self) -> int:
        return self._interval

    @property
    def next_at(self) -> float | None:
        """Epoch seconds of the next scheduled beat, None when not running."""
        return self._next_at.timestamp() if self._next_at else None

    def is_excluded(self, now: datetime) -> bool:
        wall_clock = shift(now, self._offset)
        return any(w.contains(wall_clock) for w in self._windows)

    async def start(self) -> None:
        if not self.enabled:
            logger.info("Heartbeat disabled")
            return
        if self._task is not None:
            return
        self._next_at = self._clock() + timedelta(minutes=self._interval)
        self._task = asyncio.create_task(self._loop(), name="heartbeat")
        logger.info(f"Heartbeat started (every {self._interval} min)")

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._next_at = None

    async def wait_idle(self) -> None:
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _loop(self) -> None:
        while True:
            delay = (self._next_at - self._clock()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                await self.beat(self._clock())
            except Exception as e:
                logger.warning(f"Heartbeat error (non-fatal): {e}")
            self._next_at = self._clock() + timedelta(minutes=self._interval)

    async def beat(self, now: datetime) -> bool:
        """Enqueue one heartbeat run at *now*. Returns False when skipped."""
        if not self.enabled:
            return False
        if self.is_excluded(now):
            logger.debug("Heartbeat skipped: inside an exclude window")
            return False

        task = asyncio.create_task(self._fire())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        await emit_if(self._bus, Event(type=EventType.HEARTBEAT_FIRED, source="heartbeat"))
        return True

    async def _fire(self) -> None:
        try:
            result = await self._queue.run(HEARTBEAT_NAME, self._prompt)
        except QueueClosedError:
            logger.info("Heartbeat dropped: queue is shutting down")
            return
        if self._router is not None:
            await self._router.route(Notification.from_result(HEARTBEAT_NAME, result))
