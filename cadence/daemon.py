"""
Daemon — wires every component together and owns the process lifecycle.

    config ─┬─ EventBus (+ EventLogger middleware)
            ├─ JobStore ──────────┐
            ├─ SessionState ──┐   │
            ├─ ExecutionQueue ┴───┼── SchedulerLoop ─┐
            │                     └── HeartbeatRunner ┴─ NotificationRouter
            └─ PID file  <state_dir>/daemon.pid

SIGINT/SIGTERM stop the timers and close the queue: nothing new is
accepted, runs already queued are allowed to finish.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from cadence.core.bus import EventBus, emit_if
from cadence.core.config import CadenceConfig
from cadence.core.errors import CadenceError
from cadence.core.events import Event, EventType
from cadence.middleware.logging import EventLogger
from cadence.notifications.channels.file import FileChannel
from cadence.notifications.channels.telegram import TelegramChannel
from cadence.notifications.router import NotificationRouter
from cadence.runner.invoker import AgentInvoker, Invoker
from cadence.runner.logs import RunLogWriter
from cadence.runner.queue import ExecutionQueue
from cadence.runner.session import SessionState
from cadence.schedule.engine import SchedulerLoop
from cadence.schedule.expression import next_fire_after
from cadence.schedule.heartbeat import ExcludeWindow, HeartbeatRunner
from cadence.schedule.store import JobStore

logger = logging.getLogger(__name__)

NOTIFICATIONS_LOG = "notifications.log"


# ━━━ PID file ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class ProcessInfo:
    """Process information from the PID file."""

    pid: int
    start_time: float
    alive: bool


def write_pid_file(pid_path: Path, pid: int | None = None) -> None:
    pid_path.parent.mkdir(parents=True, exist_ok=True)
    pid_path.write_text(f"{pid or os.getpid()}\n{time.time()}\n")


def read_pid_file(pid_path: Path) -> ProcessInfo | None:
    """PID file contents plus a liveness check; None when absent or garbled."""
    if not pid_path.exists():
        return None
    try:
        content = pid_path.read_text().strip().split("\n")
        pid = int(content[0])
        start_time = float(content[1]) if len(content) > 1 else 0.0
    except (OSError, ValueError, IndexError):
        return None
    return ProcessInfo(pid=pid, start_time=start_time, alive=is_process_alive(pid))


def remove_pid_file(pid_path: Path) -> None:
    pid_path.unlink(missing_ok=True)


def is_process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)  # signal 0: existence check only
        return True
    except OSError:
        return False


def send_signal(pid: int, sig: signal.Signals) -> bool:
    try:
        os.kill(pid, sig)
        return True
    except OSError:
        return False


def stop_running_daemon(config: CadenceConfig) -> int | None:
    """SIGTERM the running daemon. Returns its pid, or None if none was running."""
    pid_path = config.get_pid_path()
    info = read_pid_file(pid_path)
    if info is None:
        return None
    if not info.alive:
        logger.debug(f"Removing stale PID file for pid {info.pid}")
        remove_pid_file(pid_path)
        return None
    if not send_signal(info.pid, signal.SIGTERM):
        return None
    logger.info(f"Sent SIGTERM to daemon (pid {info.pid})")
    return info.pid


async def clear_session(config: CadenceConfig) -> tuple[str | None, int | None]:
    """
    Archive the live session, then stop a running daemon so its next
    start bootstraps a fresh one.

    Returns (archive name or None, stopped daemon pid or None).
    """
    sessions = SessionState(config.get_state_dir())
    archive = await sessions.backup()
    return archive, stop_running_daemon(config)


def build_router(config: CadenceConfig) -> NotificationRouter:
    router = NotificationRouter()
    if config.telegram.configured:
        router.register(TelegramChannel(config.telegram.token, config.telegram.chat_id))
    router.register(FileChannel(config.get_state_dir() / NOTIFICATIONS_LOG))
    return router


# ━━━ Daemon ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class Daemon:
    """
    Usage:
        daemon = Daemon(CadenceConfig.load())
        await daemon.run_forever()          # until SIGINT/SIGTERM

    One-shot use (CLI commands):
        await daemon.open()
        result = await daemon.queue.run("adhoc", "hello")
        await daemon.stop()
    """

    def __init__(self, config: CadenceConfig, invoker: Invoker | None = None) -> None:
        self.config = config
        state_dir = config.get_state_dir()
        logs_dir = config.get_logs_dir()

        self.bus = EventBus()
        self.bus.use(EventLogger(logs_dir).middleware)

        self.store = JobStore(config.get_db_path(), bus=self.bus)
        self.sessions = SessionState(state_dir, bus=self.bus)
        self.queue = ExecutionQueue(
            invoker or AgentInvoker(config),
            self.sessions,
            RunLogWriter(logs_dir),
            bus=self.bus,
            bootstrap_prompt=config.agent.bootstrap_prompt,
        )
        self.router = build_router(config)

        offset = config.schedule.timezone_offset_minutes
        self.scheduler = SchedulerLoop(
            self.store,
            self.queue,
            self.router,
            offset_minutes=offset,
            tick_seconds=config.schedule.tick_seconds,
            bus=self.bus,
        )
        hb = config.heartbeat
        self.heartbeat = HeartbeatRunner(
            self.queue,
            interval=hb.interval,
            prompt=hb.prompt,
            enabled=hb.enabled,
            exclude_windows=[ExcludeWindow.from_config(w) for w in hb.exclude_windows],
            offset_minutes=offset,
            router=self.router,
            bus=self.bus,
        )

        self._opened = False
        self._started_at: float | None = None
        self._owns_pid = False
        self._stop_event: asyncio.Event | None = None
        self._bootstrap_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._started_at is not None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def open(self) -> None:
        """Prepare storage. Enough for one-shot commands; start() also calls it."""
        if self._opened:
            return
        self.config.get_state_dir().mkdir(parents=True, exist_ok=True)
        await self.store.initialize()
        self._opened = True

    async def start(self, bootstrap: bool = True) -> None:
        """
        Claim the PID file and start both timers.

        Raises:
            CadenceError: another daemon is already running
        """
        pid_path = self.config.get_pid_path()
        existing = read_pid_file(pid_path)
        if existing and existing.alive and existing.pid != os.getpid():
            raise CadenceError(
                f"Daemon already running (pid {existing.pid})",
                {"pid": existing.pid},
            )

        await self.open()
        write_pid_file(pid_path)
        self._owns_pid = True
        self._started_at = time.time()

        await emit_if(self.bus, Event(
            type=EventType.SYSTEM_START,
            source="daemon",
            data={"pid": os.getpid()},
        ))
        await self.scheduler.start()
        await self.heartbeat.start()
        if bootstrap:
            self._bootstrap_task = asyncio.create_task(self.queue.bootstrap(), name="bootstrap")
        logger.info(f"Daemon started (pid {os.getpid()}, state {self.config.get_state_dir()})")

    async def stop(self) -> None:
        """Stop the timers, drain the queue, release storage and the PID file."""
        await self.scheduler.stop()
        await self.heartbeat.stop()
        if self._bootstrap_task is not None:
            await asyncio.gather(self._bootstrap_task, return_exceptions=True)
            self._bootstrap_task = None
        await self.queue.close()
        await self.scheduler.wait_idle()
        await self.heartbeat.wait_idle()

        if self._started_at is not None:
            await emit_if(self.bus, Event(type=EventType.SYSTEM_STOP, source="daemon"))
            self._started_at = None
            logger.info("Daemon stopped")

        await self.store.close()
        self._opened = False
        if self._owns_pid:
            remove_pid_file(self.config.get_pid_path())
            self._owns_pid = False

    def request_stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_forever(self) -> None:
        """start(), then block until SIGINT/SIGTERM or request_stop()."""
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                # Not available on this platform or outside the main thread
                pass

        await self.start()
        try:
            await self._stop_event.wait()
            logger.info("Shutdown requested")
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError):
                    pass
            await self.stop()

    # ── Reporting ─────────────────────────────────────────────────────────────

    async def snapshot(self, now: datetime | None = None) -> dict:
        """
        Everything the status report shows, read live.

        Read-only on a fresh state dir: the job store is opened only if
        it already exists.
        """
        if not self._opened and self.config.get_db_path().exists():
            await self.open()
        now = now or datetime.now(timezone.utc)
        offset = self.config.schedule.timezone_offset_minutes

        if self.running:
            pid, started = os.getpid(), self._started_at
        else:
            info = read_pid_file(self.config.get_pid_path())
            alive = info is not None and info.alive
            pid = info.pid if alive else None
            started = info.start_time if alive else None

        jobs = []
        for job in (await self.store.list() if self._opened else []):
            next_at = next_fire_after(job.schedule, now, offset)
            jobs.append({
                **job.to_dict(),
                "next_at": next_at.isoformat() if next_at else None,
            })

        session = await self.sessions.peek()
        return {
            "daemon": {
                "running": pid is not None,
                "pid": pid,
                "uptime_seconds": int(time.time() - started) if started else None,
            },
            "heartbeat": {
                "enabled": self.heartbeat.enabled,
                "interval": self.heartbeat.interval,
                "next_at": self.heartbeat.next_at,
            },
            "jobs": jobs,
            "queue": {
                "busy": self.queue.busy,
                "current": self.queue.current,
                "pending": self.queue.pending,
            },
            "security": self.config.security.level.value,
            "telegram": self.config.telegram.configured,
            "timezone_offset_minutes": offset,
            "session": {
                "id": session.short_id,
                "session_id": session.session_id,
                "created_at": session.created_at,
                "last_used_at": session.last_used_at,
            } if session else None,
        }
