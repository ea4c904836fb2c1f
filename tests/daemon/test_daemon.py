"""Tests for cadence/daemon.py"""
from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone

import pytest

from cadence.core.errors import CadenceError
from cadence.core.events import EventType
from cadence.daemon import (
    Daemon,
    build_router,
    clear_session,
    read_pid_file,
    remove_pid_file,
    stop_running_daemon,
    write_pid_file,
)
from cadence.runner.session import SessionState

DEAD_PID = 999_999_999


class TestPidFile:
    def test_write_read_remove(self, tmp_path):
        path = tmp_path / "daemon.pid"
        write_pid_file(path)
        info = read_pid_file(path)
        assert info.pid == os.getpid()
        assert info.alive
        assert info.start_time > 0
        remove_pid_file(path)
        assert read_pid_file(path) is None
        remove_pid_file(path)

    def test_garbled_file(self, tmp_path):
        path = tmp_path / "daemon.pid"
        path.write_text("not a pid")
        assert read_pid_file(path) is None

    def test_stop_with_stale_pid_cleans_up(self, config, state_dir):
        write_pid_file(config.get_pid_path(), DEAD_PID)
        assert stop_running_daemon(config) is None
        assert not config.get_pid_path().exists()

    def test_stop_without_daemon(self, config):
        assert stop_running_daemon(config) is None


def test_router_channels(config):
    assert build_router(config).channel_names == ["file"]
    config.telegram.token = "123:abc"
    config.telegram.chat_id = "42"
    assert build_router(config).channel_names == ["telegram", "file"]


@pytest.mark.asyncio
class TestDaemon:
    async def test_start_bootstraps_and_stop_cleans_up(self, config, invoker):
        daemon = Daemon(config, invoker=invoker)
        await daemon.start()
        assert daemon.running
        assert read_pid_file(config.get_pid_path()).pid == os.getpid()

        await daemon.stop()
        assert not daemon.running
        assert not config.get_pid_path().exists()
        assert invoker.calls == [("Wakeup, my friend!", None)]
        assert (await SessionState(config.get_state_dir()).peek()).session_id == "session-1"

    async def test_no_bootstrap_when_session_exists(self, config, invoker):
        await SessionState(config.get_state_dir()).create("existing")
        daemon = Daemon(config, invoker=invoker)
        await daemon.start()
        await daemon.stop()
        assert invoker.calls == []

    async def test_refuses_second_daemon(self, config, invoker):
        write_pid_file(config.get_pid_path(), os.getppid())
        daemon = Daemon(config, invoker=invoker)
        with pytest.raises(CadenceError):
            await daemon.start(bootstrap=False)
        assert read_pid_file(config.get_pid_path()).pid == os.getppid()

    async def test_lifecycle_events_logged(self, config, invoker):
        daemon = Daemon(config, invoker=invoker)
        seen = []

        async def handler(event):
            seen.append(event.type)

        daemon.bus.on("system:*", handler)
        await daemon.start(bootstrap=False)
        await daemon.stop()
        assert seen == [EventType.SYSTEM_START, EventType.SYSTEM_STOP]
        events_files = list(config.get_logs_dir().glob("events_*.jsonl"))
        assert len(events_files) == 1

    async def test_run_forever_until_requested(self, config, invoker):
        daemon = Daemon(config, invoker=invoker)
        task = asyncio.create_task(daemon.run_forever())
        await asyncio.sleep(0.05)
        assert daemon.running
        daemon.request_stop()
        await asyncio.wait_for(task, timeout=5)
        assert not config.get_pid_path().exists()

    async def test_snapshot(self, config, invoker):
        daemon = Daemon(config, invoker=invoker)
        await daemon.open()
        await daemon.store.add("standup", "0 9 * * 1-5", "Summarise")
        await daemon.queue.run("adhoc", "hello")

        snap = await daemon.snapshot(now=datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc))
        await daemon.stop()

        assert snap["daemon"] == {"running": False, "pid": None, "uptime_seconds": None}
        assert snap["jobs"][0]["name"] == "standup"
        assert snap["jobs"][0]["next_at"] == "2026-03-02T09:00:00+00:00"
        assert snap["session"]["session_id"] == "session-1"
        assert snap["session"]["id"] == "session-"
        assert snap["security"] == "moderate"
        assert snap["telegram"] is False
        assert snap["heartbeat"]["enabled"] is False
        assert snap["queue"] == {"busy": False, "current": None, "pending": 0}


@pytest.mark.asyncio
class TestClearSession:
    async def test_archives_session(self, config, state_dir):
        await SessionState(state_dir).create("old")
        archive, pid = await clear_session(config)
        assert archive == "session_1.backup"
        assert pid is None
        assert await SessionState(state_dir).peek() is None

    async def test_nothing_to_archive(self, config, state_dir):
        assert await clear_session(config) == (None, None)


@pytest.mark.asyncio
async def test_snapshot_leaves_fresh_state_dir_untouched(config, invoker):
    daemon = Daemon(config, invoker=invoker)
    snap = await daemon.snapshot()
    await daemon.stop()

    assert snap["jobs"] == []
    assert snap["session"] is None
    assert not config.get_state_dir().exists()
