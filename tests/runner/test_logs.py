"""Tests for cadence/runner/logs.py"""
from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest

from cadence.runner.logs import (
    MAX_TAIL,
    MIN_TAIL,
    RunLogWriter,
    clamp_tail,
    format_record,
    read_recent_logs,
)

FIXED = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def test_format_record_with_stderr():
    text = format_record("standup", FIXED, "abc", True, "Summarise", 0, "done", "warn")
    assert text.splitlines() == [
        "# standup",
        "Date: 2026-03-02T09:00:00+00:00",
        "Session: abc (new)",
        "Prompt: Summarise",
        "Exit code: 0",
        "",
        "## Output",
        "done",
        "## Stderr",
        "warn",
    ]


def test_format_record_without_stderr():
    text = format_record("x", FIXED, "abc", False, "p", 2, "out", "")
    assert "Session: abc (resumed)" in text
    assert "## Stderr" not in text
    assert text.endswith("## Output\nout")


def test_clamp_tail():
    assert clamp_tail(1) == MIN_TAIL
    assert clamp_tail(100) == 100
    assert clamp_tail(10**6) == MAX_TAIL


class TestTimestamps:
    def test_strictly_increasing_with_frozen_clock(self, tmp_path):
        writer = RunLogWriter(tmp_path, clock=lambda: FIXED)
        stamps = [writer.next_timestamp() for _ in range(5)]
        assert stamps == sorted(set(stamps))
        assert stamps[0] == FIXED


@pytest.mark.asyncio
class TestRunLogWriter:
    async def test_one_file_per_run(self, tmp_path):
        writer = RunLogWriter(tmp_path / "logs", clock=lambda: FIXED)
        a = await writer.write("job", "p", "abc", True, 0, "one", "")
        b = await writer.write("job", "p", "abc", False, 0, "two", "")
        assert a != b
        assert a.read_text().endswith("one")
        assert b.read_text().endswith("two")
        assert ":" not in a.name

    async def test_never_overwrites(self, tmp_path):
        logs = tmp_path / "logs"
        first = RunLogWriter(logs, clock=lambda: FIXED)
        second = RunLogWriter(logs, clock=lambda: FIXED)
        a = await first.write("job", "p", "abc", True, 0, "first", "")
        b = await second.write("job", "p", "abc", True, 0, "second", "")
        assert a != b
        assert a.read_text().endswith("first")

    async def test_unsafe_name_sanitised(self, tmp_path):
        writer = RunLogWriter(tmp_path)
        path = await writer.write("../../etc/x y", "p", "s", True, 0, "", "")
        assert path.parent == tmp_path

    async def test_write_failure_returns_none(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        writer = RunLogWriter(blocker / "logs")
        assert await writer.write("job", "p", "s", True, 0, "", "") is None


@pytest.mark.asyncio
class TestReadRecentLogs:
    async def test_missing_dir(self, tmp_path):
        assert await read_recent_logs(tmp_path / "none") == {"daemon": "", "runs": []}

    async def test_daemon_tail_and_five_newest_runs(self, tmp_path):
        (tmp_path / "daemon.log").write_text("\n".join(f"line {i}" for i in range(100)))
        for i in range(7):
            path = tmp_path / f"run{i}.log"
            path.write_text(f"record {i}")
            os.utime(path, (1_000_000 + i, 1_000_000 + i))

        recent = await read_recent_logs(tmp_path, tail=1)
        assert recent["daemon"].splitlines() == [f"line {i}" for i in range(80, 100)]
        assert [r["file"] for r in recent["runs"]] == [f"run{i}.log" for i in (6, 5, 4, 3, 2)]
        assert recent["runs"][0]["content"] == "record 6"
