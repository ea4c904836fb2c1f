"""
Run log records — one plain-text file per agent invocation.

Files live in <state_dir>/logs and are never rewritten:

    bootstrap-2026-02-27T14-30-15-123456+00-00.log

    # bootstrap
    Date: 2026-02-27T14:30:15.123456+00:00
    Session: 0b6f... (new)
    Prompt: Wakeup, my friend!
    Exit code: 0

    ## Output
    ...
    ## Stderr          (only when stderr is non-empty)
    ...

Timestamps handed out by one writer are strictly increasing, even when
two runs finish inside the same clock tick.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import aiofiles

logger = logging.getLogger(__name__)

DAEMON_LOG = "daemon.log"
RECENT_RUNS = 5
MIN_TAIL = 20
MAX_TAIL = 2000

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def format_record(
    name: str,
    timestamp: datetime,
    session_id: str,
    is_new: bool,
    prompt: str,
    exit_code: int,
    stdout: str,
    stderr: str,
) -> str:
    lines = [
        f"# {name}",
        f"Date: {timestamp.isoformat()}",
        f"Session: {session_id} ({'new' if is_new else 'resumed'})",
        f"Prompt: {prompt}",
        f"Exit code: {exit_code}",
        "",
        "## Output",
        stdout,
    ]
    if stderr:
        lines += ["## Stderr", stderr]
    return "\n".join(lines)


class RunLogWriter:
    """
    Writes one record per run into *log_dir*.

    Usage:
        writer = RunLogWriter(state_dir / "logs")
        path = await writer.write("standup", prompt, session_id, True, 0, out, err)
    """

    def __init__(
        self,
        log_dir: Path,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._dir = log_dir
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last: datetime | None = None

    @property
    def log_dir(self) -> Path:
        return self._dir

    def next_timestamp(self) -> datetime:
        now = self._clock()
        if self._last is not None and now <= self._last:
            now = self._last + timedelta(microseconds=1)
        self._last = now
        return now

    async def write(
        self,
        name: str,
        prompt: str,
        session_id: str,
        is_new: bool,
        exit_code: int,
        stdout: str,
        stderr: str,
    ) -> Path | None:
        """Append a new record. Returns its path, or None if it could not be written."""
        timestamp = self.next_timestamp()
        body = format_record(name, timestamp, session_id, is_new, prompt, exit_code, stdout, stderr)
        stem = f"{_UNSAFE.sub('_', name) or 'run'}-{re.sub(r'[:.]', '-', timestamp.isoformat())}"

        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            path = self._dir / f"{stem}.log"
            n = 1
            while True:
                try:
                    # "x": an existing record is never overwritten
                    async with aiofiles.open(path, "x", encoding="utf-8") as f:
                        await f.write(body)
                    break
                except FileExistsError:
                    n += 1
                    path = self._dir / f"{stem}-{n}.log"
        except OSError as e:
            logger.warning(f"Could not write run log for {name!r}: {e}")
            return None
        return path


# ━━━ Reading ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def clamp_tail(lines: int) -> int:
    return max(MIN_TAIL, min(MAX_TAIL, lines))


async def read_recent_logs(log_dir: Path, tail: int = 200) -> dict:
    """
    The daemon log tail plus the most recent run records, newest first.

    Returns:
        {"daemon": str, "runs": [{"file": str, "content": str}, ...]}
    """
    tail = clamp_tail(tail)
    result: dict = {"daemon": "", "runs": []}
    if not log_dir.is_dir():
        return result

    daemon_path = log_dir / DAEMON_LOG
    if daemon_path.is_file():
        try:
            async with aiofiles.open(daemon_path, "r", encoding="utf-8", errors="replace") as f:
                text = await f.read()
            result["daemon"] = "\n".join(text.splitlines()[-tail:])
        except OSError as e:
            logger.warning(f"Could not read {daemon_path}: {e}")

    try:
        records = [
            p for p in log_dir.iterdir()
            if p.is_file() and p.suffix == ".log" and p.name != DAEMON_LOG
        ]
    except OSError as e:
        logger.warning(f"Could not list {log_dir}: {e}")
        return result

    records.sort(key=lambda p: (p.stat().st_mtime, p.name), reverse=True)
    for path in records[:RECENT_RUNS]:
        try:
            async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
                content = await f.read()
        except OSError as e:
            logger.warning(f"Could not read {path}: {e}")
            continue
        result["runs"].append({"file": path.name, "content": content})
    return result
