"""Shared test fixtures for Cadence."""

import asyncio
import json
import time

import pytest
import pytest_asyncio

from cadence.core.bus import EventBus
from cadence.core.config import CadenceConfig
from cadence.runner.invoker import Invoker, ProcessOutput
from cadence.runner.logs import RunLogWriter
from cadence.runner.queue import ExecutionQueue
from cadence.runner.session import SessionState


class FakeInvoker(Invoker):
    """
    Stands in for the agent CLI.

    New sessions get ids session-1, session-2, ... and a JSON reply;
    resumed runs echo the session id back as plain text. Every call is
    recorded together with its (start, end) window.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None]] = []
        self.windows: list[tuple[float, float]] = []
        self.active = 0
        self.max_active = 0
        self.delay = 0.0
        self.exit_code = 0
        self.stderr = ""
        self.raw_new_session_output: str | None = None
        self.error: Exception | None = None
        self._sessions = 0

    async def invoke(self, prompt, session_id=None):
        self.calls.append((prompt, session_id))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        start = time.monotonic()
        try:
            await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            if session_id is None:
                if self.raw_new_session_output is not None:
                    stdout = self.raw_new_session_output
                else:
                    self._sessions += 1
                    stdout = json.dumps({
                        "session_id": f"session-{self._sessions}",
                        "result": f"reply to {prompt}",
                    })
            else:
                stdout = f"[{session_id}] {prompt}"
            return ProcessOutput(stdout=stdout, stderr=self.stderr, exit_code=self.exit_code)
        finally:
            self.active -= 1
            self.windows.append((start, time.monotonic()))


@pytest.fixture
def config(tmp_path):
    """Default config with all state under tmp_path, nothing read from disk."""
    return CadenceConfig(paths={"state_dir": str(tmp_path / "state")})


@pytest.fixture
def state_dir(config):
    path = config.get_state_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def bus():
    """Create a fresh event bus."""
    return EventBus()


@pytest.fixture
def invoker():
    return FakeInvoker()


@pytest.fixture
def sessions(state_dir, bus):
    return SessionState(state_dir, bus=bus)


@pytest.fixture
def log_writer(state_dir):
    return RunLogWriter(state_dir / "logs")


@pytest_asyncio.fixture
async def queue(invoker, sessions, log_writer, bus):
    q = ExecutionQueue(invoker, sessions, log_writer, bus=bus)
    yield q
    await q.close()
