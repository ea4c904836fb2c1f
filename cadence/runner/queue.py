"""
ExecutionQueue — the single serialization point for agent invocations.

Any number of callers (scheduler ticks, the heartbeat, CLI runs, chat
relays) call ``run()`` concurrently. Requests go onto an asyncio.Queue
drained by ONE worker task, so:

- at most one agent process is alive at any moment
- runs start and finish in the order they were enqueued
- a run that fails (or raises) is turned into a RunResult and the worker
  moves on to the next request

Per run:

    Dequeued → session? → NEW (json output, capture session_id)
                        → RESUME (text output, --resume ID)
             → Invoking → log record written → Completed

Once enqueued a run cannot be withdrawn. Cancelling the awaiting caller
does not remove it from the queue; close() only stops new runs from
being accepted.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass

from cadence.core.bus import EventBus, emit_if
from cadence.core.errors import (
    ExternalProcessError,
    QueueClosedError,
    SessionParseError,
    SessionPersistError,
)
from cadence.core.events import Event, EventType
from cadence.runner.invoker import Invoker, ProcessOutput
from cadence.runner.logs import RunLogWriter
from cadence.runner.session import SessionState

logger = logging.getLogger(__name__)

BOOTSTRAP_NAME = "bootstrap"


@dataclass
class RunResult:
    """What a caller gets back from run(). A non-zero exit code is not an exception."""

    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict:
        return {"stdout": self.stdout, "stderr": self.stderr, "exit_code": self.exit_code}


@dataclass
class _RunRequest:
    name: str
    prompt: str
    future: asyncio.Future


def parse_new_session(raw: str) -> tuple[str, str]:
    """
    Pull (session_id, result text) out of the agent's JSON output.

    Raises:
        SessionParseError: not JSON, not an object, or no usable session_id
    """
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise SessionParseError(f"Agent output is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise SessionParseError("Agent output is not a JSON object")

    session_id = data.get("session_id")
    if not isinstance(session_id, str) or not session_id:
        raise SessionParseError("Agent output has no session_id")

    result = data.get("result")
    return session_id, result if isinstance(result, str) else ""


class ExecutionQueue:
    """
    Strict FIFO, at-most-one-in-flight runner.

    Usage:
        queue = ExecutionQueue(invoker, sessions, RunLogWriter(logs_dir))
        result = await queue.run("standup", "Summarise yesterday's commits")
        if not result.ok:
            print(result.stderr)
        await queue.close()
    """

    def __init__(
        self,
        invoker: Invoker,
        sessions: SessionState,
        log_writer: RunLogWriter,
        bus: EventBus | None = None,
        bootstrap_prompt: str = "Wakeup, my friend!",
    ) -> None:
        self._invoker = invoker
        self._sessions = sessions
        self._log_writer = log_writer
        self._bus = bus
        self._bootstrap_prompt = bootstrap_prompt

        self._pending: asyncio.Queue[_RunRequest | None] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._closed = False
        self._current: str | None = None

    @property
    def pending(self) -> int:
        """Runs waiting behind the current one."""
        return self._pending.qsize()

    @property
    def busy(self) -> bool:
        return self._current is not None

    @property
    def current(self) -> str | None:
        """Name of the run being executed right now."""
        return self._current

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Public API ───────────────────────────────────────────────────────────

    async def run(self, name: str, prompt: str) -> RunResult:
        """
        Enqueue a run and wait for its result.

        Waits for every run enqueued earlier, then for this one.

        Raises:
            QueueClosedError: close() has been called
        """
        if self._closed:
            raise QueueClosedError(f"Queue is closed; run {name!r} rejected")

        future = asyncio.get_running_loop().create_future()
        self._ensure_worker()
        self._pending.put_nowait(_RunRequest(name=name, prompt=prompt, future=future))
        logger.debug(f"Run {name!r} queued ({self._pending.qsize()} pending)")
        await emit_if(self._bus, Event(
            type=EventType.RUN_QUEUED,
            source="queue",
            data={"name": name},
        ))
        # shield: a cancelled caller must not un-queue the run
        return await asyncio.shield(future)

    async def bootstrap(self) -> RunResult | None:
        """Create the session now if there is none. No-op when one exists."""
        if await self._sessions.peek() is not None:
            return None
        logger.info("Bootstrapping new session...")
        result = await self.run(BOOTSTRAP_NAME, self._bootstrap_prompt)
        if result.ok:
            logger.info("Bootstrap complete, session is live")
        else:
            logger.warning(f"Bootstrap failed (exit {result.exit_code}): {result.stderr.strip()}")
        return result

    async def close(self) -> None:
        """Stop accepting runs and wait for the ones already queued."""
        if self._closed:
            return
        self._closed = True
        if self._worker is None:
            return
        self._pending.put_nowait(None)
        await self._worker
        self._worker = None
        logger.debug("Execution queue closed")

    # ── Worker ───────────────────────────────────────────────────────────────

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="execution-queue")

    async def _drain(self) -> None:
        while True:
            request = await self._pending.get()
            if request is None:
                break
            self._current = request.name
            try:
                result = await self._execute(request.name, request.prompt)
            except Exception as e:
                logger.exception(f"Run {request.name!r} crashed: {e}")
                result = RunResult(stdout="", stderr=f"Internal error: {e}", exit_code=1)
            finally:
                self._current = None
            if not request.future.done():
                request.future.set_result(result)

    async def _execute(self, name: str, prompt: str) -> RunResult:
        generation = self._sessions.generation
        existing = await self._sessions.get()
        is_new = existing is None
        session_id = existing.session_id if existing else "unknown"

        logger.info(
            f"Running: {name} "
            f"({'new session' if is_new else f'resume {existing.short_id}'})"
        )
        await emit_if(self._bus, Event(
            type=EventType.RUN_STARTED,
            source="queue",
            data={"name": name, "new_session": is_new},
        ))

        try:
            output = await self._invoker.invoke(
                prompt, None if is_new else existing.session_id
            )
        except ExternalProcessError as e:
            logger.warning(f"Run {name!r}: {e.message}")
            output = ProcessOutput(stdout="", stderr=e.message, exit_code=e.exit_code)

        stdout, stderr = output.stdout, output.stderr
        if is_new and output.exit_code == 0:
            try:
                new_id, stdout = parse_new_session(output.stdout)
            except SessionParseError as e:
                logger.error(f"Failed to parse session from agent output: {e.message}")
                stdout = ""
            else:
                session_id = new_id
                try:
                    await self._sessions.create(new_id, generation=generation)
                except SessionPersistError as e:
                    logger.error(e.message)
                    stderr = f"{stderr}\n" if stderr else ""
                    stderr += f"Warning: {e.message}"

        result = RunResult(stdout=stdout, stderr=stderr, exit_code=output.exit_code)
        path = await self._log_writer.write(
            name, prompt, session_id, is_new, result.exit_code, result.stdout, result.stderr
        )
        logger.info(f"Done: {name} (exit {result.exit_code}) -> {path}")
        await emit_if(self._bus, Event(
            type=EventType.RUN_COMPLETE,
            source="queue",
            data={"name": name, "exit_code": result.exit_code, "log": str(path) if path else None},
        ))
        return result
