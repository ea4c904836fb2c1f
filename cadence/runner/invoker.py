"""
Agent invocation — one child process per run.

The queue never calls subprocess directly. It goes through an Invoker,
so tests (and alternative agents) can stand in for the real CLI.

New session:     <command> -p PROMPT --output-format json  [security] --append-system-prompt TEXT
Resumed session: <command> -p PROMPT --output-format text  [security] --resume ID --append-system-prompt TEXT
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from cadence.core.errors import ExternalProcessError
from cadence.runner.prompts import build_append_prompt
from cadence.runner.security import build_security_args

if TYPE_CHECKING:
    from cadence.core.config import CadenceConfig

logger = logging.getLogger(__name__)


@dataclass
class ProcessOutput:
    """Raw captured output of one agent process."""

    stdout: str
    stderr: str
    exit_code: int


class Invoker(ABC):
    """Runs the agent once and returns its captured output."""

    @abstractmethod
    async def invoke(self, prompt: str, session_id: str | None = None) -> ProcessOutput:
        """
        Run *prompt* against the agent.

        Args:
            prompt:     Literal prompt text
            session_id: None → create a session (structured JSON output);
                        otherwise resume it (plain-text output)

        Raises:
            ExternalProcessError: the process could not be spawned,
                                  its pipes failed, or it timed out
        """
        ...


class AgentInvoker(Invoker):
    """Spawns the configured agent CLI with piped stdout/stderr."""

    def __init__(self, config: "CadenceConfig") -> None:
        self._config = config

    async def build_args(self, prompt: str, session_id: str | None) -> list[str]:
        agent = self._config.agent
        security = self._config.security
        output_format = "json" if session_id is None else "text"

        args = [agent.command, "-p", prompt, "--output-format", output_format]
        args += build_security_args(
            security.level,
            allowed_tools=security.allowed_tools,
            disallowed_tools=security.disallowed_tools,
        )
        if session_id is not None:
            args += ["--resume", session_id]

        instructions = Path(agent.instructions_file) if agent.instructions_file else None
        append_text = await build_append_prompt(
            preamble=agent.preamble,
            prompts_dir=self._config.get_prompts_dir(),
            instructions_file=instructions,
            level=security.level,
            workspace=self._config.get_workspace(),
        )
        if append_text:
            args += ["--append-system-prompt", append_text]
        return args

    def _child_env(self) -> dict[str, str]:
        # A nested agent refuses to start if it thinks it is inside another one
        env = os.environ.copy()
        for name in self._config.agent.strip_env:
            env.pop(name, None)
        return env

    async def invoke(self, prompt: str, session_id: str | None = None) -> ProcessOutput:
        args = await self.build_args(prompt, session_id)
        timeout = self._config.agent.timeout_seconds or None

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._child_env(),
            )
        except FileNotFoundError as e:
            raise ExternalProcessError(
                f"Agent command not found: {args[0]!r}", exit_code=127
            ) from e
        except OSError as e:
            raise ExternalProcessError(f"Failed to start agent: {e}") from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ExternalProcessError(f"Timed out after {timeout}s", exit_code=-1)
        except OSError as e:
            process.kill()
            await process.wait()
            raise ExternalProcessError(f"Agent I/O failure: {e}") from e

        exit_code = process.returncode if process.returncode is not None else 1
        return ProcessOutput(
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            exit_code=exit_code,
        )
