"""Tests for cadence/runner/invoker.py, security.py and prompts.py"""
from __future__ import annotations

import json
import stat
import sys

import pytest

from cadence.core.config import CadenceConfig
from cadence.core.errors import ExternalProcessError
from cadence.runner.invoker import AgentInvoker
from cadence.runner.prompts import build_append_prompt, load_prompt_fragments
from cadence.runner.security import (
    SecurityLevel,
    build_security_args,
    needs_scope_prompt,
    scope_prompt,
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses a shell script as the agent")


def _script(tmp_path, body: str):
    path = tmp_path / "fake-agent"
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return path


def _config(tmp_path, **agent) -> CadenceConfig:
    return CadenceConfig(
        paths={"state_dir": str(tmp_path / "state")},
        security={"workspace": str(tmp_path)},
        agent={"instructions_file": "", **agent},
    )


class TestSecurityArgs:
    def test_locked_allows_read_tools_only(self):
        args = build_security_args(SecurityLevel.LOCKED)
        assert args == ["--dangerously-skip-permissions", "--tools", "Read,Grep,Glob"]

    def test_strict_denies_side_effects(self):
        args = build_security_args("strict")
        assert args == ["--dangerously-skip-permissions", "--disallowedTools", "Bash,WebSearch,WebFetch"]

    @pytest.mark.parametrize("level", ["moderate", "unrestricted"])
    def test_permissive_tiers_pass_through(self, level):
        assert build_security_args(level) == ["--dangerously-skip-permissions"]

    def test_explicit_tool_lists(self):
        args = build_security_args("moderate", ["Read", "Edit"], ["Bash"])
        assert args[-4:] == ["--allowedTools", "Read Edit", "--disallowedTools", "Bash"]

    def test_scope_prompt(self, tmp_path):
        assert needs_scope_prompt("moderate")
        assert needs_scope_prompt(SecurityLevel.LOCKED)
        assert not needs_scope_prompt("unrestricted")
        assert str(tmp_path) in scope_prompt(tmp_path)

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError):
            build_security_args("yolo")


@pytest.mark.asyncio
class TestPrompts:
    async def test_missing_dir_is_empty(self, tmp_path):
        assert await load_prompt_fragments(tmp_path / "nope") == ""

    async def test_fragments_sorted_and_blank_skipped(self, tmp_path):
        (tmp_path / "b.md").write_text("second\n")
        (tmp_path / "a.md").write_text("first")
        (tmp_path / "c.md").write_text("   \n")
        assert await load_prompt_fragments(tmp_path) == "first\n\nsecond"

    async def test_unreadable_fragment_skipped(self, tmp_path):
        (tmp_path / "a.md").write_bytes(b"\xff\xfe\x00bad")
        (tmp_path / "b.md").write_text("good")
        assert await load_prompt_fragments(tmp_path) == "good"

    async def test_build_append_prompt(self, tmp_path):
        prompts = tmp_path / "prompts"
        prompts.mkdir()
        (prompts / "01.md").write_text("Be brief.")
        instructions = tmp_path / "CLAUDE.md"
        instructions.write_text("Project rules.")

        text = await build_append_prompt(
            preamble="You are running inside Cadence.",
            prompts_dir=prompts,
            instructions_file=instructions,
            level=SecurityLevel.MODERATE,
            workspace=tmp_path,
        )
        parts = text.split("\n\n")
        assert parts[:3] == ["You are running inside Cadence.", "Be brief.", "Project rules."]
        assert "CRITICAL SECURITY CONSTRAINT" in parts[3]

    async def test_unrestricted_has_no_scope(self, tmp_path):
        text = await build_append_prompt("Hi.", tmp_path / "none", None, "unrestricted", tmp_path)
        assert text == "Hi."


@pytest.mark.asyncio
class TestAgentInvoker:
    async def test_new_session_args(self, tmp_path):
        invoker = AgentInvoker(_config(tmp_path, command="agent"))
        args = await invoker.build_args("hello", None)
        assert args[:5] == ["agent", "-p", "hello", "--output-format", "json"]
        assert "--resume" not in args
        assert args[-2] == "--append-system-prompt"

    async def test_resume_args(self, tmp_path):
        invoker = AgentInvoker(_config(tmp_path, command="agent"))
        args = await invoker.build_args("hello", "abc")
        assert args[3:5] == ["--output-format", "text"]
        i = args.index("--resume")
        assert args[i + 1] == "abc"

    @posix_only
    async def test_captures_output(self, tmp_path):
        script = _script(
            tmp_path,
            'echo \'{"session_id": "s1", "result": "ok"}\'\necho "careful" >&2\nexit 3\n',
        )
        out = await AgentInvoker(_config(tmp_path, command=str(script))).invoke("hi")
        assert json.loads(out.stdout) == {"session_id": "s1", "result": "ok"}
        assert out.stderr.strip() == "careful"
        assert out.exit_code == 3

    @posix_only
    async def test_strips_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CLAUDECODE", "1")
        script = _script(tmp_path, 'echo "nested=${CLAUDECODE:-no}"\n')
        out = await AgentInvoker(_config(tmp_path, command=str(script))).invoke("hi", "abc")
        assert out.stdout.strip() == "nested=no"

    async def test_missing_command(self, tmp_path):
        invoker = AgentInvoker(_config(tmp_path, command=str(tmp_path / "does-not-exist")))
        with pytest.raises(ExternalProcessError) as exc:
            await invoker.invoke("hi")
        assert exc.value.exit_code == 127

    @posix_only
    async def test_timeout(self, tmp_path):
        script = _script(tmp_path, "sleep 5\n")
        invoker = AgentInvoker(_config(tmp_path, command=str(script), timeout_seconds=1))
        with pytest.raises(ExternalProcessError) as exc:
            await invoker.invoke("hi")
        assert exc.value.exit_code == -1
        assert exc.value.message == "Timed out after 1s"
