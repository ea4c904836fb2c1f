"""
Security tiers — what the agent may touch on each invocation.

    locked        read-type tools only (Read, Grep, Glob)
    strict        everything except Bash, WebSearch, WebFetch
    moderate      all tools, told to stay inside the workspace
    unrestricted  all tools, no workspace instruction

The tier is turned into agent command-line flags here; the workspace
instruction is appended to the system prompt by the prompt builder.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path


class SecurityLevel(str, Enum):
    LOCKED = "locked"
    STRICT = "strict"
    MODERATE = "moderate"
    UNRESTRICTED = "unrestricted"


READ_ONLY_TOOLS = ("Read", "Grep", "Glob")
STRICT_DENIED_TOOLS = ("Bash", "WebSearch", "WebFetch")


def build_security_args(
    level: SecurityLevel,
    allowed_tools: list[str] | None = None,
    disallowed_tools: list[str] | None = None,
) -> list[str]:
    """Agent CLI flags for *level* plus any explicitly configured tool lists."""
    level = SecurityLevel(level)
    # Runs are unattended; there is nobody to answer permission prompts.
    args = ["--dangerously-skip-permissions"]

    if level is SecurityLevel.LOCKED:
        args += ["--tools", ",".join(READ_ONLY_TOOLS)]
    elif level is SecurityLevel.STRICT:
        args += ["--disallowedTools", ",".join(STRICT_DENIED_TOOLS)]

    if allowed_tools:
        args += ["--allowedTools", " ".join(allowed_tools)]
    if disallowed_tools:
        args += ["--disallowedTools", " ".join(disallowed_tools)]
    return args


def needs_scope_prompt(level: SecurityLevel) -> bool:
    return SecurityLevel(level) is not SecurityLevel.UNRESTRICTED


def scope_prompt(workspace: Path) -> str:
    """Instruction confining the agent to *workspace*."""
    return "\n".join([
        f"CRITICAL SECURITY CONSTRAINT: You are scoped to the project directory: {workspace}",
        "You MUST NOT read, write, edit, or delete any file outside this directory.",
        "You MUST NOT run bash commands that modify anything outside this directory "
        "(no cd /, no /etc, no ~/, no ../.. escapes).",
        "If a request requires accessing files outside the project, refuse and explain why.",
    ])
