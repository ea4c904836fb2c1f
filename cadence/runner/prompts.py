"""
Static instructions appended to every invocation.

The agent's --append-system-prompt does not survive a resume, so the
full text is rebuilt and passed on every run:

    preamble
    prompt fragments (every file in the prompts dir, sorted by name)
    project instructions file (e.g. .claude/CLAUDE.md)
    workspace scope instruction (unless unrestricted)

Unreadable fragments are logged and skipped. A missing prompts dir is
not an error.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiofiles

from cadence.runner.security import SecurityLevel, needs_scope_prompt, scope_prompt

logger = logging.getLogger(__name__)


async def _read_text(path: Path) -> str:
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        return await f.read()


async def load_prompt_fragments(prompts_dir: Path) -> str:
    """Concatenate every non-empty file in *prompts_dir*, in name order."""
    if not prompts_dir.exists():
        return ""
    try:
        files = sorted(p for p in prompts_dir.iterdir() if p.is_file())
    except OSError as e:
        logger.warning(f"Failed to read prompts directory {prompts_dir}: {e}")
        return ""

    parts: list[str] = []
    for path in files:
        try:
            content = (await _read_text(path)).strip()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read prompt file {path.name}: {e}")
            continue
        if content:
            parts.append(content)
    return "\n\n".join(parts)


async def build_append_prompt(
    preamble: str,
    prompts_dir: Path,
    instructions_file: Path | None,
    level: SecurityLevel,
    workspace: Path,
) -> str:
    parts: list[str] = []
    if preamble.strip():
        parts.append(preamble.strip())

    fragments = await load_prompt_fragments(prompts_dir)
    if fragments:
        parts.append(fragments)

    if instructions_file is not None and instructions_file.is_file():
        try:
            text = (await _read_text(instructions_file)).strip()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read {instructions_file}: {e}")
        else:
            if text:
                parts.append(text)

    if needs_scope_prompt(level):
        parts.append(scope_prompt(workspace))
    return "\n\n".join(parts)
