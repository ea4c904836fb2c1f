"""
Cadence Configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (CADENCE_*)
3. Project config (./cadence.toml)
4. User config (~/.cadence/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    CADENCE_AGENT_COMMAND       → agent.command
    CADENCE_SECURITY_LEVEL      → security.level
    CADENCE_TIMEZONE_OFFSET     → schedule.timezone_offset_minutes
    CADENCE_HEARTBEAT_ENABLED   → heartbeat.enabled
    CADENCE_TELEGRAM_TOKEN      → telegram.token
    CADENCE_STATE_DIR           → paths.state_dir
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from cadence.core.errors import ConfigError
from cadence.runner.security import SecurityLevel
from cadence.schedule.expression import clamp_offset

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class AgentConfig(BaseModel):
    """How the external agent process is invoked."""

    command: str = "claude"
    bootstrap_prompt: str = "Wakeup, my friend!"
    preamble: str = "You are running inside Cadence."
    timeout_seconds: int = 0  # 0 = wait forever
    strip_env: list[str] = Field(default_factory=lambda: ["CLAUDECODE"])
    prompts_dir: str = ""  # "" = <state_dir>/prompts
    instructions_file: str = ".claude/CLAUDE.md"


class SecurityConfig(BaseModel):
    """Tool policy handed to the agent on every invocation."""

    level: SecurityLevel = SecurityLevel.MODERATE
    allowed_tools: list[str] = Field(default_factory=list)
    disallowed_tools: list[str] = Field(default_factory=list)
    workspace: str = "."


class ScheduleConfig(BaseModel):
    """Scheduler loop configuration."""

    timezone_offset_minutes: int = 0
    tick_seconds: int = 60
    db_path: str = ""  # "" = <state_dir>/jobs.db

    @field_validator("timezone_offset_minutes", mode="before")
    @classmethod
    def _clamp_offset(cls, value: Any) -> int:
        return clamp_offset(value)

    @field_validator("tick_seconds")
    @classmethod
    def _positive_tick(cls, value: int) -> int:
        return max(1, value)


class ExcludeWindowConfig(BaseModel):
    """A wall-clock window during which the heartbeat stays quiet."""

    start: str
    end: str
    days: list[int] | None = None


class HeartbeatConfig(BaseModel):
    """Periodic check-in prompt."""

    enabled: bool = False
    interval: int = 15  # minutes
    prompt: str = ""
    exclude_windows: list[ExcludeWindowConfig] = Field(default_factory=list)

    @field_validator("interval", mode="before")
    @classmethod
    def _clamp_interval(cls, value: Any) -> int:
        try:
            minutes = round(float(value))
        except (TypeError, ValueError):
            return 15
        return max(1, min(1440, minutes))


class TelegramConfig(BaseModel):
    """Telegram bot used to deliver job and heartbeat results."""

    token: str = ""
    chat_id: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.token and self.chat_id)


class PathsConfig(BaseModel):
    """Where Cadence keeps its state."""

    state_dir: str = ".cadence"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CadenceConfig(BaseModel):
    """Root configuration for Cadence."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> CadenceConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        user_config_path = user_path or Path.home() / ".cadence" / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        project_config_path = project_path or Path.cwd() / "cadence.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        _deep_merge(merged, _load_from_env())

        if overrides:
            _deep_merge(merged, overrides)

        _substitute_env_vars(merged)

        try:
            return CadenceConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    # ── Resolved paths ────────────────────────────────────────────────────────

    def get_state_dir(self) -> Path:
        """State directory (session file, archives, logs, jobs db)."""
        return Path(self.paths.state_dir).expanduser().resolve()

    def get_logs_dir(self) -> Path:
        return self.get_state_dir() / "logs"

    def get_db_path(self) -> Path:
        if self.schedule.db_path:
            return Path(self.schedule.db_path).expanduser()
        return self.get_state_dir() / "jobs.db"

    def get_prompts_dir(self) -> Path:
        if self.agent.prompts_dir:
            return Path(self.agent.prompts_dir).expanduser()
        return self.get_state_dir() / "prompts"

    def get_workspace(self) -> Path:
        return Path(self.security.workspace).expanduser().resolve()

    def get_pid_path(self) -> Path:
        return self.get_state_dir() / "daemon.pid"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def _load_from_env() -> dict[str, Any]:
    """Load configuration from CADENCE_* environment variables."""
    result: dict[str, Any] = {}

    env_mapping = {
        "CADENCE_AGENT_COMMAND": ("agent", "command"),
        "CADENCE_AGENT_TIMEOUT": ("agent", "timeout_seconds"),
        "CADENCE_SECURITY_LEVEL": ("security", "level"),
        "CADENCE_SECURITY_WORKSPACE": ("security", "workspace"),
        "CADENCE_TIMEZONE_OFFSET": ("schedule", "timezone_offset_minutes"),
        "CADENCE_HEARTBEAT_ENABLED": ("heartbeat", "enabled"),
        "CADENCE_HEARTBEAT_INTERVAL": ("heartbeat", "interval"),
        "CADENCE_HEARTBEAT_PROMPT": ("heartbeat", "prompt"),
        "CADENCE_TELEGRAM_TOKEN": ("telegram", "token"),
        "CADENCE_TELEGRAM_CHAT_ID": ("telegram", "chat_id"),
        "CADENCE_STATE_DIR": ("paths", "state_dir"),
    }

    # Kept as strings even when they look numeric
    raw_strings = {"CADENCE_TELEGRAM_TOKEN", "CADENCE_TELEGRAM_CHAT_ID", "CADENCE_HEARTBEAT_PROMPT"}

    for env_var, (section, key) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        result.setdefault(section, {})
        result[section][key] = value if env_var in raw_strings else _convert_value(value)

    return result


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


_ENV_REF = re.compile(r"\$\{([^}]+)\}")


def _substitute(value: str) -> str:
    return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            data[key] = _substitute(value)
        elif isinstance(value, list):
            data[key] = [_substitute(v) if isinstance(v, str) else v for v in value]
