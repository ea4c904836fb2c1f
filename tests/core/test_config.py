"""Tests for the Config system."""

import pytest

from cadence.core.config import CadenceConfig, _convert_value, _deep_merge, _substitute_env_vars
from cadence.core.errors import ConfigError
from cadence.runner.security import SecurityLevel


@pytest.fixture
def no_files(tmp_path):
    """Config paths that do not exist, so only defaults/env/overrides apply."""
    return {
        "project_path": tmp_path / "missing-project.toml",
        "user_path": tmp_path / "missing-user.toml",
    }


def test_default_config():
    """Default config has sensible values."""
    config = CadenceConfig()

    assert config.agent.command == "claude"
    assert config.agent.bootstrap_prompt == "Wakeup, my friend!"
    assert config.agent.strip_env == ["CLAUDECODE"]
    assert config.agent.timeout_seconds == 0
    assert config.security.level is SecurityLevel.MODERATE
    assert config.schedule.timezone_offset_minutes == 0
    assert config.schedule.tick_seconds == 60
    assert config.heartbeat.enabled is False
    assert config.heartbeat.interval == 15
    assert config.telegram.configured is False
    assert config.paths.state_dir == ".cadence"


def test_load_with_overrides(no_files):
    """Explicit overrides take highest precedence."""
    config = CadenceConfig.load(
        overrides={
            "agent": {"command": "my-agent"},
            "security": {"level": "strict"},
        },
        **no_files,
    )

    assert config.agent.command == "my-agent"
    assert config.security.level is SecurityLevel.STRICT
    # Defaults still work for non-overridden values
    assert config.agent.bootstrap_prompt == "Wakeup, my friend!"


def test_env_var_loading(monkeypatch, no_files):
    """CADENCE_* environment variables are loaded."""
    monkeypatch.setenv("CADENCE_AGENT_COMMAND", "agent-x")
    monkeypatch.setenv("CADENCE_TIMEZONE_OFFSET", "-300")
    monkeypatch.setenv("CADENCE_HEARTBEAT_ENABLED", "yes")
    monkeypatch.setenv("CADENCE_TELEGRAM_TOKEN", "123:abc")
    monkeypatch.setenv("CADENCE_TELEGRAM_CHAT_ID", "42")

    config = CadenceConfig.load(**no_files)

    assert config.agent.command == "agent-x"
    assert config.schedule.timezone_offset_minutes == -300
    assert config.heartbeat.enabled is True
    assert config.telegram.chat_id == "42"
    assert config.telegram.configured is True


def test_precedence_project_over_user(tmp_path, monkeypatch):
    user = tmp_path / "user.toml"
    user.write_text('[agent]\ncommand = "from-user"\npreamble = "user preamble"\n')
    project = tmp_path / "project.toml"
    project.write_text('[agent]\ncommand = "from-project"\n')
    monkeypatch.setenv("CADENCE_SECURITY_LEVEL", "locked")

    config = CadenceConfig.load(project_path=project, user_path=user)

    assert config.agent.command == "from-project"
    assert config.agent.preamble == "user preamble"
    assert config.security.level is SecurityLevel.LOCKED


def test_toml_heartbeat_windows(tmp_path, no_files):
    project = tmp_path / "cadence.toml"
    project.write_text(
        "[heartbeat]\n"
        "enabled = true\n"
        "interval = 30\n"
        'prompt = "Anything new?"\n'
        "[[heartbeat.exclude_windows]]\n"
        'start = "22:00"\n'
        'end = "07:00"\n'
        "days = [0, 6]\n"
    )
    config = CadenceConfig.load(project_path=project, user_path=no_files["user_path"])

    window = config.heartbeat.exclude_windows[0]
    assert (window.start, window.end, window.days) == ("22:00", "07:00", [0, 6])


def test_offset_and_interval_clamped():
    config = CadenceConfig(
        schedule={"timezone_offset_minutes": 5000},
        heartbeat={"interval": 0},
    )
    assert config.schedule.timezone_offset_minutes == 840
    assert config.heartbeat.interval == 1


def test_invalid_config_raises(no_files):
    with pytest.raises(ConfigError):
        CadenceConfig.load(overrides={"security": {"level": "yolo"}}, **no_files)


def test_malformed_toml_raises(tmp_path, no_files):
    bad = tmp_path / "bad.toml"
    bad.write_text("[agent\ncommand = ")
    with pytest.raises(ConfigError):
        CadenceConfig.load(project_path=bad, user_path=no_files["user_path"])


def test_resolved_paths(tmp_path):
    config = CadenceConfig(paths={"state_dir": str(tmp_path / "s")})
    assert config.get_state_dir() == (tmp_path / "s").resolve()
    assert config.get_logs_dir() == config.get_state_dir() / "logs"
    assert config.get_db_path() == config.get_state_dir() / "jobs.db"
    assert config.get_prompts_dir() == config.get_state_dir() / "prompts"
    assert config.get_pid_path().name == "daemon.pid"


def test_env_var_substitution(monkeypatch):
    """${VAR} in config values gets replaced with env var values."""
    monkeypatch.setenv("MY_TOKEN", "secret123")
    data = {"key": "${HOME}/something", "nested": {"token": "${MY_TOKEN}"}, "list": ["${MY_TOKEN}", 1]}

    _substitute_env_vars(data)

    assert data["key"].endswith("/something")
    assert data["nested"]["token"] == "secret123"
    assert data["list"] == ["secret123", 1]


def test_deep_merge():
    base = {"a": 1, "b": {"c": 2, "d": 3}, "e": 5}
    override = {"b": {"c": 20, "f": 6}, "g": 7}

    _deep_merge(base, override)

    assert base == {"a": 1, "b": {"c": 20, "d": 3, "f": 6}, "e": 5, "g": 7}


def test_convert_value():
    assert _convert_value("true") is True
    assert _convert_value("No") is False
    assert _convert_value("42") == 42
    assert _convert_value("1.5") == 1.5
    assert _convert_value("hello") == "hello"
