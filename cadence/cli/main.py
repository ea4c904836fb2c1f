"""
Cadence CLI entry point.

Commands:
    cadence start                 — Run the daemon in the foreground
    cadence stop                  — Stop a running daemon
    cadence status                — Daemon, heartbeat, jobs and session at a glance
    cadence run NAME PROMPT       — One queued run, output printed
    cadence next EXPR             — When a schedule expression fires next
    cadence jobs list|add|quick|remove
    cadence session show|reset|clear
    cadence logs                  — Daemon log tail + recent run records
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cadence.core.config import CadenceConfig
from cadence.core.errors import CadenceError, ConfigError

app = typer.Typer(
    name="cadence",
    help="Cadence — scheduled prompts against one long-lived agent session.",
    add_completion=False,
)
jobs_app = typer.Typer(help="Manage scheduled jobs.", no_args_is_help=True)
session_app = typer.Typer(help="Inspect or retire the agent session.", no_args_is_help=True)
app.add_typer(jobs_app, name="jobs")
app.add_typer(session_app, name="session")

console = Console()


def get_user_config_path() -> Path:
    return Path.home() / ".cadence" / "config.toml"


def get_project_config_path() -> Path:
    return Path.cwd() / "cadence.toml"


def _load_config() -> CadenceConfig:
    try:
        return CadenceConfig.load()
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e.message}")
        raise typer.Exit(1)


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(1)


def _fmt_ts(value: float | None) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S")


def _fmt_duration(seconds: int | None) -> str:
    if seconds is None:
        return "-"
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


# ━━━ Daemon ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@app.command()
def start(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Run the daemon in the foreground until interrupted."""
    from cadence.daemon import Daemon
    from cadence.middleware.logging import setup_logging

    config = _load_config()
    setup_logging(
        log_dir=config.get_logs_dir(),
        console_level=logging.DEBUG if verbose else logging.INFO,
    )
    console.print(
        f"[bold cyan]Cadence[/bold cyan] starting "
        f"[dim](state: {config.get_state_dir()}, security: {config.security.level.value})[/dim]"
    )
    try:
        asyncio.run(Daemon(config).run_forever())
    except CadenceError as e:
        _fail(e.message)


@app.command()
def stop() -> None:
    """Stop the running daemon."""
    from cadence.daemon import stop_running_daemon

    pid = stop_running_daemon(_load_config())
    if pid is None:
        console.print("[dim]No daemon running.[/dim]")
    else:
        console.print(f"[green]Stopped daemon[/green] (pid {pid})")


@app.command()
def status() -> None:
    """Show daemon, heartbeat, jobs and session state."""
    snapshot = asyncio.run(_collect_status(_load_config()))

    d = snapshot["daemon"]
    hb = snapshot["heartbeat"]
    session = snapshot["session"]

    lines = [
        f"[bold]Daemon:[/bold] "
        + (f"[green]running[/green] pid {d['pid']}, up {_fmt_duration(d['uptime_seconds'])}"
           if d["running"] else "[dim]not running[/dim]"),
        f"[bold]Security:[/bold] {snapshot['security']}",
        f"[bold]Timezone offset:[/bold] {snapshot['timezone_offset_minutes']:+d} min",
        f"[bold]Telegram:[/bold] {'configured' if snapshot['telegram'] else 'not configured'}",
        f"[bold]Heartbeat:[/bold] "
        + (f"every {hb['interval']}m, next {_fmt_ts(hb['next_at'])}" if hb["enabled"] else "disabled"),
        f"[bold]Session:[/bold] "
        + (f"{session['id']} (created {session['created_at']}, last used {session['last_used_at']})"
           if session else "[dim]none[/dim]"),
    ]
    console.print(Panel("\n".join(lines), title="Cadence", border_style="cyan"))
    _print_jobs(snapshot["jobs"])


async def _collect_status(config: CadenceConfig) -> dict:
    from cadence.daemon import Daemon

    daemon = Daemon(config)
    try:
        return await daemon.snapshot()
    finally:
        await daemon.stop()


@app.command()
def run(
    name: str = typer.Argument(..., help="Label for the log record"),
    prompt: str = typer.Argument(..., help="Prompt sent to the agent"),
) -> None:
    """Send one prompt through the queue and print the result."""
    from cadence.daemon import read_pid_file

    config = _load_config()
    info = read_pid_file(config.get_pid_path())
    if info and info.alive:
        # The daemon owns the queue; a second one would invoke the agent concurrently
        _fail(f"Daemon running (pid {info.pid}); stop it first with 'cadence stop'")

    result = asyncio.run(_run_once(config, name, prompt))
    if result.stdout:
        console.print(result.stdout, markup=False)
    if not result.ok:
        _fail(f"exit {result.exit_code}: {result.stderr.strip() or 'Unknown error'}")


async def _run_once(config: CadenceConfig, name: str, prompt: str):
    from cadence.daemon import Daemon

    daemon = Daemon(config)
    await daemon.open()
    try:
        return await daemon.queue.run(name, prompt)
    finally:
        await daemon.stop()


@app.command(name="next")
def next_fire(
    expression: str = typer.Argument(..., help='Five-field expression, e.g. "*/15 * * * *"'),
    offset: int = typer.Option(None, "--offset", "-o", help="UTC offset in minutes"),
) -> None:
    """Show when an expression fires next (searches two days ahead)."""
    from cadence.schedule.expression import is_well_formed, next_fire_after, shift

    if not is_well_formed(expression):
        _fail(f"Invalid schedule {expression!r}: expected 5 fields")
    if offset is None:
        offset = _load_config().schedule.timezone_offset_minutes

    at = next_fire_after(expression, datetime.now(timezone.utc), offset)
    if at is None:
        console.print("[yellow]No match within the next 2 days.[/yellow]")
        return
    wall = shift(at, offset).strftime("%Y-%m-%d %H:%M")
    console.print(f"{wall} [dim](offset {offset:+d} min, {at.isoformat()})[/dim]")


# ━━━ Jobs ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


async def _with_store(config: CadenceConfig, fn):
    from cadence.schedule.store import JobStore

    store = JobStore(config.get_db_path())
    await store.initialize()
    try:
        return await fn(store)
    finally:
        await store.close()


def _print_jobs(jobs: list[dict]) -> None:
    if not jobs:
        console.print("[dim]No jobs.[/dim]")
        return
    table = Table(title="Jobs", border_style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Schedule")
    table.add_column("Recurring")
    table.add_column("Next")
    table.add_column("Prompt", overflow="ellipsis", max_width=50)
    for job in jobs:
        table.add_row(
            job["name"],
            job["schedule"],
            "yes" if job["recurring"] else "once",
            job.get("next_at") or "-",
            job["prompt"],
        )
    console.print(table)


@jobs_app.command("list")
def jobs_list() -> None:
    """List jobs in the order they were added."""
    from cadence.schedule.expression import next_fire_after

    config = _load_config()
    jobs = asyncio.run(_with_store(config, lambda s: s.list()))
    now = datetime.now(timezone.utc)
    offset = config.schedule.timezone_offset_minutes
    rows = []
    for job in jobs:
        at = next_fire_after(job.schedule, now, offset)
        rows.append({**job.to_dict(), "next_at": at.isoformat() if at else None})
    _print_jobs(rows)


@jobs_app.command("add")
def jobs_add(
    name: str = typer.Argument(..., help="Unique job name"),
    schedule: str = typer.Argument(..., help='Five-field expression, e.g. "0 9 * * 1-5"'),
    prompt: str = typer.Argument(..., help="Prompt sent when the job fires"),
    once: bool = typer.Option(False, "--once", help="Delete the job after it fires"),
) -> None:
    """Add a named job."""
    config = _load_config()
    try:
        job = asyncio.run(_with_store(config, lambda s: s.add(name, schedule, prompt, not once)))
    except CadenceError as e:
        _fail(e.message)
    console.print(f"[green]Added[/green] {job.name} ({job.schedule})")


@jobs_app.command("quick")
def jobs_quick(
    prompt: str = typer.Argument(..., help="Prompt sent when the job fires"),
    at: str = typer.Option(None, "--at", help="Daily wall-clock time HH:MM"),
    in_minutes: int = typer.Option(None, "--in", help="Minutes from now (1-1440)"),
    schedule: str = typer.Option(None, "--schedule", "-s", help="Explicit expression"),
    once: bool = typer.Option(False, "--once", help="Delete the job after it fires"),
) -> None:
    """Add a job under a generated name."""
    from cadence.schedule.expression import schedule_for_clock, schedule_in_minutes

    config = _load_config()
    chosen = [v for v in (at, in_minutes, schedule) if v is not None]
    if len(chosen) != 1:
        _fail("Give exactly one of --at, --in or --schedule")

    if at is not None:
        try:
            schedule = schedule_for_clock(at)
        except ValueError as e:
            _fail(str(e))
    elif in_minutes is not None:
        schedule = schedule_in_minutes(
            in_minutes, datetime.now(timezone.utc), config.schedule.timezone_offset_minutes
        )

    try:
        job = asyncio.run(_with_store(config, lambda s: s.add_quick(schedule, prompt, not once)))
    except CadenceError as e:
        _fail(e.message)
    console.print(f"[green]Added[/green] {job.name} ({job.schedule})")


@jobs_app.command("remove")
def jobs_remove(name: str = typer.Argument(..., help="Job name")) -> None:
    """Remove a job. Removing a missing job is not an error."""
    config = _load_config()
    removed = asyncio.run(_with_store(config, lambda s: s.remove(name)))
    if removed:
        console.print(f"[green]Removed[/green] {name}")
    else:
        console.print(f"[dim]No job named {name}.[/dim]")


# ━━━ Session ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@session_app.command("show")
def session_show() -> None:
    """Show the live session without touching it."""
    from cadence.runner.session import SessionState

    config = _load_config()
    record = asyncio.run(SessionState(config.get_state_dir()).peek())
    if record is None:
        console.print("[dim]No session. The next run creates one.[/dim]")
        return
    console.print(f"[bold]Session:[/bold] {record.session_id}")
    console.print(f"[bold]Created:[/bold] {record.created_at}")
    console.print(f"[bold]Last used:[/bold] {record.last_used_at}")


@session_app.command("reset")
def session_reset() -> None:
    """Forget the live session; the next run starts a new one."""
    from cadence.daemon import read_pid_file
    from cadence.runner.session import SessionState

    config = _load_config()
    info = read_pid_file(config.get_pid_path())
    if info and info.alive:
        # The daemon keeps its own copy of the session in memory
        _fail(
            f"Daemon running (pid {info.pid}); use 'cadence session clear' "
            f"or stop it first"
        )
    asyncio.run(SessionState(config.get_state_dir()).reset())
    console.print("[green]Session reset.[/green]")


@session_app.command("clear")
def session_clear() -> None:
    """Archive the live session and stop a running daemon."""
    from cadence.daemon import clear_session

    archive, pid = asyncio.run(clear_session(_load_config()))
    if archive:
        console.print(f"Session backed up → {archive}")
    else:
        console.print("No active session to back up.")
    if pid:
        console.print(f"Stopped daemon (pid {pid}); the next start creates a fresh session.")
    else:
        console.print("No daemon running. Next start will create a new session.")


# ━━━ Misc ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@app.command()
def logs(
    lines: int = typer.Option(200, "--lines", "-n", help="Daemon log lines (20-2000)"),
) -> None:
    """Show the daemon log tail and the most recent run records."""
    from cadence.runner.logs import read_recent_logs

    config = _load_config()
    recent = asyncio.run(read_recent_logs(config.get_logs_dir(), lines))
    if not recent["daemon"] and not recent["runs"]:
        console.print("[dim]No logs found.[/dim]")
        return
    if recent["daemon"]:
        console.print(Panel(Text(recent["daemon"]), title="daemon.log", border_style="dim"))
    for run_log in recent["runs"]:
        console.print(Panel(Text(run_log["content"]), title=run_log["file"], border_style="cyan"))


@app.command()
def version() -> None:
    """Show Cadence version."""
    from cadence import __version__
    console.print(f"Cadence v{__version__}")


@app.command()
def config() -> None:
    """Show config files and the resolved state paths."""
    cfg = _load_config()

    console.print(Panel("[bold]Cadence Configuration[/bold]", border_style="cyan"))
    for label, path in (("User config", get_user_config_path()), ("Project config", get_project_config_path())):
        console.print(f"[bold]{label}:[/bold] {path}")
        if path.exists():
            console.print(Panel(Text(path.read_text()), title=path.name, border_style="dim"))
        else:
            console.print("[dim]Not found.[/dim]")

    console.print(f"[bold]State dir:[/bold] {cfg.get_state_dir()}")
    console.print(f"[bold]Jobs db:[/bold] {cfg.get_db_path()}")
    console.print(f"[bold]Prompts dir:[/bold] {cfg.get_prompts_dir()}")
    console.print(f"[bold]Agent command:[/bold] {cfg.agent.command}")
    console.print(f"[bold]Security level:[/bold] {cfg.security.level.value}")


if __name__ == "__main__":
    app()
