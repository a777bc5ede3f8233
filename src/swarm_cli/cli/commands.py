"""swarm-cli commands.

Every command except ``doctor --no-json`` prints a single JSON envelope to
stdout; logs go to stderr. Failures exit non-zero with the error's code in
``error_code``.

Exit codes for ``wait``:
  0 -- every agent of the task finished
  1 -- timed out, or an error occurred
  2 -- the task has no agents
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from swarm_cli.agents import check_all_clis
from swarm_cli.config import (
    SwarmConfig,
    get_config_path,
    get_swarm_home,
    load_swarm_config,
    resolve_agents_dir,
)
from swarm_cli.errors import (
    ConfigurationError,
    InvalidArgument,
    NoAgents,
    SwarmError,
    WaitTimedOut,
)
from swarm_cli.events.timestamps import parse_iso
from swarm_cli.orchestrator.manager import DEFAULT_WAIT_TIMEOUT, AgentManager
from swarm_cli.orchestrator.record import AgentStatus

from .envelope import make_envelope

logger = logging.getLogger(__name__)

console = Console()

STATUS_FILTERS = ("running", "completed", "failed", "stopped", "all")

T = TypeVar("T")

app = typer.Typer(
    name="swarm-cli",
    help="Spawn and supervise AI coding agent CLIs in the background (JSON-first)",
    no_args_is_help=True,
)


@dataclass
class CliState:
    home: Path
    agents_dir: Path
    config_path: Path
    config: SwarmConfig


def configure_logging(verbose: bool = False) -> None:
    """Send log records to stderr so stdout stays machine-readable."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _emit(envelope: dict[str, Any]) -> None:
    """Print canonical JSON envelope to stdout."""
    print(json.dumps(envelope))


def _fail(
    command: str,
    error: SwarmError,
    data: dict[str, Any] | None = None,
    exit_code: int = 1,
) -> NoReturn:
    """Print failure envelope and exit non-zero."""
    logger.debug(f"{command} failed: {error}")
    _emit(make_envelope(command, data, error=error))
    raise typer.Exit(exit_code)


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj


def _manager(ctx: typer.Context) -> AgentManager:
    state = _state(ctx)
    return AgentManager(state.agents_dir, state.config)


def _run(command: str, coro: Coroutine[Any, Any, T]) -> T:
    """Run a manager coroutine, turning orchestration errors into envelopes."""
    try:
        return asyncio.run(coro)
    except SwarmError as e:
        _fail(command, e)


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging on stderr"),
    agents_dir: Path = typer.Option(
        None,
        "--agents-dir",
        help="Directory holding agent records (default: <swarm home>/agents)",
    ),
    config_file: Path = typer.Option(
        None,
        "--config",
        help="Path to config.yaml (default: <swarm home>/config.yaml)",
    ),
) -> None:
    """Spawn and supervise AI coding agent CLIs."""
    configure_logging(verbose)
    home = get_swarm_home()
    config_path = config_file or get_config_path(home)
    try:
        config = load_swarm_config(config_path)
        resolved_agents_dir = agents_dir or resolve_agents_dir(home)
    except SwarmError as e:
        _fail(ctx.invoked_subcommand or "swarm", e)
    except RuntimeError as e:
        _fail(ctx.invoked_subcommand or "swarm", ConfigurationError(str(e)))
    ctx.obj = CliState(
        home=home,
        agents_dir=resolved_agents_dir,
        config_path=config_path,
        config=config,
    )


@app.command()
def spawn(
    ctx: typer.Context,
    task: str = typer.Option(..., "--task", "-t", help="Task name grouping related agents"),
    agent: str = typer.Option(
        ..., "--agent", "-a", help="Agent type (claude, codex, gemini, cursor, opencode, copilot)"
    ),
    prompt: str = typer.Option(..., "--prompt", "-p", help="Instruction for the agent"),
    cwd: str = typer.Option(None, "--cwd", help="Working directory for the agent"),
    mode: str = typer.Option(None, "--mode", "-m", help="plan, edit or ralph (default from config)"),
    effort: str = typer.Option("default", "--effort", "-e", help="fast, default or detailed"),
    model: str = typer.Option(None, "--model", help="Explicit model (overrides --effort)"),
    parent_session: str = typer.Option(None, "--parent-session", help="Caller session id"),
    workspace_dir: str = typer.Option(None, "--workspace-dir", help="Common root of the swarm"),
) -> None:
    """Spawn an agent in the background."""
    manager = _manager(ctx)
    record = _run(
        "spawn",
        manager.spawn(
            task,
            agent,
            prompt,
            cwd=cwd,
            mode=mode,
            effort=effort,
            model=model,
            parent_session_id=parent_session,
            workspace_dir=workspace_dir,
        ),
    )
    _emit(make_envelope("spawn", record.to_dict()))


@app.command()
def status(
    ctx: typer.Context,
    task: str = typer.Option(None, "--task", "-t", help="Task name"),
    parent_session: str = typer.Option(
        None, "--parent-session", help="Select agents spawned by this session instead of a task"
    ),
    status_filter: str = typer.Option(
        "all", "--filter", help="running, completed, failed, stopped or all"
    ),
    since: str = typer.Option(None, "--since", help="Only include events after this ISO timestamp"),
    events: bool = typer.Option(False, "--events/--no-events", help="Include normalized events"),
) -> None:
    """Report the status of the agents in a task (or spawned by a session)."""
    if not task and not parent_session:
        _fail("status", InvalidArgument("Pass --task or --parent-session"))
    if status_filter not in STATUS_FILTERS:
        _fail(
            "status",
            InvalidArgument(f"--filter must be one of {', '.join(STATUS_FILTERS)}, got {status_filter!r}"),
        )
    since_dt = parse_iso(since) if since else None
    if since and since_dt is None:
        _fail("status", InvalidArgument(f"--since is not an ISO timestamp: {since}"))

    manager = _manager(ctx)
    if task:
        records = _run("status", manager.list_by_task(task))
        if parent_session:
            records = [r for r in records if r.parent_session_id == parent_session]
    else:
        records = _run("status", manager.list_by_parent_session(parent_session))

    # Counts cover every selected agent, whatever --filter shows
    summary = {str(s): sum(1 for r in records if r.status is s) for s in AgentStatus}

    agents = []
    for record in records:
        if status_filter != "all" and record.status != status_filter:
            continue
        entry = record.to_dict()
        if events or since_dt is not None:
            entry["events"] = [e.to_dict() for e in record.events_since(since_dt)]
        agents.append(entry)

    data = {
        "task_name": task,
        "parent_session_id": parent_session,
        "filter": status_filter,
        "agents": agents,
        "summary": summary,
    }
    _emit(make_envelope("status", data))


@app.command()
def wait(
    ctx: typer.Context,
    task: str = typer.Option(..., "--task", "-t", help="Task name"),
    timeout: float = typer.Option(DEFAULT_WAIT_TIMEOUT, "--timeout", help="Seconds to wait (max 600)"),
) -> None:
    """Block until every agent of a task has finished."""
    manager = _manager(ctx)
    result = _run("wait", manager.wait_for_task(task, timeout=timeout))
    data = {
        "task_name": task,
        "timed_out": result.timed_out,
        "agents": [r.to_dict() for r in result.records],
    }
    if not result.records:
        _fail("wait", NoAgents(task), data, exit_code=2)
    if result.timed_out:
        _fail("wait", WaitTimedOut(task), data)
    _emit(make_envelope("wait", data))


@app.command()
def stop(
    ctx: typer.Context,
    task: str = typer.Argument(..., help="Task name"),
    agent_id: str = typer.Option(None, "--agent", help="Stop only this agent"),
) -> None:
    """Stop the agents of a task (or a single agent of that task)."""
    manager = _manager(ctx)
    if agent_id:
        stopped = _run("stop", manager.stop(agent_id, task_name=task))
        data = {
            "task_name": task,
            "stopped": [agent_id] if stopped else [],
            "already_stopped": [] if stopped else [agent_id],
        }
    else:
        result = _run("stop", manager.stop_by_task(task))
        data = {"task_name": task, **result.to_dict()}
    _emit(make_envelope("stop", data))


@app.command()
def reply(
    ctx: typer.Context,
    agent_id: str = typer.Argument(..., help="Agent to resume"),
    message: str = typer.Argument(..., help="Follow-up message"),
    effort: str = typer.Option("default", "--effort", "-e", help="fast, default or detailed"),
    model: str = typer.Option(None, "--model", help="Explicit model (overrides --effort)"),
) -> None:
    """Resume an agent's session with a follow-up message."""
    manager = _manager(ctx)
    record = _run("reply", manager.reply(agent_id, message, effort=effort, model=model))
    _emit(make_envelope("reply", record.to_dict()))


@app.command()
def tasks(
    ctx: typer.Context,
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum number of tasks"),
) -> None:
    """List tasks, most recently active first."""
    manager = _manager(ctx)
    summaries = _run("tasks", manager.list_tasks(limit=limit))
    _emit(make_envelope("tasks", {"tasks": [s.to_dict() for s in summaries]}))


@app.command()
def doctor(
    ctx: typer.Context,
    json_output: bool = typer.Option(True, "--json/--no-json", help="Output as JSON"),
) -> None:
    """Check which agent CLIs are installed."""
    state = _state(ctx)
    clis = check_all_clis()
    enabled = {str(k) for k in state.config.enabled_kinds()}
    for kind, info in clis.items():
        info["enabled"] = kind in enabled

    if json_output:
        _emit(
            make_envelope(
                "doctor",
                {
                    "agents": clis,
                    "swarm_home": str(state.home),
                    "agents_dir": str(state.agents_dir),
                    "config_path": str(state.config_path),
                    "default_mode": str(state.config.default_mode),
                },
            )
        )
        return

    table = Table(title="Agent CLIs")
    table.add_column("Agent", style="cyan")
    table.add_column("Enabled")
    table.add_column("Installed")
    table.add_column("Path / Error")
    for kind, info in clis.items():
        table.add_row(
            kind,
            "yes" if info["enabled"] else "[dim]no[/dim]",
            "[green]yes[/green]" if info["installed"] else "[red]no[/red]",
            info["path"] or f"[dim]{info['error']}[/dim]",
        )
    console.print(table)
    console.print(f"Agents dir: {state.agents_dir}")
