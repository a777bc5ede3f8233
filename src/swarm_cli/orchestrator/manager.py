"""Agent lifecycle manager.

Coordinates spawning, tracking, stopping and resuming agent processes:

    - Admission control against a running-agent ceiling
    - One directory per agent under ``agents_dir`` (see :mod:`.record`)
    - Startup reconciliation of records left by earlier processes
    - Retention of terminal records by age and by count

Every listing reconciles the returned records with the OS first, so callers
always see current process state rather than cached status.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from swarm_cli.agents import (
    find_executable,
    get_agent,
    parse_agent_kind,
    reply_supported_kinds,
)
from swarm_cli.agents.base import AgentKind, Effort, Mode
from swarm_cli.config import SwarmConfig, default_config, parse_mode
from swarm_cli.errors import (
    AgentStillRunning,
    CliNotAvailable,
    ConcurrencyLimitExceeded,
    ConfigurationError,
    InvalidWorkingDirectory,
    MissingSessionId,
    NotFound,
    ReplyNotSupported,
    SpawnFailure,
)
from swarm_cli.events.timestamps import format_iso, utc_now
from swarm_cli.orchestrator.command import compile_command, compile_reply_command
from swarm_cli.orchestrator.launch import Launcher, get_launcher
from swarm_cli.orchestrator.paths import compute_path_lca, same_path
from swarm_cli.orchestrator.ralph import RalphConfig, build_ralph_prompt, resolve_ralph_task_file
from swarm_cli.orchestrator.record import AgentRecord, AgentStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGENTS = 50
DEFAULT_MAX_CONCURRENT = 10
DEFAULT_CLEANUP_AGE_DAYS = 7
STOP_GRACE_SECONDS = 2.0
WAIT_POLL_SECONDS = 1.0
DEFAULT_WAIT_TIMEOUT = 300.0
MAX_WAIT_TIMEOUT = 600.0


@dataclass
class StopResult:
    """Outcome of stopping every agent of a task."""

    stopped: list[str] = field(default_factory=list)
    already_stopped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"stopped": list(self.stopped), "already_stopped": list(self.already_stopped)}


@dataclass
class WaitResult:
    records: list[AgentRecord]
    timed_out: bool


@dataclass
class TaskSummary:
    """Per-task counts for task listings."""

    task_name: str
    agent_count: int
    running: int
    completed: int
    failed: int
    stopped: int
    latest_activity: datetime
    workspace_dir: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_name": self.task_name,
            "agent_count": self.agent_count,
            "running": self.running,
            "completed": self.completed,
            "failed": self.failed,
            "stopped": self.stopped,
            "latest_activity": format_iso(self.latest_activity),
            "workspace_dir": self.workspace_dir,
        }


def _validate_cwd(cwd: str | None) -> str | None:
    if cwd is None:
        return None
    path = Path(cwd)
    if not path.exists():
        raise InvalidWorkingDirectory(cwd, "does not exist")
    if not path.is_dir():
        raise InvalidWorkingDirectory(cwd, "is not a directory")
    return str(path.resolve())


class AgentManager:
    """Spawns and tracks agent processes stored under ``agents_dir``.

    The manager is meant to be driven from a single asyncio task of control;
    spawns are serialized so the running-count check, the launch and the
    persistence of the new record happen as one sequence.
    """

    def __init__(
        self,
        agents_dir: Path,
        config: SwarmConfig | None = None,
        *,
        max_agents: int = DEFAULT_MAX_AGENTS,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        default_mode: Mode | str | None = None,
        filter_by_cwd: str | None = None,
        cleanup_age_days: float = DEFAULT_CLEANUP_AGE_DAYS,
        launcher: Launcher | None = None,
        ralph: RalphConfig | None = None,
        stop_grace_seconds: float = STOP_GRACE_SECONDS,
    ):
        self.agents_dir = Path(agents_dir)
        self.config = config or default_config()
        self.max_agents = max_agents
        self.max_concurrent = max_concurrent
        self.default_mode = parse_mode(default_mode) or self.config.default_mode
        self.filter_by_cwd = filter_by_cwd
        self.cleanup_age_days = cleanup_age_days
        self.launcher = launcher or get_launcher()
        self.ralph = ralph or RalphConfig.from_env()
        self.stop_grace_seconds = stop_grace_seconds

        self._agents: dict[str, AgentRecord] = {}
        self._init_task: asyncio.Future[None] | None = None
        self._spawn_lock = asyncio.Lock()

    # -- startup -----------------------------------------------------------

    async def initialize(self) -> None:
        """Load persisted agents once per manager; concurrent callers share the work."""
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._load_existing_agents())
        await self._init_task

    async def _load_existing_agents(self) -> None:
        self.agents_dir.mkdir(parents=True, exist_ok=True)
        cutoff = utc_now() - timedelta(days=self.cleanup_age_days)
        loaded = cleaned = filtered = 0

        for entry in sorted(self.agents_dir.iterdir()):
            if not entry.is_dir():
                continue
            record = AgentRecord.load(entry, launcher=self.launcher)
            if record is None:
                continue
            if record.completed_at is not None and record.completed_at < cutoff:
                shutil.rmtree(entry, ignore_errors=True)
                cleaned += 1
                continue
            if self.filter_by_cwd and not same_path(record.cwd, self.filter_by_cwd):
                filtered += 1
                continue
            record.update_status_from_process()
            self._agents[record.agent_id] = record
            loaded += 1

        logger.info(
            f"Loaded {loaded} agents from {self.agents_dir} "
            f"(cleaned {cleaned} older than {self.cleanup_age_days} days, "
            f"filtered {filtered} outside cwd)"
        )

    # -- queries -----------------------------------------------------------

    def _refresh(self, records: list[AgentRecord]) -> list[AgentRecord]:
        for record in records:
            record.update_status_from_process()
        return records

    async def get(self, agent_id: str) -> AgentRecord:
        """Return a reconciled record.

        Raises:
            NotFound: If the id is unknown in memory and on disk.
        """
        await self.initialize()
        record = self._agents.get(agent_id)
        if record is None:
            # Possibly spawned by another manager sharing the directory
            record = AgentRecord.load(self.agents_dir / agent_id, launcher=self.launcher)
            if record is None:
                raise NotFound(agent_id)
            self._agents[agent_id] = record
        record.update_status_from_process()
        return record

    async def list_all(self) -> list[AgentRecord]:
        await self.initialize()
        return self._refresh(list(self._agents.values()))

    async def list_running(self) -> list[AgentRecord]:
        return [r for r in await self.list_all() if r.status is AgentStatus.RUNNING]

    async def list_completed(self) -> list[AgentRecord]:
        return [r for r in await self.list_all() if r.is_terminal]

    async def list_by_task(self, task_name: str) -> list[AgentRecord]:
        await self.initialize()
        return self._refresh([r for r in self._agents.values() if r.task_name == task_name])

    async def list_by_parent_session(self, parent_session_id: str) -> list[AgentRecord]:
        await self.initialize()
        return self._refresh(
            [r for r in self._agents.values() if r.parent_session_id == parent_session_id]
        )

    async def list_tasks(self, limit: int = 10) -> list[TaskSummary]:
        """Summarize tasks, most recently active first."""
        grouped: dict[str, list[AgentRecord]] = defaultdict(list)
        for record in await self.list_all():
            grouped[record.task_name].append(record)

        summaries = []
        for task_name, records in grouped.items():
            counts = {status: 0 for status in AgentStatus}
            for record in records:
                counts[record.status] += 1
            summaries.append(
                TaskSummary(
                    task_name=task_name,
                    agent_count=len(records),
                    running=counts[AgentStatus.RUNNING],
                    completed=counts[AgentStatus.COMPLETED],
                    failed=counts[AgentStatus.FAILED],
                    stopped=counts[AgentStatus.STOPPED],
                    latest_activity=max(r.completed_at or r.started_at for r in records),
                    workspace_dir=compute_path_lca(r.cwd for r in records),
                )
            )
        summaries.sort(key=lambda s: s.latest_activity, reverse=True)
        return summaries[:limit]

    # -- spawning ----------------------------------------------------------

    def _new_agent_id(self) -> str:
        while True:
            agent_id = uuid.uuid4().hex[:8]
            if agent_id not in self._agents and not (self.agents_dir / agent_id).exists():
                return agent_id

    def _resolve_model(self, kind: AgentKind, effort: Effort | str, model: str | None) -> str:
        if model and model.strip():
            return model.strip()
        return self.config.model_for(kind, effort)

    async def _ensure_capacity(self) -> None:
        running = await self.list_running()
        if len(running) >= self.max_concurrent:
            raise ConcurrencyLimitExceeded(self.max_concurrent)

    async def _launch_record(self, argv: list[str], **fields: Any) -> AgentRecord:
        """Launch ``argv`` and persist a new running record for it."""
        if not argv:
            raise ConfigurationError("Compiled command is empty")
        if find_executable(argv[0]) is None:
            raise CliNotAvailable(argv[0])

        record = AgentRecord(
            agent_id=self._new_agent_id(),
            agents_dir=self.agents_dir,
            launcher=self.launcher,
            **fields,
        )
        try:
            record.agent_dir.mkdir(parents=True)
            record.stdout_path.touch()
            record.pid = self.launcher.launch(argv, record.cwd, record.stdout_path)
            record.save_meta()
        except (OSError, SpawnFailure) as e:
            shutil.rmtree(record.agent_dir, ignore_errors=True)
            if isinstance(e, SpawnFailure):
                raise
            raise SpawnFailure(f"Failed to prepare agent directory {record.agent_dir}: {e}") from e

        self._agents[record.agent_id] = record
        logger.info(
            f"Spawned {record.agent_kind} agent {record.agent_id} for task "
            f"'{record.task_name}' (pid {record.pid}, mode {record.mode})"
        )
        self._cleanup_old_agents()
        return record

    async def spawn(
        self,
        task_name: str,
        agent_kind: AgentKind | str,
        prompt: str,
        cwd: str | None = None,
        mode: Mode | str | None = None,
        effort: Effort | str = Effort.DEFAULT,
        model: str | None = None,
        parent_session_id: str | None = None,
        workspace_dir: str | None = None,
    ) -> AgentRecord:
        """Spawn a new agent process.

        Args:
            task_name: Grouping label shared by related agents
            agent_kind: Which CLI to run
            prompt: Instruction for the agent
            cwd: Working directory (defaults to the manager's process cwd)
            mode: plan, edit or ralph (defaults to the manager's default mode)
            effort: Model tier used when ``model`` is not given
            model: Explicit model identifier
            parent_session_id: Caller session that requested the spawn
            workspace_dir: Informational common root of a multi-agent swarm

        Raises:
            ConcurrencyLimitExceeded: If ``max_concurrent`` agents are running.
            CliNotAvailable: If the agent executable is not installed.
            InvalidWorkingDirectory: If ``cwd`` is missing or not a directory.
            ConfigurationError: For unknown kinds, modes or bad templates.
            SpawnFailure: If the process could not be started.
        """
        await self.initialize()
        kind = parse_agent_kind(agent_kind)
        run_mode = parse_mode(mode) if mode is not None else self.default_mode
        if run_mode is None:
            raise ConfigurationError(f"Invalid mode '{mode}'. Use 'plan', 'edit' or 'ralph'.")
        settings = self.config.settings_for(kind)
        if not settings.enabled:
            raise ConfigurationError(f"Agent type '{kind}' is disabled in configuration")

        async with self._spawn_lock:
            await self._ensure_capacity()
            resolved_cwd = _validate_cwd(cwd)

            agent_prompt = prompt
            if run_mode is Mode.RALPH:
                task_file = resolve_ralph_task_file(resolved_cwd, self.ralph)
                agent_prompt = build_ralph_prompt(prompt, task_file)

            argv = compile_command(
                kind,
                agent_prompt,
                run_mode,
                self._resolve_model(kind, effort, model),
                cwd=resolved_cwd,
                settings=settings,
            )
            return await self._launch_record(
                argv,
                task_name=task_name,
                agent_kind=kind,
                prompt=prompt,
                cwd=resolved_cwd,
                workspace_dir=workspace_dir,
                mode=run_mode,
                parent_session_id=parent_session_id,
            )

    async def reply(
        self,
        record: AgentRecord | str,
        message: str,
        effort: Effort | str = Effort.DEFAULT,
        model: str | None = None,
    ) -> AgentRecord:
        """Resume an agent's session with a follow-up message.

        The new record inherits task, mode, cwd, workspace and parent session,
        and both records are linked through ``original_agent_id`` and
        ``reply_agent_ids``.

        Raises:
            NotFound: If ``record`` is an unknown agent id.
            ReplyNotSupported: If the agent's CLI cannot resume sessions.
            AgentStillRunning: If the original agent has not finished.
            MissingSessionId: If the CLI resumes by id and none was captured.
        """
        original = await self.get(record if isinstance(record, str) else record.agent_id)
        agent = get_agent(original.agent_kind)
        if not agent.supports_reply:
            raise ReplyNotSupported(str(original.agent_kind), reply_supported_kinds())
        if original.status is AgentStatus.RUNNING:
            raise AgentStillRunning(original.agent_id)
        if agent.reply_requires_session and not original.session_id:
            raise MissingSessionId(str(original.agent_kind), original.agent_id)

        async with self._spawn_lock:
            await self._ensure_capacity()
            argv = compile_reply_command(
                original.agent_kind,
                message,
                original.session_id,
                original.mode,
                self._resolve_model(original.agent_kind, effort, model),
                cwd=original.cwd,
            )
            new_record = await self._launch_record(
                argv,
                task_name=original.task_name,
                agent_kind=original.agent_kind,
                prompt=message,
                cwd=original.cwd,
                workspace_dir=original.workspace_dir,
                mode=original.mode,
                parent_session_id=original.parent_session_id,
                session_id=original.session_id,
                conversation_turn=original.conversation_turn + 1,
                original_agent_id=original.agent_id,
            )

        original.reply_agent_ids.append(new_record.agent_id)
        original.save_meta()
        return new_record

    # -- stopping ----------------------------------------------------------

    async def stop(self, agent_id: str, task_name: str | None = None) -> bool:
        """Stop a running agent, optionally only if it belongs to ``task_name``.

        Returns:
            True if the agent was signalled, False if it had already finished.

        Raises:
            NotFound: If the agent id is unknown or belongs to another task.
        """
        record = await self.get(agent_id)
        if task_name is not None and record.task_name != task_name:
            raise NotFound(agent_id, task_name)
        if record.status is not AgentStatus.RUNNING:
            return False

        if record.pid is not None:
            self.launcher.terminate(record.pid)
            deadline = time.monotonic() + self.stop_grace_seconds
            while self.launcher.is_alive(record.pid) and time.monotonic() < deadline:
                await asyncio.sleep(0.1)
            if self.launcher.is_alive(record.pid):
                logger.warning(f"Agent {agent_id} ignored SIGTERM, sending SIGKILL")
                self.launcher.kill(record.pid)

        record.mark_stopped()
        record.save_meta()
        logger.info(f"Stopped agent {agent_id}")
        return True

    async def stop_by_task(self, task_name: str) -> StopResult:
        result = StopResult()
        for record in await self.list_by_task(task_name):
            if await self.stop(record.agent_id):
                result.stopped.append(record.agent_id)
            else:
                result.already_stopped.append(record.agent_id)
        return result

    # -- waiting -----------------------------------------------------------

    async def wait_for_task(
        self,
        task_name: str,
        timeout: float = DEFAULT_WAIT_TIMEOUT,
        poll_interval: float = WAIT_POLL_SECONDS,
    ) -> WaitResult:
        """Block until every agent of a task is terminal or ``timeout`` passes.

        ``timeout`` is capped at MAX_WAIT_TIMEOUT seconds.
        """
        timeout = min(max(timeout, 0.0), MAX_WAIT_TIMEOUT)
        deadline = time.monotonic() + timeout
        while True:
            records = await self.list_by_task(task_name)
            if all(r.is_terminal for r in records):
                return WaitResult(records=records, timed_out=False)
            if time.monotonic() >= deadline:
                return WaitResult(records=records, timed_out=True)
            await asyncio.sleep(poll_interval)

    # -- retention ---------------------------------------------------------

    def _cleanup_old_agents(self) -> None:
        terminal = [r for r in self._agents.values() if r.is_terminal]
        excess = len(terminal) - self.max_agents
        if excess <= 0:
            return
        terminal.sort(key=lambda r: r.completed_at or r.started_at)
        for record in terminal[:excess]:
            self._agents.pop(record.agent_id, None)
            shutil.rmtree(record.agent_dir, ignore_errors=True)
        logger.info(f"Evicted {excess} completed agents beyond max_agents={self.max_agents}")
