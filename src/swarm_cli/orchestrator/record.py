"""Process records: one spawned agent and its state machine.

Each record owns ``<agents_dir>/<agent_id>/`` holding ``meta.json`` (the
persisted fields) and ``stdout.log`` (the agent's raw output). Status moves
only forward::

    running -> completed | failed | stopped

Transitions come from a result event in the log, an exit-code sentinel
line, a caller-initiated stop, or reconciliation against OS liveness. A
process that died without reporting anything is recorded as completed;
absence of output is not evidence of failure. This misclassifies crashes
that leave no trace in the log.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path
from typing import Any

from swarm_cli.agents import get_agent
from swarm_cli.agents.base import AgentKind, Mode
from swarm_cli.events.models import AgentEvent, RawEvent, ResultEvent
from swarm_cli.events.timestamps import (
    coerce_datetime,
    extract_timestamp,
    format_iso,
    parse_iso,
    utc_now,
)
from swarm_cli.orchestrator.launch import EXIT_CODE_KEY, Launcher, is_process_alive

logger = logging.getLogger(__name__)

META_FILENAME = "meta.json"
LOG_FILENAME = "stdout.log"


class AgentStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


TERMINAL_STATUSES = frozenset({AgentStatus.COMPLETED, AgentStatus.FAILED, AgentStatus.STOPPED})


@dataclass
class AgentRecord:
    """One spawned (or resumed) agent invocation.

    Persisted fields mirror ``meta.json`` one to one. The event cache, log
    offset and launcher are runtime state and are rebuilt after a restart by
    re-reading the log from the beginning.
    """

    agent_id: str
    task_name: str
    agent_kind: AgentKind
    prompt: str
    agents_dir: Path
    cwd: str | None = None
    workspace_dir: str | None = None
    mode: Mode = Mode.PLAN
    pid: int | None = None
    status: AgentStatus = AgentStatus.RUNNING
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    parent_session_id: str | None = None
    session_id: str | None = None
    conversation_turn: int = 0
    original_agent_id: str | None = None
    reply_agent_ids: list[str] = field(default_factory=list)
    launcher: Launcher | None = field(default=None, repr=False, compare=False)

    _events: list[AgentEvent] = field(default_factory=list, init=False, repr=False, compare=False)
    _read_offset: int = field(default=0, init=False, repr=False, compare=False)
    _last_saved: dict[str, Any] | None = field(default=None, init=False, repr=False, compare=False)

    # -- paths -------------------------------------------------------------

    @property
    def agent_dir(self) -> Path:
        return self.agents_dir / self.agent_id

    @property
    def meta_path(self) -> Path:
        return self.agent_dir / META_FILENAME

    @property
    def stdout_path(self) -> Path:
        return self.agent_dir / LOG_FILENAME

    @property
    def events(self) -> list[AgentEvent]:
        """Snapshot of the events read so far."""
        return list(self._events)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    # -- persistence -------------------------------------------------------

    def to_meta(self) -> dict[str, Any]:
        """Serialize the persisted fields (the ``meta.json`` document)."""
        return {
            "agent_id": self.agent_id,
            "task_name": self.task_name,
            "agent_kind": str(self.agent_kind),
            "prompt": self.prompt,
            "cwd": self.cwd,
            "workspace_dir": self.workspace_dir,
            "mode": str(self.mode),
            "pid": self.pid,
            "status": str(self.status),
            "started_at": format_iso(self.started_at),
            "completed_at": format_iso(self.completed_at),
            "parent_session_id": self.parent_session_id,
            "session_id": self.session_id,
            "conversation_turn": self.conversation_turn,
            "original_agent_id": self.original_agent_id,
            "reply_agent_ids": list(self.reply_agent_ids),
        }

    @classmethod
    def from_meta(
        cls,
        data: dict[str, Any],
        agents_dir: Path,
        launcher: Launcher | None = None,
    ) -> AgentRecord:
        """Rebuild a record from its ``meta.json`` document.

        Raises:
            KeyError, ValueError, TypeError: If required fields are missing or invalid.
        """
        started_at = parse_iso(data.get("started_at"))
        if started_at is None:
            raise ValueError("started_at is missing or not an ISO timestamp")
        pid = data.get("pid")
        record = cls(
            agent_id=str(data["agent_id"]),
            task_name=str(data["task_name"]),
            agent_kind=AgentKind(data["agent_kind"]),
            prompt=str(data.get("prompt", "")),
            agents_dir=agents_dir,
            cwd=data.get("cwd"),
            workspace_dir=data.get("workspace_dir"),
            mode=Mode(data.get("mode", Mode.PLAN)),
            pid=int(pid) if pid is not None else None,
            status=AgentStatus(data.get("status", AgentStatus.RUNNING)),
            started_at=started_at,
            completed_at=parse_iso(data.get("completed_at")),
            parent_session_id=data.get("parent_session_id"),
            session_id=data.get("session_id"),
            conversation_turn=int(data.get("conversation_turn", 0)),
            original_agent_id=data.get("original_agent_id"),
            reply_agent_ids=list(data.get("reply_agent_ids") or []),
            launcher=launcher,
        )
        if record.is_terminal and record.completed_at is None:
            record.completed_at = record.started_at
        if not record.is_terminal:
            record.completed_at = None
        record._last_saved = record.to_meta()
        return record

    @classmethod
    def load(cls, agent_dir: Path, launcher: Launcher | None = None) -> AgentRecord | None:
        """Load a record from its directory; None if missing or malformed."""
        meta_path = agent_dir / META_FILENAME
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
            record = cls.from_meta(data, agent_dir.parent, launcher)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping unreadable agent record {meta_path}: {e}")
            return None
        if record.agent_id != agent_dir.name:
            logger.warning(
                f"Skipping agent record {meta_path}: id {record.agent_id} does not match directory"
            )
            return None
        return record

    def save_meta(self) -> None:
        """Write ``meta.json`` atomically."""
        meta = self.to_meta()
        self.agent_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.meta_path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(meta, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.meta_path)
        self._last_saved = meta

    def persist_if_changed(self) -> bool:
        """Save only when a persisted field changed since the last write."""
        if self.to_meta() == self._last_saved:
            return False
        self.save_meta()
        return True

    # -- state machine -----------------------------------------------------

    def _transition(self, status: AgentStatus, at: datetime | None = None) -> bool:
        """Move to a terminal status; no-op once terminal."""
        if self.is_terminal:
            return False
        self.status = status
        self.completed_at = at or utc_now()
        logger.debug(f"Agent {self.agent_id} -> {status}")
        return True

    def mark_stopped(self) -> bool:
        return self._transition(AgentStatus.STOPPED)

    def is_process_alive(self) -> bool:
        if self.pid is None:
            return False
        if self.launcher is not None:
            return self.launcher.is_alive(self.pid)
        return is_process_alive(self.pid)

    def _log_mtime(self) -> datetime:
        try:
            return datetime.fromtimestamp(self.stdout_path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            return utc_now()

    def read_new_events(self, final: bool = False) -> list[AgentEvent]:
        """Parse log bytes appended since the previous read.

        Args:
            final: Also consume a trailing line without a newline. Set once
                the process is gone and the line can no longer grow.

        Returns:
            Events appended to the cache by this call.
        """
        try:
            size = self.stdout_path.stat().st_size
        except FileNotFoundError:
            return []
        if size <= self._read_offset:
            return []

        with open(self.stdout_path, "rb") as f:
            f.seek(self._read_offset)
            chunk = f.read(size - self._read_offset)
        if not final:
            last_newline = chunk.rfind(b"\n")
            if last_newline < 0:
                return []
            chunk = chunk[: last_newline + 1]
        self._read_offset += len(chunk)

        fallback = self._log_mtime()
        new_events: list[AgentEvent] = []
        for line in chunk.decode("utf-8", errors="replace").splitlines():
            new_events.extend(self._parse_line(line, fallback))
        self._events.extend(new_events)
        return new_events

    def _parse_line(self, line: str, fallback: datetime) -> list[AgentEvent]:
        text = line.strip()
        if not text:
            return []
        agent = get_agent(self.agent_kind)

        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            raw = None
        if not isinstance(raw, dict):
            if agent.is_benign_noise(text):
                return []
            event = agent.normalize_text(text) or RawEvent(content=text)
            return [replace(event, timestamp=format_iso(fallback))]

        if EXIT_CODE_KEY in raw:
            code = raw[EXIT_CODE_KEY]
            status = AgentStatus.COMPLETED if code == 0 else AgentStatus.FAILED
            self._transition(status, fallback)
            return []

        try:
            session_id = agent.extract_session_id(raw) if self.session_id is None else None
            normalized = agent.normalize(raw)
        except (AttributeError, TypeError, KeyError, ValueError) as e:
            logger.debug(f"Agent {self.agent_id}: unrecognized {self.agent_kind} record ({e})")
            return [RawEvent(content=text, timestamp=format_iso(fallback))]
        if session_id:
            self.session_id = session_id

        at = extract_timestamp(raw) or fallback
        events: list[AgentEvent] = []
        for event in normalized:
            event = replace(event, timestamp=format_iso(at))
            if isinstance(event, ResultEvent):
                self._transition(
                    AgentStatus.COMPLETED if event.is_success else AgentStatus.FAILED,
                    at,
                )
            events.append(event)
        return events

    def latest_event_time(self) -> datetime | None:
        times = [coerce_datetime(e.timestamp) for e in self._events]
        known = [t for t in times if t is not None]
        return max(known) if known else None

    def update_status_from_process(self) -> None:
        """Reconcile with the log and the OS process, persisting any change."""
        alive = self.status is AgentStatus.RUNNING and self.is_process_alive()
        self.read_new_events(final=not alive)

        if self.status is AgentStatus.RUNNING and not alive:
            exit_code = None
            if self.launcher is not None and self.pid is not None:
                exit_code = self.launcher.exit_code(self.pid)
            status = AgentStatus.FAILED if exit_code else AgentStatus.COMPLETED
            self._transition(status, self.latest_event_time() or self.started_at or utc_now())

        self.persist_if_changed()

    # -- views -------------------------------------------------------------

    def duration(self) -> str:
        end = self.completed_at or utc_now()
        seconds = max((end - self.started_at).total_seconds(), 0.0)
        if seconds < 60:
            return f"{int(seconds)} seconds"
        return f"{seconds / 60:.1f} minutes"

    def events_since(self, since: datetime | str | None) -> list[AgentEvent]:
        """Events stamped strictly after ``since`` (all events when None)."""
        cutoff = coerce_datetime(since) if isinstance(since, str) else since
        if cutoff is None:
            return self.events
        out = []
        for event in self._events:
            at = coerce_datetime(event.timestamp)
            if at is not None and at > cutoff:
                out.append(event)
        return out

    def to_dict(self) -> dict[str, Any]:
        """API view of the record."""
        return {
            "agent_id": self.agent_id,
            "task_name": self.task_name,
            "agent_type": str(self.agent_kind),
            "status": str(self.status),
            "mode": str(self.mode),
            "cwd": self.cwd,
            "workspace_dir": self.workspace_dir,
            "pid": self.pid,
            "started_at": format_iso(self.started_at),
            "completed_at": format_iso(self.completed_at),
            "duration": self.duration(),
            "event_count": len(self._events),
            "parent_session_id": self.parent_session_id,
            "session_id": self.session_id,
            "conversation_turn": self.conversation_turn,
            "original_agent_id": self.original_agent_id,
            "reply_agent_ids": list(self.reply_agent_ids),
        }
