"""Completion monitor for spawned agents.

Polls the ``meta.json`` files under an agents directory and calls a
notifier whenever an agent moves from running to a terminal status. Agents
already terminal when the monitor starts are never reported.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from swarm_cli.events.timestamps import parse_iso
from swarm_cli.orchestrator.record import META_FILENAME, AgentStatus, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.5

Notifier = Callable[[dict[str, Any]], Awaitable[None] | None]


def _read_meta(meta_path: Path) -> dict[str, Any] | None:
    try:
        data = json.loads(meta_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def build_completion_payload(meta: dict[str, Any]) -> dict[str, Any]:
    """Notification payload for a finished agent."""
    started = parse_iso(meta.get("started_at"))
    completed = parse_iso(meta.get("completed_at"))
    duration_ms = None
    if started and completed:
        duration_ms = int((completed - started).total_seconds() * 1000)
    return {
        "type": "agent_completed",
        "task_name": meta.get("task_name"),
        "agent_id": meta.get("agent_id"),
        "agent_type": meta.get("agent_kind"),
        "status": meta.get("status"),
        "duration_ms": duration_ms,
        "completed_at": meta.get("completed_at"),
    }


class CompletionMonitor:
    """Watches an agents directory for running -> terminal transitions."""

    def __init__(
        self,
        agents_dir: Path,
        notifier: Notifier,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.agents_dir = Path(agents_dir)
        self.notifier = notifier
        self.poll_interval = poll_interval
        self._known: dict[str, str] = {}
        self._task: asyncio.Task[None] | None = None

    def _scan(self) -> list[dict[str, Any]]:
        if not self.agents_dir.is_dir():
            return []
        metas = []
        for entry in sorted(self.agents_dir.iterdir()):
            meta = _read_meta(entry / META_FILENAME) if entry.is_dir() else None
            if meta and meta.get("agent_id"):
                metas.append(meta)
        return metas

    def prime(self) -> None:
        """Record current statuses so pre-existing completions are not reported."""
        for meta in self._scan():
            self._known[meta["agent_id"]] = str(meta.get("status"))

    async def poll_once(self) -> list[dict[str, Any]]:
        """Check every agent once and notify for new completions.

        Returns:
            Payloads for the completions found by this poll.
        """
        payloads = []
        for meta in self._scan():
            agent_id = meta["agent_id"]
            status = str(meta.get("status"))
            previous = self._known.get(agent_id)
            self._known[agent_id] = status
            if previous == AgentStatus.RUNNING and status in TERMINAL_STATUSES:
                payload = build_completion_payload(meta)
                payloads.append(payload)
                await self._notify(payload)
        return payloads

    async def _notify(self, payload: dict[str, Any]) -> None:
        try:
            result = self.notifier(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # A disconnected consumer must not stop monitoring
            logger.debug(f"Completion notifier failed for {payload.get('agent_id')}: {e}")

    async def run(self) -> None:
        """Poll until cancelled."""
        self.prime()
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.poll_once()
            except Exception as e:
                logger.debug(f"Completion monitor poll failed: {e}")

    def start(self) -> asyncio.Task[None]:
        """Start polling in the background on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
