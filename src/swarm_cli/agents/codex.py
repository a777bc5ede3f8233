"""Codex CLI adapter.

Runs ``codex exec ... --json``. Codex emits ``thread.*``, ``turn.*`` and
``item.*`` records; completed items carry the assistant text, shell commands
and file changes. Codex cannot resume sessions headlessly.
"""

from __future__ import annotations

from typing import Any

from swarm_cli.agents.base import (
    AgentKind,
    BaseAgent,
    Mode,
    ensure_flag,
    remove_flag,
)
from swarm_cli.events.models import AgentEvent, ResultEvent, ResultStatus, ToolCallEvent

_BYPASS_FLAG = "--dangerously-bypass-approvals-and-sandbox"


class CodexAgent(BaseAgent):
    """Adapter for the OpenAI Codex CLI (codex)."""

    kind = AgentKind.CODEX
    template = ("codex", "exec", "--sandbox", "read-only", "{prompt}", "--json")
    executables = ("codex",)

    def ensure_headless_flags(
        self,
        cmd: list[str],
        prompt_text: str,
        mode: Mode,
        cwd: str | None,
    ) -> list[str]:
        return ensure_flag(cmd, "--json")

    def inject_model(self, cmd: list[str], model: str, prompt_text: str) -> list[str]:
        out = list(cmd)
        if "--sandbox" in out:
            idx = out.index("--sandbox")
        elif "exec" in out:
            idx = out.index("exec") + 1
        else:
            idx = 1
        out[idx:idx] = ["--model", model]
        return out

    def apply_edit_mode(self, cmd: list[str]) -> list[str]:
        if _BYPASS_FLAG in cmd or "--full-auto" in cmd:
            return list(cmd)
        # --full-auto implies a workspace-write sandbox; a read-only one would contradict it.
        out = remove_flag(cmd, "--sandbox", takes_value=True)
        return out + ["--full-auto"]

    def apply_ralph_mode(self, cmd: list[str]) -> list[str]:
        out = remove_flag(cmd, "--sandbox", takes_value=True)
        out = remove_flag(out, "--full-auto")
        return ensure_flag(out, _BYPASS_FLAG)

    def extract_session_id(self, raw: dict[str, Any]) -> str | None:
        if raw.get("type") == "thread.started":
            thread_id = raw.get("thread_id")
            return thread_id if isinstance(thread_id, str) and thread_id else None
        return None

    def normalize(self, raw: dict[str, Any]) -> list[AgentEvent]:
        event_type = raw.get("type")
        if event_type == "item.completed":
            return self._item_events(raw.get("item") or {})
        if event_type == "turn.completed":
            return [ResultEvent(agent=str(self.kind), status=ResultStatus.SUCCESS)]
        if event_type == "turn.failed":
            error = raw.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            return [
                ResultEvent(
                    agent=str(self.kind),
                    status=ResultStatus.ERROR,
                    content=message or None,
                )
            ]
        if event_type == "error":
            return [self._error(raw.get("message") or "unknown error")]
        return []

    def _item_events(self, item: dict[str, Any]) -> list[AgentEvent]:
        item_type = item.get("type") or item.get("item_type")
        if item_type in ("agent_message", "assistant_message"):
            text = item.get("text")
            return [self._message(text)] if isinstance(text, str) and text else []
        if item_type == "command_execution":
            command = item.get("command")
            return [
                ToolCallEvent(
                    agent=str(self.kind),
                    tool="bash",
                    args={"command": command, "exit_code": item.get("exit_code")},
                    command=command if isinstance(command, str) else None,
                )
            ]
        if item_type == "file_change":
            events: list[AgentEvent] = []
            for change in item.get("changes") or []:
                if not isinstance(change, dict):
                    continue
                kind = change.get("kind", "update")
                events.append(
                    ToolCallEvent(
                        agent=str(self.kind),
                        tool=f"file_{kind}",
                        args=dict(change),
                        path=change.get("path"),
                    )
                )
            return events
        if item_type == "mcp_tool_call":
            return [
                ToolCallEvent(
                    agent=str(self.kind),
                    tool=str(item.get("tool", "mcp")),
                    args={"server": item.get("server"), "arguments": item.get("arguments")},
                )
            ]
        if item_type == "web_search":
            return [
                ToolCallEvent(
                    agent=str(self.kind),
                    tool="web_search",
                    args={"query": item.get("query")},
                )
            ]
        if item_type == "error":
            return [self._error(item.get("message") or "unknown error")]
        return []
