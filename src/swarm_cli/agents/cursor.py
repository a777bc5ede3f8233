"""Cursor agent adapter (cursor-agent).

The stream format follows Claude's (``system``/``assistant``/``result``)
with its own ``tool_call`` records, keyed by tool family
(``readToolCall``, ``shellToolCall``...).
"""

from __future__ import annotations

from typing import Any

from swarm_cli.agents.base import (
    AgentKind,
    BaseAgent,
    Mode,
    ensure_flag,
    insert_before_prompt,
    text_from_content,
)
from swarm_cli.events.models import AgentEvent, ResultEvent, ResultStatus, ToolCallEvent

_TOOL_NAMES = {
    "readToolCall": "read",
    "writeToolCall": "write",
    "editToolCall": "edit",
    "deleteToolCall": "delete",
    "shellToolCall": "bash",
    "lsToolCall": "ls",
    "grepToolCall": "grep",
    "globToolCall": "glob",
}


class CursorAgent(BaseAgent):
    """Adapter for the Cursor CLI (cursor-agent)."""

    kind = AgentKind.CURSOR
    template = ("cursor-agent", "-p", "--output-format", "stream-json", "{prompt}")
    executables = ("cursor-agent",)

    def ensure_headless_flags(
        self,
        cmd: list[str],
        prompt_text: str,
        mode: Mode,
        cwd: str | None,
    ) -> list[str]:
        out = list(cmd)
        if "-p" not in out and "--print" not in out:
            out = insert_before_prompt(out, prompt_text, "-p")
        return ensure_flag(out, "--output-format", "stream-json")

    def apply_edit_mode(self, cmd: list[str]) -> list[str]:
        if "--force" in cmd:
            return list(cmd)
        return ensure_flag(cmd, "-f")

    def extract_session_id(self, raw: dict[str, Any]) -> str | None:
        if raw.get("type") == "system" and raw.get("subtype") == "init":
            session_id = raw.get("session_id")
            return session_id if isinstance(session_id, str) and session_id else None
        return None

    def normalize(self, raw: dict[str, Any]) -> list[AgentEvent]:
        event_type = raw.get("type")
        if event_type == "assistant":
            text = text_from_content((raw.get("message") or {}).get("content"))
            return [self._message(text)] if text else []
        if event_type == "tool_call":
            # Only the started record carries the arguments we need.
            if raw.get("subtype") != "started":
                return []
            return self._tool_events(raw.get("tool_call") or {})
        if event_type == "result":
            failed = bool(raw.get("is_error")) or raw.get("subtype") not in (None, "success")
            result = raw.get("result")
            return [
                ResultEvent(
                    agent=str(self.kind),
                    status=ResultStatus.ERROR if failed else ResultStatus.SUCCESS,
                    content=result if isinstance(result, str) else None,
                    duration_ms=raw.get("duration_ms"),
                )
            ]
        if event_type == "error":
            return [self._error(raw.get("message") or "unknown error")]
        return []

    def _tool_events(self, tool_call: dict[str, Any]) -> list[AgentEvent]:
        events: list[AgentEvent] = []
        for key, payload in tool_call.items():
            if not isinstance(payload, dict):
                continue
            args = payload.get("args") or {}
            path = args.get("path") if isinstance(args.get("path"), str) else None
            command = args.get("command") if isinstance(args.get("command"), str) else None
            events.append(
                ToolCallEvent(
                    agent=str(self.kind),
                    tool=_TOOL_NAMES.get(key, key),
                    args=dict(args),
                    path=path,
                    command=command,
                )
            )
        return events
