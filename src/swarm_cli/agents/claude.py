"""Claude Code adapter.

Runs ``claude -p`` with ``--output-format stream-json``. Read-only runs use
``--permission-mode plan``; edit runs switch it to ``acceptEdits``; ralph
runs drop it in favour of ``--dangerously-skip-permissions``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from swarm_cli.agents.base import (
    AgentKind,
    BaseAgent,
    Mode,
    ensure_flag,
    insert_before_prompt,
    remove_flag,
    set_flag_value,
    text_from_content,
)
from swarm_cli.errors import MissingSessionId
from swarm_cli.events.models import AgentEvent, ResultEvent, ResultStatus, ToolCallEvent

# Tools whose input names the file they touch.
_PATH_KEYS = ("file_path", "path", "notebook_path")


def claude_settings_path() -> str:
    """User settings file passed via ``--settings`` so permissions are inherited."""
    return str(Path.home() / ".claude" / "settings.json")


class ClaudeAgent(BaseAgent):
    """Adapter for the Claude Code CLI (claude)."""

    kind = AgentKind.CLAUDE
    template = (
        "claude", "-p", "--verbose", "{prompt}",
        "--output-format", "stream-json",
        "--permission-mode", "plan",
    )
    executables = ("claude",)
    supports_reply = True
    reply_requires_session = True

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
        out = ensure_flag(out, "--verbose")
        out = ensure_flag(out, "--output-format", "stream-json")
        out = ensure_flag(out, "--permission-mode", "plan")
        out = ensure_flag(out, "--settings", claude_settings_path())
        if cwd:
            out = ensure_flag(out, "--add-dir", cwd)
        return out

    def apply_edit_mode(self, cmd: list[str]) -> list[str]:
        if "--permission-mode" not in cmd:
            return list(cmd)
        return set_flag_value(cmd, "--permission-mode", "acceptEdits")

    def apply_ralph_mode(self, cmd: list[str]) -> list[str]:
        out = remove_flag(cmd, "--permission-mode", takes_value=True)
        return ensure_flag(out, "--dangerously-skip-permissions")

    def build_reply_command(
        self,
        message: str,
        session_id: str | None,
        mode: Mode,
        model: str,
        cwd: str | None = None,
    ) -> list[str]:
        if not session_id:
            raise MissingSessionId(str(self.kind))
        cmd = [
            "claude", "-r", session_id, "-p", message,
            "--output-format", "stream-json", "--verbose",
            "--permission-mode", "plan",
            "--model", model,
            "--settings", claude_settings_path(),
        ]
        if cwd:
            cmd += ["--add-dir", cwd]
        if mode is Mode.RALPH:
            return self.apply_ralph_mode(cmd)
        if mode is Mode.EDIT:
            return self.apply_edit_mode(cmd)
        return cmd

    def extract_session_id(self, raw: dict[str, Any]) -> str | None:
        if raw.get("type") == "system" and raw.get("subtype") == "init":
            session_id = raw.get("session_id")
            return session_id if isinstance(session_id, str) and session_id else None
        return None

    def normalize(self, raw: dict[str, Any]) -> list[AgentEvent]:
        event_type = raw.get("type")
        if event_type == "assistant":
            return self._assistant_events(raw.get("message") or {})
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
            return [self._error(raw.get("message") or raw.get("error") or "unknown error")]
        return []

    def _assistant_events(self, message: dict[str, Any]) -> list[AgentEvent]:
        events: list[AgentEvent] = []
        content = message.get("content")
        if not isinstance(content, list):
            text = text_from_content(content)
            return [self._message(text)] if text else []
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and block.get("text"):
                events.append(self._message(str(block["text"])))
            elif block.get("type") == "tool_use":
                args = block.get("input") or {}
                path = next((args[k] for k in _PATH_KEYS if isinstance(args.get(k), str)), None)
                command = args.get("command") if isinstance(args.get("command"), str) else None
                events.append(
                    ToolCallEvent(
                        agent=str(self.kind),
                        tool=str(block.get("name", "unknown")),
                        args=dict(args),
                        path=path,
                        command=command,
                    )
                )
        return events
