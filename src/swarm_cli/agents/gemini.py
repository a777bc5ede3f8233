"""Gemini CLI adapter.

Without ``-p`` the gemini CLI tries to attach to an interactive console, so
the flag is always ensured. Read-only runs add ``--approval-mode plan`` which
also keeps gemini from spawning shell tools through node-pty.
"""

from __future__ import annotations

import sys
from typing import Any

from swarm_cli.agents.base import (
    AgentKind,
    BaseAgent,
    Mode,
    ensure_flag,
    insert_before_prompt,
    remove_flag,
)
from swarm_cli.events.models import AgentEvent, ResultEvent, ResultStatus, ToolCallEvent

# node-pty's Windows console helper prints these when gemini runs detached.
_WIN32_NOISE_MARKERS = ("AttachConsole failed", "conpty_console_list_agent")


class GeminiAgent(BaseAgent):
    """Adapter for the Google Gemini CLI (gemini)."""

    kind = AgentKind.GEMINI
    template = ("gemini", "-p", "{prompt}", "--output-format", "stream-json")
    executables = ("gemini",)
    supports_reply = True

    def ensure_headless_flags(
        self,
        cmd: list[str],
        prompt_text: str,
        mode: Mode,
        cwd: str | None,
    ) -> list[str]:
        out = list(cmd)
        if "-p" not in out and "--prompt" not in out:
            out = insert_before_prompt(out, prompt_text, "-p")
        out = ensure_flag(out, "--output-format", "stream-json")
        if mode is Mode.PLAN and "--approval-mode" not in out and "--yolo" not in out:
            out += ["--approval-mode", "plan"]
        return out

    def apply_edit_mode(self, cmd: list[str]) -> list[str]:
        out = remove_flag(cmd, "--approval-mode", takes_value=True)
        return ensure_flag(out, "--yolo")

    def build_reply_command(
        self,
        message: str,
        session_id: str | None,
        mode: Mode,
        model: str,
        cwd: str | None = None,
    ) -> list[str]:
        # gemini resumes the latest session of the working directory
        cmd = [
            "gemini", "--resume", "latest", "-p", message,
            "--output-format", "stream-json",
            "--model", model,
        ]
        if mode is Mode.PLAN:
            return cmd + ["--approval-mode", "plan"]
        return self.apply_edit_mode(cmd)

    def extract_session_id(self, raw: dict[str, Any]) -> str | None:
        if raw.get("type") == "init":
            session_id = raw.get("session_id")
            return session_id if isinstance(session_id, str) and session_id else None
        return None

    def is_benign_noise(self, line: str) -> bool:
        if sys.platform != "win32":
            return False
        if any(marker in line for marker in _WIN32_NOISE_MARKERS):
            return True
        return "@lydell" in line and "node-pty" in line

    def normalize(self, raw: dict[str, Any]) -> list[AgentEvent]:
        event_type = raw.get("type")
        if event_type == "message":
            if raw.get("role") not in (None, "assistant"):
                return []
            content = raw.get("content")
            if not isinstance(content, str) or not content:
                return []
            return [self._message(content, complete=not raw.get("delta", False))]
        if event_type == "tool_use":
            params = raw.get("parameters") or {}
            path = params.get("file_path") or params.get("path") or params.get("absolute_path")
            command = params.get("command")
            return [
                ToolCallEvent(
                    agent=str(self.kind),
                    tool=str(raw.get("tool_name", "unknown")),
                    args=dict(params),
                    path=path if isinstance(path, str) else None,
                    command=command if isinstance(command, str) else None,
                )
            ]
        if event_type == "error":
            return [self._error(raw.get("message") or "unknown error")]
        if event_type == "result":
            if raw.get("status") not in ("success", "error"):
                return []
            status = ResultStatus(raw["status"])
            error = raw.get("error")
            content = None
            if isinstance(error, dict):
                content = error.get("message")
            elif isinstance(error, str):
                content = error
            stats = raw.get("stats") or {}
            return [
                ResultEvent(
                    agent=str(self.kind),
                    status=status,
                    content=content,
                    duration_ms=stats.get("duration_ms") if isinstance(stats, dict) else None,
                )
            ]
        return []
