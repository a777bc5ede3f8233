"""OpenCode adapter.

OpenCode is a multi-provider agent that supports various LLM backends.
Uses the ``opencode run`` subcommand with ``--format json``; permissions are
chosen by agent profile (``--agent plan`` or ``--agent build``) instead of
a flag.
"""

from __future__ import annotations

from typing import Any

from swarm_cli.agents.base import AgentKind, BaseAgent, Mode, ensure_flag
from swarm_cli.events.models import AgentEvent, ResultEvent, ResultStatus, ToolCallEvent


class OpenCodeAgent(BaseAgent):
    """Adapter for the OpenCode CLI (opencode)."""

    kind = AgentKind.OPENCODE
    template = ("opencode", "run", "--format", "json", "{prompt}")
    executables = ("opencode",)

    def ensure_headless_flags(
        self,
        cmd: list[str],
        prompt_text: str,
        mode: Mode,
        cwd: str | None,
    ) -> list[str]:
        out = ensure_flag(cmd, "--format", "json")
        if "--agent" in out:
            return out
        profile = "plan" if mode is Mode.PLAN else "build"
        if prompt_text in out:
            idx = out.index(prompt_text) + 1
            out[idx:idx] = ["--agent", profile]
            return out
        return out + ["--agent", profile]

    def extract_session_id(self, raw: dict[str, Any]) -> str | None:
        session_id = raw.get("sessionID") or (raw.get("part") or {}).get("sessionID")
        return session_id if isinstance(session_id, str) and session_id else None

    def normalize(self, raw: dict[str, Any]) -> list[AgentEvent]:
        event_type = raw.get("type")
        part = raw.get("part") or {}
        if event_type == "text":
            text = part.get("text")
            return [self._message(text)] if isinstance(text, str) and text else []
        if event_type == "tool_use":
            state = part.get("state") or {}
            args = state.get("input") or {}
            path = args.get("filePath") or args.get("path")
            command = args.get("command")
            return [
                ToolCallEvent(
                    agent=str(self.kind),
                    tool=str(part.get("tool", "unknown")),
                    args=dict(args),
                    path=path if isinstance(path, str) else None,
                    command=command if isinstance(command, str) else None,
                )
            ]
        if event_type == "step_finish":
            # Intermediate steps finish with reason "tool-calls"; the last one with "stop".
            if part.get("reason") != "stop":
                return []
            return [ResultEvent(agent=str(self.kind), status=ResultStatus.SUCCESS)]
        if event_type == "error":
            error = raw.get("error") or {}
            message = None
            if isinstance(error, dict):
                message = (error.get("data") or {}).get("message") or error.get("name")
            elif error:
                message = str(error)
            return [
                ResultEvent(
                    agent=str(self.kind),
                    status=ResultStatus.ERROR,
                    content=message or "unknown error",
                )
            ]
        return []
