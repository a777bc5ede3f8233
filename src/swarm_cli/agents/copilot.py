"""GitHub Copilot CLI adapter.

Copilot has no JSON output mode; every line of its output is treated as an
assistant message. ``--continue`` resumes the most recent session.
"""

from __future__ import annotations

from swarm_cli.agents.base import (
    AgentKind,
    BaseAgent,
    Mode,
    ensure_flag,
    insert_before_prompt,
)

_EDIT_FLAGS = ("--allow-all-tools", "--allow-all-paths", "--no-ask-user")


class CopilotAgent(BaseAgent):
    """Adapter for the GitHub Copilot CLI (copilot)."""

    kind = AgentKind.COPILOT
    template = ("copilot", "-p", "{prompt}", "-s")
    executables = ("copilot",)
    supports_reply = True
    plain_text_output = True

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
        if "--silent" not in out:
            out = ensure_flag(out, "-s")
        return out

    def apply_edit_mode(self, cmd: list[str]) -> list[str]:
        out = list(cmd)
        for flag in _EDIT_FLAGS:
            out = ensure_flag(out, flag)
        return out

    def apply_ralph_mode(self, cmd: list[str]) -> list[str]:
        return ensure_flag(cmd, "--yolo")

    def build_reply_command(
        self,
        message: str,
        session_id: str | None,
        mode: Mode,
        model: str,
        cwd: str | None = None,
    ) -> list[str]:
        cmd = ["copilot", "--continue", "-p", message, "-s", "--model", model]
        if mode is Mode.RALPH:
            return self.apply_ralph_mode(cmd)
        if mode is Mode.EDIT:
            return self.apply_edit_mode(cmd)
        return cmd
