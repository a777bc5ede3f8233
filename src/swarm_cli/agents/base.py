"""Base class and shared vocabulary for agent CLI adapters.

This module defines:
    - AgentKind, Mode and Effort enumerations
    - BaseAgent, the capability every supported CLI implements
    - small argv helpers shared by the concrete agents

Each concrete agent knows how to make its CLI run headlessly, which flag
selects a model, which flags grant write access, how to resume a session,
and how to translate one record of its output stream into unified events.
"""

from __future__ import annotations

import os
from enum import StrEnum
from typing import Any, ClassVar

from swarm_cli.errors import ReplyNotSupported
from swarm_cli.events.models import AgentEvent, ErrorEvent, MessageEvent

PROMPT_MARKER = "{prompt}"


class AgentKind(StrEnum):
    """Supported agent CLIs. The set is closed."""

    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"
    CURSOR = "cursor"
    OPENCODE = "opencode"
    COPILOT = "copilot"


class Mode(StrEnum):
    """Permission level granted to a spawned agent."""

    PLAN = "plan"
    EDIT = "edit"
    RALPH = "ralph"


class Effort(StrEnum):
    """Effort tier, resolved to a concrete model through configuration."""

    FAST = "fast"
    DEFAULT = "default"
    DETAILED = "detailed"


def ensure_flag(cmd: list[str], flag: str, value: str | None = None) -> list[str]:
    """Append ``flag`` (and its value) unless the flag is already present."""
    out = list(cmd)
    if flag in out:
        return out
    out.append(flag)
    if value is not None:
        out.append(value)
    return out


def remove_flag(cmd: list[str], flag: str, takes_value: bool = False) -> list[str]:
    """Remove every occurrence of ``flag`` (and the value following it)."""
    out: list[str] = []
    skip_next = False
    for part in cmd:
        if skip_next:
            skip_next = False
            continue
        if part == flag:
            skip_next = takes_value
            continue
        out.append(part)
    return out


def set_flag_value(cmd: list[str], flag: str, value: str) -> list[str]:
    """Replace the value after ``flag``, appending the pair if absent."""
    out = list(cmd)
    if flag in out:
        idx = out.index(flag)
        if idx + 1 < len(out):
            out[idx + 1] = value
        else:
            out.append(value)
        return out
    return out + [flag, value]


def insert_before_prompt(cmd: list[str], prompt_text: str, *parts: str) -> list[str]:
    """Insert ``parts`` right before the prompt argument (or at the end)."""
    out = list(cmd)
    if prompt_text in out:
        idx = out.index(prompt_text)
        out[idx:idx] = list(parts)
    else:
        out.extend(parts)
    return out


def text_from_content(content: Any) -> str:
    """Flatten a string or a list of ``{"type": "text", "text": ...}`` blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                chunks.append(str(block.get("text", "")))
            elif isinstance(block, str):
                chunks.append(block)
        return "".join(chunks)
    return ""


class BaseAgent:
    """Capability shared by all agent adapters.

    Subclasses set the class attributes and override the hooks that differ
    for their CLI. Hooks receive and return fresh argv lists; they never
    mutate their input.
    """

    kind: ClassVar[AgentKind]
    template: ClassVar[tuple[str, ...]]
    executables: ClassVar[tuple[str, ...]] = ()
    supports_reply: ClassVar[bool] = False
    reply_requires_session: ClassVar[bool] = False
    plain_text_output: ClassVar[bool] = False

    @property
    def executable(self) -> str:
        return self.template[0]

    def is_compatible_cli(self, first_arg: str | None) -> bool:
        """True when ``first_arg`` names this agent's own executable."""
        if not first_arg:
            return False
        name = os.path.basename(first_arg.replace("\\", "/")).lower()
        names = self.executables or (self.executable,)
        return any(name in (exe, f"{exe}.exe") for exe in names)

    # -- command compilation hooks -----------------------------------------

    def ensure_headless_flags(
        self,
        cmd: list[str],
        prompt_text: str,
        mode: Mode,
        cwd: str | None,
    ) -> list[str]:
        """Add whatever the CLI needs to run without a terminal."""
        return list(cmd)

    def inject_model(self, cmd: list[str], model: str, prompt_text: str) -> list[str]:
        return cmd + ["--model", model]

    def apply_edit_mode(self, cmd: list[str]) -> list[str]:
        return list(cmd)

    def apply_ralph_mode(self, cmd: list[str]) -> list[str]:
        return self.apply_edit_mode(cmd)

    def build_reply_command(
        self,
        message: str,
        session_id: str | None,
        mode: Mode,
        model: str,
        cwd: str | None = None,
    ) -> list[str]:
        from swarm_cli.agents import reply_supported_kinds

        raise ReplyNotSupported(str(self.kind), reply_supported_kinds())

    # -- output normalization ----------------------------------------------

    def normalize(self, raw: dict[str, Any]) -> list[AgentEvent]:
        """Translate one parsed stream record into zero or more events."""
        return []

    def extract_session_id(self, raw: dict[str, Any]) -> str | None:
        """Return the resumable session id carried by ``raw``, if any."""
        return None

    def normalize_text(self, line: str) -> AgentEvent | None:
        """Translate a non-JSON line; None means 'keep it as a raw event'."""
        if self.plain_text_output:
            return MessageEvent(agent=str(self.kind), content=line)
        return None

    def is_benign_noise(self, line: str) -> bool:
        """True for known diagnostic output that should be dropped entirely."""
        return False

    def _error(self, message: Any) -> ErrorEvent:
        return ErrorEvent(agent=str(self.kind), message=str(message))

    def _message(self, content: str, complete: bool = True) -> MessageEvent:
        return MessageEvent(agent=str(self.kind), content=content, complete=complete)
