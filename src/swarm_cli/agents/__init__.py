"""Agent adapters for the orchestrator.

This subpackage contains one adapter per supported AI coding agent CLI.
Each adapter knows how to:
    - Make the CLI run headlessly and pick a model
    - Grant the permissions a mode requires
    - Resume a previous session (where the CLI supports it)
    - Normalize its output stream into unified events

Supported Agents (6 total):
    - claude: Claude Code (Anthropic)
    - codex: OpenAI Codex
    - gemini: Google Gemini
    - cursor: Cursor (cursor-agent)
    - opencode: OpenCode
    - copilot: GitHub Copilot
"""

from __future__ import annotations

import os
import shutil
from typing import Any

from swarm_cli.agents.base import (
    PROMPT_MARKER,
    AgentKind,
    BaseAgent,
    Effort,
    Mode,
)
from swarm_cli.agents.claude import ClaudeAgent
from swarm_cli.agents.codex import CodexAgent
from swarm_cli.agents.copilot import CopilotAgent
from swarm_cli.agents.cursor import CursorAgent
from swarm_cli.agents.gemini import GeminiAgent
from swarm_cli.agents.opencode import OpenCodeAgent
from swarm_cli.errors import ConfigurationError
from swarm_cli.events.models import AgentEvent

# Registry mapping agent kinds to adapter instances (adapters are stateless)
AGENT_REGISTRY: dict[AgentKind, BaseAgent] = {
    AgentKind.CLAUDE: ClaudeAgent(),
    AgentKind.CODEX: CodexAgent(),
    AgentKind.GEMINI: GeminiAgent(),
    AgentKind.CURSOR: CursorAgent(),
    AgentKind.OPENCODE: OpenCodeAgent(),
    AgentKind.COPILOT: CopilotAgent(),
}

# Extra extensions tried on Windows, where npm installs CLIs as .cmd/.ps1 shims.
_WINDOWS_EXTENSIONS = (".exe", ".cmd", ".bat", ".ps1")


def parse_agent_kind(value: str | AgentKind) -> AgentKind:
    """Resolve a user-supplied agent kind.

    Raises:
        ConfigurationError: If the kind is not one of the supported CLIs.
    """
    try:
        return AgentKind(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(sorted(kind.value for kind in AgentKind))
        raise ConfigurationError(f"Unknown agent type: {value}. Valid agents: {valid}") from None


def get_agent(kind: str | AgentKind) -> BaseAgent:
    """Get the adapter for an agent kind."""
    return AGENT_REGISTRY[parse_agent_kind(kind)]


def reply_supported_kinds() -> list[str]:
    return [str(kind) for kind, agent in AGENT_REGISTRY.items() if agent.supports_reply]


def normalize_events(kind: str | AgentKind, raw: dict[str, Any]) -> list[AgentEvent]:
    """Translate one raw stream record of ``kind`` into unified events."""
    return get_agent(kind).normalize(raw)


def _is_windows() -> bool:
    return os.name == "nt"


def find_executable(executable: str) -> str | None:
    """Locate ``executable`` on PATH (or as a path), returning its full path."""
    found = shutil.which(executable)
    if found or not _is_windows():
        return found
    # shutil.which honours PATHEXT, which rarely lists .ps1
    has_separator = os.sep in executable or "/" in executable
    bases = (
        [os.path.abspath(executable)]
        if has_separator
        else [os.path.join(d, executable) for d in os.environ.get("PATH", "").split(os.pathsep) if d]
    )
    for base in bases:
        for ext in _WINDOWS_EXTENSIONS:
            candidate = base + ext
            if os.path.isfile(candidate):
                return candidate
    return None


def check_cli_available(kind: str | AgentKind) -> tuple[bool, str]:
    """Check whether the CLI for ``kind`` is installed.

    Returns:
        ``(True, resolved_path)`` or ``(False, error_message)``.
    """
    agent = get_agent(kind)
    resolved = find_executable(agent.executable)
    if resolved:
        return True, resolved
    return False, f"CLI tool '{agent.executable}' not found in PATH. Install it first."


def check_all_clis() -> dict[str, dict[str, Any]]:
    """Report installation status for every supported agent."""
    results: dict[str, dict[str, Any]] = {}
    for kind in AGENT_REGISTRY:
        available, path_or_error = check_cli_available(kind)
        results[str(kind)] = {
            "installed": available,
            "path": path_or_error if available else None,
            "error": None if available else path_or_error,
        }
    return results


def detect_installed_agents() -> list[str]:
    """Return installed agent kinds in registry order."""
    return [kind for kind, status in check_all_clis().items() if status["installed"]]


__all__ = [
    "PROMPT_MARKER",
    "AgentKind",
    "BaseAgent",
    "Effort",
    "Mode",
    "ClaudeAgent",
    "CodexAgent",
    "CopilotAgent",
    "CursorAgent",
    "GeminiAgent",
    "OpenCodeAgent",
    "AGENT_REGISTRY",
    "parse_agent_kind",
    "get_agent",
    "reply_supported_kinds",
    "normalize_events",
    "find_executable",
    "check_cli_available",
    "check_all_clis",
    "detect_installed_agents",
]
