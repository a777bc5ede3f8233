"""Exception hierarchy for agent orchestration.

Every failure surfaced to a caller of :class:`~swarm_cli.orchestrator.manager.AgentManager`
derives from :class:`SwarmError` and carries a human-readable message. The
``code`` attribute is the machine-readable identifier used in JSON envelopes.
"""

from __future__ import annotations


class SwarmError(Exception):
    """Base exception for orchestration errors."""

    code = "SWARM_ERROR"


class ConcurrencyLimitExceeded(SwarmError):
    """Raised when the running-agent ceiling is already reached."""

    code = "CONCURRENCY_LIMIT_EXCEEDED"

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            f"Maximum concurrent agents ({limit}) reached. "
            f"Wait for an agent to complete or stop one first."
        )


class CliNotAvailable(SwarmError):
    """Raised when the agent executable cannot be located."""

    code = "CLI_NOT_AVAILABLE"

    def __init__(self, executable: str, message: str | None = None):
        self.executable = executable
        super().__init__(
            message or f"CLI tool '{executable}' not found in PATH. Install it first."
        )


class InvalidWorkingDirectory(SwarmError):
    """Raised when a requested cwd does not exist or is not a directory."""

    code = "INVALID_WORKING_DIRECTORY"

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Working directory {reason}: {path}")


class ConfigurationError(SwarmError):
    """Raised for unusable agent configuration (bad command template, unknown kind)."""

    code = "CONFIGURATION_ERROR"


class RalphModeError(ConfigurationError):
    """Raised when ralph mode preconditions are not met."""

    code = "RALPH_MODE_ERROR"


class ReplyNotSupported(SwarmError):
    """Raised when the agent CLI cannot resume a previous session."""

    code = "REPLY_NOT_SUPPORTED"

    def __init__(self, agent_kind: str, supported: list[str]):
        self.agent_kind = agent_kind
        super().__init__(
            f"Reply is not supported for agent type '{agent_kind}'. "
            f"Supported: {', '.join(supported)}"
        )


class MissingSessionId(SwarmError):
    """Raised when a reply needs a session_id the original agent never reported."""

    code = "MISSING_SESSION_ID"

    def __init__(self, agent_kind: str, agent_id: str | None = None):
        self.agent_id = agent_id
        subject = f"Agent {agent_id} ({agent_kind})" if agent_id else f"{agent_kind} reply"
        super().__init__(
            f"{subject} has no session_id to resume. "
            f"The agent may not have started its session before exiting."
        )


class AgentStillRunning(SwarmError):
    """Raised when a reply targets an agent whose process has not finished."""

    code = "AGENT_STILL_RUNNING"

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(
            f"Agent {agent_id} is still running. "
            f"Wait for it to finish or stop it before replying."
        )


class SpawnFailure(SwarmError):
    """Raised when the OS refuses to start the agent process."""

    code = "SPAWN_FAILURE"


class NotFound(SwarmError):
    """Raised when an agent id is unknown to the manager and the store."""

    code = "AGENT_NOT_FOUND"

    def __init__(self, agent_id: str, task_name: str | None = None):
        self.agent_id = agent_id
        self.task_name = task_name
        where = f" in task '{task_name}'" if task_name else ""
        super().__init__(f"Agent not found{where}: {agent_id}")


class InvalidArgument(SwarmError):
    """Raised for a command-line value that cannot be interpreted."""

    code = "INVALID_ARGUMENT"


class NoAgents(SwarmError):
    """Raised when a task has no agents to wait for."""

    code = "NO_AGENTS"

    def __init__(self, task_name: str):
        self.task_name = task_name
        super().__init__(f"No agents found for task '{task_name}'")


class WaitTimedOut(SwarmError):
    """Raised when a task still has running agents after the wait timeout."""

    code = "WAIT_TIMEOUT"

    def __init__(self, task_name: str):
        self.task_name = task_name
        super().__init__(f"Timed out waiting for task '{task_name}'")


__all__ = [
    "SwarmError",
    "ConcurrencyLimitExceeded",
    "CliNotAvailable",
    "InvalidWorkingDirectory",
    "ConfigurationError",
    "RalphModeError",
    "ReplyNotSupported",
    "MissingSessionId",
    "AgentStillRunning",
    "SpawnFailure",
    "NotFound",
    "InvalidArgument",
    "NoAgents",
    "WaitTimedOut",
]
