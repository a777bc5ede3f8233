"""Process orchestration for agent CLIs.

This package provides:
    - command: argv compilation per agent kind and mode
    - launch: POSIX and Windows launch strategies
    - record: per-agent state machine and persistence
    - manager: admission control, lifecycle and retention
    - monitor: completion notifications
    - ralph: autonomous task-file mode
"""

from swarm_cli.orchestrator.command import (
    CLAUDE_PLAN_MODE_PREFIX,
    PROMPT_SUFFIX,
    build_prompt,
    compile_command,
    compile_reply_command,
    split_command_template,
)
from swarm_cli.orchestrator.launch import (
    Launcher,
    PosixLauncher,
    WindowsLauncher,
    build_windows_spawn_ps1,
    get_launcher,
    is_process_alive,
)
from swarm_cli.orchestrator.manager import AgentManager, StopResult, TaskSummary, WaitResult
from swarm_cli.orchestrator.monitor import CompletionMonitor
from swarm_cli.orchestrator.paths import compute_path_lca
from swarm_cli.orchestrator.ralph import RalphConfig, build_ralph_prompt, is_dangerous_path
from swarm_cli.orchestrator.record import AgentRecord, AgentStatus

__all__ = [
    "CLAUDE_PLAN_MODE_PREFIX",
    "PROMPT_SUFFIX",
    "build_prompt",
    "compile_command",
    "compile_reply_command",
    "split_command_template",
    "Launcher",
    "PosixLauncher",
    "WindowsLauncher",
    "build_windows_spawn_ps1",
    "get_launcher",
    "is_process_alive",
    "AgentManager",
    "StopResult",
    "TaskSummary",
    "WaitResult",
    "CompletionMonitor",
    "compute_path_lca",
    "RalphConfig",
    "build_ralph_prompt",
    "is_dangerous_path",
    "AgentRecord",
    "AgentStatus",
]
