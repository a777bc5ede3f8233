"""Ralph mode: autonomous task-file driven agents.

A ralph agent gets full permissions and works through the unchecked tasks in
a markdown task file (``RALPH.md`` by default) in its working directory,
checking each one off as it goes.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from swarm_cli.errors import RalphModeError

logger = logging.getLogger(__name__)

DEFAULT_RALPH_FILE = "RALPH.md"

# (path, also block descendants)
_SYSTEM_PATHS: tuple[tuple[str, bool], ...] = (
    ("/System", True),
    ("/usr", True),
    ("/bin", True),
    ("/sbin", True),
    ("/etc", True),
)


@dataclass(frozen=True)
class RalphConfig:
    """Ralph mode settings.

    Attributes:
        ralph_file: Task file name, relative to the agent's cwd
        disabled: Reject ralph spawns entirely
    """

    ralph_file: str = DEFAULT_RALPH_FILE
    disabled: bool = False

    @classmethod
    def from_env(cls) -> RalphConfig:
        ralph_file = os.environ.get("SWARM_RALPH_FILE") or DEFAULT_RALPH_FILE
        disabled = os.environ.get("SWARM_DISABLE_RALPH", "false").strip().lower() in ("true", "1")
        return cls(ralph_file=ralph_file, disabled=disabled)


def is_dangerous_path(cwd: str | Path) -> bool:
    """Return True when an unsupervised agent must not run in ``cwd``.

    The home directory itself and the filesystem root are blocked, but not
    their children; system directories are blocked recursively.
    """
    resolved = Path(cwd).resolve()
    if resolved == Path.home().resolve():
        return True
    if resolved == Path(resolved.anchor):
        return True
    for system_path, include_children in _SYSTEM_PATHS:
        dangerous = Path(system_path).resolve()
        if resolved == dangerous:
            return True
        if include_children and dangerous in resolved.parents:
            return True
    return False


def resolve_ralph_task_file(cwd: str | None, config: RalphConfig) -> Path:
    """Validate ralph preconditions and return the task file path.

    Raises:
        RalphModeError: If ralph is disabled, no cwd was given, the cwd is a
            protected directory, or the task file is missing.
    """
    if config.disabled:
        raise RalphModeError("Ralph mode is disabled (SWARM_DISABLE_RALPH is set)")
    if not cwd:
        raise RalphModeError("Ralph mode requires an explicit working directory")
    if is_dangerous_path(cwd):
        raise RalphModeError(f"Ralph mode refuses to run in protected directory: {cwd}")
    task_file = Path(cwd) / config.ralph_file
    if not task_file.is_file():
        raise RalphModeError(
            f"Ralph mode requires a task file at {task_file}. "
            f"Create it with unchecked tasks (## [ ] Task Title) first."
        )
    logger.debug(f"Ralph task file: {task_file}")
    return task_file


def build_ralph_prompt(prompt: str, ralph_file: str | Path) -> str:
    """Append the autonomous-loop instructions to the caller's prompt."""
    return f"""{prompt}

RALPH MODE INSTRUCTIONS:

You are running in autonomous Ralph mode. Your mission:

1. READ THE TASK FILE: Open {ralph_file} and read all tasks
2. UNDERSTAND THE SYSTEM: Read AGENTS.md, README.md, or grep for relevant context to understand the codebase
3. PICK TASKS LOGICALLY: Work through unchecked tasks (## [ ]) in an order that makes sense (not necessarily top-to-bottom)
4. COMPLETE EACH TASK:
   - Do the work required
   - Mark the task complete by changing ## [ ] to ## [x] in {ralph_file}
   - Add a brief 1-line update under the ### Updates section for that task
5. CONTINUE: Keep going until all tasks are checked or you determine you're done

TASK FORMAT:
- Unchecked: ## [ ] Task Title
- Checked: ## [x] Task Title
- Updates go under ### Updates section (one line per update)

Example update:
### Updates
- Added JWT token generation and validation
- Completed: All auth endpoints working with tests passing

Work autonomously. Don't stop until all tasks are complete."""
