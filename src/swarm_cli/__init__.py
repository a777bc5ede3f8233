"""swarm-cli: run AI coding agent CLIs as managed background processes.

Public API:
    - AgentManager: spawn, list, stop and reply to agents
    - AgentRecord / AgentStatus: per-agent state
    - compile_command: argv compilation per agent kind and mode
    - load_swarm_config / resolve_agents_dir: configuration
"""

from swarm_cli.agents import AgentKind, Effort, Mode
from swarm_cli.config import SwarmConfig, get_swarm_home, load_swarm_config, resolve_agents_dir
from swarm_cli.errors import SwarmError
from swarm_cli.orchestrator import AgentManager, AgentRecord, AgentStatus, compile_command

__version__ = "0.1.0"

__all__ = [
    "AgentKind",
    "Effort",
    "Mode",
    "SwarmConfig",
    "get_swarm_home",
    "load_swarm_config",
    "resolve_agents_dir",
    "SwarmError",
    "AgentManager",
    "AgentRecord",
    "AgentStatus",
    "compile_command",
    "__version__",
]
