"""Swarm configuration and data directory resolution.

The configuration is stored in ``<swarm home>/config.yaml``::

    default_mode: plan
    agents:
      claude:
        enabled: true
        command: "claude -p '{prompt}' --output-format stream-json"
        models:
          fast: claude-haiku-4-5-20251001
          default: claude-sonnet-4-6
          detailed: claude-opus-4-6

Every agent section is optional and merged over the built-in defaults. An
empty ``command`` means "use the built-in template".
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

from swarm_cli.agents.base import AgentKind, Effort, Mode
from swarm_cli.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"
MODE_ENV_VARS = ("SWARM_DEFAULT_MODE", "SWARM_MODE")


@dataclass(frozen=True)
class AgentSettings:
    """Per-agent configuration.

    Attributes:
        enabled: Whether the agent is offered to callers
        command: Command template override containing ``{prompt}`` (empty = built-in)
        models: Effort tier -> model identifier
    """

    enabled: bool = True
    command: str = ""
    models: dict[str, str] = field(default_factory=dict)


_DEFAULT_MODELS: dict[AgentKind, dict[str, str]] = {
    AgentKind.CLAUDE: {
        "fast": "claude-haiku-4-5-20251001",
        "default": "claude-sonnet-4-6",
        "detailed": "claude-opus-4-6",
    },
    AgentKind.CODEX: {
        "fast": "gpt-5.1-codex-mini",
        "default": "gpt-5.3-codex",
        "detailed": "gpt-5.3-codex",
    },
    AgentKind.GEMINI: {
        "fast": "gemini-3-flash-preview",
        "default": "gemini-3-flash-preview",
        "detailed": "gemini-3-pro-preview",
    },
    AgentKind.CURSOR: {
        "fast": "composer-1",
        "default": "composer-1",
        "detailed": "composer-1",
    },
    AgentKind.OPENCODE: {
        "fast": "zai-coding-plan/glm-4.7-flash",
        "default": "zai-coding-plan/glm-4.7",
        "detailed": "zai-coding-plan/glm-4.7",
    },
    AgentKind.COPILOT: {
        "fast": "claude-sonnet-4",
        "default": "claude-sonnet-4.5",
        "detailed": "gpt-5",
    },
}


@dataclass(frozen=True)
class SwarmConfig:
    """Immutable configuration snapshot consumed by the manager."""

    agents: dict[AgentKind, AgentSettings]
    default_mode: Mode = Mode.PLAN

    def settings_for(self, kind: AgentKind | str) -> AgentSettings:
        return self.agents.get(AgentKind(kind), AgentSettings())

    def model_for(self, kind: AgentKind | str, effort: Effort | str = Effort.DEFAULT) -> str:
        """Resolve the model for an effort tier.

        Raises:
            ConfigurationError: If the tier is unknown or has no model configured.
        """
        try:
            tier = Effort(effort)
        except ValueError:
            valid = ", ".join(e.value for e in Effort)
            raise ConfigurationError(f"Invalid effort '{effort}'. Valid: {valid}") from None
        model = self.settings_for(kind).models.get(tier.value, "").strip()
        if not model:
            raise ConfigurationError(f"No model configured for {kind} at effort '{tier}'")
        return model

    def command_for(self, kind: AgentKind | str) -> str:
        return self.settings_for(kind).command.strip()

    def enabled_kinds(self) -> list[AgentKind]:
        return [kind for kind, settings in self.agents.items() if settings.enabled]


def default_config(default_mode: Mode | None = None) -> SwarmConfig:
    """Built-in configuration (every agent enabled, built-in templates)."""
    agents = {kind: AgentSettings(models=dict(models)) for kind, models in _DEFAULT_MODELS.items()}
    return SwarmConfig(agents=agents, default_mode=default_mode or default_mode_from_env())


def parse_mode(value: str | Mode | None) -> Mode | None:
    """Normalize a mode name; returns None for empty or invalid values."""
    if value is None:
        return None
    try:
        return Mode(str(value).strip().lower())
    except ValueError:
        return None


def default_mode_from_env() -> Mode:
    """Read the default mode from the environment, falling back to plan."""
    for env_var in MODE_ENV_VARS:
        raw_value = os.environ.get(env_var)
        parsed = parse_mode(raw_value)
        if parsed:
            return parsed
        if raw_value:
            logger.warning(
                f"Invalid {env_var}='{raw_value}'. Use 'plan', 'edit' or 'ralph'. "
                f"Falling back to plan mode."
            )
    return Mode.PLAN


def _parse_agent_section(kind: AgentKind, data: Any, base: AgentSettings) -> AgentSettings:
    if data is None:
        return base
    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid agents.{kind} in config: expected a mapping")

    models = dict(base.models)
    raw_models = data.get("models") or {}
    if not isinstance(raw_models, dict):
        raise ConfigurationError(f"Invalid agents.{kind}.models in config: expected a mapping")
    for tier in Effort:
        value = raw_models.get(tier.value)
        if isinstance(value, str) and value.strip():
            models[tier.value] = value.strip()

    command = data.get("command", base.command)
    if command is None:
        command = ""
    if not isinstance(command, str):
        raise ConfigurationError(f"Invalid agents.{kind}.command in config: expected a string")

    return replace(
        base,
        enabled=bool(data.get("enabled", base.enabled)),
        command=command,
        models=models,
    )


def load_swarm_config(config_file: Path) -> SwarmConfig:
    """Load configuration from a YAML file merged over the defaults.

    Args:
        config_file: Path to config.yaml

    Returns:
        SwarmConfig instance (defaults if the file does not exist)

    Raises:
        ConfigurationError: If the file is not valid YAML or names unknown agents.
    """
    defaults = default_config()
    if not config_file.exists():
        logger.debug(f"Config file not found: {config_file}")
        return defaults

    yaml = YAML(typ="safe")
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.load(f) or {}
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        raise ConfigurationError(f"Invalid YAML in {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid config in {config_file}: expected a mapping")

    agents_data = data.get("agents") or {}
    if not isinstance(agents_data, dict):
        raise ConfigurationError("Invalid agents section in config: expected a mapping")

    valid = {kind.value for kind in AgentKind}
    unknown = sorted(str(key) for key in agents_data if str(key) not in valid)
    if unknown:
        raise ConfigurationError(
            f"Unknown agent key(s) in config: {', '.join(unknown)}. "
            f"Valid agents: {', '.join(sorted(valid))}"
        )

    agents = {
        kind: _parse_agent_section(kind, agents_data.get(kind.value), settings)
        for kind, settings in defaults.agents.items()
    }

    default_mode = defaults.default_mode
    if "default_mode" in data:
        parsed = parse_mode(data.get("default_mode"))
        if parsed is None:
            raise ConfigurationError(
                f"Invalid default_mode '{data.get('default_mode')}' in config. "
                f"Use 'plan', 'edit' or 'ralph'."
            )
        default_mode = parsed

    return SwarmConfig(agents=agents, default_mode=default_mode)


def save_swarm_config(config_file: Path, config: SwarmConfig) -> None:
    """Write a configuration snapshot back to YAML."""
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "default_mode": config.default_mode.value,
        "agents": {
            kind.value: {
                "enabled": settings.enabled,
                "command": settings.command,
                "models": dict(settings.models),
            }
            for kind, settings in config.agents.items()
        },
    }
    yaml = YAML()
    with open(config_file, "w", encoding="utf-8") as f:
        yaml.dump(data, f)
    logger.info(f"Saved swarm config to {config_file}")


def _is_windows() -> bool:
    """Return True when running on Windows."""
    return os.name == "nt"


def get_swarm_home() -> Path:
    """Return the swarm data directory.

    Resolution order:
    1. SWARM_HOME environment variable (all platforms)
    2. ~/.agents/swarm/ on macOS/Linux
    3. %LOCALAPPDATA%\\swarm\\ on Windows (via platformdirs)
    """
    if env_home := os.environ.get("SWARM_HOME"):
        return Path(env_home)

    if _is_windows():
        from platformdirs import user_data_dir

        return Path(user_data_dir("swarm", appauthor=False))

    return Path.home() / ".agents" / "swarm"


def _ensure_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    return os.access(path, os.W_OK)


def resolve_agents_dir(home: Path | None = None) -> Path:
    """Return the directory holding one subdirectory per agent.

    Falls back to a temp directory when the swarm home is not writable.

    Raises:
        RuntimeError: If no writable location can be found.
    """
    primary = (home or get_swarm_home()) / "agents"
    if _ensure_writable_dir(primary):
        return primary
    fallback = Path(tempfile.gettempdir()) / "agents" / "swarm" / "agents"
    if _ensure_writable_dir(fallback):
        logger.warning(f"Falling back to temp data dir at {fallback}")
        return fallback
    raise RuntimeError("Unable to determine writable data directory for swarm")


def get_config_path(home: Path | None = None) -> Path:
    return (home or get_swarm_home()) / CONFIG_FILENAME


__all__ = [
    "AgentSettings",
    "SwarmConfig",
    "default_config",
    "parse_mode",
    "default_mode_from_env",
    "load_swarm_config",
    "save_swarm_config",
    "get_swarm_home",
    "resolve_agents_dir",
    "get_config_path",
]
