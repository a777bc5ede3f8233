"""Command compilation for agent CLIs.

Turns (agent kind, prompt, mode, model) into the exact argv to execute.
The argv comes from the kind's built-in template or from a configured
override template. Overrides whose executable is not the kind's own CLI are
returned verbatim after prompt substitution, so fully custom wrappers keep
complete control over their flags.
"""

from __future__ import annotations

import logging

from swarm_cli.agents import get_agent, parse_agent_kind
from swarm_cli.agents.base import PROMPT_MARKER, AgentKind, Mode
from swarm_cli.config import AgentSettings
from swarm_cli.errors import ConfigurationError

logger = logging.getLogger(__name__)

PROMPT_SUFFIX = (
    "\n\nWhen you're done, provide a brief summary of:\n"
    "1. What you did (1-2 sentences)\n"
    "2. Key files modified and why\n"
    "3. Any important classes, functions, or components you added/changed"
)

CLAUDE_PLAN_MODE_PREFIX = (
    "You are running in HEADLESS PLAN MODE. This mode works like normal plan "
    "mode with one exception: you cannot write to ~/.claude/plans/ directory. "
    "Instead of writing a plan file, output your complete plan/response as "
    "your final message.\n\n"
)


def split_command_template(template: str) -> list[str]:
    """Split a configured command string into argv tokens.

    Whitespace separates tokens. Single quotes keep their content literally;
    inside double quotes only ``\\"`` and ``\\\\`` are unescaped.

    Raises:
        ConfigurationError: On an unterminated quote.
    """
    tokens: list[str] = []
    current: list[str] = []
    in_token = False
    quote: str | None = None
    i = 0
    while i < len(template):
        ch = template[i]
        if quote == "'":
            if ch == "'":
                quote = None
            else:
                current.append(ch)
        elif quote == '"':
            if ch == "\\" and i + 1 < len(template) and template[i + 1] in ('"', "\\"):
                current.append(template[i + 1])
                i += 1
            elif ch == '"':
                quote = None
            else:
                current.append(ch)
        elif ch in ("'", '"'):
            quote = ch
            in_token = True
        elif ch in (" ", "\t"):
            if in_token:
                tokens.append("".join(current))
                current = []
                in_token = False
        else:
            current.append(ch)
            in_token = True
        i += 1

    if quote is not None:
        raise ConfigurationError(f"Unterminated {quote} quote in command template: {template}")
    if in_token:
        tokens.append("".join(current))
    return tokens


def build_prompt(kind: AgentKind | str, prompt: str, mode: Mode | str) -> str:
    """Augment the caller's prompt with the completion-summary request."""
    text = prompt + PROMPT_SUFFIX
    if parse_agent_kind(kind) is AgentKind.CLAUDE and Mode(mode) is Mode.PLAN:
        text = CLAUDE_PLAN_MODE_PREFIX + text
    return text


def _template_for(kind: AgentKind, settings: AgentSettings | None) -> list[str]:
    override = settings.command.strip() if settings else ""
    if override:
        return split_command_template(override)
    return list(get_agent(kind).template)


def compile_command(
    kind: AgentKind | str,
    prompt: str,
    mode: Mode | str,
    model: str,
    cwd: str | None = None,
    settings: AgentSettings | None = None,
) -> list[str]:
    """Build the argv for spawning an agent.

    Args:
        kind: Agent kind
        prompt: Caller prompt (augmented here with the summary suffix)
        mode: plan, edit or ralph
        model: Resolved model identifier
        cwd: Working directory, passed to CLIs that need explicit access
        settings: Per-agent configuration carrying an optional command override

    Returns:
        Argument vector; element 0 is the executable.

    Raises:
        ConfigurationError: If the template lacks the ``{prompt}`` marker.
    """
    agent_kind = parse_agent_kind(kind)
    agent = get_agent(agent_kind)
    run_mode = Mode(mode)

    template = _template_for(agent_kind, settings)
    if not any(PROMPT_MARKER in part for part in template):
        raise ConfigurationError(
            f"Command template for {agent_kind} must include {PROMPT_MARKER} placeholder"
        )

    prompt_text = build_prompt(agent_kind, prompt, run_mode)
    cmd = [part.replace(PROMPT_MARKER, prompt_text) for part in template]

    if not agent.is_compatible_cli(cmd[0] if cmd else None):
        logger.debug(f"Custom {agent_kind} command '{cmd[0]}', skipping flag injection")
        return cmd

    cmd = agent.ensure_headless_flags(cmd, prompt_text, run_mode, cwd)
    if "--model" not in cmd:
        cmd = agent.inject_model(cmd, model, prompt_text)
    if run_mode is Mode.RALPH:
        cmd = agent.apply_ralph_mode(cmd)
    elif run_mode is Mode.EDIT:
        cmd = agent.apply_edit_mode(cmd)
    return cmd


def compile_reply_command(
    kind: AgentKind | str,
    message: str,
    session_id: str | None,
    mode: Mode | str,
    model: str,
    cwd: str | None = None,
) -> list[str]:
    """Build the argv that resumes a previous session with a follow-up message.

    Raises:
        ReplyNotSupported: If the kind's CLI cannot resume sessions headlessly.
        MissingSessionId: If the kind resumes by id and none was captured.
    """
    agent = get_agent(kind)
    return agent.build_reply_command(message, session_id, Mode(mode), model, cwd)
