"""Normalized event model shared by every agent kind.

Per-kind translation from raw CLI output lives with each agent in
:mod:`swarm_cli.agents`; this package only defines the common shapes.
"""

from __future__ import annotations

from swarm_cli.events.models import (
    AgentEvent,
    ErrorEvent,
    EventType,
    MessageEvent,
    RawEvent,
    ResultEvent,
    ResultStatus,
    ToolCallEvent,
    event_from_dict,
)
from swarm_cli.events.timestamps import (
    coerce_datetime,
    extract_timestamp,
    format_iso,
    parse_iso,
    utc_now,
)

__all__ = [
    "AgentEvent",
    "ErrorEvent",
    "EventType",
    "MessageEvent",
    "RawEvent",
    "ResultEvent",
    "ResultStatus",
    "ToolCallEvent",
    "event_from_dict",
    "coerce_datetime",
    "extract_timestamp",
    "format_iso",
    "parse_iso",
    "utc_now",
]
