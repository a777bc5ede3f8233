"""Unified event types for normalized agent output.

Each agent CLI emits its own stream format. The normalizers translate every
record into one of the variants below; consumers switch on ``event.type``.
Events are immutable; the record layer stamps ``timestamp`` via
:func:`dataclasses.replace` once the source record has been read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar, Union


class EventType(StrEnum):
    """Discriminator for the normalized event union."""

    MESSAGE = "message"
    TOOL_CALL = "tool_call"
    RESULT = "result"
    ERROR = "error"
    RAW = "raw"


class ResultStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class MessageEvent:
    """Assistant text output."""

    type: ClassVar[EventType] = EventType.MESSAGE

    agent: str
    content: str
    complete: bool = True
    timestamp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.type),
            "agent": self.agent,
            "content": self.content,
            "complete": self.complete,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ToolCallEvent:
    """A tool invocation by the agent (file access, shell command, search...)."""

    type: ClassVar[EventType] = EventType.TOOL_CALL

    agent: str
    tool: str
    args: dict[str, Any] = field(default_factory=dict)
    path: str | None = None
    command: str | None = None
    timestamp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.type),
            "agent": self.agent,
            "tool": self.tool,
            "args": dict(self.args),
            "path": self.path,
            "command": self.command,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ResultEvent:
    """Terminal outcome reported by the agent itself."""

    type: ClassVar[EventType] = EventType.RESULT

    agent: str
    status: ResultStatus
    content: str | None = None
    duration_ms: int | None = None
    timestamp: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.type),
            "agent": self.agent,
            "status": str(self.status),
            "content": self.content,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ErrorEvent:
    """Non-terminal error or warning reported in the stream."""

    type: ClassVar[EventType] = EventType.ERROR

    agent: str
    message: str
    timestamp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.type),
            "agent": self.agent,
            "message": self.message,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class RawEvent:
    """A log line that could not be parsed as a structured record."""

    type: ClassVar[EventType] = EventType.RAW

    content: str
    timestamp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.type),
            "content": self.content,
            "timestamp": self.timestamp,
        }


AgentEvent = Union[MessageEvent, ToolCallEvent, ResultEvent, ErrorEvent, RawEvent]


def event_from_dict(data: dict[str, Any]) -> AgentEvent:
    """Rebuild an event from its ``to_dict`` form.

    Raises:
        ValueError: If ``type`` is missing or unknown.
    """
    event_type = EventType(data["type"])
    timestamp = data.get("timestamp")
    if event_type is EventType.MESSAGE:
        return MessageEvent(
            agent=data["agent"],
            content=data["content"],
            complete=data.get("complete", True),
            timestamp=timestamp,
        )
    if event_type is EventType.TOOL_CALL:
        return ToolCallEvent(
            agent=data["agent"],
            tool=data["tool"],
            args=data.get("args") or {},
            path=data.get("path"),
            command=data.get("command"),
            timestamp=timestamp,
        )
    if event_type is EventType.RESULT:
        return ResultEvent(
            agent=data["agent"],
            status=ResultStatus(data["status"]),
            content=data.get("content"),
            duration_ms=data.get("duration_ms"),
            timestamp=timestamp,
        )
    if event_type is EventType.ERROR:
        return ErrorEvent(agent=data["agent"], message=data["message"], timestamp=timestamp)
    return RawEvent(content=data["content"], timestamp=timestamp)
