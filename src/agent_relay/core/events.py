# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Runtime events consumed by the session reducer.

Every event the agent runtime can produce is one of the dataclasses below.
``parent_tool_use_id`` is set when the event was emitted on behalf of another
tool call, e.g. by a subagent dispatched through the Task tool.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TextDelta:
    index: int
    text: str
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class ThinkingStart:
    index: int
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class ThinkingDelta:
    index: int
    thinking: str
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class ToolUseStart:
    index: int | None
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class ToolInputDelta:
    index: int
    partial_json: str
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class BlockStop:
    index: int
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class ToolResultStart:
    tool_use_id: str
    content: str
    is_error: bool = False
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class ToolResultDelta:
    tool_use_id: str
    delta: str
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class ToolResultComplete:
    tool_use_id: str
    content: str
    is_error: bool | None = None
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class TurnResult:
    is_error: bool = False
    result: str | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class RuntimeSession:
    """The runtime announced the id its conversation can be resumed under."""

    session_id: str


@dataclass(frozen=True)
class RuntimeLog:
    """A diagnostic line from the runtime process (stderr)."""

    text: str


RuntimeEvent = (
    TextDelta
    | ThinkingStart
    | ThinkingDelta
    | ToolUseStart
    | ToolInputDelta
    | BlockStop
    | ToolResultStart
    | ToolResultDelta
    | ToolResultComplete
    | TurnResult
    | RuntimeSession
    | RuntimeLog
)
