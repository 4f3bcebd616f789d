# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""In-memory conversation transcript rebuilt from streamed runtime deltas."""

import json
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agent_relay.core.partial_json import parse_partial_json

CloseReason = Literal["completed", "stopped", "errored"]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON shape sent to viewers."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SubagentCall(WireModel):
    id: str
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)
    stream_index: int | None = None
    input_json: str = ""
    parsed_input: Any = None
    result: str | None = None
    is_error: bool | None = None


class ToolUse(SubagentCall):
    subagent_calls: list[SubagentCall] = Field(default_factory=list)


class TextBlock(WireModel):
    type: Literal["text"] = "text"
    text: str = ""


class ThinkingBlock(WireModel):
    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    thinking_stream_index: int
    thinking_started_at: int = Field(default_factory=_now_ms)
    thinking_duration_ms: int | None = None
    is_complete: bool = False

    def close(self, now_ms: int) -> None:
        self.is_complete = True
        self.thinking_duration_ms = max(0, now_ms - self.thinking_started_at)


class ToolUseBlock(WireModel):
    type: Literal["tool_use"] = "tool_use"
    tool: ToolUse


ContentBlock = Annotated[TextBlock | ThinkingBlock | ToolUseBlock, Field(discriminator="type")]


class Message(WireModel):
    id: str
    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]
    timestamp: str = Field(default_factory=_timestamp)

    def blocks(self) -> list[ContentBlock]:
        """Return the content as a block list, converting plain text in place."""
        if isinstance(self.content, str):
            self.content = [TextBlock(text=self.content)] if self.content else []
        return self.content

    def text(self) -> str:
        """Concatenated text of the message, ignoring thinking and tool blocks."""
        if isinstance(self.content, str):
            return self.content
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))


def _reconcile_input(call: SubagentCall) -> None:
    if not call.input_json:
        return
    try:
        call.parsed_input = json.loads(call.input_json)
    except (ValueError, RecursionError):
        parsed = parse_partial_json(call.input_json)
        if parsed is not None:
            call.parsed_input = parsed


class Transcript:
    """Ordered list of messages plus the operations that build them from deltas.

    Top-level tool calls are indexed by id as they are created, and subagent calls
    by (parent id, child id), so result events never scan the message history.
    Operations are not idempotent: the caller must apply each event exactly once.
    """

    def __init__(self, clock_ms: Callable[[], int] = _now_ms) -> None:
        self.messages: list[Message] = []
        self._sequence = 0
        self._open: Message | None = None
        self._tools: dict[str, ToolUse] = {}
        self._subagent_calls: dict[tuple[str, str], SubagentCall] = {}
        self._clock_ms = clock_ms

    def _next_id(self) -> str:
        message_id = str(self._sequence)
        self._sequence += 1
        return message_id

    @property
    def open_message(self) -> Message | None:
        """The assistant message currently receiving deltas, if any."""
        if self._open is not None and self.messages and self.messages[-1] is self._open:
            return self._open
        return None

    def append_user_message(self, text: str) -> Message:
        message = Message(id=self._next_id(), role="user", content=text)
        self.messages.append(message)
        return message

    def ensure_open_assistant_message(self) -> Message:
        """Return the open assistant message, opening a new one if needed.

        A message only stays open while it is the last one in the transcript, so
        a user message enqueued mid-response makes later deltas start a new turn.
        """
        message = self.open_message
        if message is None:
            message = Message(id=self._next_id(), role="assistant", content=[])
            self.messages.append(message)
            self._open = message
        return message

    # ------------------------------------------------------------------
    # Text and thinking
    # ------------------------------------------------------------------
    def append_text(self, delta: str) -> None:
        blocks = self.ensure_open_assistant_message().blocks()
        if blocks and isinstance(blocks[-1], TextBlock):
            blocks[-1].text += delta
        else:
            blocks.append(TextBlock(text=delta))

    def _open_thinking(self, index: int) -> ThinkingBlock | None:
        message = self.open_message
        if message is None:
            return None
        for block in message.blocks():
            if (
                isinstance(block, ThinkingBlock)
                and block.thinking_stream_index == index
                and not block.is_complete
            ):
                return block
        return None

    def start_thinking(self, index: int) -> None:
        self.ensure_open_assistant_message().blocks().append(
            ThinkingBlock(thinking_stream_index=index, thinking_started_at=self._clock_ms())
        )

    def append_thinking(self, index: int, delta: str) -> None:
        self.ensure_open_assistant_message()
        block = self._open_thinking(index)
        if block is not None:
            block.thinking += delta

    def close_thinking(self, index: int) -> bool:
        """Close the open thinking block at ``index``; returns False if there was none."""
        block = self._open_thinking(index)
        if block is None:
            return False
        block.close(self._clock_ms())
        return True

    # ------------------------------------------------------------------
    # Top-level tool calls
    # ------------------------------------------------------------------
    def start_tool_use(
        self,
        tool_id: str,
        name: str,
        input: dict[str, Any] | None = None,
        stream_index: int | None = None,
    ) -> ToolUse:
        tool = ToolUse(id=tool_id, name=name, input=input or {}, stream_index=stream_index)
        self.ensure_open_assistant_message().blocks().append(ToolUseBlock(tool=tool))
        self._tools[tool_id] = tool
        return tool

    def find_tool(self, tool_id: str) -> ToolUse | None:
        return self._tools.get(tool_id)

    def _tool_or_placeholder(self, tool_id: str) -> ToolUse:
        tool = self._tools.get(tool_id)
        if tool is None:
            tool = self.start_tool_use(tool_id, name="")
        return tool

    def append_tool_input(self, tool_id: str, delta: str) -> None:
        tool = self._tools.get(tool_id)
        if tool is None:
            return
        tool.input_json += delta
        parsed = parse_partial_json(tool.input_json)
        if parsed is not None:
            tool.parsed_input = parsed

    def close_tool_block(self, tool_id: str | None = None, stream_index: int | None = None) -> None:
        """Reconcile the streamed input of a finished tool block with a strict parse."""
        tool = self._tools.get(tool_id) if tool_id else None
        if tool is None and stream_index is not None:
            message = self.open_message
            for block in message.blocks() if message else []:
                if isinstance(block, ToolUseBlock) and block.tool.stream_index == stream_index:
                    tool = block.tool
                    break
        if tool is not None:
            _reconcile_input(tool)

    def set_tool_result(self, tool_id: str, content: str, is_error: bool | None = None) -> None:
        tool = self._tool_or_placeholder(tool_id)
        tool.result = content
        tool.is_error = is_error

    def append_tool_result(self, tool_id: str, delta: str) -> None:
        tool = self._tool_or_placeholder(tool_id)
        tool.result = (tool.result or "") + delta

    # ------------------------------------------------------------------
    # Subagent tool calls
    # ------------------------------------------------------------------
    def _subagent_call(self, parent_id: str, tool_id: str) -> SubagentCall:
        key = (parent_id, tool_id)
        call = self._subagent_calls.get(key)
        if call is None:
            call = SubagentCall(id=tool_id)
            self._tool_or_placeholder(parent_id).subagent_calls.append(call)
            self._subagent_calls[key] = call
        return call

    def find_subagent_call(self, parent_id: str, tool_id: str) -> SubagentCall | None:
        return self._subagent_calls.get((parent_id, tool_id))

    def start_subagent_tool_use(
        self,
        parent_id: str,
        tool_id: str,
        name: str,
        input: dict[str, Any] | None = None,
        stream_index: int | None = None,
    ) -> SubagentCall:
        call = self._subagent_call(parent_id, tool_id)
        call.name = name
        call.input = input or {}
        call.stream_index = stream_index
        return call

    def append_subagent_tool_input(self, parent_id: str, tool_id: str, delta: str) -> None:
        call = self._subagent_call(parent_id, tool_id)
        call.input_json += delta
        parsed = parse_partial_json(call.input_json)
        if parsed is not None:
            call.parsed_input = parsed

    def close_subagent_tool_block(self, parent_id: str, tool_id: str) -> None:
        call = self.find_subagent_call(parent_id, tool_id)
        if call is not None:
            _reconcile_input(call)

    def set_subagent_tool_result(
        self, parent_id: str, tool_id: str, content: str, is_error: bool | None = None
    ) -> None:
        call = self._subagent_call(parent_id, tool_id)
        call.result = content
        call.is_error = is_error

    def append_subagent_tool_result(self, parent_id: str, tool_id: str, delta: str) -> None:
        call = self._subagent_call(parent_id, tool_id)
        call.result = (call.result or "") + delta

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------
    def close_open_assistant_message(
        self, reason: CloseReason, error: str | None = None
    ) -> Message | None:
        """Close the in-flight assistant turn.

        ``stopped`` completes any open thinking block with its elapsed duration.
        ``errored`` leaves the prior message untouched and appends a new assistant
        message carrying ``"Error: <error>"``, which is returned.
        """
        message = self.open_message
        self._open = None
        if reason == "stopped" and message is not None:
            now = self._clock_ms()
            for block in message.blocks():
                if isinstance(block, ThinkingBlock) and not block.is_complete:
                    block.close(now)
        if reason == "errored":
            error_message = Message(
                id=self._next_id(), role="assistant", content=f"Error: {error}"
            )
            self.messages.append(error_message)
            return error_message
        return None

    def to_wire(self) -> list[dict[str, Any]]:
        return [m.to_wire() for m in self.messages]
