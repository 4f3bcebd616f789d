# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Agent runtime backed by the Claude Agent SDK.

``translate_message`` is the only place that looks inside SDK message objects;
everything downstream works with the event dataclasses in
``agent_relay.core.events``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    ResultMessage,
    SystemMessage,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)
from claude_agent_sdk.types import StreamEvent

from agent_relay.core.config import RuntimeConfig
from agent_relay.core.events import (
    BlockStop,
    RuntimeEvent,
    RuntimeLog,
    RuntimeSession,
    TextDelta,
    ThinkingDelta,
    ThinkingStart,
    ToolInputDelta,
    ToolResultComplete,
    ToolResultStart,
    ToolUseStart,
    TurnResult,
)

logger = logging.getLogger(__name__)

# Server-side tools report results as content blocks of their own type.
SERVER_TOOL_RESULT_TYPES = {
    "web_search_tool_result",
    "web_fetch_tool_result",
    "code_execution_tool_result",
    "bash_code_execution_tool_result",
    "text_editor_code_execution_tool_result",
    "mcp_tool_result",
}


def stringify_tool_content(content: Any) -> str:
    """Render tool result content (string, block list or object) as text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            elif isinstance(item, dict):
                parts.append(json.dumps(item, indent=2))
            else:
                parts.append(str(item))
        return "\n".join(parts)
    if isinstance(content, dict):
        return json.dumps(content, indent=2)
    return str(content)


def _translate_stream_event(evt: dict[str, Any], parent: str | None) -> list[RuntimeEvent]:
    evt_type = evt.get("type", "")
    index = evt.get("index", 0)

    if evt_type == "content_block_delta":
        delta = evt.get("delta", {})
        delta_type = delta.get("type", "")
        if delta_type == "text_delta":
            return [TextDelta(index, delta.get("text", ""), parent)]
        if delta_type == "thinking_delta":
            return [ThinkingDelta(index, delta.get("thinking", ""), parent)]
        if delta_type == "input_json_delta":
            return [ToolInputDelta(index, delta.get("partial_json", ""), parent)]
        return []

    if evt_type == "content_block_start":
        block = evt.get("content_block", {})
        block_type = block.get("type", "")
        if block_type == "thinking":
            return [ThinkingStart(index, parent)]
        if block_type == "tool_use":
            return [ToolUseStart(index, block["id"], block.get("name", ""),
                                 block.get("input") or {}, parent)]
        if block_type in SERVER_TOOL_RESULT_TYPES and "tool_use_id" in block:
            content = stringify_tool_content(block.get("content"))
            if content:
                return [ToolResultStart(block["tool_use_id"], content,
                                        bool(block.get("is_error")), parent)]
        return []

    if evt_type == "content_block_stop":
        return [BlockStop(index, parent)]
    return []


def _tool_results(content: Any, parent: str | None) -> list[RuntimeEvent]:
    if isinstance(content, str):
        return []
    return [
        ToolResultComplete(
            block.tool_use_id, stringify_tool_content(block.content), bool(block.is_error), parent
        )
        for block in content
        if isinstance(block, ToolResultBlock)
    ]


def translate_message(message: Any) -> list[RuntimeEvent]:
    """Convert one SDK message into runtime events.

    Top-level text and tool calls arrive as partial stream events, so the
    complete ``AssistantMessage`` only contributes tool results and, for
    subagents (which are not streamed), their tool calls.

    Args:
        message: A message yielded by ``ClaudeSDKClient.receive_messages``.

    Returns:
        list[RuntimeEvent]: Zero or more events, in order.
    """
    if isinstance(message, StreamEvent):
        return _translate_stream_event(message.event, message.parent_tool_use_id)
    if isinstance(message, AssistantMessage):
        parent = message.parent_tool_use_id
        events: list[RuntimeEvent] = []
        for block in message.content:
            if isinstance(block, ToolUseBlock) and parent is not None:
                events.append(ToolUseStart(None, block.id, block.name, block.input, parent))
        events.extend(_tool_results(message.content, parent))
        return events
    if isinstance(message, UserMessage):
        return _tool_results(message.content, message.parent_tool_use_id)
    if isinstance(message, ResultMessage):
        return [
            TurnResult(
                is_error=message.is_error, result=message.result, session_id=message.session_id
            )
        ]
    if isinstance(message, SystemMessage):
        session_id = message.data.get("session_id")
        if message.subtype == "init" and isinstance(session_id, str):
            return [RuntimeSession(session_id)]
        return []
    logger.debug("Ignoring runtime message %s", type(message).__name__)
    return []


class ClaudeSessionHandle:
    """One ``ClaudeSDKClient`` connection reading its prompt from a feed."""

    def __init__(self, options: ClaudeAgentOptions, feed: AsyncIterable[dict[str, Any]]) -> None:
        self._stderr_lines: list[str] = []
        options.stderr = self._stderr_lines.append
        self._client = ClaudeSDKClient(options=options)
        self._feed = feed

    def _drain_stderr(self) -> list[RuntimeEvent]:
        lines = list(self._stderr_lines)
        self._stderr_lines.clear()
        return [RuntimeLog(line) for line in lines]

    async def events(self) -> AsyncIterator[RuntimeEvent]:
        await self._client.connect(self._feed)
        logger.info("Claude session connected")
        async for message in self._client.receive_messages():
            for event in self._drain_stderr() + translate_message(message):
                yield event
        for event in self._drain_stderr():
            yield event

    async def interrupt(self) -> None:
        await self._client.interrupt()

    async def close(self) -> None:
        await self._client.disconnect()


class ClaudeRuntime:
    """Opens Claude Code sessions configured from a ``RuntimeConfig``."""

    def __init__(self, config: RuntimeConfig) -> None:
        self.config = config

    def build_options(self, workspace: str, resume: str | None = None) -> ClaudeAgentOptions:
        """Options for a session in ``workspace``, continuing ``resume`` if given."""
        cfg = self.config
        return ClaudeAgentOptions(
            model=cfg.model,
            max_thinking_tokens=cfg.max_thinking_tokens,
            setting_sources=cfg.setting_sources,  # type: ignore[arg-type]
            permission_mode=cfg.permission_mode,  # type: ignore[arg-type]
            allowed_tools=list(cfg.allowed_tools),
            system_prompt={
                "type": "preset",
                "preset": "claude_code",
                "append": cfg.system_prompt_append,
            },
            cwd=workspace,
            cli_path=cfg.cli_path or None,
            include_partial_messages=True,
            resume=resume,
        )

    def open(
        self, feed: AsyncIterable[dict[str, Any]], workspace: str, resume: str | None = None
    ) -> ClaudeSessionHandle:
        logger.info(
            "Opening Claude session model=%s cwd=%s resume=%s", self.config.model, workspace, resume
        )
        return ClaudeSessionHandle(self.build_options(workspace, resume), feed)
