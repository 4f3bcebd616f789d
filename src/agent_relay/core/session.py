# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Session state and the reducer that drives it from the agent runtime's events.

The reducer owns the single runtime session. User messages go through a
``MessageFeed`` into the runtime; every event the runtime emits is applied to
the ``Transcript`` and mirrored onto the ``BroadcastHub`` in the same step, so
a viewer that replays the transcript sees the same thing as a viewer that
followed the live stream.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Literal, assert_never

import yaml

from agent_relay.core.broadcast import BroadcastHub, SseChannel
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
    ToolResultDelta,
    ToolResultStart,
    ToolUseStart,
    TurnResult,
)
from agent_relay.core.message_feed import MessageFeed
from agent_relay.core.relay_error import EmptyMessageError
from agent_relay.core.runtime import AgentRuntime, RuntimeHandle
from agent_relay.core.transcript import Transcript

logger = logging.getLogger(__name__)

SessionState = Literal["idle", "running", "error"]


class Session:
    """The conversation relayed to viewers: workspace, state and transcript."""

    def __init__(self, workspace: str, transcript: Transcript | None = None) -> None:
        self.workspace = workspace
        self.state: SessionState = "idle"
        self.has_seed_prompt = False
        self.abort_requested = False
        self.transcript = transcript or Transcript()
        # id the runtime reported for this conversation; later runs resume it
        self.runtime_session_id: str | None = None
        # child tool id -> top-level tool id that issued it
        self.parent_of: dict[str, str] = {}

    def init_payload(self) -> dict[str, Any]:
        return {
            "workspace": self.workspace,
            "state": self.state,
            "hasSeedPrompt": self.has_seed_prompt,
        }

    def snapshot(self) -> dict[str, Any]:
        """Current state plus the full transcript, as sent over the wire."""
        return {**self.init_payload(), "messages": self.transcript.to_wire()}

    def save_transcript(self, directory: str) -> Path:
        """Write the transcript to a timestamped YAML file for inspection.

        Args:
            directory: Directory to write into; created if missing.

        Returns:
            Path: The file written.
        """
        folder = Path(directory)
        folder.mkdir(parents=True, exist_ok=True)
        filename = folder / f"transcript_{int(time.time())}.yaml"
        with filename.open("w", encoding="utf-8") as f:
            yaml.safe_dump(self.snapshot(), f, indent=2, sort_keys=False, allow_unicode=True)
        return filename


class SessionReducer:
    """State machine owning the one runtime session of a ``Session``.

    States move ``idle -> running -> idle | error``; ``error`` is left again by
    the next enqueue. A run is either starting (``_starting``), live (``_handle``)
    or tearing down (``_teardown`` not yet set); a new run waits for the previous
    teardown before opening the runtime, so two runtime sessions never overlap.
    """

    def __init__(
        self,
        session: Session,
        hub: BroadcastHub,
        runtime: AgentRuntime,
        feed: MessageFeed | None = None,
        debug: bool = False,
    ) -> None:
        self.session = session
        self.hub = hub
        self.runtime = runtime
        self.feed = feed or MessageFeed()
        self.debug = debug
        self._handle: RuntimeHandle | None = None
        self._starting = False
        self._teardown: asyncio.Event | None = None
        self._run_task: asyncio.Task[None] | None = None
        self._interrupting = False
        self._closing = False
        self._turns_in_flight = 0
        # (parent tool id or None, stream index) -> tool id, per run
        self._stream_tools: dict[tuple[str | None, int], str] = {}

    @property
    def is_active(self) -> bool:
        return self._starting or self._handle is not None

    def _set_state(self, state: SessionState) -> None:
        if self.session.state == state:
            return
        self.session.state = state
        self.hub.broadcast("status", {"state": state})

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def attach_viewer(self, log_lines: list[str] | None = None) -> SseChannel:
        """Connect a viewer and queue its init event and full transcript replay."""
        channel = self.hub.connect()
        self.hub.send(channel, "init", self.session.init_payload())
        for message in self.session.transcript.messages:
            self.hub.send(channel, "message-replay", {"message": message.to_wire()})
        if log_lines is not None:
            self.hub.send(channel, "logs", {"lines": log_lines})
        return channel

    async def enqueue(self, text: str) -> None:
        """Append a user message and hand it to the runtime.

        Returns once the runtime has picked the message up.

        Raises:
            EmptyMessageError: If ``text`` is blank; session state is untouched.
        """
        trimmed = text.strip()
        if not trimmed:
            raise EmptyMessageError()
        logger.info("Enqueue user message len=%d", len(trimmed))
        self.session.has_seed_prompt = True
        self._turns_in_flight += 1
        self._set_state("running")

        message = self.session.transcript.append_user_message(trimmed)
        self.hub.broadcast("message-replay", {"message": message.to_wire()})

        if not self._starting and (self._handle is None or self.feed.aborted):
            self._start_run()
        await self.feed.put(trimmed)

    async def interrupt(self) -> bool:
        """Stop the response in flight.

        Returns:
            bool: False if no run is live; True once the runtime acknowledged the
                interrupt, or if another interrupt is already in progress.
        """
        handle = self._handle
        if handle is None:
            return False
        if self._interrupting:
            return True
        self._interrupting = True
        try:
            logger.info("Interrupting current response")
            self.session.abort_requested = True
            try:
                await handle.interrupt()
            except Exception:
                self.session.abort_requested = False
                raise
            # Ending the feed lets the runtime terminate on its own once drained.
            self.feed.abort()
            self._turns_in_flight = len(self.feed)
            self.hub.broadcast("message-stopped", None)
            self.session.transcript.close_open_assistant_message("stopped")
            self._set_state("idle")
            return True
        finally:
            self._interrupting = False

    async def shutdown(self) -> None:
        """End the feed and wait for the current run, if any, to finish."""
        self._closing = True
        self.feed.abort()
        task = self._run_task
        if task is not None and not task.done():
            await task

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------
    def _start_run(self) -> None:
        self._starting = True
        self._run_task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        if self._teardown is not None:
            await self._teardown.wait()
        teardown = self._teardown = asyncio.Event()
        self.session.abort_requested = False
        resume = self.session.runtime_session_id
        self.feed = self.feed.renew(resume)
        self._stream_tools.clear()
        self._set_state("running")
        logger.info(
            "Starting runtime session cwd=%s resume=%s", self.session.workspace, resume
        )

        handle: RuntimeHandle | None = None
        try:
            try:
                handle = self.runtime.open(self.feed.pull(), self.session.workspace, resume)
            finally:
                self._starting = False
            self._handle = handle
            async for event in handle.events():
                self.apply(event)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.exception("Runtime session failed: %s", error)
            self.hub.broadcast("message-error", error)
            self.session.transcript.close_open_assistant_message("errored", error)
            self._turns_in_flight = len(self.feed)
            self._set_state("error")
        finally:
            self._handle = None
            if handle is not None:
                try:
                    await handle.close()
                except Exception:
                    logger.exception("Failed to close runtime session")
            logger.info("Runtime session ended")
            if self.session.state != "error":
                self.session.transcript.close_open_assistant_message("completed")
            if not self._starting:
                if len(self.feed) and not self._closing:
                    # Messages queued after an interrupt still need an answer.
                    self._start_run()
                elif self.session.state != "error":
                    self._turns_in_flight = 0
                    self._set_state("idle")
            teardown.set()

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------
    def apply(self, event: RuntimeEvent) -> None:
        """Apply one runtime event to the transcript and mirror it to viewers."""
        if isinstance(event, TextDelta):
            if event.parent_tool_use_id is None:
                self.hub.broadcast("message-chunk", event.text)
                self.session.transcript.append_text(event.text)
            else:
                self._append_result(event.parent_tool_use_id, event.text)
        elif isinstance(event, ThinkingStart):
            if event.parent_tool_use_id is None:
                self.hub.broadcast("thinking-start", {"index": event.index})
                self.session.transcript.start_thinking(event.index)
        elif isinstance(event, ThinkingDelta):
            if event.parent_tool_use_id is None:
                self.hub.broadcast(
                    "thinking-chunk", {"index": event.index, "delta": event.thinking}
                )
                self.session.transcript.append_thinking(event.index, event.thinking)
        elif isinstance(event, ToolUseStart):
            self._start_tool(event)
        elif isinstance(event, ToolInputDelta):
            self._append_input(event)
        elif isinstance(event, BlockStop):
            self._stop_block(event)
        elif isinstance(event, ToolResultStart):
            self._set_result("tool-result-start", event.tool_use_id, event.content,
                             event.is_error, event.parent_tool_use_id)
        elif isinstance(event, ToolResultComplete):
            self._set_result("tool-result-complete", event.tool_use_id, event.content,
                             event.is_error, event.parent_tool_use_id)
        elif isinstance(event, ToolResultDelta):
            if event.parent_tool_use_id is not None:
                self._learn_parent(event.tool_use_id, event.parent_tool_use_id)
            self._append_result(event.tool_use_id, event.delta)
        elif isinstance(event, TurnResult):
            self._remember_session(event.session_id)
            self._complete_turn()
        elif isinstance(event, RuntimeSession):
            self._remember_session(event.session_id)
        elif isinstance(event, RuntimeLog):
            if self.debug:
                self.hub.broadcast("debug-message", event.text)
        else:
            assert_never(event)

    def _root(self, tool_id: str) -> str:
        while tool_id in self.session.parent_of:
            tool_id = self.session.parent_of[tool_id]
        return tool_id

    def _learn_parent(self, child_id: str, parent_id: str) -> None:
        if child_id == parent_id or child_id in self.session.parent_of:
            return
        # Only one level of nesting is kept: grandchildren hang off the root call.
        root = self._root(parent_id)
        if root != child_id:
            self.session.parent_of[child_id] = root

    def _start_tool(self, event: ToolUseStart) -> None:
        transcript = self.session.transcript
        parent = event.parent_tool_use_id
        if event.index is not None:
            self._stream_tools[(parent, event.index)] = event.id
        payload: dict[str, Any] = {
            "id": event.id,
            "name": event.name,
            "input": event.input,
            "streamIndex": event.index,
        }
        if parent is None:
            self.hub.broadcast("tool-use-start", payload)
            transcript.start_tool_use(event.id, event.name, event.input, event.index)
            return
        self._learn_parent(event.id, parent)
        root = self.session.parent_of.get(event.id, parent)
        self.hub.broadcast("subagent-tool-use-start", {"parentToolUseId": root, **payload})
        transcript.start_subagent_tool_use(root, event.id, event.name, event.input, event.index)

    def _append_input(self, event: ToolInputDelta) -> None:
        parent = event.parent_tool_use_id
        tool_id = self._stream_tools.get((parent, event.index), "")
        payload = {"index": event.index, "toolId": tool_id, "delta": event.partial_json}
        if parent is None:
            self.hub.broadcast("tool-input-delta", payload)
            self.session.transcript.append_tool_input(tool_id, event.partial_json)
            return
        root = self._root(parent)
        self.hub.broadcast("subagent-tool-input-delta", {"parentToolUseId": root, **payload})
        if tool_id:
            self.session.transcript.append_subagent_tool_input(root, tool_id, event.partial_json)

    def _stop_block(self, event: BlockStop) -> None:
        transcript = self.session.transcript
        parent = event.parent_tool_use_id
        tool_id = self._stream_tools.get((parent, event.index))
        payload: dict[str, Any] = {"index": event.index}
        if tool_id:
            payload["toolId"] = tool_id
        if parent is None:
            self.hub.broadcast("content-block-stop", payload)
            if not transcript.close_thinking(event.index):
                transcript.close_tool_block(tool_id, event.index)
            return
        root = self._root(parent)
        self.hub.broadcast("subagent-content-block-stop", {"parentToolUseId": root, **payload})
        if tool_id:
            transcript.close_subagent_tool_block(root, tool_id)

    def _set_result(
        self,
        name: str,
        tool_id: str,
        content: str,
        is_error: bool | None,
        parent: str | None,
    ) -> None:
        if parent is not None:
            self._learn_parent(tool_id, parent)
        owner = self.session.parent_of.get(tool_id)
        payload: dict[str, Any] = {"toolUseId": tool_id, "content": content}
        if is_error is not None:
            payload["isError"] = is_error
        if owner is None:
            self.hub.broadcast(name, payload)
            self.session.transcript.set_tool_result(tool_id, content, is_error)
        else:
            self.hub.broadcast(f"subagent-{name}", {"parentToolUseId": owner, **payload})
            self.session.transcript.set_subagent_tool_result(owner, tool_id, content, is_error)

    def _append_result(self, tool_id: str, delta: str) -> None:
        owner = self.session.parent_of.get(tool_id)
        payload = {"toolUseId": tool_id, "delta": delta}
        if owner is None:
            self.hub.broadcast("tool-result-delta", payload)
            self.session.transcript.append_tool_result(tool_id, delta)
        else:
            self.hub.broadcast("subagent-tool-result-delta", {"parentToolUseId": owner, **payload})
            self.session.transcript.append_subagent_tool_result(owner, tool_id, delta)

    def _remember_session(self, session_id: str | None) -> None:
        if session_id and session_id != self.session.runtime_session_id:
            logger.info("Runtime session id=%s", session_id)
            self.session.runtime_session_id = session_id

    def _complete_turn(self) -> None:
        if self.session.abort_requested:
            # The stopped turn was already closed by interrupt().
            logger.debug("Ignoring result of interrupted turn")
            return
        self.hub.broadcast("message-complete", None)
        self.session.transcript.close_open_assistant_message("completed")
        self._turns_in_flight = max(0, self._turns_in_flight - 1)
        if self._turns_in_flight == 0:
            self._set_state("idle")
