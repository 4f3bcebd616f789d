# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Pytest configuration and shared test utilities for agent_relay tests."""

import asyncio
import json
from collections import deque
from collections.abc import AsyncIterable, AsyncIterator, Callable
from typing import Any

from agent_relay.core.broadcast import BroadcastHub, SseChannel
from agent_relay.core.events import RuntimeEvent, RuntimeSession, TurnResult
from agent_relay.core.session import Session, SessionReducer

# A script item is a runtime event, an exception to raise, or an asyncio.Event
# the runtime waits on (or until it is interrupted) before continuing.
ScriptItem = Any


class RecordingHub(BroadcastHub):
    """BroadcastHub that also remembers every broadcast in order."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list[tuple[str, Any]] = []

    def broadcast(self, name: str, data: Any) -> None:
        self.events.append((name, data))
        super().broadcast(name, data)

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def after(self, name: str) -> list[tuple[str, Any]]:
        """Events broadcast after the first occurrence of ``name``."""
        idx = self.names().index(name)
        return self.events[idx + 1:]


class ScriptedHandle:
    def __init__(self, runtime: "ScriptedRuntime", feed: AsyncIterable[dict[str, Any]]) -> None:
        self.runtime = runtime
        self.feed = feed
        self.interrupted = asyncio.Event()
        self.closed = False

    async def _wait(self, gate: asyncio.Event) -> None:
        waiters = [
            asyncio.ensure_future(gate.wait()),
            asyncio.ensure_future(self.interrupted.wait()),
        ]
        _, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()

    async def events(self) -> AsyncIterator[RuntimeEvent]:
        self.runtime.live += 1
        self.runtime.max_live = max(self.runtime.max_live, self.runtime.live)
        try:
            yield RuntimeSession(self.runtime.session_id)
            async for message in self.feed:
                self.runtime.envelopes.append(message)
                self.runtime.received.append(message["message"]["content"][0]["text"])
                script = self.runtime.scripts.popleft() if self.runtime.scripts else [TurnResult()]
                for item in script:
                    if isinstance(item, asyncio.Event):
                        await self._wait(item)
                        continue
                    if self.interrupted.is_set():
                        break
                    if isinstance(item, BaseException):
                        raise item
                    yield item
                    await asyncio.sleep(0)
                if self.interrupted.is_set():
                    # Like the SDK, report the end of the interrupted turn.
                    yield TurnResult(is_error=True, session_id=self.runtime.session_id)
        finally:
            self.runtime.live -= 1

    async def interrupt(self) -> None:
        self.runtime.interrupt_calls += 1
        await asyncio.sleep(0)
        if self.runtime.interrupt_error is not None:
            raise self.runtime.interrupt_error
        self.interrupted.set()

    async def close(self) -> None:
        self.closed = True


class ScriptedRuntime:
    """In-process runtime that answers each user message with the next script."""

    def __init__(self, scripts: list[list[ScriptItem]] | None = None) -> None:
        self.scripts: deque[list[ScriptItem]] = deque(scripts or [])
        self.session_id = "scripted-session"
        self.received: list[str] = []
        self.envelopes: list[dict[str, Any]] = []
        self.resumed: list[str | None] = []
        self.interrupt_error: Exception | None = None
        self.handles: list[ScriptedHandle] = []
        self.live = 0
        self.max_live = 0
        self.interrupt_calls = 0

    @property
    def opened(self) -> int:
        return len(self.handles)

    def open(
        self, feed: AsyncIterable[dict[str, Any]], workspace: str, resume: str | None = None
    ) -> ScriptedHandle:
        self.resumed.append(resume)
        handle = ScriptedHandle(self, feed)
        self.handles.append(handle)
        return handle


def make_reducer(
    scripts: list[list[ScriptItem]] | None = None, debug: bool = False
) -> tuple[SessionReducer, ScriptedRuntime, RecordingHub]:
    runtime = ScriptedRuntime(scripts)
    hub = RecordingHub()
    reducer = SessionReducer(Session("/tmp/agent-workspace"), hub, runtime, debug=debug)
    return reducer, runtime, hub


async def settle(predicate: Callable[[], bool], steps: int = 500) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    for _ in range(steps):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def read_frames(channel: SseChannel) -> list[tuple[str, Any]]:
    """Decode the SSE frames buffered in ``channel`` into (event, data) pairs."""
    frames: list[tuple[str, Any]] = []
    pending = list(channel._backlog)
    channel._backlog.clear()
    while not channel._queue.empty():
        pending.append(channel._queue.get_nowait())
    for frame in pending:
        if frame is None:
            break
        event = ""
        data_lines = []
        for line in frame.rstrip("\n").split("\n"):
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data_lines.append(line[len("data: "):])
        raw = "\n".join(data_lines)
        try:
            data = json.loads(raw)
        except ValueError:
            data = raw
        frames.append((event, data))
    return frames
