# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Fan-out of chat events to connected viewers over Server-Sent Events."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from collections import deque
from collections.abc import AsyncGenerator, Callable
from typing import Any

logger = logging.getLogger(__name__)

HEARTBEAT = ": ping\n\n"
_WHITESPACE = re.compile(r"\s+")
_NEWLINE = re.compile(r"\r?\n")


def _safe_json(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return json.dumps({"error": "unserializable_payload"})


def format_sse(event: str, data: Any) -> str:
    """Encode one SSE frame.

    Strings are sent verbatim, one ``data:`` line per input line; None becomes
    ``null`` and everything else is JSON encoded on a single line.

    Args:
        event: The event name, or "" for an unnamed frame.
        data: The payload.

    Returns:
        str: The frame, terminated by a blank line.
    """
    lines: list[str] = []
    if event:
        lines.append(f"event: {event}")
    if data is None:
        lines.append("data: null")
    elif isinstance(data, str):
        lines.extend(f"data: {part}" for part in _NEWLINE.split(data))
    else:
        lines.append(f"data: {_safe_json(data)}")
    return "\n".join(lines) + "\n\n"


def summarize_payload(event: str, data: Any) -> str:
    """Short description of a payload for log lines."""
    if event.endswith("message-replay") and isinstance(data, dict):
        message = data.get("message")
        if isinstance(message, dict) and message.get("id"):
            return f"messageId={message['id']}"
    if event.endswith("message-chunk") and isinstance(data, str):
        return f"chars={len(data)}"
    if isinstance(data, str):
        return f'text="{_WHITESPACE.sub(" ", data)[:120]}"'
    if data is None:
        return "data=null"
    return f"data={_safe_json(data)[:160]}"


class SseChannel:
    """One viewer connection.

    Frames are buffered from the moment the channel is created, so nothing is
    lost before the HTTP response starts streaming. Catch-up frames queued with
    ``preload`` (the transcript replay) are kept apart from live frames and are
    streamed first; only live frames count against ``buffer_size``. A channel
    whose live buffer overflows, or that is closed, detaches itself from the hub
    instead of raising into the broadcaster.
    """

    def __init__(
        self,
        on_close: Callable[[SseChannel], None],
        buffer_size: int = 1000,
        heartbeat_interval: float = 15.0,
    ) -> None:
        self.id = str(uuid.uuid4())
        self._on_close = on_close
        self._backlog: deque[str] = deque()
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=buffer_size)
        self._heartbeat_interval = heartbeat_interval
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: str, data: Any) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(format_sse(event, data))
        except asyncio.QueueFull:
            logger.warning("Viewer %s is not keeping up, dropping it", self.id)
            self.close()

    def preload(self, event: str, data: Any) -> None:
        """Queue a catch-up frame, streamed before any live frame."""
        if not self._closed:
            self._backlog.append(format_sse(event, data))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake a pending reader; a full queue means nobody is reading anyway.
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass
        self._on_close(self)

    async def stream(self) -> AsyncGenerator[str]:
        """Yield buffered frames, with a heartbeat comment while idle."""
        try:
            while self._backlog:
                yield self._backlog.popleft()
            while True:
                try:
                    frame = await asyncio.wait_for(
                        self._queue.get(), timeout=self._heartbeat_interval
                    )
                except asyncio.TimeoutError:
                    if self._closed:
                        return
                    yield HEARTBEAT
                    continue
                if frame is None:
                    return
                yield frame
        finally:
            self.close()


class BroadcastHub:
    """Set of open viewer channels sharing a single logical event stream."""

    def __init__(
        self, prefix: str = "chat:", buffer_size: int = 1000, heartbeat_interval: float = 15.0
    ) -> None:
        self.prefix = prefix
        self._buffer_size = buffer_size
        self._heartbeat_interval = heartbeat_interval
        self._channels: dict[str, SseChannel] = {}

    def __len__(self) -> int:
        return len(self._channels)

    def connect(self) -> SseChannel:
        channel = SseChannel(self._remove, self._buffer_size, self._heartbeat_interval)
        self._channels[channel.id] = channel
        logger.info("Viewer connected id=%s total=%d", channel.id, len(self._channels))
        return channel

    def _remove(self, channel: SseChannel) -> None:
        if self._channels.pop(channel.id, None) is not None:
            logger.info("Viewer disconnected id=%s total=%d", channel.id, len(self._channels))

    def send(self, channel: SseChannel, name: str, data: Any) -> None:
        """Queue one catch-up event for a single channel, e.g. a new viewer's replay."""
        channel.preload(self.prefix + name, data)

    def broadcast(self, name: str, data: Any) -> None:
        event = self.prefix + name
        logger.debug("%s -> %s", event, summarize_payload(event, data))
        for channel in list(self._channels.values()):
            channel.send(event, data)

    def close_all(self) -> None:
        for channel in list(self._channels.values()):
            channel.close()
