# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Cancelable queue feeding user messages into the agent runtime."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"


def user_envelope(text: str, session_id: str = DEFAULT_SESSION_ID) -> dict[str, Any]:
    """Wrap ``text`` in the streaming-input message shape the runtime reads."""
    return {
        "type": "user",
        "message": {"role": "user", "content": [{"type": "text", "text": text}]},
        "parent_tool_use_id": None,
        "session_id": session_id,
    }


@dataclass
class _FeedItem:
    text: str
    picked_up: asyncio.Future[None] = field(
        default_factory=lambda: asyncio.get_running_loop().create_future()
    )


class MessageFeed:
    """FIFO of user messages consumed by exactly one runtime session.

    ``put`` waits until the runtime has taken the message, which bounds the
    effective depth to one in-flight message plus whatever backlog callers
    created. ``pull`` waits on an event rather than polling, and stops for good
    once ``abort`` is called. Envelopes are built when pulled, so carried-over
    items are addressed to the session the new feed belongs to.
    """

    def __init__(self, session_id: str = DEFAULT_SESSION_ID) -> None:
        self.session_id = session_id
        self._items: deque[_FeedItem] = deque()
        self._wakeup = asyncio.Event()
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    def __len__(self) -> int:
        return len(self._items)

    async def put(self, text: str) -> None:
        """Queue ``text`` and wait until the runtime has picked it up."""
        item = _FeedItem(text)
        self._items.append(item)
        self._wakeup.set()
        await asyncio.shield(item.picked_up)

    def abort(self) -> None:
        """Stop the feed; a pending ``pull`` returns without yielding."""
        self._aborted = True
        self._wakeup.set()

    def renew(self, session_id: str | None = None) -> MessageFeed:
        """Return a fresh feed for the next run, carrying over unconsumed items.

        Args:
            session_id: Runtime session the new feed addresses; keeps the
                current one when None.
        """
        feed = MessageFeed(session_id or self.session_id)
        feed._items, self._items = self._items, deque()
        if feed._items:
            logger.debug("Carrying %d queued message(s) into new feed", len(feed._items))
            feed._wakeup.set()
        return feed

    async def pull(self) -> AsyncGenerator[dict[str, Any]]:
        """Yield queued messages in FIFO order until the feed is aborted."""
        while True:
            while not self._items and not self._aborted:
                self._wakeup.clear()
                await self._wakeup.wait()
            if self._aborted:
                return
            item = self._items.popleft()
            if not item.picked_up.done():
                item.picked_up.set_result(None)
            yield user_envelope(item.text, self.session_id)
