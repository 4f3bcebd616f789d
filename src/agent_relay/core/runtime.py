# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Interface between the session reducer and an agent runtime."""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from typing import Any, Protocol

from agent_relay.core.events import RuntimeEvent


class RuntimeHandle(Protocol):
    """A live runtime session reading from a message feed."""

    def events(self) -> AsyncIterator[RuntimeEvent]:
        """Yield runtime events in arrival order until the session terminates."""
        ...

    async def interrupt(self) -> None:
        """Ask the runtime to stop the response in flight."""
        ...

    async def close(self) -> None:
        """Release the session's resources."""
        ...


class AgentRuntime(Protocol):
    def open(
        self, feed: AsyncIterable[dict[str, Any]], workspace: str, resume: str | None = None
    ) -> RuntimeHandle:
        """Start a session that reads user messages from ``feed``.

        ``resume`` is the id of an earlier runtime session whose conversation
        the new session continues.
        """
        ...
