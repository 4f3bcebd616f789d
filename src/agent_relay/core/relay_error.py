# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Error classes for the agent relay."""

import traceback

from agent_relay.core import config as config_module


class RelayError(ValueError):
    """Base exception for errors raised by the relay itself."""

    def __init__(self, message: str):
        """Initialize a RelayError instance.

        Args:
            message: The error message describing the issue.
        """
        super().__init__(message)
        self._message = message

    @property
    def message(self) -> str:
        return self._message

    def __str__(self) -> str:
        """Return a string representation of the error.

        Returns:
            str: The error message, followed by the traceback when debug mode is enabled.
        """
        if not config_module.DEFAULT_CONFIG.debug:
            return self._message
        return f"{self._message}\n{traceback.format_exc()}"


class EmptyMessageError(RelayError):
    """Raised when a user message is empty after trimming."""

    def __init__(self) -> None:
        super().__init__("Message cannot be empty.")
