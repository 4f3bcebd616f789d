# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Logging setup: rich console output plus a buffer of recent lines for viewers."""

import logging
from collections import deque

from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class LogBuffer(logging.Handler):
    """Keeps the most recent formatted log lines in memory."""

    def __init__(self, capacity: int = 500) -> None:
        super().__init__()
        self._lines: deque[str] = deque(maxlen=capacity)
        self.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._lines.append(self.format(record))
        except Exception:
            self.handleError(record)

    def lines(self) -> list[str]:
        return list(self._lines)


def configure_logging(debug: bool = False, buffer_lines: int = 500) -> LogBuffer:
    """Route ``agent_relay`` logs to the console and to a fresh ``LogBuffer``.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        debug: Log at DEBUG level (every broadcast) instead of INFO.
        buffer_lines: Number of recent lines kept for new viewers.

    Returns:
        LogBuffer: The buffer whose lines are replayed to viewers on connect.
    """
    logger = logging.getLogger("agent_relay")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    for handler in list(logger.handlers):
        if isinstance(handler, (RichHandler, LogBuffer)):
            logger.removeHandler(handler)
    logger.addHandler(RichHandler(show_path=False, rich_tracebacks=debug))
    buffer = LogBuffer(buffer_lines)
    logger.addHandler(buffer)
    logger.propagate = False
    return buffer
