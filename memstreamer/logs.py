"""Log output in the streamer's line format, on top of the logging module."""

from __future__ import annotations

import enum
import logging
import sys
from typing import IO, Optional, Union

from .tools import get_now_monotonic

LOGGER_NAME = "memstreamer"
MAX_THREAD_NAME = 15

COLOR_GRAY = "\x1b[30;1m"
COLOR_RED = "\x1b[31;1m"
COLOR_GREEN = "\x1b[32;1m"
COLOR_YELLOW = "\x1b[33;1m"
COLOR_BLUE = "\x1b[34;1m"
COLOR_CYAN = "\x1b[36;1m"
COLOR_RESET = "\x1b[0m"

PERF = 17
VERBOSE = 15

logging.addLevelName(PERF, "PERF")
logging.addLevelName(VERBOSE, "VERBOSE")


class LogLevel(enum.IntEnum):
    """Verbosity levels, from the quietest to the most talkative."""

    INFO = 0
    PERF = 1
    VERBOSE = 2
    DEBUG = 3

    @property
    def logging_level(self) -> int:
        """The threshold this level sets on a standard logger."""
        return _THRESHOLDS[self]


_THRESHOLDS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.PERF: PERF,
    LogLevel.VERBOSE: VERBOSE,
    LogLevel.DEBUG: logging.DEBUG,
}


def _style(record: logging.LogRecord) -> tuple[str, str, str]:
    level = record.levelno
    if level >= logging.WARNING:
        return "ERROR", COLOR_RED, COLOR_RED
    if level >= logging.INFO:
        return "INFO ", COLOR_GREEN, ""
    if level >= PERF:
        color = COLOR_YELLOW if getattr(record, "fps", False) else COLOR_CYAN
        return "PERF ", color, color
    if level >= VERBOSE:
        return "VERB ", COLOR_BLUE, COLOR_BLUE
    return "DEBUG", COLOR_GRAY, COLOR_GRAY


class LogFormatter(logging.Formatter):
    """Formats records as ``-- LABEL [monotonic thread] -- message``.

    Records logged with ``extra={"fps": True}`` at the PERF level are
    highlighted in yellow instead of cyan.
    """

    def __init__(self, colored: bool = False) -> None:
        super().__init__()
        self.colored = colored

    def format(self, record: logging.LogRecord) -> str:
        label, label_color, msg_color = _style(record)
        message = record.getMessage()
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        thread = (record.threadName or "")[:MAX_THREAD_NAME]
        stamp = f"[{get_now_monotonic():.3f} {thread:>9}]"
        if self.colored:
            return (
                f"{COLOR_GRAY}-- {label_color}{label}{COLOR_GRAY} {stamp} -- "
                f"{COLOR_RESET}{msg_color}{message}{COLOR_RESET}"
            )
        return f"-- {label} {stamp} -- {message}"


def get_logger() -> logging.Logger:
    """The package's logger."""
    return logging.getLogger(LOGGER_NAME)


def setup_logging(
    level: Union[LogLevel, int] = LogLevel.INFO,
    colored: Optional[bool] = None,
    stream: Optional[IO[str]] = None,
) -> logging.Logger:
    """Send the package's log to ``stream`` (stderr by default) at ``level``.

    Colors are used when ``colored`` is true, or, when it is None, when the
    stream is a terminal. Calling again replaces the previous setup.
    """
    level = LogLevel(level)
    if stream is None:
        stream = sys.stderr
    if colored is None:
        isatty = getattr(stream, "isatty", None)
        colored = bool(isatty is not None and isatty())

    logger = get_logger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(LogFormatter(colored))
    logger.addHandler(handler)
    logger.setLevel(level.logging_level)
    logger.propagate = False
    return logger