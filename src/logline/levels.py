"""Log levels for direct logging, lowest first."""

from __future__ import annotations

from enum import IntEnum


class LogLevel(IntEnum):
    ALL = 0
    TRACE = 1
    DEBUG = 2
    INFO = 3
    WARN = 4
    ERROR = 5
    FATAL = 6
    MARK = 7
    OFF = 8


def resolve_level(level: str | int) -> LogLevel:
    """
    Accept a level name (any case), an index or a ``LogLevel``.

    Raises:
        ValueError: for names or indexes outside the enumeration.
    """
    if isinstance(level, str):
        try:
            return LogLevel[level.upper()]
        except KeyError:
            raise ValueError(f"unknown log level: {level!r}") from None
    return LogLevel(level)
