"""Exceptions raised by logline for configuration mistakes."""

from __future__ import annotations


class LoglineError(Exception):
    """Base class for logline usage errors."""


class UnknownFormatError(LoglineError, KeyError):
    """A format name was looked up that was never defined."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"undefined logging format: {self.name!r}"


class UnknownTokenError(LoglineError, KeyError):
    """A template referenced a token that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"no token registered under {self.name!r}"
