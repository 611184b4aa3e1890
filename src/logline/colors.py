"""ANSI styles used by the coloured formats."""

from __future__ import annotations

from typing import NamedTuple


class AnsiStyle(NamedTuple):
    open: str
    close: str


RESET = AnsiStyle("\x1b[0m", "\x1b[0m")
RED = AnsiStyle("\x1b[31m", "\x1b[39m")
GREEN = AnsiStyle("\x1b[32m", "\x1b[39m")
YELLOW = AnsiStyle("\x1b[33m", "\x1b[39m")
CYAN = AnsiStyle("\x1b[36m", "\x1b[39m")
WHITE = AnsiStyle("\x1b[37m", "\x1b[39m")


def color_for(status: int | None) -> AnsiStyle:
    """Red for 5xx, yellow for 4xx, cyan for 3xx, green for 2xx, white otherwise."""
    if status is None:
        return WHITE
    if status >= 500:
        return RED
    if status >= 400:
        return YELLOW
    if status >= 300:
        return CYAN
    if status >= 200:
        return GREEN
    return WHITE
