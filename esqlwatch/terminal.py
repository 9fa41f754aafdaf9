"""curses implementation of the render loop's :class:`~esqlwatch.render.Screen`."""

from __future__ import annotations

import contextlib
import curses
from typing import Optional, Sequence, Tuple

from .render import RESIZE_KEY, TerminalIOError

__all__ = ["CursesScreen"]


class CursesScreen:
    """Wrap a curses window for non-blocking key polling and full redraws.

    Must be created inside ``curses.wrapper`` so the terminal is restored on
    exit, including when an exception escapes the render loop.
    """

    def __init__(self, stdscr) -> None:
        self._stdscr = stdscr
        # Non-blocking getch() so polling never stalls a tick
        stdscr.nodelay(True)
        with contextlib.suppress(curses.error):
            curses.curs_set(0)

    def poll_key(self) -> Optional[str]:
        try:
            ch = self._stdscr.getch()
        except curses.error as exc:
            raise TerminalIOError(f"getch failed: {exc}") from exc
        if ch == -1:
            return None
        if ch == curses.KEY_RESIZE:
            return RESIZE_KEY
        if 0 <= ch < 256:
            return chr(ch)
        return f"<{ch}>"

    def size(self) -> Tuple[int, int]:
        try:
            height, width = self._stdscr.getmaxyx()
        except curses.error as exc:
            raise TerminalIOError(f"cannot read terminal size: {exc}") from exc
        return height, width

    def draw(self, lines: Sequence[str]) -> None:
        try:
            self._stdscr.erase()
            height, width = self._stdscr.getmaxyx()
            for row, line in enumerate(lines[:height]):
                # Writing into the last column of the last row raises in curses
                self._stdscr.addnstr(row, 0, line, max(0, width - 1))
            self._stdscr.refresh()
        except curses.error as exc:
            raise TerminalIOError(f"redraw failed: {exc}") from exc
