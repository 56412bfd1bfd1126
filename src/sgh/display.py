"""
Interactive display: input events, the view model and the curses screen.

Provides:
- Key / InputEvent: Decoded keyboard input
- HostRow / View: Everything the screen shows for one frame
- Display: Interface the interaction loop and session orchestrator use
- CursesDisplay: The terminal implementation on curses

The display is a scoped resource:

    with CursesDisplay() as display:
        display.draw(view)
        event = display.read_event(timeout=0.25)
        display.release()      # hand the terminal to a child process
        ...
        display.acquire()      # take it back

Leaving the with-block always restores the terminal, also on exceptions.
"""
from __future__ import annotations

import curses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

from sgh.errors import TerminalError

logger = logging.getLogger(__name__)

INFO_TEXT = "(Esc) quit | (↑) move up | (↓) move down | (enter) select"

# Delay in ms before a lone Esc is reported (curses default is 1000)
ESCAPE_DELAY_MS = 25


class Key(str, Enum):
    """Input event kinds."""
    CHAR = "char"
    BACKSPACE = "backspace"
    DELETE = "delete"
    CURSOR_LEFT = "cursor_left"
    CURSOR_RIGHT = "cursor_right"
    CLEAR_QUERY = "clear_query"
    UP = "up"
    DOWN = "down"
    PAGE_UP = "page_up"
    PAGE_DOWN = "page_down"
    HOME = "home"
    END = "end"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    RESIZE = "resize"


@dataclass(frozen=True)
class InputEvent:
    """One decoded input event; char is set for Key.CHAR only."""
    key: Key
    char: str | None = None

    def __post_init__(self) -> None:
        if self.key == Key.CHAR:
            assert self.char is not None and len(self.char) == 1, \
                f"CHAR events need exactly one character, got {self.char!r}"

    @classmethod
    def of(cls, char: str) -> "InputEvent":
        return cls(Key.CHAR, char)


@dataclass(frozen=True)
class HostRow:
    """One row of the host table."""
    name: str
    aliases: str
    user: str
    destination: str
    port: str
    proxy_command: str = ""


@dataclass(frozen=True)
class View:
    """
    Everything drawn for one frame.

    local_forwards and proxy_command describe the highlighted row and are
    always present, whether or not the proxy column is shown.
    """
    query: str
    cursor: int
    rows: Sequence[HostRow]
    selected: int | None
    show_proxy_command: bool = False
    local_forwards: Sequence[str] = ()
    proxy_command: str | None = None
    message: str | None = None
    message_is_error: bool = False
    total_hosts: int = 0


class Display:
    """
    Interface for the terminal collaborator.

    Subclasses implement acquire/release/draw/read_event. The base class
    supplies the context-manager protocol.
    """

    def acquire(self) -> None:
        raise NotImplementedError

    def release(self) -> None:
        raise NotImplementedError

    @property
    def active(self) -> bool:
        raise NotImplementedError

    def draw(self, view: View) -> None:
        raise NotImplementedError

    def read_event(self, timeout: float) -> InputEvent | None:
        """Return the next input event, or None when timeout expires."""
        raise NotImplementedError

    def __enter__(self) -> "Display":
        self.acquire()
        return self

    def __exit__(self, *args: Any) -> None:
        if self.active:
            self.release()


# Control characters as delivered in raw mode
_CTRL_C = "\x03"
_CTRL_J = "\n"
_CTRL_K = "\x0b"
_CTRL_N = "\x0e"
_CTRL_P = "\x10"
_CTRL_U = "\x15"
_ESC = "\x1b"

_CHAR_KEYS: dict[str, Key] = {
    "\r": Key.CONFIRM,
    _ESC: Key.CANCEL,
    _CTRL_C: Key.CANCEL,
    _CTRL_J: Key.DOWN,
    _CTRL_N: Key.DOWN,
    _CTRL_K: Key.UP,
    _CTRL_P: Key.UP,
    _CTRL_U: Key.CLEAR_QUERY,
    "\x7f": Key.BACKSPACE,
    "\x08": Key.BACKSPACE,
}

_CODE_KEYS: dict[int, Key] = {
    curses.KEY_ENTER: Key.CONFIRM,
    curses.KEY_BACKSPACE: Key.BACKSPACE,
    curses.KEY_DC: Key.DELETE,
    curses.KEY_LEFT: Key.CURSOR_LEFT,
    curses.KEY_RIGHT: Key.CURSOR_RIGHT,
    curses.KEY_UP: Key.UP,
    curses.KEY_DOWN: Key.DOWN,
    curses.KEY_PPAGE: Key.PAGE_UP,
    curses.KEY_NPAGE: Key.PAGE_DOWN,
    curses.KEY_HOME: Key.HOME,
    curses.KEY_END: Key.END,
    curses.KEY_RESIZE: Key.RESIZE,
}


def decode_key(raw: str | int) -> InputEvent | None:
    """
    Map a curses get_wch() result to an InputEvent.

    Returns None for keys the interface does not use.
    """
    if isinstance(raw, int):
        key = _CODE_KEYS.get(raw)
        return InputEvent(key) if key is not None else None

    key = _CHAR_KEYS.get(raw)
    if key is not None:
        return InputEvent(key)
    if raw.isprintable():
        return InputEvent.of(raw)
    return None


def column_widths(rows: Sequence[HostRow], headers: Sequence[str]) -> list[int]:
    """Width of each column: widest cell or header, plus one for padding."""
    widths = [len(h) for h in headers]
    for row in rows:
        cells = _cells(row, len(headers))
        widths = [max(w, len(c)) for w, c in zip(widths, cells)]
    return [w + 1 for w in widths]


def _headers(show_proxy_command: bool) -> list[str]:
    headers = ["Name", "Aliases", "User", "Destination", "Port"]
    if show_proxy_command:
        headers.append("Proxy")
    return headers


def _cells(row: HostRow, count: int) -> list[str]:
    cells = [row.name, row.aliases, row.user, row.destination, row.port, row.proxy_command]
    return cells[:count]


def scroll_offset(selected: int | None, offset: int, height: int) -> int:
    """First visible row so that selected stays inside a window of height rows."""
    if selected is None or height <= 0:
        return 0
    if selected < offset:
        return selected
    if selected >= offset + height:
        return selected - height + 1
    return offset


class CursesDisplay(Display):
    """
    Terminal display on curses.

    acquire() enters raw mode on the alternate screen; release() restores
    the terminal exactly as it was so a child process can own it.
    """

    def __init__(self) -> None:
        self._screen: Any = None
        self._active = False
        self._offset = 0

    @property
    def active(self) -> bool:
        return self._active

    def acquire(self) -> None:
        """
        Enter interactive mode.

        Raises:
            TerminalError: If the terminal cannot be initialised
        """
        if self._active:
            return
        try:
            if self._screen is None:
                self._screen = curses.initscr()
            else:
                # Resuming after endwin(): refresh restores program mode
                self._screen.refresh()
            curses.noecho()
            curses.raw()
            curses.nonl()
            self._screen.keypad(True)
            try:
                curses.set_escdelay(ESCAPE_DELAY_MS)
            except (AttributeError, curses.error):
                pass
            try:
                curses.curs_set(1)
            except curses.error:
                pass
        except curses.error as e:
            self._restore()
            raise TerminalError(f"cannot initialise terminal: {e}") from e
        self._active = True
        logger.debug("Display acquired")

    def release(self) -> None:
        """
        Leave interactive mode and restore the terminal.

        Raises:
            TerminalError: If the terminal cannot be restored
        """
        if not self._active:
            return
        self._active = False
        try:
            self._screen.erase()
            self._screen.refresh()
        except curses.error:
            logger.debug("Could not clear screen before release")
        self._restore()
        logger.debug("Display released")

    def _restore(self) -> None:
        try:
            if self._screen is not None:
                self._screen.keypad(False)
            curses.noraw()
            curses.nl()
            curses.echo()
            curses.endwin()
        except curses.error as e:
            raise TerminalError(f"cannot restore terminal: {e}") from e

    def read_event(self, timeout: float) -> InputEvent | None:
        assert self._active, "read_event() called while display is released"
        self._screen.timeout(max(0, int(timeout * 1000)))
        while True:
            try:
                raw = self._screen.get_wch()
            except curses.error:
                # Timeout with no input
                return None
            event = decode_key(raw)
            if event is not None:
                return event

    def draw(self, view: View) -> None:
        assert self._active, "draw() called while display is released"
        screen = self._screen
        screen.erase()
        height, width = screen.getmaxyx()

        # Layout: search (3) | table | details | message (1) | footer (1)
        details_height = max(3, len(view.local_forwards) + 3 if view.local_forwards else 4)
        table_top = 3
        table_height = max(3, height - table_top - details_height - 2)
        details_top = table_top + table_height

        self._box(0, 0, 3, width, "Search")
        self._text(1, 4, view.query, width - 6)

        title = f"Hosts ({len(view.rows)}/{view.total_hosts})"
        self._box(table_top, 0, table_height, width, title)
        self._draw_table(view, table_top + 1, table_height - 2, width - 2)

        self._box(details_top, 0, details_height, width, "Local Forwards")
        lines = list(view.local_forwards) or [
            "No host selected" if view.selected is None else "No LocalForward defined"
        ]
        if view.proxy_command:
            lines.append(f"ProxyCommand: {view.proxy_command}")
        for i, line in enumerate(lines[: details_height - 2]):
            self._text(details_top + 1 + i, 2, line, width - 4)

        if view.message:
            attr = curses.A_BOLD if view.message_is_error else curses.A_DIM
            self._text(height - 2, 1, view.message, width - 2, attr)
        self._text(height - 1, max(0, (width - len(INFO_TEXT)) // 2), INFO_TEXT, width, curses.A_DIM)

        try:
            screen.move(1, min(width - 2, 4 + view.cursor))
        except curses.error:
            pass
        screen.refresh()

    def _draw_table(self, view: View, top: int, height: int, width: int) -> None:
        headers = _headers(view.show_proxy_command)
        widths = column_widths(view.rows, headers)

        self._text(top, 1, self._format(headers, widths), width, curses.A_BOLD)
        body = height - 1
        self._offset = scroll_offset(view.selected, self._offset, body)
        visible = view.rows[self._offset: self._offset + body]
        for i, row in enumerate(visible):
            attr = curses.A_REVERSE if self._offset + i == view.selected else curses.A_NORMAL
            line = self._format(_cells(row, len(headers)), widths)
            self._text(top + 1 + i, 1, line.ljust(width), width, attr)

    @staticmethod
    def _format(cells: Sequence[str], widths: Sequence[int]) -> str:
        return "".join(c.ljust(w) for c, w in zip(cells, widths))

    def _text(self, y: int, x: int, text: str, limit: int, attr: int = 0) -> None:
        if limit <= 0:
            return
        try:
            self._screen.addnstr(y, x, text, limit, attr)
        except curses.error:
            # Writing the bottom-right cell raises after drawing; ignore
            pass

    def _box(self, y: int, x: int, height: int, width: int, title: str) -> None:
        try:
            window = self._screen.derwin(height, width, y, x)
            window.box()
            window.addnstr(0, 2, f" {title} ", max(0, width - 4))
        except curses.error:
            pass
