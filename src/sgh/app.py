"""
Interactive host picker.

Provides:
- AppState: Browsing or connecting
- Action: What the loop does after an input event
- AppConfig: Everything a run needs, assembled from the command line
- load_registry: Parse the configured files and resolve hosts
- InteractionController: The query/selection state machine and main loop
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from sgh.config import load_sources
from sgh.display import HostRow, InputEvent, Key, View
from sgh.events import EventEmitter
from sgh.matcher import SearchState, search
from sgh.resolver import HostRegistry, ResolvedHost, resolve
from sgh.session import SessionConfig, SessionOrchestrator, SessionResult

if TYPE_CHECKING:
    from sgh.display import Display

logger = logging.getLogger(__name__)

PAGE_SIZE = 21

# Seconds to wait for input before redrawing
POLL_INTERVAL = 0.25


class AppState(str, Enum):
    """Controller states."""
    BROWSING = "browsing"
    CONNECTING = "connecting"


class Action(str, Enum):
    """Outcome of handling one input event."""
    CONTINUE = "continue"
    CONNECT = "connect"
    EXIT = "exit"


@dataclass(frozen=True)
class AppConfig:
    """
    Settings for one run of the picker.

    Attributes:
        config_paths: SSH config files in precedence order
        optional_paths: Entries of config_paths skipped when missing
        search_filter: Initial query
        sort_by_name: Sort the unfiltered list alphabetically
        show_proxy_command: Add a ProxyCommand column to the list
        session: How sessions are launched
        requested_patterns: Only list aliases matching these globs
        events_path: Append JSONL events to this file
    """
    config_paths: tuple[Path, ...]
    optional_paths: tuple[Path, ...] = ()
    search_filter: str = ""
    sort_by_name: bool = True
    show_proxy_command: bool = False
    session: SessionConfig = field(default_factory=SessionConfig)
    requested_patterns: tuple[str, ...] = ()
    events_path: Path | None = None


def load_registry(config: AppConfig, emitter: EventEmitter | None = None) -> HostRegistry:
    """
    Parse config_paths and resolve the host registry.

    Raises:
        ConfigError: If any config file cannot be parsed
    """
    sources = load_sources(config.config_paths, optional=config.optional_paths, emitter=emitter)
    return resolve(sources, config.requested_patterns or None, emitter=emitter)


def host_row(host: ResolvedHost) -> HostRow:
    """Table cells for one host."""
    return HostRow(
        name=host.alias,
        aliases=", ".join(host.aliases),
        user=host.user or "",
        destination=host.hostname,
        port=str(host.port) if host.port is not None else "",
        proxy_command=host.proxy_command or "",
    )


def exit_status(code: int | None) -> int:
    """Map a child's return code to a process exit status."""
    if code is None:
        return 0
    if code < 0:
        # Killed by a signal, report it the way a shell does
        return 128 - code
    return code


class InteractionController:
    """
    Holds the query, the ranked results and the selection.

    handle_event() is a pure state transition and can be driven without a
    terminal; run() wires it to a Display and a SessionOrchestrator.
    """

    def __init__(
        self,
        registry: HostRegistry,
        display: "Display",
        config: AppConfig,
        emitter: EventEmitter | None = None,
        orchestrator: SessionOrchestrator | None = None,
    ) -> None:
        self._registry = registry
        self._display = display
        self._config = config
        self._orchestrator = orchestrator or SessionOrchestrator(display, emitter)

        self.state = AppState.BROWSING
        self.query = config.search_filter
        self.cursor = len(self.query)
        self.message: str | None = None
        self.message_is_error = False
        self._search = search(registry, self.query, config.sort_by_name)
        self.selected: int | None = 0 if self._search.ranked else None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def results(self) -> SearchState:
        return self._search

    @property
    def visible_hosts(self) -> list[ResolvedHost]:
        return [self._registry[i] for i in self._search.indices]

    @property
    def selected_host(self) -> ResolvedHost | None:
        if self.selected is None:
            return None
        index, _ = self._search.ranked[self.selected]
        return self._registry[index]

    def view(self) -> View:
        """Snapshot of the current state for the display."""
        host = self.selected_host
        return View(
            query=self.query,
            cursor=self.cursor,
            rows=[host_row(h) for h in self.visible_hosts],
            selected=self.selected,
            show_proxy_command=self._config.show_proxy_command,
            local_forwards=[rule.describe() for rule in host.local_forwards] if host else (),
            proxy_command=host.proxy_command if host else None,
            message=self.message,
            message_is_error=self.message_is_error,
            total_hosts=len(self._registry),
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def handle_event(self, event: InputEvent) -> Action:
        """
        Apply one input event.

        Returns:
            Action.CONNECT when the selected host should be launched,
            Action.EXIT to quit, Action.CONTINUE otherwise
        """
        assert self.state == AppState.BROWSING, \
            f"handle_event() called in state {self.state.value}"

        key = event.key
        if key == Key.CANCEL:
            return Action.EXIT
        if key == Key.CONFIRM:
            return Action.CONNECT if self.selected is not None else Action.CONTINUE

        if key == Key.CHAR:
            self._set_query(self.query[:self.cursor] + event.char + self.query[self.cursor:],
                            self.cursor + 1)
        elif key == Key.BACKSPACE:
            if self.cursor > 0:
                self._set_query(self.query[:self.cursor - 1] + self.query[self.cursor:],
                                self.cursor - 1)
        elif key == Key.DELETE:
            if self.cursor < len(self.query):
                self._set_query(self.query[:self.cursor] + self.query[self.cursor + 1:],
                                self.cursor)
        elif key == Key.CLEAR_QUERY:
            self._set_query("", 0)
        elif key == Key.CURSOR_LEFT:
            self.cursor = max(0, self.cursor - 1)
        elif key == Key.CURSOR_RIGHT:
            self.cursor = min(len(self.query), self.cursor + 1)
        elif key == Key.UP:
            self._move(-1)
        elif key == Key.DOWN:
            self._move(1)
        elif key == Key.PAGE_UP:
            self._move(-PAGE_SIZE)
        elif key == Key.PAGE_DOWN:
            self._move(PAGE_SIZE)
        elif key == Key.HOME:
            self._move_to(0)
        elif key == Key.END:
            self._move_to(len(self._search) - 1)

        return Action.CONTINUE

    def _set_query(self, query: str, cursor: int) -> None:
        if query != self.query:
            self._search = search(self._registry, query, self._config.sort_by_name)
            self.selected = 0 if self._search.ranked else None
        self.query = query
        self.cursor = cursor
        self.message = None

    def _move(self, delta: int) -> None:
        if self.selected is not None:
            self._move_to(self.selected + delta)

    def _move_to(self, position: int) -> None:
        if not self._search.ranked:
            self.selected = None
            return
        self.selected = max(0, min(position, len(self._search) - 1))

    def select_alias(self, alias: str) -> bool:
        """Highlight alias if it is among the current results."""
        index = self._registry.index_of(alias)
        if index is None:
            return False
        for position, (ranked_index, _) in enumerate(self._search.ranked):
            if ranked_index == index:
                self.selected = position
                return True
        return False

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def connect(self) -> SessionResult | None:
        """Launch a session for the selected host and resume browsing."""
        host = self.selected_host
        if host is None:
            return None

        self.state = AppState.CONNECTING
        logger.info("Connecting to %s", host.alias)
        try:
            result = self._orchestrator.launch(host, self._config.session)
        finally:
            self.state = AppState.BROWSING

        if result.terminate:
            return result

        self.select_alias(host.alias)
        if result.error is not None:
            self.message = str(result.error)
            self.message_is_error = True
        elif result.notices:
            self.message = "; ".join(result.notices)
            self.message_is_error = True
        else:
            self.message = f"{host.alias}: exited with status {result.main_exit_code}"
            self.message_is_error = False
        return result

    def run(self) -> int:
        """
        Browse until the user quits or a session asks to terminate.

        The display must already be acquired.

        Returns:
            Exit status for the sgh process
        """
        while True:
            self._display.draw(self.view())
            event = self._display.read_event(POLL_INTERVAL)
            if event is None:
                continue

            action = self.handle_event(event)
            if action == Action.EXIT:
                logger.info("Quit from host list")
                return 0
            if action == Action.CONNECT:
                result = self.connect()
                if result is not None and result.terminate:
                    return exit_status(result.main_exit_code)
