"""
Pytest fixtures for sgh tests.

Provides:
- write_config: Write an SSH config file under tmp_path
- event_collector / emitter: Event capture for asserting event sequences
- FakeDisplay: Scripted Display that records draws and acquire/release calls
"""
from __future__ import annotations

import textwrap
from collections import deque
from pathlib import Path
from typing import Callable, Iterable

import pytest

from sgh.display import Display, InputEvent, Key, View
from sgh.events import EventCollector, EventEmitter


class FakeDisplay(Display):
    """
    Display driven by a script of input events.

    read_event() pops the next scripted event and returns CANCEL once the
    script is exhausted, so a run always terminates.
    """

    def __init__(self, events: Iterable[InputEvent] = ()) -> None:
        self._events = deque(events)
        self._active = False
        self.calls: list[str] = []
        self.views: list[View] = []

    @property
    def active(self) -> bool:
        return self._active

    def acquire(self) -> None:
        self.calls.append("acquire")
        self._active = True

    def release(self) -> None:
        self.calls.append("release")
        self._active = False

    def draw(self, view: View) -> None:
        assert self._active, "draw() while released"
        self.views.append(view)

    def read_event(self, timeout: float) -> InputEvent | None:
        assert self._active, "read_event() while released"
        if not self._events:
            return InputEvent(Key.CANCEL)
        return self._events.popleft()


def type_text(text: str) -> list[InputEvent]:
    """Input events for typing text."""
    return [InputEvent.of(c) for c in text]


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[..., Path]:
    """Write dedented config text to tmp_path/name and return the path."""

    def write(text: str, name: str = "config") -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text).lstrip("\n"))
        return path

    return write


@pytest.fixture
def event_collector() -> EventCollector:
    """Fresh EventCollector for capturing events."""
    return EventCollector()


@pytest.fixture
def emitter(event_collector: EventCollector) -> EventEmitter:
    """EventEmitter that records into event_collector."""
    return EventEmitter(collector=event_collector)


@pytest.fixture
def fake_display() -> FakeDisplay:
    """Acquired FakeDisplay with an empty script."""
    display = FakeDisplay()
    display.acquire()
    display.calls.clear()
    return display
