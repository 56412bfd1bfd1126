"""
Structured run records for sgh.

Each run can append JSON lines to a file (--events FILE) describing what it
did: which config files were read, how many hosts resolved, which commands
were rendered and run, and how each one exited.

Event types:
- PARSE: One top-level config file parsed (file, blocks, directives)
- RESOLVE: Host registry built (hosts, sources)
- RENDER: A template rendered (stage, command)
- HOOK: A pre- or post-session hook finished (stage, command, exit_code)
- EXEC: The main command finished (command, argv, exit_code)
- ERROR: A failure, carrying SghError.to_dict()

Every line has the shape:
    {"event_type": ..., "timestamp": <unix ms>, "run_id": ..., "data": {...}}

run_id is shared by all events of one process, so runs appended to the
same file can be told apart.
"""
from __future__ import annotations

import json
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any, Iterator, Protocol


class EventType(str, Enum):
    """Kinds of run record."""
    PARSE = "PARSE"
    RESOLVE = "RESOLVE"
    RENDER = "RENDER"
    HOOK = "HOOK"
    EXEC = "EXEC"
    ERROR = "ERROR"


_EVENT_TYPES = frozenset(e.value for e in EventType)


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class Event:
    """One run record."""
    event_type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=_now_ms)
    run_id: str = ""

    def __post_init__(self) -> None:
        assert self.event_type in _EVENT_TYPES, \
            f"Unknown event_type {self.event_type!r}, expected one of {sorted(_EVENT_TYPES)}"
        assert self.timestamp > 0, f"timestamp must be positive, got {self.timestamp}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "run_id": self.run_id,
            "data": self.data,
        }

    def to_json(self) -> str:
        """One JSON line; values json cannot encode are stringified."""
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, record: dict[str, Any]) -> "Event":
        return cls(
            event_type=record["event_type"],
            data=record.get("data", {}),
            timestamp=record["timestamp"],
            run_id=record.get("run_id", ""),
        )


class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...


class EventCollector:
    """Keeps events in memory; used by tests."""

    def __init__(self) -> None:
        self._events: list[Event] = []

    def emit(self, event: Event) -> None:
        self._events.append(event)

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def get_by_type(self, event_type: str | EventType) -> list[Event]:
        """Collected events of one type, in emission order."""
        wanted = EventType(event_type).value
        return [e for e in self._events if e.event_type == wanted]


class JSONLEventWriter:
    """
    Appends events to a file, one JSON object per line.

    The file (and its directory) is created on first use. Each line is
    flushed immediately so a crash mid-session leaves a readable log.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._file: IO[str] | None = None

    def open(self) -> None:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "a", encoding="utf-8")

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def emit(self, event: Event) -> None:
        self.open()
        assert self._file is not None
        self._file.write(event.to_json())
        self._file.write("\n")
        self._file.flush()

    def __enter__(self) -> "JSONLEventWriter":
        self.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class EventEmitter:
    """
    Builds events and hands them to every sink.

    Usage:
        emitter = EventEmitter(jsonl_path="/tmp/sgh.jsonl")
        emitter.emit(EventType.RESOLVE, hosts=12, sources=2)
        emitter.close()

    With no sinks the emitter is a no-op, so callers never need to check.
    """

    def __init__(
        self,
        collector: EventCollector | None = None,
        jsonl_path: Path | str | None = None,
        run_id: str | None = None,
    ) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self._writer: JSONLEventWriter | None = None
        self._sinks: list[EventSink] = []

        if collector is not None:
            self._sinks.append(collector)
        if jsonl_path:
            self._writer = JSONLEventWriter(jsonl_path)
            self._writer.open()
            self._sinks.append(self._writer)

    def emit(self, event_type: str | EventType, **data: Any) -> Event:
        """
        Record one event.

        Args:
            event_type: Kind of record
            **data: Event payload

        Returns:
            The emitted Event
        """
        event = Event(
            event_type=EventType(event_type).value,
            data=data,
            run_id=self.run_id,
        )
        for sink in self._sinks:
            sink.emit(event)
        return event

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()

    @contextmanager
    def timed_event(self, event_type: str | EventType, **data: Any) -> Iterator[dict[str, Any]]:
        """
        Emit one event when the block exits, with duration_ms added.

        The yielded dict is the payload; fill in results inside the block.
        The event is emitted even if the block raises.

            with emitter.timed_event(EventType.EXEC, command=cmd) as payload:
                payload["exit_code"] = process.wait()
        """
        started = _now_ms()
        payload = dict(data)
        try:
            yield payload
        finally:
            payload["duration_ms"] = _now_ms() - started
            self.emit(event_type, **payload)


def read_jsonl_events(path: Path | str) -> list[Event]:
    """
    Load every event from a JSONL file written by JSONLEventWriter.

    Blank lines are skipped.
    """
    with open(path, "r", encoding="utf-8") as f:
        return [Event.from_dict(json.loads(line)) for line in f if line.strip()]
