"""
Error taxonomy with structured data for JSONL logging.

Every failure names the stage it happened in, so the user can tell a parse
error from a pre-hook failure at a glance.

Error hierarchy:
- SghError (base)
  - ConfigError (fatal at startup)
    - ConfigIoError (file missing or unreadable)
    - ConfigMalformed (directive without usable arguments)
    - IncludeCycle (a file transitively includes itself)
    - IncludeTooDeep (Include nesting exceeds the limit)
  - SessionError (recovered by the interactive loop)
    - TemplateError (render failure or unusable rendered command)
    - HookFailed (pre-hook exited non-zero)
    - SpawnFailed (a stage could not be started)
  - TerminalError (cannot enter or restore interactive mode)
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Sequence


class Stage(str, Enum):
    """Pipeline stage an error or event belongs to."""
    PARSE = "parse"
    RESOLVE = "resolve"
    RENDER = "render"
    PRE_HOOK = "pre-hook"
    MAIN = "main"
    POST_HOOK = "post-hook"


@dataclass
class ErrorContext:
    """
    Structured context for errors.

    Carries everything needed for the user-visible message and for
    JSONL event logging.
    """
    stage: Stage | None = None
    file: str | None = None
    line: int | None = None
    command: str | None = None
    exit_code: int | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate invariants after initialisation."""
        # Invariant: line numbers are 1-based
        if self.line is not None:
            assert isinstance(self.line, int) and self.line >= 1, (
                f"line must be a positive int, got {self.line!r}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result: dict[str, Any] = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if key == "extra":
                field_names = {f.name for f in fields(self)} - {"extra"}
                collisions = field_names & value.keys()
                assert not collisions, (
                    f"Extra keys collision with dataclass field names: "
                    f"{collisions}. Use distinct key names in extra."
                )
                result.update(value)
            elif isinstance(value, Enum):
                result[key] = value.value
            else:
                result[key] = value
        return result


class SghError(Exception):
    """
    Base exception for all sgh errors.

    All errors carry structured context for logging and debugging.
    """

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        # Precondition: message must be non-empty
        assert isinstance(message, str) and message.strip(), (
            f"SghError message must be a non-empty string, got {message!r}"
        )
        super().__init__(message)
        self.context = context or ErrorContext()

    @property
    def error_type(self) -> str:
        """Return the error type name for logging."""
        return self.__class__.__name__

    @property
    def stage(self) -> Stage | None:
        """Return the stage the error occurred in, if known."""
        return self.context.stage

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSONL logging."""
        return {
            "error_type": self.error_type,
            "message": str(self),
            **self.context.to_dict(),
        }


# ---------------------------------------------------------------------------
# Configuration Errors
# ---------------------------------------------------------------------------

class ConfigError(SghError):
    """Base class for configuration errors. Fatal at startup."""

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        if context is None:
            context = ErrorContext()
        if context.stage is None:
            context.stage = Stage.PARSE
        super().__init__(message, context)


class ConfigIoError(ConfigError):
    """A config file could not be read (missing, permission denied, ...)."""

    def __init__(self, path: Path | str, cause: OSError) -> None:
        self.path = Path(path)
        self.cause = cause
        reason = cause.strerror or str(cause)
        super().__init__(
            f"cannot read {self.path}: {reason}",
            ErrorContext(file=str(self.path), original_error=str(cause)),
        )


class ConfigMalformed(ConfigError):
    """
    A directive could not be parsed.

    The parser is fail-fast: a silently skipped directive could connect the
    user to the wrong host.
    """

    def __init__(self, file: Path | str, line: int, reason: str) -> None:
        self.file = Path(file)
        self.line = line
        self.reason = reason
        super().__init__(
            f"{self.file}:{line}: {reason}",
            ErrorContext(file=str(self.file), line=line, extra={"reason": reason}),
        )


class IncludeCycle(ConfigError):
    """A config file transitively includes itself."""

    def __init__(self, chain: Sequence[Path]) -> None:
        # Precondition: a cycle needs at least the repeated file twice
        assert len(chain) >= 2, f"Include cycle chain too short: {chain!r}"
        self.chain = tuple(Path(p) for p in chain)
        rendered = " -> ".join(str(p) for p in self.chain)
        super().__init__(
            f"Include cycle: {rendered}",
            ErrorContext(file=str(self.chain[0]), extra={"chain": [str(p) for p in self.chain]}),
        )


class IncludeTooDeep(ConfigError):
    """Include nesting exceeded the maximum depth."""

    def __init__(self, path: Path | str, max_depth: int) -> None:
        self.path = Path(path)
        self.max_depth = max_depth
        super().__init__(
            f"Include nesting deeper than {max_depth} levels at {self.path}",
            ErrorContext(file=str(self.path), extra={"max_depth": max_depth}),
        )


# ---------------------------------------------------------------------------
# Session Errors
# ---------------------------------------------------------------------------

class SessionError(SghError):
    """
    Base class for errors while launching a session.

    These are recovered locally: the interactive loop shows the message
    and keeps running.
    """


class TemplateError(SessionError):
    """
    A command template could not be turned into a runnable command.

    This is raised when:
    - The template has a syntax error
    - The template references an unknown field
    - The rendered main command is empty or cannot be split into arguments
    """

    def __init__(self, message: str, stage: Stage, template: str | None = None) -> None:
        context = ErrorContext(stage=stage)
        if template is not None:
            context.extra["template"] = template
        super().__init__(message, context)


class HookFailed(SessionError):
    """A pre-session hook exited with a non-zero status."""

    def __init__(self, stage: Stage, code: int, command: str, output: str = "") -> None:
        self.code = code
        self.output = output
        message = f"{stage.value} command exited with status {code}"
        last_line = output.strip().splitlines()[-1] if output.strip() else ""
        if last_line:
            message = f"{message}: {last_line}"
        super().__init__(
            message,
            ErrorContext(stage=stage, command=command, exit_code=code),
        )


class SpawnFailed(SessionError):
    """A stage's command could not be started (not found, not executable)."""

    def __init__(self, stage: Stage, command: str, cause: OSError) -> None:
        self.cause = cause
        reason = cause.strerror or str(cause)
        super().__init__(
            f"{stage.value} command could not be started: {reason}",
            ErrorContext(stage=stage, command=command, original_error=str(cause)),
        )


# ---------------------------------------------------------------------------
# Terminal Errors
# ---------------------------------------------------------------------------

class TerminalError(SghError):
    """
    The interactive display could not be entered or restored.

    Always fatal: no safe interactive state is reachable.
    """
