"""
Session launching: templates, hooks and the main command.

Provides:
- SessionState: Launch state machine states
- SessionConfig: Templates and flags for launching sessions
- SessionResult: Outcome of one launch
- SessionOrchestrator: Runs pre-hook, main command and post-hook for a host

A launch is strictly sequential and blocks until the main command exits:

    IDLE -> RENDERING_TEMPLATES -> RUNNING_PRE_HOOK -> RUNNING_MAIN
         -> RUNNING_POST_HOOK -> DONE

Any failure moves to ABORTED with a SessionError on the result. The display
is handed to the main command and taken back on every path.
"""
from __future__ import annotations

import logging
import shlex
import signal
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterator

from sgh.errors import (
    HookFailed,
    SessionError,
    SpawnFailed,
    Stage,
    TemplateError,
)
from sgh.events import EventEmitter, EventType
from sgh.template import DEFAULT_TEMPLATE, RenderError, build_context, render

if TYPE_CHECKING:
    from sgh.display import Display
    from sgh.resolver import ResolvedHost

logger = logging.getLogger(__name__)

# Signals passed on to the main command while it owns the terminal
FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SessionState(str, Enum):
    """
    Launch state machine states.

    State transitions:
        IDLE -> RENDERING_TEMPLATES (on launch)
        RENDERING_TEMPLATES -> RUNNING_PRE_HOOK (if a pre-hook is set)
        RENDERING_TEMPLATES -> RUNNING_MAIN (otherwise)
        RUNNING_PRE_HOOK -> RUNNING_MAIN (on exit status 0)
        RUNNING_MAIN -> RUNNING_POST_HOOK (if a post-hook is set)
        RUNNING_MAIN -> DONE (otherwise, or when exiting after the session)
        RUNNING_POST_HOOK -> DONE
        any -> ABORTED (on SessionError)
    """
    IDLE = "idle"
    RENDERING_TEMPLATES = "rendering_templates"
    RUNNING_PRE_HOOK = "running_pre_hook"
    RUNNING_MAIN = "running_main"
    RUNNING_POST_HOOK = "running_post_hook"
    DONE = "done"
    ABORTED = "aborted"


@dataclass(frozen=True)
class SessionConfig:
    """
    How sessions are launched.

    Attributes:
        main_template: Template for the main command
        pre_hook_template: Optional shell command run before main
        post_hook_template: Optional shell command run after main
        exit_after_session: Terminate sgh with main's exit status instead
            of returning to the host list
    """
    main_template: str = DEFAULT_TEMPLATE
    pre_hook_template: str | None = None
    post_hook_template: str | None = None
    exit_after_session: bool = False

    def __post_init__(self) -> None:
        assert self.main_template.strip(), "main_template must not be empty"


@dataclass
class SessionResult:
    """Outcome of one launch."""
    state: SessionState = SessionState.IDLE
    main_exit_code: int | None = None
    pre_hook_exit_code: int | None = None
    post_hook_exit_code: int | None = None
    error: SessionError | None = None
    notices: list[str] = field(default_factory=list)
    terminate: bool = False

    @property
    def ok(self) -> bool:
        return self.state == SessionState.DONE and self.error is None


@dataclass(frozen=True)
class _Commands:
    main: str
    pre_hook: str | None
    post_hook: str | None


class SessionOrchestrator:
    """
    Launches sessions for resolved hosts.

    Usage:
        orchestrator = SessionOrchestrator(display, emitter)
        result = orchestrator.launch(host, SessionConfig())
        if result.error:
            show(str(result.error))

    The display must be held when launch() is called; it is held again
    when launch() returns, unless result.terminate is set.
    """

    def __init__(self, display: "Display", emitter: EventEmitter | None = None) -> None:
        self._display = display
        self._emitter = emitter or EventEmitter()
        self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        return self._state

    def launch(self, host: "ResolvedHost", config: SessionConfig) -> SessionResult:
        """
        Run the configured commands for host.

        Args:
            host: The selected host
            config: Templates and flags

        Returns:
            SessionResult; session failures are reported on result.error
            rather than raised
        """
        result = SessionResult()
        try:
            self._run(host, config, result)
        except SessionError as e:
            self._transition(SessionState.ABORTED, result)
            result.error = e
            logger.warning("Session for %s aborted: %s", host.alias, e)
            self._emitter.emit(EventType.ERROR, alias=host.alias, **e.to_dict())
        return result

    def _transition(self, state: SessionState, result: SessionResult) -> None:
        logger.debug("Session state %s -> %s", self._state.value, state.value)
        self._state = state
        result.state = state

    def _run(self, host: "ResolvedHost", config: SessionConfig, result: SessionResult) -> None:
        self._transition(SessionState.RENDERING_TEMPLATES, result)
        commands = self._render_all(host, config)

        if commands.pre_hook is not None:
            self._transition(SessionState.RUNNING_PRE_HOOK, result)
            code, output = self._run_hook(Stage.PRE_HOOK, commands.pre_hook)
            result.pre_hook_exit_code = code
            if code != 0:
                raise HookFailed(Stage.PRE_HOOK, code, commands.pre_hook, output)

        self._transition(SessionState.RUNNING_MAIN, result)
        argv = self._split_main(commands.main)
        result.main_exit_code = self._run_main(argv, commands.main, config.exit_after_session)

        if config.exit_after_session:
            result.terminate = True
            self._transition(SessionState.DONE, result)
            return

        if commands.post_hook is not None:
            self._transition(SessionState.RUNNING_POST_HOOK, result)
            code, output = self._run_hook(Stage.POST_HOOK, commands.post_hook)
            result.post_hook_exit_code = code
            if code != 0:
                notice = str(HookFailed(Stage.POST_HOOK, code, commands.post_hook, output))
                result.notices.append(notice)
                logger.warning("%s", notice)

        self._transition(SessionState.DONE, result)

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def _render_all(self, host: "ResolvedHost", config: SessionConfig) -> _Commands:
        """Render every template before anything is run."""
        context = build_context(host)
        return _Commands(
            main=self._render(Stage.MAIN, config.main_template, context),
            pre_hook=self._render_optional(Stage.PRE_HOOK, config.pre_hook_template, context),
            post_hook=self._render_optional(Stage.POST_HOOK, config.post_hook_template, context),
        )

    def _render_optional(self, stage: Stage, template: str | None, context: dict[str, Any]) -> str | None:
        if template is None:
            return None
        return self._render(stage, template, context)

    def _render(self, stage: Stage, template: str, context: dict[str, Any]) -> str:
        try:
            command = render(template, context)
        except RenderError as e:
            raise TemplateError(f"{stage.value} template: {e}", stage, template) from e
        self._emitter.emit(EventType.RENDER, stage=stage.value, command=command)
        return command

    @staticmethod
    def _split_main(command: str) -> list[str]:
        try:
            argv = shlex.split(command)
        except ValueError as e:
            raise TemplateError(f"main command cannot be split: {e}", Stage.MAIN) from e
        if not argv:
            raise TemplateError("main command is empty", Stage.MAIN)
        return argv

    # -------------------------------------------------------------------------
    # Processes
    # -------------------------------------------------------------------------

    def _run_hook(self, stage: Stage, command: str) -> tuple[int, str]:
        """
        Run a hook through the shell with its output captured.

        The display stays held, so the hook's output must not reach the
        terminal; it is logged instead.

        Returns:
            (exit status, combined stdout and stderr)
        """
        logger.info("Running %s command: %s", stage.value, command)
        with self._emitter.timed_event(EventType.HOOK, stage=stage.value, command=command) as data:
            try:
                completed = subprocess.run(
                    command,
                    shell=True,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    errors="replace",
                )
            except OSError as e:
                data["error"] = str(e)
                raise SpawnFailed(stage, command, e) from e
            data["exit_code"] = completed.returncode

        if completed.stdout:
            logger.info("%s output:\n%s", stage.value, completed.stdout.rstrip())
        return completed.returncode, completed.stdout or ""

    def _run_main(self, argv: list[str], command: str, exit_after_session: bool) -> int:
        """
        Run the main command on the real terminal and wait for it.

        Raises:
            SpawnFailed: If the command cannot be started
        """
        self._display.release()
        finished = False
        try:
            print(f"Running command: {command}", flush=True)
            with self._emitter.timed_event(EventType.EXEC, command=command, argv=argv) as data:
                try:
                    process = subprocess.Popen(argv)
                except OSError as e:
                    data["error"] = str(e)
                    raise SpawnFailed(Stage.MAIN, command, e) from e
                with _forward_signals(process):
                    code = process.wait()
                data["exit_code"] = code
            finished = True
            logger.info("Main command exited with status %d", code)
            return code
        finally:
            # The display stays released only when sgh is about to exit
            if not (finished and exit_after_session):
                self._display.acquire()


@contextmanager
def _forward_signals(process: subprocess.Popen) -> Iterator[None]:
    """Relay FORWARDED_SIGNALS to process until the block exits."""
    if threading.current_thread() is not threading.main_thread():
        # Handlers can only be installed from the main thread
        yield
        return

    def relay(signum: int, frame: Any) -> None:
        if process.poll() is None:
            logger.debug("Forwarding signal %d to pid %d", signum, process.pid)
            process.send_signal(signum)

    previous = {}
    for signum in FORWARDED_SIGNALS:
        previous[signum] = signal.signal(signum, relay)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

