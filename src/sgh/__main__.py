"""
CLI interface for sgh.

Usage:
    sgh                                   # Pick a host from the default configs
    sgh 'web-*'                           # Only list aliases matching a glob
    sgh -s prod                           # Start with a search query
    sgh -c ~/work/ssh_config              # Use another config file
    sgh -t 'mosh {{name}}'                # Custom command template
    sgh --on-session-start-template 'vpn up' -e
    sgh -G                                # Print resolved hosts and exit
    sgh --events /tmp/sgh.jsonl           # Append structured events
    python -m sgh --help
"""
from __future__ import annotations

import argparse
import logging
import logging.handlers
import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, TextIO

from sgh import __version__
from sgh.app import AppConfig, InteractionController, load_registry
from sgh.display import CursesDisplay
from sgh.errors import ConfigError, TerminalError
from sgh.events import EventEmitter, EventType
from sgh.platform import default_config_paths, expand_path, get_system_config_path
from sgh.resolver import HostRegistry
from sgh.session import SessionConfig
from sgh.template import DEFAULT_TEMPLATE

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Records held while curses owns the screen
LOG_BUFFER_CAPACITY = 1000

_TRUE_WORDS = {"true", "yes", "on", "1"}
_FALSE_WORDS = {"false", "no", "off", "0"}


def parse_bool(value: str) -> bool:
    """
    Parse a boolean option value.

    Raises:
        argparse.ArgumentTypeError: If value is not a recognised boolean
    """
    lowered = value.strip().lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got {value!r}")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the sgh CLI."""
    parser = argparse.ArgumentParser(
        prog="sgh",
        description="Interactive picker for hosts in your SSH config",
        epilog="Example: sgh -s web -t 'ssh -t {{name}} tmux attach'",
    )

    parser.add_argument(
        "patterns",
        nargs="*",
        metavar="PATTERN",
        help="Only list aliases matching these globs (prefix ! to exclude)",
    )

    parser.add_argument(
        "-c", "--config",
        nargs="+",
        metavar="PATH",
        help="SSH config file(s) to read instead of the system and user configs",
    )

    parser.add_argument(
        "--show-proxy-command",
        action="store_true",
        help="Show a ProxyCommand column in the host list",
    )

    parser.add_argument(
        "-s", "--search",
        metavar="FILTER",
        default="",
        help="Initial search query",
    )

    parser.add_argument(
        "--sort",
        type=parse_bool,
        nargs="?",
        const=True,
        default=True,
        metavar="BOOL",
        help="Sort hosts by name when no query is entered (default: true)",
    )

    parser.add_argument(
        "-t", "--template",
        metavar="TMPL",
        default=DEFAULT_TEMPLATE,
        help=f"Command template for the selected host (default: {DEFAULT_TEMPLATE})",
    )

    parser.add_argument(
        "--on-session-start-template",
        metavar="TMPL",
        help="Shell command template run before the session starts",
    )

    parser.add_argument(
        "--on-session-end-template",
        metavar="TMPL",
        help="Shell command template run after the session ends",
    )

    parser.add_argument(
        "-e", "--exit",
        action="store_true",
        help="Exit with the session's status instead of returning to the list",
    )

    parser.add_argument(
        "-G", "--print-config",
        action="store_true",
        help="Print the resolved configuration of every host and exit",
    )

    parser.add_argument(
        "--events",
        metavar="FILE",
        help="Append JSONL events to FILE",
    )

    parser.add_argument(
        "--log-file",
        metavar="FILE",
        help="Write log records to FILE instead of stderr at exit",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for info, -vv for debug)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only log errors",
    )

    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


def build_app_config(args: argparse.Namespace) -> AppConfig:
    """Assemble AppConfig from parsed arguments."""
    if args.config:
        config_paths = tuple(expand_path(p) for p in args.config)
        optional: tuple[Path, ...] = ()
    else:
        config_paths = tuple(default_config_paths())
        optional = (get_system_config_path(),)

    return AppConfig(
        config_paths=config_paths,
        optional_paths=optional,
        search_filter=args.search,
        sort_by_name=args.sort,
        show_proxy_command=args.show_proxy_command,
        session=SessionConfig(
            main_template=args.template,
            pre_hook_template=args.on_session_start_template,
            post_hook_template=args.on_session_end_template,
            exit_after_session=args.exit,
        ),
        requested_patterns=tuple(args.patterns),
        events_path=expand_path(args.events) if args.events else None,
    )


def configure_logging(verbose: int, quiet: bool, log_file: str | None) -> logging.Handler:
    """
    Install the root handler.

    Without a log file, records are buffered and written to stderr by
    flush_logging() once the terminal is back to normal.
    """
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(expand_path(log_file), encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    else:
        target = logging.StreamHandler(sys.stderr)
        target.setFormatter(logging.Formatter(LOG_FORMAT))
        # flushLevel above CRITICAL: nothing reaches stderr mid-session
        handler = logging.handlers.MemoryHandler(
            LOG_BUFFER_CAPACITY,
            flushLevel=logging.CRITICAL + 1,
            target=target,
        )

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[handler])
    return handler


def flush_logging(handler: logging.Handler) -> None:
    handler.flush()
    handler.close()
    logging.getLogger().removeHandler(handler)


def print_config(registry: HostRegistry, file: TextIO | None = None) -> None:
    """
    Print every resolved host, one "keyword value" line per attribute.

    Hosts are separated by a blank line.
    """
    out = file or sys.stdout
    for i, host in enumerate(registry):
        if i:
            print(file=out)
        print(f"host {host.alias}", file=out)
        if host.aliases:
            print(f"aliases {' '.join(host.aliases)}", file=out)
        print(f"hostname {host.hostname}", file=out)
        if host.user:
            print(f"user {host.user}", file=out)
        if host.port is not None:
            print(f"port {host.port}", file=out)
        for identity in host.identity_files:
            print(f"identityfile {identity}", file=out)
        if host.proxy_command:
            print(f"proxycommand {host.proxy_command}", file=out)
        for rule in host.local_forwards:
            print(f"localforward {rule.to_config()}", file=out)
        for keyword, value in host.raw_attributes.items():
            print(f"{keyword} {value}", file=out)


@contextmanager
def _exit_on_sigterm() -> Iterator[None]:
    """Turn SIGTERM into SystemExit so an open display is restored on the way out."""

    def terminate(signum: int, frame: Any) -> None:
        logger.info("Terminated by signal %d", signum)
        raise SystemExit(128 + signum)

    previous = signal.signal(signal.SIGTERM, terminate)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def run(args: argparse.Namespace) -> int:
    """
    Load hosts and run the picker.

    Returns:
        Exit status: 0 on quit, the session's status with --exit, 1 on a
        configuration or terminal error

    Raises:
        SystemExit: With status 143 when SIGTERM arrives while browsing,
            after the terminal has been restored
    """
    config = build_app_config(args)
    emitter = EventEmitter(jsonl_path=config.events_path)
    try:
        try:
            registry = load_registry(config, emitter)
        except ConfigError as e:
            emitter.emit(EventType.ERROR, **e.to_dict())
            logger.error("Configuration failed: %s", e)
            print(f"Error: {e}", file=sys.stderr)
            return 1

        if args.print_config:
            print_config(registry)
            return 0

        try:
            if not (sys.stdin.isatty() and sys.stdout.isatty()):
                raise TerminalError("standard input and output must be a terminal")
            with _exit_on_sigterm(), CursesDisplay() as display:
                controller = InteractionController(registry, display, config, emitter)
                return controller.run()
        except TerminalError as e:
            emitter.emit(EventType.ERROR, **e.to_dict())
            print(f"Error: {e}", file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            return 0
    finally:
        emitter.close()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    if not args.template.strip():
        parser.error("--template must not be empty")

    handler = configure_logging(args.verbose, args.quiet, args.log_file)
    try:
        return run(args)
    finally:
        flush_logging(handler)


if __name__ == "__main__":
    sys.exit(main())
