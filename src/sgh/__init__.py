"""sgh: interactive picker for hosts in your SSH config."""

__version__ = "0.1.0"

from sgh.app import AppConfig, InteractionController, load_registry
from sgh.config import ConfigParser, ConfigSource, Directive, PatternBlock, load_sources, parse_config
from sgh.display import CursesDisplay, Display, InputEvent, Key, View
from sgh.errors import (
    ConfigError,
    ConfigIoError,
    ConfigMalformed,
    ErrorContext,
    HookFailed,
    IncludeCycle,
    IncludeTooDeep,
    SessionError,
    SghError,
    SpawnFailed,
    Stage,
    TemplateError,
    TerminalError,
)
from sgh.events import Event, EventCollector, EventEmitter, EventType
from sgh.forwarding import ForwardRule, parse_local_forward
from sgh.matcher import SearchState, rank, search
from sgh.patterns import HostPattern
from sgh.platform import default_config_paths, expand_path, get_config_path, get_system_config_path
from sgh.resolver import HostRegistry, ResolvedHost, resolve
from sgh.session import SessionConfig, SessionOrchestrator, SessionResult, SessionState
from sgh.template import DEFAULT_TEMPLATE, build_context, render

__all__ = [
    "__version__",
    # App
    "AppConfig",
    "InteractionController",
    "load_registry",
    # Config
    "ConfigParser",
    "ConfigSource",
    "Directive",
    "PatternBlock",
    "load_sources",
    "parse_config",
    # Display
    "CursesDisplay",
    "Display",
    "InputEvent",
    "Key",
    "View",
    # Errors
    "ConfigError",
    "ConfigIoError",
    "ConfigMalformed",
    "ErrorContext",
    "HookFailed",
    "IncludeCycle",
    "IncludeTooDeep",
    "SessionError",
    "SghError",
    "SpawnFailed",
    "Stage",
    "TemplateError",
    "TerminalError",
    # Events
    "Event",
    "EventCollector",
    "EventEmitter",
    "EventType",
    # Forwarding
    "ForwardRule",
    "parse_local_forward",
    # Matching
    "HostPattern",
    "SearchState",
    "rank",
    "search",
    # Platform
    "default_config_paths",
    "expand_path",
    "get_config_path",
    "get_system_config_path",
    # Resolution
    "HostRegistry",
    "ResolvedHost",
    "resolve",
    # Sessions
    "SessionConfig",
    "SessionOrchestrator",
    "SessionResult",
    "SessionState",
    # Templates
    "DEFAULT_TEMPLATE",
    "build_context",
    "render",
]
