"""
Where SSH configuration lives on this machine.

Provides:
- get_ssh_dir / get_config_path: The per-user ~/.ssh directory and config
- get_system_config_path: The machine-wide ssh_config
- default_config_paths: The sources read when -c is not given
- expand_path: ~ (and, on Windows, %VAR%) expansion for paths from configs
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

# Windows OpenSSH keeps its machine-wide files under %ProgramData%\ssh
_WINDOWS_PROGRAM_DATA = "C:\\ProgramData"


def is_windows() -> bool:
    return sys.platform == "win32"


def get_ssh_dir() -> Path:
    """
    The user's SSH directory.

    On Windows, %USERPROFILE% is preferred over %HOME% because that is what
    the bundled OpenSSH client reads.
    """
    if is_windows():
        for variable in ("USERPROFILE", "HOME"):
            base = os.environ.get(variable)
            if base:
                return Path(base) / ".ssh"
    return Path.home() / ".ssh"


def get_config_path() -> Path:
    """~/.ssh/config"""
    return get_ssh_dir() / "config"


def get_system_config_path() -> Path:
    """/etc/ssh/ssh_config, or %ProgramData%\\ssh\\ssh_config on Windows."""
    if is_windows():
        return Path(os.environ.get("ProgramData", _WINDOWS_PROGRAM_DATA)) / "ssh" / "ssh_config"
    return Path("/etc/ssh/ssh_config")


def default_config_paths() -> list[Path]:
    """
    Config sources in the order they are read.

    The system config is read first, so with first-value-wins its settings
    take precedence over the user's, matching how the host list has always
    been built.
    """
    return [get_system_config_path(), get_config_path()]


def expand_path(path: str | Path) -> Path:
    """
    Expand ~ in a path taken from the command line or an Include line.

    Environment variables are only expanded on Windows, where configs
    commonly use %USERPROFILE%.
    """
    text = str(path)
    if is_windows():
        text = os.path.expandvars(text)
    return Path(text).expanduser()
