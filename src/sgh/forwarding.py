"""
LocalForward rules as declared in SSH config files.

Provides:
- ForwardRule: One LocalForward declaration
- parse_local_forward: Parse the LocalForward argument forms

Config syntax (two arguments):
    LocalForward 8080 localhost:80
    LocalForward 127.0.0.1:8080 localhost:80
    LocalForward *:8080 db.internal:5432
    LocalForward [::1]:8080 [fe80::1]:80
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Sequence

from sgh.validation import parse_port

_BRACKETED = re.compile(r"^\[([^\]]+)\]:(\d+)$")


@dataclass(frozen=True)
class ForwardRule:
    """
    A local port forward.

    Attributes:
        bind_address: Local bind address (None for the ssh default, "*" for all)
        bind_port: Local port number
        dest_host: Host reached from the remote side
        dest_port: Port on dest_host
    """
    bind_address: str | None
    bind_port: int
    dest_host: str
    dest_port: int

    def __post_init__(self) -> None:
        """Validate forward rule fields."""
        assert 1 <= self.bind_port <= 65535, f"bind_port out of range: {self.bind_port}"
        assert 1 <= self.dest_port <= 65535, f"dest_port out of range: {self.dest_port}"
        assert self.dest_host, "dest_host must not be empty"

    @property
    def bind_endpoint(self) -> str:
        """[address:]port as written on a LocalForward line."""
        if not self.bind_address:
            return str(self.bind_port)
        return f"{_bracketed(self.bind_address)}:{self.bind_port}"

    @property
    def dest_endpoint(self) -> str:
        """host:port, with IPv6 hosts in brackets."""
        return f"{_bracketed(self.dest_host)}:{self.dest_port}"

    def describe(self) -> str:
        """Human-readable form, e.g. '127.0.0.1:8080 -> db:5432'."""
        return f"{self.bind_endpoint} -> {self.dest_endpoint}"

    def to_config(self) -> str:
        """Arguments of the equivalent LocalForward line."""
        return f"{self.bind_endpoint} {self.dest_endpoint}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for templates and event logging."""
        return {
            "bind_address": self.bind_address or "",
            "bind_port": self.bind_port,
            "dest_host": self.dest_host,
            "dest_port": self.dest_port,
        }


def _bracketed(host: str) -> str:
    return f"[{host}]" if ":" in host else host


def _split_endpoint(spec: str) -> tuple[str | None, str]:
    """Split '[host:]port' (host possibly bracketed) into (host, port)."""
    match = _BRACKETED.match(spec)
    if match:
        return match.group(1), match.group(2)
    if ":" in spec:
        host, port = spec.rsplit(":", 1)
        return host, port
    return None, spec


def parse_local_forward(arguments: Sequence[str]) -> ForwardRule:
    """
    Parse LocalForward arguments.

    Args:
        arguments: The directive arguments ([bind_address:]port, host:hostport)

    Returns:
        The parsed ForwardRule

    Raises:
        ValueError: If the arguments are not a TCP forward specification
    """
    if len(arguments) != 2:
        raise ValueError(
            f"LocalForward expects '[bind_address:]port host:hostport', "
            f"got {len(arguments)} argument(s)"
        )

    bind_spec, dest_spec = arguments
    bind_address, bind_port = _split_endpoint(bind_spec)
    dest_host, dest_port = _split_endpoint(dest_spec)

    if dest_host is None or not dest_host:
        raise ValueError(f"LocalForward destination must be host:port, got {dest_spec!r}")
    if bind_address == "":
        raise ValueError(f"LocalForward bind address is empty in {bind_spec!r}")

    return ForwardRule(
        bind_address=bind_address,
        bind_port=parse_port(bind_port),
        dest_host=dest_host,
        dest_port=parse_port(dest_port),
    )
