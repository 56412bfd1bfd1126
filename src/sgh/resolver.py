"""
Host resolution across config sources.

Provides:
- ResolvedHost: Fully merged attributes for one literal host alias
- HostRegistry: Ordered, immutable collection of ResolvedHost with alias lookup
- resolve: Build a HostRegistry from parsed config sources

Matches OpenSSH precedence:
- Sources and blocks are scanned in order, first obtained value wins
- IdentityFile and LocalForward accumulate across every matching block
- HostName defaults to the alias and expands %h and %%
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterator, Mapping, Sequence

from sgh.events import EventType
from sgh.forwarding import ForwardRule, parse_local_forward
from sgh.patterns import match_any, split_patterns
from sgh.validation import parse_port

if TYPE_CHECKING:
    from sgh.config import ConfigSource, PatternBlock
    from sgh.events import EventEmitter

logger = logging.getLogger(__name__)

# Scalar keywords mapped onto ResolvedHost fields
SCALAR_KEYWORDS = frozenset({"hostname", "user", "port", "proxycommand"})

# Keywords whose values accumulate instead of first-wins
LIST_KEYWORDS = frozenset({"identityfile", "localforward"})

# Structural keywords, never stored as attributes
STRUCTURAL_KEYWORDS = frozenset({"host", "match", "include"})


@dataclass(frozen=True)
class ResolvedHost:
    """
    Resolved configuration for one host alias.

    Built once per resolution pass and never modified afterwards.
    """
    alias: str
    hostname: str
    user: str | None = None
    port: int | None = None
    identity_files: tuple[str, ...] = ()
    proxy_command: str | None = None
    local_forwards: tuple[ForwardRule, ...] = ()
    raw_attributes: Mapping[str, str] = field(default_factory=dict, hash=False)
    aliases: tuple[str, ...] = ()

    @property
    def destination(self) -> str:
        """Summary as user@hostname:port, omitting unset parts."""
        summary = self.hostname
        if self.user:
            summary = f"{self.user}@{summary}"
        if self.port is not None:
            summary = f"{summary}:{self.port}"
        return summary


class HostRegistry:
    """
    Ordered collection of resolved hosts.

    Order is first-seen order across sources. Lookup by alias is O(1).
    The registry is rebuilt in full rather than mutated.
    """

    def __init__(self, hosts: Sequence[ResolvedHost] = ()) -> None:
        self._hosts = tuple(hosts)
        self._index = {host.alias: i for i, host in enumerate(self._hosts)}
        # Invariant: one entry per alias
        assert len(self._index) == len(self._hosts), "Duplicate alias in HostRegistry"

    def __len__(self) -> int:
        return len(self._hosts)

    def __iter__(self) -> Iterator[ResolvedHost]:
        return iter(self._hosts)

    def __getitem__(self, index: int) -> ResolvedHost:
        return self._hosts[index]

    def __contains__(self, alias: object) -> bool:
        return alias in self._index

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HostRegistry):
            return NotImplemented
        return self._hosts == other._hosts

    def __repr__(self) -> str:
        return f"HostRegistry({[h.alias for h in self._hosts]!r})"

    @property
    def hosts(self) -> tuple[ResolvedHost, ...]:
        return self._hosts

    @property
    def aliases(self) -> list[str]:
        return [host.alias for host in self._hosts]

    def get(self, alias: str) -> ResolvedHost | None:
        """Look up a host by alias."""
        index = self._index.get(alias)
        return None if index is None else self._hosts[index]

    def index_of(self, alias: str) -> int | None:
        """Registry index of alias, or None if absent."""
        return self._index.get(alias)


def _expand_hostname(value: str, alias: str) -> str:
    """Expand the tokens OpenSSH accepts in HostName (%h, %%)."""
    result = value.replace("%%", "\x00")
    result = result.replace("%h", alias)
    return result.replace("\x00", "%")


class _Accumulator:
    """Merge state for one alias during a resolution pass."""

    def __init__(self, alias: str) -> None:
        self.alias = alias
        self.scalars: dict[str, str] = {}
        self.identity_files: list[str] = []
        self.local_forwards: list[ForwardRule] = []
        self.raw: dict[str, str] = {}
        self.aliases: list[str] = []

    def apply(self, block: "PatternBlock") -> None:
        # Names declared on the same Host line as the alias itself
        literals = block.literal_patterns
        if self.alias in literals:
            for pattern in literals:
                if pattern != self.alias and pattern not in self.aliases:
                    self.aliases.append(pattern)

        for directive in block.directives:
            keyword = directive.keyword
            if keyword in STRUCTURAL_KEYWORDS:
                continue
            if keyword == "identityfile":
                self.identity_files.append(directive.value)
            elif keyword == "localforward":
                self.local_forwards.append(parse_local_forward(directive.arguments))
            elif keyword in SCALAR_KEYWORDS:
                self.scalars.setdefault(keyword, directive.value)
            else:
                self.raw.setdefault(keyword, directive.value)

    def build(self) -> ResolvedHost:
        hostname = self.scalars.get("hostname")
        port = self.scalars.get("port")
        proxy_command = self.scalars.get("proxycommand")
        if proxy_command is not None and proxy_command.lower() == "none":
            proxy_command = None

        return ResolvedHost(
            alias=self.alias,
            hostname=_expand_hostname(hostname, self.alias) if hostname else self.alias,
            user=self.scalars.get("user"),
            port=parse_port(port) if port is not None else None,
            identity_files=tuple(self.identity_files),
            proxy_command=proxy_command,
            local_forwards=tuple(self.local_forwards),
            raw_attributes=MappingProxyType(dict(self.raw)),
            aliases=tuple(self.aliases),
        )


def collect_aliases(sources: Sequence["ConfigSource"]) -> list[str]:
    """
    Collect every literal Host pattern in first-seen order.

    Wildcard and negated patterns, and Match blocks, are not listed.
    """
    seen: set[str] = set()
    aliases: list[str] = []
    for source in sources:
        for block in source.blocks:
            for pattern in block.literal_patterns:
                if pattern not in seen:
                    seen.add(pattern)
                    aliases.append(pattern)
    return aliases


def resolve_host(alias: str, sources: Sequence["ConfigSource"]) -> ResolvedHost:
    """
    Resolve the attributes of a single alias.

    Every block of every source is scanned in order; matching blocks are
    merged with first-wins for scalars and append for list keywords.
    """
    accumulator = _Accumulator(alias)
    for source in sources:
        for block in source.blocks:
            if block.matches(alias):
                accumulator.apply(block)
    return accumulator.build()


def resolve(
    sources: Sequence["ConfigSource"],
    requested_patterns: Sequence[str] | None = None,
    emitter: "EventEmitter | None" = None,
) -> HostRegistry:
    """
    Build the host registry.

    Args:
        sources: Parsed config sources in precedence order
        requested_patterns: Optional globs restricting which aliases are
            listed; "!pattern" entries exclude
        emitter: Optional event emitter for the RESOLVE event

    Returns:
        HostRegistry in first-seen alias order
    """
    aliases = collect_aliases(sources)

    if requested_patterns:
        wanted, unwanted = split_patterns(requested_patterns)
        if not wanted:
            wanted = ("*",)
        aliases = [
            alias for alias in aliases
            if match_any(alias, wanted) and not match_any(alias, unwanted)
        ]

    registry = HostRegistry([resolve_host(alias, sources) for alias in aliases])
    logger.info("Resolved %d host(s) from %d source(s)", len(registry), len(sources))

    if emitter is not None:
        emitter.emit(EventType.RESOLVE, hosts=len(registry), sources=len(sources))

    return registry
