"""
Tests for host resolution.

Tests cover:
- Alias collection (literal patterns, first-seen order)
- First-wins precedence across blocks and sources
- Accumulating keywords (IdentityFile, LocalForward)
- HostName defaults and token expansion
- ProxyCommand none
- Requested pattern filtering
- HostRegistry lookups
"""
from __future__ import annotations

import pytest

from sgh.config import load_sources, parse_config
from sgh.errors import IncludeCycle
from sgh.events import EventType
from sgh.forwarding import ForwardRule
from sgh.resolver import HostRegistry, ResolvedHost, collect_aliases, resolve, resolve_host


def _resolve_text(write_config, text: str, **kwargs) -> HostRegistry:
    return resolve([parse_config(write_config(text))], **kwargs)


# ---------------------------------------------------------------------------
# Alias Collection Tests
# ---------------------------------------------------------------------------

class TestAliases:
    """Test which aliases are listed."""

    def test_literal_patterns_in_first_seen_order(self, write_config) -> None:
        """Every literal pattern becomes an alias, in order, without duplicates."""
        source = parse_config(write_config("""
            Host web db
            Host *.internal
            Host web cache
            Host !old
        """))
        assert collect_aliases([source]) == ["web", "db", "cache"]

    def test_wildcards_not_listed(self, write_config) -> None:
        """Wildcard-only blocks contribute no aliases."""
        registry = _resolve_text(write_config, """
            Host *
                User everyone
            Host web-?
                Port 22
        """)
        assert len(registry) == 0

    def test_match_blocks_not_listed(self, write_config) -> None:
        """Match blocks never declare aliases."""
        registry = _resolve_text(write_config, "Match all\n  User x\nHost real\n")
        assert registry.aliases == ["real"]

    def test_sibling_aliases(self, write_config) -> None:
        """Other names on the alias's own Host lines are its aliases."""
        registry = _resolve_text(write_config, """
            Host web www
                HostName web.example.com
            Host *.com web
                Port 22
        """)
        assert registry.get("web").aliases == ("www",)
        assert registry.get("www").aliases == ("web",)


# ---------------------------------------------------------------------------
# Precedence Tests
# ---------------------------------------------------------------------------

class TestPrecedence:
    """Test first-wins scalar merging."""

    def test_first_block_wins(self, write_config) -> None:
        """The earliest matching block sets a scalar."""
        registry = _resolve_text(write_config, """
            Host foo
                User alice
            Host f*
                User bob
                Port 2222
        """)
        host = registry.get("foo")
        assert host.user == "alice"
        assert host.port == 2222

    def test_first_source_wins(self, write_config) -> None:
        """Values from an earlier source win over a later one."""
        a = write_config("Host foo\n  User alice\n", name="a")
        b = write_config("Host *\n  User bob\n  HostName from-b\n", name="b")
        registry = resolve(load_sources([a, b]))

        host = registry.get("foo")
        assert host.user == "alice"
        assert host.hostname == "from-b"

    def test_global_defaults_apply_first(self, write_config) -> None:
        """Directives before any Host line win, as in OpenSSH."""
        registry = _resolve_text(write_config, """
            User global
            Host web
                User specific
        """)
        assert registry.get("web").user == "global"

    def test_negated_pattern_excludes(self, write_config) -> None:
        """A negated pattern stops a block from applying."""
        registry = _resolve_text(write_config, """
            Host web db
            Host * !db
                User deploy
        """)
        assert registry.get("web").user == "deploy"
        assert registry.get("db").user is None

    def test_match_all_applies(self, write_config) -> None:
        """Match all behaves like Host *."""
        registry = _resolve_text(write_config, "Host web\nMatch all\n  User m\n")
        assert registry.get("web").user == "m"

    def test_other_attributes_first_wins(self, write_config) -> None:
        """Unmodelled keywords are kept in raw_attributes, first wins."""
        registry = _resolve_text(write_config, """
            Host web
                ForwardAgent yes
            Host *
                ForwardAgent no
                Compression yes
        """)
        assert dict(registry.get("web").raw_attributes) == {
            "forwardagent": "yes",
            "compression": "yes",
        }


# ---------------------------------------------------------------------------
# Accumulation Tests
# ---------------------------------------------------------------------------

class TestAccumulation:
    """Test list keywords."""

    def test_local_forwards_accumulate_in_order(self, write_config) -> None:
        """LocalForward from every matching block is kept, in encounter order."""
        registry = _resolve_text(write_config, """
            Host web
                LocalForward 8080 localhost:80
            Host *
                LocalForward 127.0.0.1:5432 db.internal:5432
        """)
        forwards = registry.get("web").local_forwards
        assert forwards == (
            ForwardRule(None, 8080, "localhost", 80),
            ForwardRule("127.0.0.1", 5432, "db.internal", 5432),
        )

    def test_identity_files_accumulate(self, write_config) -> None:
        """IdentityFile entries append across blocks."""
        registry = _resolve_text(write_config, """
            Host web
                IdentityFile ~/.ssh/web
            Host *
                IdentityFile ~/.ssh/id_ed25519
        """)
        assert registry.get("web").identity_files == ("~/.ssh/web", "~/.ssh/id_ed25519")


# ---------------------------------------------------------------------------
# Field Tests
# ---------------------------------------------------------------------------

class TestFields:
    """Test individual resolved fields."""

    def test_hostname_defaults_to_alias(self, write_config) -> None:
        """Without HostName the alias is the hostname."""
        registry = _resolve_text(write_config, "Host plain\n")
        host = registry.get("plain")
        assert host.hostname == "plain"
        assert host.user is None
        assert host.port is None
        assert host.local_forwards == ()

    def test_hostname_token_expansion(self, write_config) -> None:
        """%h expands to the alias and %% to a percent sign."""
        registry = _resolve_text(write_config, """
            Host web
                HostName %h.example.com
            Host odd
                HostName 100%%.%h
        """)
        assert registry.get("web").hostname == "web.example.com"
        assert registry.get("odd").hostname == "100%.odd"

    def test_proxy_command(self, write_config) -> None:
        """ProxyCommand is kept verbatim."""
        registry = _resolve_text(write_config, "Host inner\n  ProxyCommand ssh -W %h:%p jump\n")
        assert registry.get("inner").proxy_command == "ssh -W %h:%p jump"

    def test_proxy_command_none(self, write_config) -> None:
        """ProxyCommand none means no proxy and still wins over later values."""
        registry = _resolve_text(write_config, """
            Host direct
                ProxyCommand none
            Host *
                ProxyCommand ssh -W %h:%p jump
        """)
        assert registry.get("direct").proxy_command is None

    def test_destination_summary(self) -> None:
        """destination omits unset parts."""
        assert ResolvedHost("a", "h").destination == "h"
        assert ResolvedHost("a", "h", user="u").destination == "u@h"
        assert ResolvedHost("a", "h", user="u", port=2222).destination == "u@h:2222"

    def test_raw_attributes_read_only(self, write_config) -> None:
        """raw_attributes cannot be modified after resolution."""
        registry = _resolve_text(write_config, "Host web\n  ForwardAgent yes\n")
        with pytest.raises(TypeError):
            registry.get("web").raw_attributes["forwardagent"] = "no"

    def test_resolve_host_directly(self, write_config) -> None:
        """resolve_host works for aliases that only match wildcards."""
        source = parse_config(write_config("Host *.example.com\n  User deploy\n"))
        host = resolve_host("api.example.com", [source])
        assert host.user == "deploy"
        assert host.hostname == "api.example.com"


# ---------------------------------------------------------------------------
# Requested Patterns Tests
# ---------------------------------------------------------------------------

class TestRequestedPatterns:
    """Test filtering the listed aliases."""

    CONFIG = """
        Host web-1 web-2 db-1 cache
    """

    def test_glob_filter(self, write_config) -> None:
        """Only aliases matching a requested pattern are listed."""
        registry = _resolve_text(write_config, self.CONFIG, requested_patterns=["web-*"])
        assert registry.aliases == ["web-1", "web-2"]

    def test_multiple_patterns(self, write_config) -> None:
        """Several patterns are OR'd."""
        registry = _resolve_text(write_config, self.CONFIG, requested_patterns=["db-*", "cache"])
        assert registry.aliases == ["db-1", "cache"]

    def test_negation_only(self, write_config) -> None:
        """Only negated patterns means everything except those."""
        registry = _resolve_text(write_config, self.CONFIG, requested_patterns=["!web-*"])
        assert registry.aliases == ["db-1", "cache"]

    def test_no_patterns_lists_all(self, write_config) -> None:
        """None or empty lists every alias."""
        registry = _resolve_text(write_config, self.CONFIG, requested_patterns=[])
        assert len(registry) == 4


# ---------------------------------------------------------------------------
# Registry Tests
# ---------------------------------------------------------------------------

class TestHostRegistry:
    """Test HostRegistry behaviour."""

    def test_lookup(self) -> None:
        """Hosts are found by alias and index."""
        registry = HostRegistry([ResolvedHost("a", "a"), ResolvedHost("b", "b")])
        assert registry.get("b").alias == "b"
        assert registry.get("missing") is None
        assert registry.index_of("b") == 1
        assert "a" in registry
        assert registry[0].alias == "a"

    def test_duplicate_alias_rejected(self) -> None:
        """Aliases are unique."""
        with pytest.raises(AssertionError):
            HostRegistry([ResolvedHost("a", "x"), ResolvedHost("a", "y")])

    def test_resolve_is_repeatable(self, write_config) -> None:
        """Resolving the same sources twice yields equal registries."""
        source = parse_config(write_config("Host a b\n  User u\n  LocalForward 1 h:2\n"))
        assert resolve([source]) == resolve([source])

    def test_resolve_event(self, write_config, emitter, event_collector) -> None:
        """A RESOLVE event reports the host count."""
        _resolve_text(write_config, "Host a b\n", emitter=emitter)
        events = event_collector.get_by_type(EventType.RESOLVE)
        assert events[0].data == {"hosts": 2, "sources": 1}

    def test_include_cycle_produces_no_registry(self, write_config) -> None:
        """A cycle fails before any registry exists."""
        x = write_config("Host x\nInclude y\n", name="x")
        write_config("Include x\n", name="y")
        with pytest.raises(IncludeCycle) as exc_info:
            resolve(load_sources([x]))
        names = {p.name for p in exc_info.value.chain}
        assert names == {"x", "y"}
