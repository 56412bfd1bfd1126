"""
Tests for SSH config file parsing.

Tests cover:
- Keyword/argument syntax (case, "=", quotes, comments)
- Host blocks, implicit global block and Match handling
- Include expansion, cycles and the depth limit
- Fail-fast errors with file and line
- Deterministic parsing
"""
from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from sgh.config import (
    ConfigParser,
    ConfigSource,
    load_sources,
    parse_config,
    split_arguments,
)
from sgh.errors import ConfigIoError, ConfigMalformed, IncludeCycle, IncludeTooDeep, Stage
from sgh.events import EventType


def _keywords(block) -> list[str]:
    return [d.keyword for d in block.directives]


# ---------------------------------------------------------------------------
# Argument Splitting Tests
# ---------------------------------------------------------------------------

class TestSplitArguments:
    """Test OpenSSH-style argument splitting."""

    def test_whitespace_separated(self) -> None:
        """Arguments are split on runs of whitespace."""
        assert split_arguments("a  b\tc") == ["a", "b", "c"]

    def test_double_quotes_group(self) -> None:
        """Double quotes keep spaces inside one argument."""
        assert split_arguments('"~/.ssh/my key" other') == ["~/.ssh/my key", "other"]

    def test_single_quotes_group(self) -> None:
        """Single quotes behave like double quotes."""
        assert split_arguments("'a b'") == ["a b"]

    def test_trailing_comment_stripped(self) -> None:
        """An unquoted # starts a comment."""
        assert split_arguments("2222 # ssh port") == ["2222"]

    def test_hash_inside_token_kept(self) -> None:
        """A # in the middle of an argument is not a comment."""
        assert split_arguments("a#b") == ["a#b"]

    def test_escaped_quote(self) -> None:
        """Backslash escapes a quote character."""
        assert split_arguments(r'say\"hi') == ['say"hi']

    def test_unterminated_quote_raises(self) -> None:
        """An open quote at end of line is an error."""
        with pytest.raises(ValueError, match="unterminated"):
            split_arguments('"abc')


# ---------------------------------------------------------------------------
# Block Structure Tests
# ---------------------------------------------------------------------------

class TestBlocks:
    """Test Host blocks and directive collection."""

    def test_empty_file(self, write_config) -> None:
        """An empty file has no blocks."""
        source = parse_config(write_config(""))
        assert source.blocks == ()

    def test_comments_and_blank_lines_only(self, write_config) -> None:
        """Comments and blank lines produce nothing."""
        source = parse_config(write_config("""
            # a comment

               # indented comment
        """))
        assert source.blocks == ()

    def test_host_block_directives(self, write_config) -> None:
        """Directives attach to the preceding Host line."""
        path = write_config("""
            Host prod
                HostName 10.0.0.1
                User deploy
        """)
        source = parse_config(path)

        assert len(source.blocks) == 1
        block = source.blocks[0]
        assert block.patterns == ("prod",)
        assert _keywords(block) == ["hostname", "user"]
        assert block.directives[0].arguments == ("10.0.0.1",)
        assert block.directives[0].line_number == 2
        assert block.line_number == 1

    def test_keywords_case_insensitive(self, write_config) -> None:
        """Keywords are lower-cased; the original spelling is kept."""
        source = parse_config(write_config("""
            HOST web
                hOsTnAmE web.example.com
        """))
        directive = source.blocks[0].directives[0]
        assert directive.keyword == "hostname"
        assert directive.raw_keyword == "hOsTnAmE"

    def test_equals_form(self, write_config) -> None:
        """Keyword=value and Keyword = value are accepted."""
        source = parse_config(write_config("""
            Host web
                Port=2222
                User = admin
        """))
        directives = source.blocks[0].directives
        assert directives[0].arguments == ("2222",)
        assert directives[1].arguments == ("admin",)

    def test_global_directives_form_implicit_block(self, write_config) -> None:
        """Directives before the first Host apply to every host."""
        source = parse_config(write_config("""
            User everyone

            Host web
                Port 22
        """))
        first = source.blocks[0]
        assert first.implicit
        assert first.patterns == ("*",)
        assert first.matches("anything")
        assert _keywords(first) == ["user"]

    def test_empty_host_block_kept(self, write_config) -> None:
        """A Host with no directives still declares its alias."""
        source = parse_config(write_config("Host lonely\n"))
        assert source.blocks[0].literal_patterns == ("lonely",)

    def test_negated_patterns(self, write_config) -> None:
        """! patterns are split out and exclude hosts."""
        source = parse_config(write_config("""
            Host *.example.com !bastion.example.com
                User deploy
        """))
        block = source.blocks[0]
        assert block.patterns == ("*.example.com",)
        assert block.negated_patterns == ("bastion.example.com",)
        assert block.matches("web.example.com")
        assert not block.matches("bastion.example.com")
        assert block.literal_patterns == ()

    def test_proxy_command_verbatim(self, write_config) -> None:
        """ProxyCommand keeps the rest of the line, quotes and # included."""
        source = parse_config(write_config("""
            Host inner
                ProxyCommand ssh -W "%h:%p" jump # not a comment
        """))
        directive = source.blocks[0].directives[0]
        assert directive.arguments == ('ssh -W "%h:%p" jump # not a comment',)

    def test_unknown_keywords_kept(self, write_config) -> None:
        """Keywords outside the modelled set are still parsed."""
        source = parse_config(write_config("""
            Host web
                ForwardAgent yes
                ServerAliveInterval 30
        """))
        assert _keywords(source.blocks[0]) == ["forwardagent", "serveraliveinterval"]

    def test_parse_is_deterministic(self, write_config) -> None:
        """Parsing the same content twice gives equal results."""
        path = write_config("""
            User a
            Host x y
                Port 22
                LocalForward 8080 localhost:80
        """)
        assert parse_config(path) == parse_config(path)


# ---------------------------------------------------------------------------
# Match Tests
# ---------------------------------------------------------------------------

class TestMatch:
    """Test the Match simplification."""

    def test_match_all_behaves_like_host_star(self, write_config) -> None:
        """Match all applies to every host."""
        source = parse_config(write_config("""
            Match all
                User matched
        """))
        block = source.blocks[0]
        assert block.is_match
        assert block.matches("whatever")
        assert block.literal_patterns == ()

    def test_match_all_with_final(self, write_config) -> None:
        """canonical/final modifiers do not change Match all."""
        source = parse_config(write_config("Match final all\n  User x\n"))
        assert source.blocks[0].matches("host")

    def test_other_criteria_never_match(self, write_config, caplog) -> None:
        """Criteria other than all are not evaluated and match nothing."""
        with caplog.at_level(logging.WARNING, logger="sgh.config"):
            source = parse_config(write_config("""
                Match host prod exec "true"
                    User matched
            """))
        block = source.blocks[0]
        assert block.match_criteria == ("host", "prod", "exec", "true")
        assert not block.matches("prod")
        assert "not evaluated" in caplog.text


# ---------------------------------------------------------------------------
# Include Tests
# ---------------------------------------------------------------------------

class TestInclude:
    """Test Include expansion."""

    def test_include_spliced_in_place(self, write_config) -> None:
        """Included blocks appear where the Include line is."""
        write_config("Host included\n  Port 1\n", name="extra.conf")
        path = write_config("""
            Host before
            Include extra.conf
            Host after
        """)
        source = parse_config(path)
        names = [b.patterns for b in source.blocks]
        assert names == [("before",), ("included",), ("after",)]

    def test_include_relative_to_including_file(self, write_config) -> None:
        """Relative Include paths resolve against the including file's directory."""
        write_config("Host deep\n", name="conf.d/deep.conf")
        write_config("Include deep.conf\n", name="conf.d/main")
        source = parse_config(write_config("Include conf.d/main\n"))
        assert [b.patterns for b in source.blocks] == [("deep",)]

    def test_include_glob_sorted(self, write_config) -> None:
        """Glob matches are included in sorted order."""
        write_config("Host b\n", name="conf.d/20-b")
        write_config("Host a\n", name="conf.d/10-a")
        source = parse_config(write_config("Include conf.d/*\n"))
        assert [b.patterns for b in source.blocks] == [("a",), ("b",)]

    def test_include_no_matches_is_fine(self, write_config) -> None:
        """A glob with no matches includes nothing."""
        source = parse_config(write_config("Include nothing/*\nHost x\n"))
        assert [b.patterns for b in source.blocks] == [("x",)]

    def test_include_inside_host_inherits_patterns(self, write_config) -> None:
        """Top-level directives of a file included in a Host block apply to that Host."""
        write_config("User deploy\n", name="users.conf")
        source = parse_config(write_config("""
            Host web
                Include users.conf
                Port 2200
        """))
        user_blocks = [b for b in source.blocks if "user" in _keywords(b)]
        port_blocks = [b for b in source.blocks if "port" in _keywords(b)]
        assert user_blocks[0].patterns == ("web",)
        assert port_blocks[0].patterns == ("web",)
        assert not user_blocks[0].matches("db")

    def test_include_cycle(self, write_config) -> None:
        """A file that includes itself transitively is an error naming the chain."""
        a = write_config("Include b\n", name="a")
        b = write_config("Include a\n", name="b")

        with pytest.raises(IncludeCycle) as exc_info:
            parse_config(a)

        chain = exc_info.value.chain
        assert chain == (a.resolve(), b.resolve(), a.resolve())
        assert "Include cycle" in str(exc_info.value)
        assert exc_info.value.stage == Stage.PARSE

    def test_self_include(self, write_config) -> None:
        """Including yourself is the shortest cycle."""
        a = write_config("Include a\n", name="a")
        with pytest.raises(IncludeCycle):
            parse_config(a)

    def test_same_file_twice_is_not_a_cycle(self, write_config) -> None:
        """Including one file from two places is allowed."""
        write_config("Host shared\n", name="shared")
        path = write_config("Include shared\nInclude shared\n")
        source = parse_config(path)
        assert len(source.blocks) == 2

    def test_include_depth_limit(self, write_config) -> None:
        """Nesting beyond the limit raises IncludeTooDeep."""
        for i in range(4):
            write_config(f"Include f{i + 1}\n", name=f"f{i}")
        write_config("Host leaf\n", name="f4")

        top = write_config("Include f0\n", name="top")

        with pytest.raises(IncludeTooDeep) as exc_info:
            ConfigParser(max_include_depth=2).parse(top)
        assert exc_info.value.max_depth == 2

    def test_include_within_depth_limit(self, write_config) -> None:
        """Nesting up to the limit parses."""
        write_config("Host leaf\n", name="f1")
        write_config("Include f1\n", name="f0")
        source = ConfigParser(max_include_depth=2).parse(write_config("Include f0\n"))
        assert [b.patterns for b in source.blocks] == [("leaf",)]


# ---------------------------------------------------------------------------
# Error Tests
# ---------------------------------------------------------------------------

class TestErrors:
    """Test fail-fast error reporting."""

    @pytest.mark.parametrize("text,reason", [
        ("Host\n", "missing argument"),
        ("Host web\n  User\n", "missing argument"),
        ("Host web\n  Port abc\n", "invalid Port"),
        ("Host web\n  Port 70000\n", "invalid Port"),
        ("Host web\n  LocalForward 8080\n", "invalid LocalForward"),
        ("Host web\n  LocalForward 8080 /tmp/socket\n", "invalid LocalForward"),
        ("Host web\n  User a b\n", "exactly one argument"),
        ('Host web\n  IdentityFile "unterminated\n', "unterminated"),
        ("Host web\n  !bad line\n", "cannot parse"),
    ])
    def test_malformed(self, write_config, text: str, reason: str) -> None:
        """Malformed directives abort the parse with file and line."""
        path = write_config(text)
        with pytest.raises(ConfigMalformed) as exc_info:
            parse_config(path)

        error = exc_info.value
        assert reason in error.reason
        assert error.file == path
        assert str(error).startswith(f"{path}:{error.line}:")

    def test_malformed_line_number(self, write_config) -> None:
        """The reported line is the offending one."""
        path = write_config("Host a\n  Port 22\n\n  Port x\n")
        with pytest.raises(ConfigMalformed) as exc_info:
            parse_config(path)
        assert exc_info.value.line == 4

    def test_malformed_in_included_file(self, write_config) -> None:
        """Errors in included files name the included file."""
        bad = write_config("Port nope\n", name="bad.conf")
        path = write_config("Include bad.conf\n")
        with pytest.raises(ConfigMalformed) as exc_info:
            parse_config(path)
        assert exc_info.value.file == bad

    def test_unresolvable_path_logged(self, write_config, caplog) -> None:
        """A path that cannot be resolved is parsed by its absolute path and logged."""
        path = write_config("Host a\n  User deploy\n")
        with caplog.at_level(logging.DEBUG, logger="sgh.config"), \
                patch.object(Path, "resolve", side_effect=OSError("symlink loop")):
            source = parse_config(path)

        assert source.blocks[0].patterns == ("a",)
        assert "Cannot resolve" in caplog.text
        assert "symlink loop" in caplog.text

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file raises ConfigIoError."""
        with pytest.raises(ConfigIoError) as exc_info:
            parse_config(tmp_path / "absent")
        assert "cannot read" in str(exc_info.value)
        assert exc_info.value.to_dict()["error_type"] == "ConfigIoError"


# ---------------------------------------------------------------------------
# load_sources Tests
# ---------------------------------------------------------------------------

class TestLoadSources:
    """Test parsing ordered lists of files."""

    def test_sources_in_order(self, write_config) -> None:
        """One ConfigSource per file, in the given order."""
        first = write_config("Host one\n", name="first")
        second = write_config("Host two\n", name="second")
        sources = load_sources([first, second])
        assert [s.path for s in sources] == [first, second]
        assert all(isinstance(s, ConfigSource) for s in sources)

    def test_optional_missing_skipped(self, write_config, tmp_path: Path) -> None:
        """Missing optional files are skipped."""
        user = write_config("Host one\n")
        missing = tmp_path / "etc_ssh_config"
        sources = load_sources([missing, user], optional=[missing])
        assert [s.path for s in sources] == [user]

    def test_required_missing_raises(self, tmp_path: Path) -> None:
        """Missing required files are errors."""
        with pytest.raises(ConfigIoError):
            load_sources([tmp_path / "absent"])

    def test_parse_events(self, write_config, emitter, event_collector) -> None:
        """A PARSE event is emitted per file."""
        path = write_config("Host a\n  Port 1\n  User u\n")
        load_sources([path], emitter=emitter)

        events = event_collector.get_by_type(EventType.PARSE)
        assert len(events) == 1
        assert events[0].data == {"file": str(path), "blocks": 1, "directives": 2}
