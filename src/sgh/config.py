"""
SSH config file parsing matching OpenSSH syntax.

Provides:
- Directive: One keyword + arguments line
- PatternBlock: A Host/Match header and the directives that follow it
- ConfigSource: The ordered blocks of one top-level config file
- ConfigParser / parse_config: Parse a file, expanding Include recursively
- load_sources: Parse an ordered list of config files

Supports:
- "Keyword value" and "Keyword=value" forms, case-insensitive keywords
- Quoted arguments and trailing comments
- Host patterns with wildcards (*, ?) and negation (!)
- Include with globs, relative to the including file
- Match blocks syntactically (only "Match all" is honoured)

The parser is fail-fast: any malformed directive aborts the whole parse.
"""
from __future__ import annotations

import glob
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Sequence

from sgh.errors import (
    ConfigIoError,
    ConfigMalformed,
    IncludeCycle,
    IncludeTooDeep,
)
from sgh.events import EventType
from sgh.forwarding import parse_local_forward
from sgh.patterns import is_literal, matches_block, split_patterns
from sgh.platform import expand_path
from sgh.validation import parse_port

if TYPE_CHECKING:
    from sgh.events import EventEmitter

logger = logging.getLogger(__name__)

MAX_INCLUDE_DEPTH = 16

# Keywords whose single argument is the verbatim rest of the line
VERBATIM_KEYWORDS = frozenset({
    "proxycommand",
    "remotecommand",
    "localcommand",
    "knownhostscommand",
})

# Match criteria that do not restrict which hosts a block applies to
_MATCH_MODIFIERS = frozenset({"canonical", "final"})

_KEYWORD_LINE = re.compile(r"^([A-Za-z][A-Za-z0-9]*)(?:\s*=\s*|\s+|$)(.*)$")


@dataclass(frozen=True)
class Directive:
    """One parsed config line. keyword is lower-cased."""
    keyword: str
    arguments: tuple[str, ...]
    source_file: Path
    line_number: int
    raw_keyword: str = field(default="", compare=False)

    @property
    def value(self) -> str:
        """Arguments joined by single spaces."""
        return " ".join(self.arguments)


@dataclass(frozen=True)
class PatternBlock:
    """
    A Host (or Match) block and its directives.

    Directives before the first header of a file form an implicit block
    matching every host. A Match block whose criteria are not "all" has no
    patterns and therefore never matches.
    """
    patterns: tuple[str, ...]
    negated_patterns: tuple[str, ...] = ()
    directives: tuple[Directive, ...] = ()
    source_file: Path | None = None
    line_number: int = 0
    is_match: bool = False
    match_criteria: tuple[str, ...] = ()
    implicit: bool = False

    @property
    def literal_patterns(self) -> tuple[str, ...]:
        """Patterns that name exactly one host (Host blocks only)."""
        if self.is_match:
            return ()
        return tuple(p for p in self.patterns if is_literal(p))

    def matches(self, alias: str) -> bool:
        """Check if this block applies to alias."""
        return matches_block(alias, self.patterns, self.negated_patterns)


@dataclass(frozen=True)
class ConfigSource:
    """A parsed top-level config file with includes spliced in."""
    path: Path
    blocks: tuple[PatternBlock, ...]

    @property
    def directive_count(self) -> int:
        return sum(len(block.directives) for block in self.blocks)


@dataclass
class _Header:
    """Mutable state for the block currently being collected."""
    patterns: tuple[str, ...]
    negated_patterns: tuple[str, ...]
    source_file: Path
    line_number: int
    is_match: bool = False
    match_criteria: tuple[str, ...] = ()
    implicit: bool = False
    directives: list[Directive] = field(default_factory=list)

    def continuation(self, source_file: Path, line_number: int, implicit: bool = True) -> "_Header":
        """A fresh header selecting the same hosts as this one."""
        return _Header(
            patterns=self.patterns,
            negated_patterns=self.negated_patterns,
            source_file=source_file,
            line_number=line_number,
            is_match=self.is_match,
            match_criteria=self.match_criteria,
            implicit=implicit,
        )

    def freeze(self) -> PatternBlock:
        return PatternBlock(
            patterns=self.patterns,
            negated_patterns=self.negated_patterns,
            directives=tuple(self.directives),
            source_file=self.source_file,
            line_number=self.line_number,
            is_match=self.is_match,
            match_criteria=self.match_criteria,
            implicit=self.implicit,
        )


def split_arguments(text: str) -> list[str]:
    """
    Split a directive's argument text the way OpenSSH does.

    - Arguments are separated by whitespace
    - Single or double quotes group whitespace into one argument
    - A backslash escapes a following quote or backslash
    - An unquoted argument starting with # begins a trailing comment

    Raises:
        ValueError: On an unterminated quote
    """
    args: list[str] = []
    current: list[str] = []
    in_token = False
    quote: str | None = None
    i = 0

    while i < len(text):
        char = text[i]

        if char == "\\" and i + 1 < len(text) and text[i + 1] in "\"'\\":
            current.append(text[i + 1])
            in_token = True
            i += 2
            continue

        if quote is not None:
            if char == quote:
                quote = None
            else:
                current.append(char)
        elif char.isspace():
            if in_token:
                args.append("".join(current))
                current = []
                in_token = False
        elif char in "\"'":
            quote = char
            in_token = True
        elif char == "#" and not in_token:
            break
        else:
            current.append(char)
            in_token = True
        i += 1

    if quote is not None:
        raise ValueError(f"unterminated {quote} quote")
    if in_token:
        args.append("".join(current))
    return args


def _check_arguments(keyword: str, raw_keyword: str, arguments: Sequence[str]) -> str | None:
    """Return the reason a directive is malformed, or None if it is usable."""
    if not arguments or not any(arguments):
        return f"missing argument for {raw_keyword}"

    if keyword == "host":
        for pattern in arguments:
            if pattern in ("", "!"):
                return f"empty pattern in {raw_keyword}"
    elif keyword == "port":
        if len(arguments) != 1:
            return f"{raw_keyword} takes exactly one argument"
        try:
            parse_port(arguments[0])
        except ValueError as e:
            return f"invalid {raw_keyword}: {e}"
    elif keyword == "localforward":
        try:
            parse_local_forward(arguments)
        except ValueError as e:
            return f"invalid {raw_keyword}: {e}"
    elif keyword in ("hostname", "user") and len(arguments) != 1:
        return f"{raw_keyword} takes exactly one argument"

    return None


class ConfigParser:
    """
    Parser for SSH config files.

    Usage:
        source = ConfigParser().parse("~/.ssh/config")
        for block in source.blocks:
            ...

    Each call to parse() is independent; the parser keeps no state between
    files.
    """

    def __init__(self, max_include_depth: int = MAX_INCLUDE_DEPTH) -> None:
        assert max_include_depth >= 0, \
            f"max_include_depth must be non-negative, got {max_include_depth}"
        self._max_include_depth = max_include_depth

    def parse(self, path: Path | str) -> ConfigSource:
        """
        Parse a config file.

        Args:
            path: Config file path (~ is expanded)

        Returns:
            ConfigSource with all Include directives expanded

        Raises:
            ConfigIoError: If a file cannot be read
            ConfigMalformed: If a directive cannot be parsed
            IncludeCycle: If a file transitively includes itself
            IncludeTooDeep: If Include nesting exceeds the limit
        """
        config_path = expand_path(path)
        blocks = self._parse_file(config_path, chain=[], enclosing=None)
        return ConfigSource(path=config_path, blocks=tuple(blocks))

    def _read(self, path: Path) -> str:
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
        except OSError as e:
            raise ConfigIoError(path, e) from e

    def _parse_file(
        self,
        path: Path,
        chain: list[Path],
        enclosing: _Header | None,
    ) -> list[PatternBlock]:
        """Parse one file; chain holds the files currently being included."""
        resolved = Path(os.path.abspath(path))
        try:
            resolved = resolved.resolve()
        except OSError as e:
            # The open below reports the file; cycle checks use the absolute path
            logger.debug("Cannot resolve %s: %s", resolved, e)

        if resolved in chain:
            start = chain.index(resolved)
            raise IncludeCycle([*chain[start:], resolved])
        if len(chain) > self._max_include_depth:
            raise IncludeTooDeep(resolved, self._max_include_depth)

        content = self._read(path)
        logger.debug("Parsing %s", path)

        if enclosing is None:
            current = _Header(
                patterns=("*",),
                negated_patterns=(),
                source_file=path,
                line_number=0,
                implicit=True,
            )
        else:
            current = enclosing.continuation(path, 0)

        blocks: list[PatternBlock] = []

        def flush(header: _Header) -> None:
            if header.directives or not header.implicit:
                blocks.append(header.freeze())

        for line_no, line in enumerate(content.splitlines(), 1):
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue

            match = _KEYWORD_LINE.match(stripped)
            if match is None:
                raise ConfigMalformed(path, line_no, f"cannot parse line: {stripped!r}")

            raw_keyword, rest = match.group(1), match.group(2).strip()
            keyword = raw_keyword.lower()

            if keyword in VERBATIM_KEYWORDS:
                arguments = [rest] if rest else []
            else:
                try:
                    arguments = split_arguments(rest)
                except ValueError as e:
                    raise ConfigMalformed(path, line_no, f"{raw_keyword}: {e}") from e

            reason = _check_arguments(keyword, raw_keyword, arguments)
            if reason is not None:
                raise ConfigMalformed(path, line_no, reason)

            if keyword == "host":
                flush(current)
                patterns, negated = split_patterns(arguments)
                current = _Header(
                    patterns=patterns,
                    negated_patterns=negated,
                    source_file=path,
                    line_number=line_no,
                )

            elif keyword == "match":
                flush(current)
                current = self._match_header(arguments, path, line_no)

            elif keyword == "include":
                flush(current)
                for included in self._expand_include(arguments, path):
                    blocks.extend(
                        self._parse_file(included, [*chain, resolved], current)
                    )
                current = current.continuation(path, line_no)

            else:
                current.directives.append(Directive(
                    keyword=keyword,
                    arguments=tuple(arguments),
                    source_file=path,
                    line_number=line_no,
                    raw_keyword=raw_keyword,
                ))

        flush(current)
        return blocks

    def _match_header(self, criteria: Sequence[str], path: Path, line_no: int) -> _Header:
        """
        Build the header for a Match block.

        Criteria are not evaluated. "Match all" (optionally with canonical or
        final) behaves like "Host *"; anything else never matches.
        """
        lowered = {c.lower() for c in criteria}
        matches_all = lowered - _MATCH_MODIFIERS == {"all"}
        if not matches_all:
            logger.warning(
                "%s:%d: Match criteria are not evaluated, block ignored: %s",
                path, line_no, " ".join(criteria),
            )
        return _Header(
            patterns=("*",) if matches_all else (),
            negated_patterns=(),
            source_file=path,
            line_number=line_no,
            is_match=True,
            match_criteria=tuple(criteria),
        )

    def _expand_include(self, arguments: Iterable[str], including: Path) -> list[Path]:
        """Resolve Include globs relative to the including file's directory."""
        paths: list[Path] = []
        for argument in arguments:
            pattern = expand_path(argument)
            if not pattern.is_absolute():
                pattern = including.parent / pattern
            matches = sorted(glob.glob(str(pattern)))
            if not matches:
                logger.debug("Include %s matched no files", pattern)
            for match in matches:
                if os.path.isdir(match):
                    logger.debug("Include skipping directory %s", match)
                    continue
                paths.append(Path(match))
        return paths


def parse_config(path: Path | str) -> ConfigSource:
    """Parse a single config file with default settings."""
    return ConfigParser().parse(path)


def load_sources(
    paths: Sequence[Path | str],
    optional: Iterable[Path | str] = (),
    emitter: "EventEmitter | None" = None,
) -> list[ConfigSource]:
    """
    Parse config files in order.

    Args:
        paths: Config files in precedence order (first wins)
        optional: Paths that are skipped when they do not exist
        emitter: Optional event emitter for PARSE events

    Returns:
        One ConfigSource per parsed file

    Raises:
        ConfigError: On the first file that fails to parse
    """
    optional_paths = {expand_path(p) for p in optional}
    parser = ConfigParser()
    sources: list[ConfigSource] = []

    for raw_path in paths:
        path = expand_path(raw_path)
        if path in optional_paths and not path.exists():
            logger.info("Skipping missing optional config %s", path)
            continue

        source = parser.parse(path)
        sources.append(source)
        if emitter is not None:
            emitter.emit(
                EventType.PARSE,
                file=str(path),
                blocks=len(source.blocks),
                directives=source.directive_count,
            )

    return sources
