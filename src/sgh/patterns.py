"""
Host pattern matching with OpenSSH glob semantics.

Patterns support:
- * matches any run of characters (including none)
- ? matches exactly one character
- ! prefix negates the pattern (handled by the caller, see split_patterns)

Unlike fnmatch, brackets are literal characters. Matching is
case-insensitive, as OpenSSH lowercases host names before matching.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable

WILDCARD_CHARS = frozenset("*?")


def is_literal(pattern: str) -> bool:
    """Return True if the pattern names exactly one host."""
    return not pattern.startswith("!") and not (WILDCARD_CHARS & set(pattern))


def split_patterns(patterns: Iterable[str]) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """
    Split Host arguments into positive and negated patterns.

    Returns:
        Tuple of (patterns, negated_patterns); negated entries lose their "!"
    """
    positive: list[str] = []
    negated: list[str] = []
    for pattern in patterns:
        if pattern.startswith("!"):
            negated.append(pattern[1:])
        else:
            positive.append(pattern)
    return tuple(positive), tuple(negated)


class HostPattern:
    """A compiled glob pattern exposing matches(alias) -> bool."""

    __slots__ = ("pattern", "_regex")

    def __init__(self, pattern: str) -> None:
        assert isinstance(pattern, str), (
            f"pattern must be a str, got {type(pattern).__name__}"
        )
        self.pattern = pattern
        self._regex = _compile(pattern)

    def matches(self, alias: str) -> bool:
        """Check if alias matches this pattern."""
        return self._regex.fullmatch(alias) is not None

    def __repr__(self) -> str:
        return f"HostPattern({self.pattern!r})"


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> re.Pattern[str]:
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


def match_any(alias: str, patterns: Iterable[str]) -> bool:
    """Check if alias matches at least one of the patterns."""
    return any(HostPattern(p).matches(alias) for p in patterns)


def matches_block(alias: str, patterns: Iterable[str], negated_patterns: Iterable[str]) -> bool:
    """
    Check if alias is selected by a Host line.

    OpenSSH behaviour:
    - Multiple patterns on one Host line are OR'd together
    - Negated patterns exclude the host even if a positive pattern matches
    - A host must match at least one positive pattern AND no negated pattern
    """
    if match_any(alias, negated_patterns):
        return False
    return match_any(alias, patterns)
