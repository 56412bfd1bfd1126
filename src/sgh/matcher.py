"""
Fuzzy ranking of hosts against a search query.

A host matches when the query is a subsequence of its search target
(alias, hostname, user and user@hostname:port). Scores reward contiguous
runs, runs that start or end on a word boundary, and short targets.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sgh.resolver import HostRegistry, ResolvedHost

SEPARATORS = frozenset(" -_.@:/")

MATCH_SCORE = 16
CONSECUTIVE_BONUS = 12
BOUNDARY_START_BONUS = 24
BOUNDARY_END_BONUS = 8
GAP_PENALTY = 1
# Subtracted once per target character so precise short names win ties
LENGTH_PENALTY = 1

Ranked = tuple[tuple[int, int], ...]


@dataclass(frozen=True)
class SearchState:
    """The current query and its ranked (registry_index, score) results."""
    query: str
    ranked: Ranked

    def __len__(self) -> int:
        return len(self.ranked)

    @property
    def indices(self) -> list[int]:
        return [index for index, _ in self.ranked]


def search_target(host: "ResolvedHost") -> str:
    """Build the lower-cased text a query is matched against."""
    parts = [host.alias, host.hostname]
    if host.user:
        parts.append(host.user)
    parts.append(host.destination)
    return " ".join(parts).lower()


def _at_boundary(target: str, position: int) -> bool:
    return position == 0 or target[position - 1] in SEPARATORS


def _ends_at_boundary(target: str, position: int) -> bool:
    return position == len(target) - 1 or target[position + 1] in SEPARATORS


def _score_from(target: str, query: str, start: int) -> int | None:
    """Score a greedy match of query that begins at target[start]."""
    score = MATCH_SCORE
    if _at_boundary(target, start):
        score += BOUNDARY_START_BONUS

    previous = start
    run = 1
    for char in query[1:]:
        position = target.find(char, previous + 1)
        if position < 0:
            return None
        if position == previous + 1:
            run += 1
            score += MATCH_SCORE + CONSECUTIVE_BONUS * (run - 1)
        else:
            if _ends_at_boundary(target, previous):
                score += BOUNDARY_END_BONUS
            run = 1
            score += MATCH_SCORE - GAP_PENALTY * (position - previous - 1)
            if _at_boundary(target, position):
                score += BOUNDARY_START_BONUS // 2
        previous = position

    if _ends_at_boundary(target, previous):
        score += BOUNDARY_END_BONUS
    return score


def score(target: str, query: str) -> int | None:
    """
    Score query against target.

    Args:
        target: Lower-cased search target
        query: Lower-cased, non-empty query

    Returns:
        The best score over every starting position, or None if the query
        is not a subsequence of the target
    """
    assert query, "score() requires a non-empty query"

    best: int | None = None
    start = target.find(query[0])
    while start >= 0:
        candidate = _score_from(target, query, start)
        if candidate is None:
            # Later starts only have fewer characters left to match
            break
        if best is None or candidate > best:
            best = candidate
        start = target.find(query[0], start + 1)

    if best is None:
        return None
    return best - LENGTH_PENALTY * len(target)


def rank(registry: "HostRegistry", query: str, sort_by_name: bool = True) -> Ranked:
    """
    Rank hosts against query.

    Args:
        registry: Hosts to rank
        query: Search text; matched case-insensitively
        sort_by_name: For an empty query, order alphabetically by alias
            instead of registry order

    Returns:
        (registry_index, score) pairs, best first; ties keep registry order
    """
    needle = query.lower()

    if not needle:
        indices = list(range(len(registry)))
        if sort_by_name:
            indices.sort(key=lambda i: registry[i].alias.lower())
        return tuple((i, 0) for i in indices)

    matches = []
    for index, host in enumerate(registry):
        result = score(search_target(host), needle)
        if result is not None:
            matches.append((index, result))

    # sort() is stable, so equal scores stay in registry order
    matches.sort(key=lambda item: -item[1])
    return tuple(matches)


def search(registry: "HostRegistry", query: str, sort_by_name: bool = True) -> SearchState:
    """Rank and wrap the result in a SearchState."""
    return SearchState(query=query, ranked=rank(registry, query, sort_by_name))
