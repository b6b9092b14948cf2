"""Text matching used to rank replacement elements and dropdown options.

Rules are applied in priority order and the first one that matches wins:

1. case-normalized exact equality            -> 1.0  (EXACT)
2. substring containment in either direction -> 0.8  (PARTIAL)
3. equality against a value-style attribute  -> 0.7  (VALUE_MATCH)
4. edit-distance similarity >= threshold     -> 0.7 * similarity (FUZZY)

Anything else is NONE with a score of 0.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

EXACT_SCORE = 1.0
PARTIAL_SCORE = 0.8
VALUE_MATCH_SCORE = 0.7
FUZZY_WEIGHT = 0.7
FUZZY_THRESHOLD = 0.6
MIN_PARTIAL_LENGTH = 3

_WHITESPACE = re.compile(r"\s+")


class MatchKind(str, Enum):
    EXACT = "EXACT"
    PARTIAL = "PARTIAL"
    VALUE_MATCH = "VALUE_MATCH"
    FUZZY = "FUZZY"
    NONE = "NONE"


@dataclass(frozen=True, slots=True)
class MatchResult:
    kind: MatchKind
    score: float
    similarity: float = 0.0

    @property
    def matched(self) -> bool:
        return self.kind is not MatchKind.NONE


NO_MATCH = MatchResult(MatchKind.NONE, 0.0)


def normalize(text: str | None) -> str:
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip().lower()


def levenshtein_distance(left: str, right: str) -> int:
    if left == right:
        return 0
    if not left:
        return len(right)
    if not right:
        return len(left)
    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(left: str, right: str) -> float:
    """Edit-distance similarity in [0, 1] on normalized text."""

    left, right = normalize(left), normalize(right)
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(left, right) / longest


def score(candidate_text: str | None, query_text: str | None, value: str | None = None) -> MatchResult:
    candidate = normalize(candidate_text)
    query = normalize(query_text)
    if not query:
        return NO_MATCH

    if candidate and candidate == query:
        return MatchResult(MatchKind.EXACT, EXACT_SCORE, 1.0)

    if candidate and min(len(candidate), len(query)) >= MIN_PARTIAL_LENGTH:
        if candidate in query or query in candidate:
            return MatchResult(MatchKind.PARTIAL, PARTIAL_SCORE, similarity(candidate, query))

    if value and normalize(value) == query:
        return MatchResult(MatchKind.VALUE_MATCH, VALUE_MATCH_SCORE, 1.0)

    if candidate:
        ratio = similarity(candidate, query)
        if ratio >= FUZZY_THRESHOLD:
            return MatchResult(MatchKind.FUZZY, round(FUZZY_WEIGHT * ratio, 4), ratio)

    return NO_MATCH


def best_match(
    options: Iterable[tuple[str, str | None]],
    query_text: str,
) -> tuple[int, MatchResult] | None:
    """Returns the index and result of the best ``(text, value)`` option, if any matches."""

    best: tuple[int, MatchResult] | None = None
    for index, (text, value) in enumerate(options):
        result = score(text, query_text, value)
        if not result.matched:
            continue
        if best is None or (result.score, result.similarity) > (best[1].score, best[1].similarity):
            best = (index, result)
    return best
