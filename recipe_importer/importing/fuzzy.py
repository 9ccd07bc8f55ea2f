from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar

from rapidfuzz.distance import Levenshtein

T = TypeVar("T")

_WHITESPACE = re.compile(r"\s+")


def normalize_name(raw: str) -> str:
    """
    Lowercase, trim and collapse internal whitespace runs to a single space.
    """
    return _WHITESPACE.sub(" ", (raw or "").strip().lower())


def similarity_score(query: str, candidate: str) -> float:
    """
    Distance-style score in [0, 1]: 0 means identical, 1 completely dissimilar.

    Uses the normalized Levenshtein distance of the raw strings and of their
    token-sorted forms, keeping whichever is lower, so word order alone does
    not count as a difference.

    One edit in a four-letter name scores 0.25, so at the default 0.3
    threshold short names one letter apart ("malt" and "salt", "ice" and
    "rice") count as the same ingredient.
    """
    if query == candidate:
        return 0.0
    if not query or not candidate:
        return 1.0
    direct = Levenshtein.normalized_distance(query, candidate)
    sorted_query = " ".join(sorted(query.split()))
    sorted_candidate = " ".join(sorted(candidate.split()))
    token_sorted = Levenshtein.normalized_distance(sorted_query, sorted_candidate)
    return min(direct, token_sorted)


@dataclass
class FuzzyMatch(Generic[T]):
    item: T
    score: float


class FuzzyMatcher(Generic[T]):
    """
    Finds the closest item to a query among items that expose one or more
    searchable strings. Lower scores are better; ties keep the item that came
    first in iteration order.
    """

    def __init__(self, items: Iterable[Tuple[T, Sequence[str]]], threshold: float = 0.3):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        self.threshold = threshold
        self._items: List[Tuple[T, Sequence[str]]] = list(items)

    def best_candidate(self, query: str) -> Optional[FuzzyMatch[T]]:
        best: Optional[FuzzyMatch[T]] = None
        for item, keys in self._items:
            score = min((similarity_score(query, key) for key in keys), default=1.0)
            if best is None or score < best.score:
                best = FuzzyMatch(item=item, score=score)
        return best

    def find_best_match(self, query: str) -> Optional[FuzzyMatch[T]]:
        best = self.best_candidate(query)
        if best is not None and best.score <= self.threshold:
            return best
        return None

    def has_match(self, query: str) -> bool:
        return self.find_best_match(query) is not None
