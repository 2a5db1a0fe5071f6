#!/usr/bin/env python3
"""
Fuzzy resolution of free-text names (drugs, pharmacies, clinics, doctors)
onto catalog records.

Both the query and every catalog name go through the same normalization:
trimmed, lower-cased, "ё" folded into "е", whitespace collapsed and Cyrillic
transliterated to Latin, so "Нурафшон" and "Nurafshon" compare equal.
"""

import re
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

from rapidfuzz import fuzz

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_THRESHOLD = 60
DOCTOR_THRESHOLD = 70
SUGGESTION_THRESHOLD = 50
DEFAULT_MAX_RESULTS = 10
DEFAULT_MAX_SUGGESTIONS = 5

# Letters that expand to several Latin characters go first
_CYRILLIC_DIGRAPHS = (
    ("щ", "sch"),
    ("ж", "zh"),
    ("ч", "ch"),
    ("ш", "sh"),
    ("ю", "yu"),
    ("я", "ya"),
)

_CYRILLIC_LETTERS = str.maketrans({
    "а": "a", "б": "b", "в": "v", "г": "g", "д": "d", "е": "e", "з": "z",
    "и": "i", "й": "y", "к": "k", "л": "l", "м": "m", "н": "n", "о": "o",
    "п": "p", "р": "r", "с": "s", "т": "t", "у": "u", "ф": "f", "х": "h",
    "ц": "c", "ы": "y", "э": "e", "ъ": None, "ь": None,
    # Uzbek Cyrillic
    "ў": "o", "қ": "q", "ғ": "g", "ҳ": "h",
})

_WHITESPACE = re.compile(r"\s+")


def transliterate(text: str) -> str:
    """Cyrillic -> Latin for already lower-cased text"""
    for cyrillic, latin in _CYRILLIC_DIGRAPHS:
        text = text.replace(cyrillic, latin)
    return text.translate(_CYRILLIC_LETTERS)


def normalize(text: Optional[str]) -> str:
    if not text:
        return ""
    text = text.strip().lower().replace("ё", "е")
    text = _WHITESPACE.sub(" ", text)
    return transliterate(text)


def fuzzy_score(normalized_query: str, normalized_name: str) -> float:
    """Similarity in [0, 100] of two normalized strings.

    Exact equality and containment in either direction score 100; otherwise
    the best of plain, partial and token-sort ratios.
    """
    if not normalized_query or not normalized_name:
        return 0.0
    if normalized_query == normalized_name:
        return 100.0
    if normalized_query in normalized_name or normalized_name in normalized_query:
        return 100.0
    return max(
        fuzz.ratio(normalized_query, normalized_name),
        fuzz.partial_ratio(normalized_query, normalized_name),
        fuzz.token_sort_ratio(normalized_query, normalized_name),
    )


@dataclass(frozen=True)
class MatchCandidate(Generic[T]):
    item: T
    name: str
    score: float


class ResolutionStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ResolutionResult(Generic[T]):
    query: str
    status: ResolutionStatus
    match: Optional[MatchCandidate] = None
    suggestions: List[MatchCandidate] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.status == ResolutionStatus.FOUND

    @property
    def item(self) -> Optional[T]:
        return self.match.item if self.match else None

    @property
    def suggestion_names(self) -> List[str]:
        return [candidate.name for candidate in self.suggestions]


class EntityResolver:
    """Maps a free-text name onto the best record of a catalog"""

    def find_best(self, query: str, catalog: Iterable[T], name_of: Callable[[T], Optional[str]],
                  threshold: float = DEFAULT_THRESHOLD) -> Optional[MatchCandidate]:
        """Best record scoring at least `threshold`, or None.

        Scans in catalog order; the first exact or containment hit is
        accepted immediately, otherwise the highest fuzzy score wins and ties
        keep the earlier record.
        """
        normalized_query = normalize(query)
        if not normalized_query:
            return None

        best: Optional[MatchCandidate] = None
        for item in catalog:
            name = name_of(item)
            normalized_name = normalize(name)
            if not normalized_name:
                continue

            if normalized_name == normalized_query:
                logger.debug(f"Exact match for '{query}': {name}")
                return MatchCandidate(item, name, 100.0)
            if normalized_query in normalized_name or normalized_name in normalized_query:
                logger.debug(f"Partial match for '{query}': {name}")
                return MatchCandidate(item, name, 100.0)

            score = fuzzy_score(normalized_query, normalized_name)
            if best is None or score > best.score:
                best = MatchCandidate(item, name, score)

        if best is not None and best.score >= threshold:
            logger.debug(f"Fuzzy match for '{query}': {best.name} (score {best.score:.1f})")
            return best
        return None

    def search_similar(self, query: str, catalog: Iterable[T], name_of: Callable[[T], Optional[str]],
                       threshold: float = SUGGESTION_THRESHOLD,
                       max_results: int = DEFAULT_MAX_RESULTS) -> List[MatchCandidate]:
        """All records scoring at least `threshold`, best first, at most `max_results`"""
        normalized_query = normalize(query)
        if not normalized_query or max_results <= 0:
            return []

        candidates: List[MatchCandidate] = []
        for item in catalog:
            name = name_of(item)
            normalized_name = normalize(name)
            if not normalized_name:
                continue
            score = fuzzy_score(normalized_query, normalized_name)
            if score >= threshold:
                candidates.append(MatchCandidate(item, name, score))

        # sorted() is stable: equal scores keep catalog order
        candidates = sorted(candidates, key=lambda candidate: candidate.score, reverse=True)
        return candidates[:max_results]

    def resolve(self, query: str, catalog: Iterable[T], name_of: Callable[[T], Optional[str]],
                threshold: float = DEFAULT_THRESHOLD,
                suggestion_threshold: float = SUGGESTION_THRESHOLD,
                max_suggestions: int = DEFAULT_MAX_SUGGESTIONS) -> ResolutionResult:
        """Like find_best, but reports near-misses when nothing is good enough"""
        items = list(catalog)
        match = self.find_best(query, items, name_of, threshold)
        if match is not None:
            return ResolutionResult(query=query, status=ResolutionStatus.FOUND, match=match)

        suggestions = self.search_similar(query, items, name_of, suggestion_threshold, max_suggestions)
        logger.warning(f"No match for '{query}' (suggestions: {[c.name for c in suggestions]})")
        return ResolutionResult(query=query, status=ResolutionStatus.NOT_FOUND, suggestions=suggestions)

    def best_or_first(self, query: str, records: List[Any], name_of: Callable[[Any], Optional[str]]) -> Optional[Any]:
        """Most similar of already filtered records, falling back to the first one"""
        if not records:
            return None
        match = self.find_best(query, records, name_of, threshold=0)
        return match.item if match else records[0]
